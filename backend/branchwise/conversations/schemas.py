"""Request and response schemas for conversation and node endpoints."""

from pydantic import BaseModel, Field

from branchwise.models import ConsistencyIssue, Role, Turn

# -- Requests --


class CreateConversationRequest(BaseModel):
    title: str = Field(min_length=1)
    owner_id: str = "local"
    is_public: bool = False


class PatchConversationRequest(BaseModel):
    title: str = Field(min_length=1)


class CreateNodeRequest(BaseModel):
    text: str = Field(min_length=1)
    role: Role = "user"
    parent_id: str | None = None


class PatchNodeRequest(BaseModel):
    """Request body for PATCH /api/conversations/{cid}/nodes/{nid}."""

    text: str = Field(min_length=1)


class ReplyRequest(BaseModel):
    """Request body for POST /api/conversations/{cid}/nodes/{nid}/reply."""

    provider: str | None = None
    model: str | None = None
    stream: bool = True


# -- Responses --


class NodeResponse(BaseModel):
    node_id: str
    conversation_id: str
    parent_id: str | None = None
    role: str
    text: str
    deleted: bool = False
    created_at: str
    sibling_count: int = 1
    sibling_index: int = 0


class ConversationSummary(BaseModel):
    conversation_id: str
    owner_id: str
    title: str
    is_public: bool = False
    created_at: str
    node_count: int = 0


class ConversationDetailResponse(BaseModel):
    conversation_id: str
    owner_id: str
    title: str
    is_public: bool = False
    created_at: str
    root_node_id: str | None = None
    nodes: list[NodeResponse] = Field(default_factory=list)


class DeleteResponse(BaseModel):
    deleted_count: int
    deleted_ids: list[str] = Field(default_factory=list)
    soft: bool = False


class PathResponse(BaseModel):
    node_ids: list[str]
    nodes: list[NodeResponse]


class SiblingsResponse(BaseModel):
    """Where a node sits among its siblings, and where switching would land."""

    node_id: str
    parent_id: str | None = None
    sibling_ids: list[str]
    index: int
    count: int
    previous_id: str | None = None
    next_id: str | None = None
    # Leaf displayed after switching to the previous/next sibling
    previous_leaf_id: str | None = None
    next_leaf_id: str | None = None


class TurnsResponse(BaseModel):
    turns: list[Turn]
    active_path: list[str] = Field(default_factory=list)


class ValidationResponse(BaseModel):
    valid: bool
    node_count: int
    issues: list[ConsistencyIssue] = Field(default_factory=list)
