"""Request and response schemas for share links and the public view."""

from pydantic import BaseModel, Field

from branchwise.models import Role


class CreateShareRequest(BaseModel):
    """Request body for POST /api/conversations/{cid}/shares."""

    node_id: str | None = None
    active_path_only: bool = True
    expires_in_days: int = Field(default=30, ge=1, le=365)


class ShareResponse(BaseModel):
    token: str
    url: str
    conversation_id: str
    node_id: str | None = None
    node_text: str | None = None
    active_path_only: bool
    created_at: str
    expires_at: str


class RevokeResponse(BaseModel):
    token: str
    revoked: bool = True


class SharedNode(BaseModel):
    node_id: str
    parent_id: str | None = None
    role: Role
    text: str
    created_at: str


class SharedConversation(BaseModel):
    conversation_id: str
    title: str


class PublicViewResponse(BaseModel):
    conversation: SharedConversation
    node: SharedNode | None = None
    active_path_only: bool
    expires_at: str
    nodes: list[SharedNode]
