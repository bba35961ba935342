"""Canonical data structures for Branchwise.

Defined once here, referenced everywhere else. Node and Conversation mirror
the persisted rows; Turn, LayoutNode and the context types are derived and
never stored.
"""

from typing import Literal

from pydantic import BaseModel, Field

Role = Literal["user", "assistant", "system"]

# ---------------------------------------------------------------------------
# Persisted structures
# ---------------------------------------------------------------------------


class Node(BaseModel):
    """A single utterance in a conversation tree."""

    node_id: str
    conversation_id: str
    parent_id: str | None = None
    role: Role
    text: str
    deleted: bool = False
    created_at: str


class Conversation(BaseModel):
    conversation_id: str
    owner_id: str
    title: str
    is_public: bool = False
    created_at: str


class PublicToken(BaseModel):
    """Read-only share link for a conversation, or for the path to one node."""

    token: str
    conversation_id: str
    node_id: str | None = None
    active_path_only: bool = True
    created_at: str
    expires_at: str


# ---------------------------------------------------------------------------
# Derived structures
# ---------------------------------------------------------------------------


class SwitchSteps(BaseModel):
    """Walk from one node to another: climb `up` to the LCA, then follow `down`."""

    lca: str | None
    up: list[str] = Field(default_factory=list)
    down: list[str] = Field(default_factory=list)


class SiblingInfo(BaseModel):
    index: int
    count: int
    previous_id: str | None = None
    next_id: str | None = None


class Turn(BaseModel):
    """A user node paired with its chosen assistant reply."""

    turn_id: str  # the user node id
    conversation_id: str
    query: str
    response: str = ""
    assistant_id: str | None = None
    reply_count: int = 0
    parent_id: str | None = None  # nearest ancestor turn
    children: list[str] = Field(default_factory=list)
    created_at: str

    @property
    def pending(self) -> bool:
        return self.assistant_id is None


class LayoutNode(BaseModel):
    turn: Turn
    x: float
    y: float
    level: int
    width: float  # horizontal span reserved for the whole subtree
    is_active: bool = False

    @property
    def node_id(self) -> str:
        return self.turn.turn_id


class LayoutLink(BaseModel):
    source: str
    target: str


class TreeLayout(BaseModel):
    nodes: list[LayoutNode] = Field(default_factory=list)
    links: list[LayoutLink] = Field(default_factory=list)
    width: float = 0
    height: float = 0


class ContextMessage(BaseModel):
    role: Role
    content: str


class ContextWindow(BaseModel):
    """Ordered, bounded message list for one completion call."""

    messages: list[ContextMessage]
    estimated_tokens: int
    path_tokens: int
    max_tokens: int
    summary_mode: Literal["none", "pairs", "topics"] = "none"
    summarized_node_ids: list[str] = Field(default_factory=list)
    recent_node_ids: list[str] = Field(default_factory=list)

    def as_dicts(self) -> list[dict[str, str]]:
        return [m.model_dump() for m in self.messages]


class ConsistencyIssue(BaseModel):
    kind: Literal[
        "dangling_parent", "cycle", "multiple_roots", "no_root", "foreign_parent"
    ]
    node_id: str | None = None
    detail: str
