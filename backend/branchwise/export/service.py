"""Export service: portable JSON and human-readable Markdown with Mermaid."""

import re
from datetime import datetime

from branchwise.conversations.service import ConversationNotFoundError, NodeNotFoundError
from branchwise.export.schemas import (
    EXPORT_VERSION,
    ExportDocument,
    ExportedConversation,
    ExportedNode,
)
from branchwise.models import Conversation, Node
from branchwise.store import NodeStore
from branchwise.tree.paths import build_children_map, collect_descendants

MARKDOWN_TEXT_CHARS = 100
MERMAID_LABEL_CHARS = 28

_ROLE_PREFIXES = {
    "user": "**User:**",
    "assistant": "**Assistant:**",
    "system": "**System:**",
}

_ROLE_STYLES = {
    "user": "fill:#e3f2fd",
    "assistant": "fill:#f3e5f5",
    "system": "fill:#fff3e0",
}


class ExportService:
    """Builds export artifacts for a conversation or one of its subtrees."""

    def __init__(self, store: NodeStore) -> None:
        self._store = store

    async def collect(
        self, conversation_id: str, node_id: str | None = None
    ) -> tuple[Conversation, list[Node]]:
        """Live nodes to export, in creation order.

        With `node_id`, only that node and its descendants; the subtree root
        loses its parent so the result is a self-contained tree.
        """
        conversation = await self._store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)

        nodes = await self._store.get_nodes_by_conversation(
            conversation_id, include_deleted=False
        )
        if node_id is None:
            return conversation, nodes

        if not any(n.node_id == node_id for n in nodes):
            raise NodeNotFoundError(node_id)
        keep = {node_id, *collect_descendants(node_id, build_children_map(nodes))}
        subtree = [
            n.model_copy(update={"parent_id": None}) if n.node_id == node_id else n
            for n in nodes
            if n.node_id in keep
        ]
        return conversation, subtree

    async def export_json(
        self, conversation_id: str, node_id: str | None = None
    ) -> ExportDocument:
        conversation, nodes = await self.collect(conversation_id, node_id)
        return build_document(conversation, nodes)


def build_document(conversation: Conversation, nodes: list[Node]) -> ExportDocument:
    return ExportDocument(
        version=EXPORT_VERSION,
        conversation=ExportedConversation(
            id=conversation.conversation_id, title=conversation.title
        ),
        nodes=[
            ExportedNode(
                id=n.node_id,
                parent_id=n.parent_id,
                role=n.role,
                text=n.text,
                created_at=n.created_at,
            )
            for n in nodes
            if not n.deleted
        ],
    )


def export_filename(title: str, extension: str) -> str:
    return f"{re.sub(r'[^a-zA-Z0-9]', '_', title)}.{extension}"


def render_markdown(
    conversation: Conversation, nodes: list[Node], exported_at: datetime
) -> str:
    live = [n for n in nodes if not n.deleted]
    lines = [
        f"# {conversation.title}",
        "",
        f"*Exported on {exported_at.isoformat()}*",
        "",
        "## Conversation Tree",
        "",
    ]
    lines.extend(_bullet_tree(live))
    lines.extend(["", "## Graph Visualization", ""])
    lines.extend(render_mermaid(live))
    return "\n".join(lines)


def _bullet_tree(nodes: list[Node]) -> list[str]:
    """Nested bullets, depth first, siblings in creation order."""
    ids = {n.node_id for n in nodes}
    by_id = {n.node_id: n for n in nodes}
    children = build_children_map(nodes)
    roots = [n.node_id for n in nodes if n.parent_id is None or n.parent_id not in ids]

    lines: list[str] = []
    stack = [(node_id, 0) for node_id in reversed(roots)]
    while stack:
        node_id, depth = stack.pop()
        node = by_id[node_id]
        text = node.text
        if len(text) > MARKDOWN_TEXT_CHARS:
            text = text[:MARKDOWN_TEXT_CHARS] + "..."
        lines.append(f"{'  ' * depth}* {_ROLE_PREFIXES[node.role]} {text}")
        for child_id in reversed(children.get(node_id, [])):
            stack.append((child_id, depth + 1))
    return lines


def mermaid_id(node_id: str) -> str:
    """Node ids made safe for Mermaid identifiers."""
    return "n_" + re.sub(r"[^A-Za-z0-9_]", "_", node_id)


def mermaid_label(text: str) -> str:
    label = text[:MERMAID_LABEL_CHARS] + "..." if len(text) > MERMAID_LABEL_CHARS else text
    return label.replace('"', "#quot;").replace("\r", "").replace("\n", " ")


def render_mermaid(nodes: list[Node]) -> list[str]:
    ids = {n.node_id for n in nodes}
    lines = ["```mermaid", "graph TD"]
    for n in nodes:
        lines.append(f'  {mermaid_id(n.node_id)}["{mermaid_label(n.text)}"]')
    for n in nodes:
        if n.parent_id is not None and n.parent_id in ids:
            lines.append(f"  {mermaid_id(n.parent_id)} --> {mermaid_id(n.node_id)}")
    for role, style in _ROLE_STYLES.items():
        members = [mermaid_id(n.node_id) for n in nodes if n.role == role]
        if members:
            lines.append(f"  classDef {role} {style}")
            lines.append(f"  class {','.join(members)} {role}")
    lines.append("```")
    return lines
