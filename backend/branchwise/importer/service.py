"""ImportService: validates exported documents and recreates them with fresh ids."""

import json
import logging
from collections import defaultdict, deque
from uuid import uuid4

from pydantic import ValidationError

from branchwise.conversations.service import (
    ConversationNotFoundError,
    InvalidParentError,
    RootAlreadyExistsError,
)
from branchwise.export.schemas import EXPORT_VERSION, ExportDocument, ExportedNode
from branchwise.importer.schemas import ImportResult
from branchwise.models import Conversation, Node
from branchwise.store import NodeStore, utc_now
from branchwise.tree.paths import find_root, validate_tree

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Imported Conversation"


class ImportFormatError(Exception):
    pass


class ImportService:
    def __init__(self, store: NodeStore) -> None:
        self._store = store

    async def import_document(
        self,
        content: bytes,
        *,
        owner_id: str = "local",
        title: str | None = None,
        conversation_id: str | None = None,
        parent_id: str | None = None,
    ) -> ImportResult:
        """Import an exported tree, either as a new conversation or under a node.

        Everything is validated before the first write, and all nodes (plus
        the new conversation, if any) are inserted in one transaction.
        """
        document = parse_document(content)
        check_structure(document.nodes)
        ordered = order_nodes(document.nodes)

        if conversation_id is None:
            if parent_id is not None:
                # A parent only makes sense inside an existing conversation.
                raise InvalidParentError(parent_id)
            conversation = Conversation(
                conversation_id=str(uuid4()),
                owner_id=owner_id,
                title=title or document.conversation.title or DEFAULT_TITLE,
                created_at=utc_now(),
            )
            is_new = True
        else:
            existing = await self._store.get_conversation(conversation_id)
            if existing is None:
                raise ConversationNotFoundError(conversation_id)
            await self._check_attach_point(conversation_id, parent_id)
            conversation = existing
            is_new = False

        id_mapping = {n.id: str(uuid4()) for n in ordered}
        nodes = [
            Node(
                node_id=id_mapping[n.id],
                conversation_id=conversation.conversation_id,
                parent_id=id_mapping[n.parent_id] if n.parent_id is not None else parent_id,
                role=n.role,
                text=n.text,
                created_at=n.created_at.isoformat(timespec="microseconds"),
            )
            for n in ordered
        ]
        await self._store.create_nodes(nodes, conversation=conversation if is_new else None)

        logger.info(
            "Imported %d nodes into %s conversation %s",
            len(nodes), "new" if is_new else "existing", conversation.conversation_id,
        )
        return ImportResult(
            conversation_id=conversation.conversation_id,
            title=conversation.title,
            node_count=len(nodes),
            root_node_id=nodes[0].node_id,
            attached_to=parent_id if not is_new else None,
            id_mapping=id_mapping,
        )

    async def _check_attach_point(self, conversation_id: str, parent_id: str | None) -> None:
        """An existing conversation keeps a single root."""
        live = await self._store.get_nodes_by_conversation(
            conversation_id, include_deleted=False
        )
        if parent_id is None:
            root = find_root(live)
            if root is not None:
                raise RootAlreadyExistsError(conversation_id, root.node_id)
        elif not any(n.node_id == parent_id for n in live):
            raise InvalidParentError(parent_id)


def parse_document(content: bytes) -> ExportDocument:
    """Parse raw bytes into an export document, rejecting anything malformed."""
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ImportFormatError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ImportFormatError("Export document must be a JSON object")
    version = data.get("version")
    # true, 1.0 and "1" are not version 1
    if type(version) is not int or version != EXPORT_VERSION:
        raise ImportFormatError(f"Unsupported export version: {version!r}")

    try:
        return ExportDocument.model_validate(data)
    except ValidationError as e:
        raise ImportFormatError(f"Invalid export document: {e}") from e


def check_structure(nodes: list[ExportedNode]) -> None:
    """Require unique ids and exactly one tree; raise ImportFormatError otherwise."""
    if not nodes:
        raise ImportFormatError("Export document contains no nodes")

    seen: set[str] = set()
    for n in nodes:
        if n.id in seen:
            raise ImportFormatError(f"Duplicate node id: {n.id}")
        seen.add(n.id)

    issues = validate_tree([
        Node(
            node_id=n.id,
            conversation_id="import",
            parent_id=n.parent_id,
            role=n.role,
            text=n.text,
            created_at=n.created_at.isoformat(timespec="microseconds"),
        )
        for n in nodes
    ])
    if issues:
        raise ImportFormatError("; ".join(issue.detail for issue in issues))


def order_nodes(nodes: list[ExportedNode]) -> list[ExportedNode]:
    """Parents before children, siblings oldest first.

    Assumes `check_structure` passed, so there is exactly one root.
    """
    children: dict[str | None, list[ExportedNode]] = defaultdict(list)
    for n in nodes:
        children[n.parent_id].append(n)
    for kids in children.values():
        kids.sort(key=lambda n: n.created_at)

    ordered: list[ExportedNode] = []
    queue = deque(children[None])
    while queue:
        node = queue.popleft()
        ordered.append(node)
        queue.extend(children.get(node.id, []))
    return ordered
