"""Conversation service: tree queries and structural mutations over NodeStore.

Every call loads a fresh snapshot of the conversation's nodes and runs the
pure tree algorithms on it. Mutations validate against that snapshot and
then write through the store; multi-node writes are a single transaction.
"""

import logging

from branchwise.config import Settings
from branchwise.conversations.schemas import (
    ConversationDetailResponse,
    ConversationSummary,
    CreateConversationRequest,
    CreateNodeRequest,
    DeleteResponse,
    NodeResponse,
    PatchConversationRequest,
    PatchNodeRequest,
    PathResponse,
    SiblingsResponse,
    TurnsResponse,
    ValidationResponse,
)
from branchwise.generation.context import ContextAssembler
from branchwise.models import (
    ContextWindow,
    Conversation,
    Node,
    SiblingInfo,
    SwitchSteps,
    TreeLayout,
    Turn,
)
from branchwise.store import NodeStore
from branchwise.tree.branches import BranchSelection, compute_sibling_info
from branchwise.tree.layout import LayoutConfig, layout_turns
from branchwise.tree.paths import (
    build_children_map,
    build_node_index,
    collect_descendants,
    compute_switch_steps,
    find_root,
    get_active_path,
    path_to_root,
    validate_tree,
)
from branchwise.tree.turns import project_turns, turn_for_node, turn_path

logger = logging.getLogger(__name__)


class ConversationService:
    """Conversation CRUD, node mutations, and derived tree views."""

    def __init__(self, store: NodeStore, settings: Settings | None = None) -> None:
        self._store = store
        self._settings = settings or Settings()
        self._layout_config = LayoutConfig.from_settings(self._settings.layout)
        self._assembler = ContextAssembler(
            self._settings.context.system_prompt,
            summary_max_tokens=self._settings.context.summary_max_tokens,
        )

    # -- Conversations --

    async def create_conversation(
        self, request: CreateConversationRequest
    ) -> ConversationDetailResponse:
        conversation = await self._store.create_conversation(
            request.owner_id, request.title, is_public=request.is_public
        )
        return self._detail(conversation, [])

    async def list_conversations(self, owner_id: str | None = None) -> list[ConversationSummary]:
        conversations = await self._store.list_conversations(owner_id)
        counts = await self._store.count_live_nodes()
        return [
            ConversationSummary(
                **c.model_dump(), node_count=counts.get(c.conversation_id, 0)
            )
            for c in conversations
        ]

    async def get_conversation(self, conversation_id: str) -> ConversationDetailResponse | None:
        conversation = await self._store.get_conversation(conversation_id)
        if conversation is None:
            return None
        nodes = await self._store.get_nodes_by_conversation(
            conversation_id, include_deleted=False
        )
        return self._detail(conversation, nodes)

    async def rename_conversation(
        self, conversation_id: str, request: PatchConversationRequest
    ) -> ConversationDetailResponse:
        conversation = await self._store.update_conversation_title(
            conversation_id, request.title
        )
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        nodes = await self._store.get_nodes_by_conversation(
            conversation_id, include_deleted=False
        )
        return self._detail(conversation, nodes)

    async def delete_conversation(self, conversation_id: str) -> DeleteResponse:
        if await self._store.get_conversation(conversation_id) is None:
            raise ConversationNotFoundError(conversation_id)
        removed = await self._store.delete_conversation(conversation_id)
        logger.info("Deleted conversation %s with %d nodes", conversation_id, removed)
        return DeleteResponse(deleted_count=removed)

    # -- Node mutations --

    async def create_node(
        self, conversation_id: str, request: CreateNodeRequest
    ) -> NodeResponse:
        """Branch-create: attach a new node under any live node.

        A parentless node is accepted only while the conversation has no
        live root. No other node is touched.
        """
        nodes = await self._snapshot(conversation_id)
        index = build_node_index(nodes)

        if request.parent_id is None:
            root = find_root(index.values())
            if root is not None:
                raise RootAlreadyExistsError(conversation_id, root.node_id)
        elif request.parent_id not in index:
            raise InvalidParentError(request.parent_id)

        node = await self._store.create_node(
            conversation_id, request.role, request.text, parent_id=request.parent_id
        )
        siblings = [
            n.node_id for n in index.values()
            if request.parent_id is not None and n.parent_id == request.parent_id
        ]
        return self._node_response(
            node, SiblingInfo(index=len(siblings), count=len(siblings) + 1)
        )

    async def edit_node(
        self, conversation_id: str, node_id: str, request: PatchNodeRequest
    ) -> NodeResponse:
        """Replace a node's text in place; descendants are left as they are."""
        nodes = await self._snapshot(conversation_id)
        self._require_node(nodes, node_id)

        updated = await self._store.update_node_text(node_id, request.text)
        if updated is None:
            # Deleted by a concurrent request; last writer wins.
            raise NodeNotFoundError(node_id)
        children_map = build_children_map(n for n in nodes if not n.deleted)
        return self._node_response(
            updated, compute_sibling_info(children_map).get(node_id)
        )

    async def delete_subtree(
        self, conversation_id: str, node_id: str, *, soft: bool = False
    ) -> DeleteResponse:
        """Remove a node and everything below it, atomically.

        Descendants are collected over every stored node, soft-deleted ones
        included, so a hard delete never leaves orphans behind.
        """
        nodes = await self._snapshot(conversation_id)
        self._require_node(nodes, node_id)

        children_map = build_children_map(nodes)
        ids = [node_id] + collect_descendants(node_id, children_map)

        if soft:
            count = await self._store.mark_nodes_deleted(ids)
        else:
            count = await self._store.delete_nodes(ids)
        logger.info(
            "%s node %s and %d descendants in conversation %s",
            "Soft-deleted" if soft else "Deleted",
            node_id, len(ids) - 1, conversation_id,
        )
        return DeleteResponse(deleted_count=count, deleted_ids=ids, soft=soft)

    # -- Tree views --

    async def get_path(self, conversation_id: str, node_id: str) -> PathResponse:
        nodes = await self._snapshot(conversation_id)
        self._require_node(nodes, node_id)
        live = [n for n in nodes if not n.deleted]
        path = get_active_path(node_id, build_node_index(live))
        info = compute_sibling_info(build_children_map(live))
        return PathResponse(
            node_ids=[n.node_id for n in path],
            nodes=[self._node_response(n, info.get(n.node_id)) for n in path],
        )

    async def get_siblings(self, conversation_id: str, node_id: str) -> SiblingsResponse:
        nodes = await self._snapshot(conversation_id)
        node = self._require_node(nodes, node_id)
        selection = BranchSelection(build_children_map(n for n in nodes if not n.deleted))
        info = selection.sibling_info(node_id)

        def leaf_of(sibling_id: str | None) -> str | None:
            if sibling_id is None:
                return None
            below = selection.descend(sibling_id)
            return below[-1] if below else sibling_id

        return SiblingsResponse(
            node_id=node_id,
            parent_id=node.parent_id,
            sibling_ids=selection.children(node.parent_id) if node.parent_id else [node_id],
            index=info.index,
            count=info.count,
            previous_id=info.previous_id,
            next_id=info.next_id,
            previous_leaf_id=leaf_of(info.previous_id),
            next_leaf_id=leaf_of(info.next_id),
        )

    async def switch_steps(
        self, conversation_id: str, from_id: str, to_id: str
    ) -> SwitchSteps:
        nodes = await self._snapshot(conversation_id)
        self._require_node(nodes, from_id)
        self._require_node(nodes, to_id)
        return compute_switch_steps(from_id, to_id, build_node_index(nodes))

    async def get_turns(
        self, conversation_id: str, active_node_id: str | None = None
    ) -> TurnsResponse:
        nodes = await self._snapshot(conversation_id)
        turns, active_path = self._turns(nodes, active_node_id)
        return TurnsResponse(turns=turns, active_path=active_path)

    async def get_layout(
        self, conversation_id: str, active_node_id: str | None = None
    ) -> TreeLayout:
        nodes = await self._snapshot(conversation_id)
        turns, active_path = self._turns(nodes, active_node_id)
        return layout_turns(turns, active_path=active_path, config=self._layout_config)

    async def preview_context(
        self, conversation_id: str, node_id: str, max_tokens: int | None = None
    ) -> ContextWindow:
        """The context a reply under `node_id` would be sent with."""
        nodes = await self._snapshot(conversation_id)
        self._require_node(nodes, node_id)
        path = get_active_path(node_id, build_node_index(nodes))
        return self._assembler.build(
            path,
            max_tokens=max_tokens or self._settings.context.max_tokens,
            keep_recent_turns=self._settings.context.keep_recent_turns,
        )

    async def validate(self, conversation_id: str) -> ValidationResponse:
        nodes = await self._snapshot(conversation_id)
        live = [n for n in nodes if not n.deleted]
        issues = validate_tree(live)
        return ValidationResponse(valid=not issues, node_count=len(live), issues=issues)

    # -- Helpers --

    async def _snapshot(self, conversation_id: str) -> list[Node]:
        if await self._store.get_conversation(conversation_id) is None:
            raise ConversationNotFoundError(conversation_id)
        return await self._store.get_nodes_by_conversation(conversation_id)

    @staticmethod
    def _require_node(nodes: list[Node], node_id: str) -> Node:
        for n in nodes:
            if n.node_id == node_id and not n.deleted:
                return n
        raise NodeNotFoundError(node_id)

    def _turns(
        self, nodes: list[Node], active_node_id: str | None
    ) -> tuple[list[Turn], list[str]]:
        live = [n for n in nodes if not n.deleted]
        selection = BranchSelection(build_children_map(live))
        if active_node_id is not None:
            self._require_node(live, active_node_id)
            selection.focus(path_to_root(active_node_id, build_node_index(live)))
        turns = project_turns(live, selection)
        return turns, turn_path(turns, turn_for_node(active_node_id, live))

    def _detail(
        self, conversation: Conversation, nodes: list[Node]
    ) -> ConversationDetailResponse:
        info = compute_sibling_info(build_children_map(nodes))
        root = find_root(nodes)
        return ConversationDetailResponse(
            **conversation.model_dump(),
            root_node_id=root.node_id if root else None,
            nodes=[self._node_response(n, info.get(n.node_id)) for n in nodes],
        )

    @staticmethod
    def _node_response(node: Node, info: SiblingInfo | None = None) -> NodeResponse:
        return NodeResponse(
            **node.model_dump(),
            sibling_count=info.count if info else 1,
            sibling_index=info.index if info else 0,
        )


class ConversationNotFoundError(Exception):
    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")


class NodeNotFoundError(Exception):
    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class InvalidParentError(Exception):
    def __init__(self, parent_id: str) -> None:
        self.parent_id = parent_id
        super().__init__(f"Invalid parent node: {parent_id}")


class RootAlreadyExistsError(Exception):
    def __init__(self, conversation_id: str, root_id: str) -> None:
        self.conversation_id = conversation_id
        self.root_id = root_id
        super().__init__(
            f"Conversation {conversation_id} already has a root node: {root_id}"
        )
