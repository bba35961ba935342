"""Share links: random tokens that expose a conversation read-only.

A token covers the whole live tree, or one node. For a node it covers the
path from the root to that node, plus either the latest reply to each user
message on the path or everything below the node. Expired tokens are
removed the first time they are looked up and by `purge_expired`.
"""

import logging
import secrets
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from branchwise.conversations.service import ConversationNotFoundError, NodeNotFoundError
from branchwise.export.service import ExportService
from branchwise.models import Node, PublicToken
from branchwise.share.schemas import (
    CreateShareRequest,
    PublicViewResponse,
    RevokeResponse,
    SharedConversation,
    SharedNode,
    ShareResponse,
)
from branchwise.store import NodeStore
from branchwise.tree.paths import build_children_map, build_node_index, path_to_root

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
NODE_PREVIEW_CHARS = 100


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ShareService:
    """Creates, lists and revokes share tokens, and resolves public views."""

    def __init__(
        self,
        store: NodeStore,
        export_service: ExportService | None = None,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._export = export_service or ExportService(store)
        self._clock = clock

    async def create_share(
        self, conversation_id: str, request: CreateShareRequest
    ) -> ShareResponse:
        if await self._store.get_conversation(conversation_id) is None:
            raise ConversationNotFoundError(conversation_id)
        live = await self._store.get_nodes_by_conversation(
            conversation_id, include_deleted=False
        )
        index = build_node_index(live)
        if request.node_id is not None and request.node_id not in index:
            raise NodeNotFoundError(request.node_id)

        now = self._clock()
        token = await self._store.create_public_token(PublicToken(
            token=secrets.token_hex(TOKEN_BYTES),
            conversation_id=conversation_id,
            node_id=request.node_id,
            active_path_only=request.active_path_only,
            created_at=now.isoformat(timespec="microseconds"),
            expires_at=(now + timedelta(days=request.expires_in_days)).isoformat(
                timespec="microseconds"
            ),
        ))
        logger.info(
            "Created share %s... for conversation %s (node=%s, %d days)",
            token.token[:8], conversation_id, request.node_id, request.expires_in_days,
        )
        return self._share_response(token, index)

    async def list_shares(self, conversation_id: str) -> list[ShareResponse]:
        if await self._store.get_conversation(conversation_id) is None:
            raise ConversationNotFoundError(conversation_id)
        index = build_node_index(await self._store.get_nodes_by_conversation(
            conversation_id, include_deleted=False
        ))
        tokens = await self._store.list_public_tokens(conversation_id)
        return [self._share_response(t, index) for t in tokens]

    async def revoke_share(self, conversation_id: str, token: str) -> RevokeResponse:
        found = await self._store.get_public_token(token)
        if found is None or found.conversation_id != conversation_id:
            raise ShareNotFoundError(token)
        await self._store.delete_public_token(token)
        logger.info("Revoked share %s... for conversation %s", token[:8], conversation_id)
        return RevokeResponse(token=token)

    async def purge_expired(self) -> int:
        removed = await self._store.delete_expired_tokens(
            self._clock().isoformat(timespec="microseconds")
        )
        if removed:
            logger.info("Purged %d expired share tokens", removed)
        return removed

    async def public_view(self, token: str) -> PublicViewResponse:
        """Resolve a token to the nodes it exposes, in creation order.

        Raises ShareNotFoundError for unknown or expired tokens, and when
        the shared conversation or node no longer exists.
        """
        found = await self._store.get_public_token(token)
        if found is None:
            raise ShareNotFoundError(token)
        if datetime.fromisoformat(found.expires_at) <= self._clock():
            await self._store.delete_public_token(token)
            logger.info("Share %s... expired", token[:8])
            raise ShareNotFoundError(token)

        try:
            conversation, live = await self._export.collect(found.conversation_id)
        except ConversationNotFoundError as e:
            raise ShareNotFoundError(token) from e

        shared_node: Node | None = None
        nodes = live
        if found.node_id is not None:
            index = build_node_index(live)
            shared_node = index.get(found.node_id)
            if shared_node is None:
                raise ShareNotFoundError(token)
            keep = set(path_to_root(found.node_id, index))
            if found.active_path_only:
                keep.update(_latest_replies(keep, live))
            else:
                try:
                    _, subtree = await self._export.collect(
                        found.conversation_id, found.node_id
                    )
                except (ConversationNotFoundError, NodeNotFoundError) as e:
                    raise ShareNotFoundError(token) from e
                keep.update(n.node_id for n in subtree)
            nodes = [n for n in live if n.node_id in keep]

        return PublicViewResponse(
            conversation=SharedConversation(
                conversation_id=conversation.conversation_id, title=conversation.title
            ),
            node=_shared(shared_node) if shared_node is not None else None,
            active_path_only=found.active_path_only,
            expires_at=found.expires_at,
            nodes=[_shared(n) for n in nodes],
        )

    @staticmethod
    def _share_response(token: PublicToken, index: dict[str, Node]) -> ShareResponse:
        node = index.get(token.node_id) if token.node_id is not None else None
        return ShareResponse(
            **token.model_dump(),
            url=f"/api/public/{token.token}",
            node_text=node.text[:NODE_PREVIEW_CHARS] if node is not None else None,
        )


def _latest_replies(path_ids: set[str], nodes: list[Node]) -> list[str]:
    """Most recent assistant child of every user node on the path."""
    index = build_node_index(nodes)
    children = build_children_map(nodes)
    replies = []
    for node_id in path_ids:
        if index[node_id].role != "user":
            continue
        assistants = [c for c in children.get(node_id, []) if index[c].role == "assistant"]
        if assistants:
            replies.append(assistants[-1])
    return replies


def _shared(node: Node) -> SharedNode:
    return SharedNode(
        node_id=node.node_id,
        parent_id=node.parent_id,
        role=node.role,
        text=node.text,
        created_at=node.created_at,
    )


class ShareNotFoundError(Exception):
    def __init__(self, token: str) -> None:
        self.token = token
        super().__init__("Share link not found or expired")
