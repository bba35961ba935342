"""Node store adapter: conversation and node persistence over SQLite.

Every call is atomic on its own. Multi-row writes (batch create, subtree
delete, conversation delete) run inside a single transaction so readers
never observe a half-applied change.
"""

from datetime import UTC, datetime
from uuid import uuid4

from branchwise.db.connection import Database
from branchwise.models import Conversation, Node, PublicToken, Role


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds")


class NodeStore:
    """Key-value access to nodes and conversations by id and by parent."""

    def __init__(self, db: Database) -> None:
        self._db = db

    # -- Conversations --

    async def create_conversation(
        self,
        owner_id: str,
        title: str,
        *,
        is_public: bool = False,
        conversation_id: str | None = None,
    ) -> Conversation:
        conversation = Conversation(
            conversation_id=conversation_id or str(uuid4()),
            owner_id=owner_id,
            title=title,
            is_public=is_public,
            created_at=utc_now(),
        )
        await self._db.execute(
            _INSERT_CONVERSATION_SQL, self._conversation_params(conversation)
        )
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        row = await self._db.fetchone(
            "SELECT * FROM conversations WHERE conversation_id = ?",
            (conversation_id,),
        )
        return self._conversation_from_row(row) if row is not None else None

    async def list_conversations(self, owner_id: str | None = None) -> list[Conversation]:
        if owner_id is None:
            rows = await self._db.fetchall(
                "SELECT * FROM conversations ORDER BY created_at DESC"
            )
        else:
            rows = await self._db.fetchall(
                "SELECT * FROM conversations WHERE owner_id = ? ORDER BY created_at DESC",
                (owner_id,),
            )
        return [self._conversation_from_row(r) for r in rows]

    async def update_conversation_title(
        self, conversation_id: str, title: str
    ) -> Conversation | None:
        await self._db.execute(
            "UPDATE conversations SET title = ? WHERE conversation_id = ?",
            (title, conversation_id),
        )
        return await self.get_conversation(conversation_id)

    async def delete_conversation(self, conversation_id: str) -> int:
        """Delete a conversation with its nodes and share tokens.

        Returns the node count removed.
        """
        async with self._db.transaction() as conn:
            await conn.execute(
                "DELETE FROM public_tokens WHERE conversation_id = ?", (conversation_id,)
            )
            cursor = await conn.execute(
                "DELETE FROM nodes WHERE conversation_id = ?", (conversation_id,)
            )
            removed = cursor.rowcount
            await conn.execute(
                "DELETE FROM conversations WHERE conversation_id = ?",
                (conversation_id,),
            )
        return removed

    # -- Nodes --

    async def get_nodes_by_conversation(
        self, conversation_id: str, *, include_deleted: bool = True
    ) -> list[Node]:
        """All nodes of a conversation, ordered by creation time."""
        sql = "SELECT * FROM nodes WHERE conversation_id = ?"
        if not include_deleted:
            sql += " AND deleted = 0"
        rows = await self._db.fetchall(
            sql + " ORDER BY created_at, rowid", (conversation_id,)
        )
        return [self._node_from_row(r) for r in rows]

    async def count_live_nodes(self) -> dict[str, int]:
        """conversation_id -> number of nodes not soft-deleted."""
        rows = await self._db.fetchall(
            """
            SELECT conversation_id, COUNT(*) AS n FROM nodes
            WHERE deleted = 0 GROUP BY conversation_id
            """
        )
        return {r["conversation_id"]: r["n"] for r in rows}

    async def get_node(self, node_id: str) -> Node | None:
        row = await self._db.fetchone(
            "SELECT * FROM nodes WHERE node_id = ?", (node_id,)
        )
        return self._node_from_row(row) if row is not None else None

    async def get_children(self, parent_id: str) -> list[Node]:
        rows = await self._db.fetchall(
            "SELECT * FROM nodes WHERE parent_id = ? ORDER BY created_at, rowid",
            (parent_id,),
        )
        return [self._node_from_row(r) for r in rows]

    async def create_node(
        self,
        conversation_id: str,
        role: Role,
        text: str,
        parent_id: str | None = None,
        *,
        node_id: str | None = None,
        created_at: str | None = None,
    ) -> Node:
        node = Node(
            node_id=node_id or str(uuid4()),
            conversation_id=conversation_id,
            parent_id=parent_id,
            role=role,
            text=text,
            created_at=created_at or utc_now(),
        )
        await self._db.execute(_INSERT_NODE_SQL, self._node_params(node))
        return node

    async def create_nodes(
        self, nodes: list[Node], *, conversation: Conversation | None = None
    ) -> int:
        """Insert a batch of nodes in one transaction, in the order given.

        Callers are responsible for ordering parents before children. When
        `conversation` is given it is inserted first, in the same transaction.
        """
        async with self._db.transaction() as conn:
            if conversation is not None:
                await conn.execute(
                    _INSERT_CONVERSATION_SQL, self._conversation_params(conversation)
                )
            for node in nodes:
                await conn.execute(_INSERT_NODE_SQL, self._node_params(node))
        return len(nodes)

    async def update_node_text(self, node_id: str, text: str) -> Node | None:
        await self._db.execute(
            "UPDATE nodes SET text = ? WHERE node_id = ?", (text, node_id)
        )
        return await self.get_node(node_id)

    async def mark_nodes_deleted(self, node_ids: list[str]) -> int:
        """Soft delete: rows stay for audit but drop out of computations."""
        if not node_ids:
            return 0
        placeholders = ",".join("?" for _ in node_ids)
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                f"UPDATE nodes SET deleted = 1 WHERE node_id IN ({placeholders})",
                tuple(node_ids),
            )
            marked = cursor.rowcount
        return marked

    async def delete_nodes(self, node_ids: list[str]) -> int:
        """Physically remove the given nodes and the share tokens aimed at them."""
        if not node_ids:
            return 0
        placeholders = ",".join("?" for _ in node_ids)
        async with self._db.transaction() as conn:
            await conn.execute(
                f"DELETE FROM public_tokens WHERE node_id IN ({placeholders})",
                tuple(node_ids),
            )
            cursor = await conn.execute(
                f"DELETE FROM nodes WHERE node_id IN ({placeholders})",
                tuple(node_ids),
            )
            removed = cursor.rowcount
        return removed

    # -- Share tokens --

    async def create_public_token(self, token: PublicToken) -> PublicToken:
        await self._db.execute(
            """
            INSERT INTO public_tokens
                (token, conversation_id, node_id, active_path_only, created_at, expires_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                token.token,
                token.conversation_id,
                token.node_id,
                int(token.active_path_only),
                token.created_at,
                token.expires_at,
            ),
        )
        return token

    async def get_public_token(self, token: str) -> PublicToken | None:
        row = await self._db.fetchone(
            "SELECT * FROM public_tokens WHERE token = ?", (token,)
        )
        return self._token_from_row(row) if row is not None else None

    async def list_public_tokens(self, conversation_id: str) -> list[PublicToken]:
        """Tokens of a conversation, newest first."""
        rows = await self._db.fetchall(
            "SELECT * FROM public_tokens WHERE conversation_id = ?"
            " ORDER BY created_at DESC, rowid DESC",
            (conversation_id,),
        )
        return [self._token_from_row(r) for r in rows]

    async def delete_public_token(self, token: str) -> bool:
        cursor = await self._db.execute(
            "DELETE FROM public_tokens WHERE token = ?", (token,)
        )
        return cursor.rowcount > 0

    async def delete_expired_tokens(self, now: str) -> int:
        cursor = await self._db.execute(
            "DELETE FROM public_tokens WHERE expires_at <= ?", (now,)
        )
        return cursor.rowcount

    # -- Row mapping --

    @staticmethod
    def _conversation_params(conversation: Conversation) -> tuple:
        return (
            conversation.conversation_id,
            conversation.owner_id,
            conversation.title,
            int(conversation.is_public),
            conversation.created_at,
        )

    @staticmethod
    def _node_params(node: Node) -> tuple:
        return (
            node.node_id,
            node.conversation_id,
            node.parent_id,
            node.role,
            node.text,
            int(node.deleted),
            node.created_at,
        )

    @staticmethod
    def _node_from_row(row) -> Node:
        return Node(
            node_id=row["node_id"],
            conversation_id=row["conversation_id"],
            parent_id=row["parent_id"],
            role=row["role"],
            text=row["text"],
            deleted=bool(row["deleted"]),
            created_at=row["created_at"],
        )

    @staticmethod
    def _token_from_row(row) -> PublicToken:
        return PublicToken(
            token=row["token"],
            conversation_id=row["conversation_id"],
            node_id=row["node_id"],
            active_path_only=bool(row["active_path_only"]),
            created_at=row["created_at"],
            expires_at=row["expires_at"],
        )

    @staticmethod
    def _conversation_from_row(row) -> Conversation:
        return Conversation(
            conversation_id=row["conversation_id"],
            owner_id=row["owner_id"],
            title=row["title"],
            is_public=bool(row["is_public"]),
            created_at=row["created_at"],
        )


_INSERT_CONVERSATION_SQL = """
    INSERT INTO conversations
        (conversation_id, owner_id, title, is_public, created_at)
    VALUES (?, ?, ?, ?, ?)
"""

_INSERT_NODE_SQL = """
    INSERT INTO nodes
        (node_id, conversation_id, parent_id, role, text, deleted, created_at)
    VALUES (?, ?, ?, ?, ?, ?, ?)
"""
