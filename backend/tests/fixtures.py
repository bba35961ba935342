"""Shared test helpers: in-memory node builders and API shortcuts."""

from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from itertools import count

from httpx import AsyncClient

from branchwise.models import Node, Role, Turn
from branchwise.providers.base import (
    GenerationRequest,
    GenerationResult,
    LLMProvider,
    StreamChunk,
)

_EPOCH = datetime(2025, 1, 1, tzinfo=UTC)
_tick = count()


def make_node(
    node_id: str,
    parent_id: str | None = None,
    role: Role = "user",
    text: str | None = None,
    *,
    conversation_id: str = "conv-1",
    deleted: bool = False,
) -> Node:
    """Create a Node whose created_at is later than every earlier call."""
    return Node(
        node_id=node_id,
        conversation_id=conversation_id,
        parent_id=parent_id,
        role=role,
        text=text if text is not None else f"text of {node_id}",
        deleted=deleted,
        created_at=(_EPOCH + timedelta(seconds=next(_tick))).isoformat(),
    )


def make_scenario_nodes() -> list[Node]:
    """root(U "hi") -> A(A "hello") -> B(U "tell me more") -> C(A "...")."""
    return [
        make_node("root", None, "user", "hi"),
        make_node("A", "root", "assistant", "hello"),
        make_node("B", "A", "user", "tell me more"),
        make_node("C", "B", "assistant", "..."),
    ]


def make_chain(length: int, *, text_size: int = 20) -> list[Node]:
    """Alternating user/assistant chain n0 -> n1 -> ... of `length` nodes."""
    nodes = []
    for i in range(length):
        role: Role = "user" if i % 2 == 0 else "assistant"
        nodes.append(make_node(
            f"n{i}",
            f"n{i - 1}" if i else None,
            role,
            f"{role} message {i} " + "x" * text_size,
        ))
    return nodes


def make_turns(parents: dict[str, str | None]) -> list[Turn]:
    """Turns from a child -> parent map; children keep the map's order."""
    turns = {
        turn_id: Turn(
            turn_id=turn_id,
            conversation_id="conv-1",
            query=f"q {turn_id}",
            parent_id=parent_id,
            created_at=_EPOCH.isoformat(),
        )
        for turn_id, parent_id in parents.items()
    }
    for turn_id, parent_id in parents.items():
        if parent_id is not None and parent_id in turns:
            turns[parent_id].children.append(turn_id)
    return list(turns.values())


def comb_parents(fanout: int, depth: int) -> dict[str, str | None]:
    """Every level has `fanout` children; only the first child goes deeper."""
    parents: dict[str, str | None] = {"r": None}
    spine = "r"
    for level in range(1, depth + 1):
        kids = [f"{spine}.{i}" for i in range(fanout)]
        for kid in kids:
            parents[kid] = spine
        spine = kids[0]
    return parents


def full_parents(fanout: int, depth: int) -> dict[str, str | None]:
    """Complete tree: every node above `depth` has `fanout` children."""
    parents: dict[str, str | None] = {"r": None}
    frontier = ["r"]
    for _ in range(depth):
        nxt = []
        for parent in frontier:
            for i in range(fanout):
                kid = f"{parent}.{i}"
                parents[kid] = parent
                nxt.append(kid)
        frontier = nxt
    return parents


# -- API shortcuts --


async def create_conversation(client: AsyncClient, title: str = "Test Conversation") -> dict:
    resp = await client.post("/api/conversations", json={"title": title})
    assert resp.status_code == 201
    return resp.json()


async def add_node(
    client: AsyncClient,
    conversation_id: str,
    text: str,
    parent_id: str | None = None,
    role: Role = "user",
) -> dict:
    resp = await client.post(f"/api/conversations/{conversation_id}/nodes", json={
        "text": text,
        "role": role,
        "parent_id": parent_id,
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


async def create_scenario_conversation(client: AsyncClient) -> dict:
    """The four-node chain root/A/B/C via the API.

    Returns {"conversation_id": str, "node_ids": {"root", "A", "B", "C"}}.
    """
    conv = await create_conversation(client, "Scenario")
    cid = conv["conversation_id"]
    root = await add_node(client, cid, "hi")
    a = await add_node(client, cid, "hello", root["node_id"], "assistant")
    b = await add_node(client, cid, "tell me more", a["node_id"])
    c = await add_node(client, cid, "...", b["node_id"], "assistant")
    return {
        "conversation_id": cid,
        "node_ids": {
            "root": root["node_id"], "A": a["node_id"],
            "B": b["node_id"], "C": c["node_id"],
        },
    }


async def create_wide_tree(client: AsyncClient) -> dict:
    """root -> {c1, c2}, c1 -> {g1, g2}, c2 -> {g3, g4}."""
    conv = await create_conversation(client, "Wide")
    cid = conv["conversation_id"]
    root = await add_node(client, cid, "root")
    c1 = await add_node(client, cid, "child 1", root["node_id"], "assistant")
    c2 = await add_node(client, cid, "child 2", root["node_id"], "assistant")
    ids = {"root": root["node_id"], "c1": c1["node_id"], "c2": c2["node_id"]}
    for name, parent in (("g1", "c1"), ("g2", "c1"), ("g3", "c2"), ("g4", "c2")):
        ids[name] = (await add_node(client, cid, name, ids[parent]))["node_id"]
    return {"conversation_id": cid, "node_ids": ids}


# -- Providers --


class FakeProvider(LLMProvider):
    """Test provider that returns canned responses."""

    suggested_models = ["fake-model"]

    def __init__(self, chunks: list[str] | None = None, *, final_content: str | None = None) -> None:
        self.chunks = chunks if chunks is not None else ["Fake ", "response"]
        self.final_content = (
            final_content if final_content is not None else "".join(self.chunks)
        )
        self.requests: list[GenerationRequest] = []

    @property
    def name(self) -> str:
        return "fake"

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.requests.append(request)
        return GenerationResult(
            content=self.final_content,
            model="fake-model",
            finish_reason="end_turn",
            usage={"input_tokens": 10, "output_tokens": 5},
        )

    async def generate_stream(
        self, request: GenerationRequest
    ) -> AsyncIterator[StreamChunk]:
        self.requests.append(request)
        for text in self.chunks:
            yield StreamChunk(type="text_delta", text=text)
        yield StreamChunk(
            type="message_stop",
            is_final=True,
            result=GenerationResult(
                content=self.final_content,
                model="fake-model",
                finish_reason="end_turn",
                usage={"input_tokens": 10, "output_tokens": 5},
            ),
        )


def parse_sse(body: str) -> list[tuple[str, str]]:
    """Split an SSE body into (event, data) pairs."""
    events = []
    for block in body.strip().split("\n\n"):
        event = data = ""
        for line in block.splitlines():
            if line.startswith("event: "):
                event = line[len("event: "):]
            elif line.startswith("data: "):
                data = line[len("data: "):]
        if event:
            events.append((event, data))
    return events
