"""Tests for importing exported JSON documents."""

import json

import pytest

from branchwise.importer.service import (
    ImportFormatError,
    check_structure,
    order_nodes,
    parse_document,
)
from tests.fixtures import create_conversation, create_scenario_conversation


def _document(nodes: list[dict], *, version: object = 1, title: str = "Exported") -> bytes:
    return json.dumps({
        "version": version,
        "conversation": {"id": "old-conv", "title": title},
        "nodes": nodes,
    }).encode()


def _node(node_id: str, parent_id: str | None, role: str = "user", second: int = 0) -> dict:
    return {
        "id": node_id,
        "parentId": parent_id,
        "role": role,
        "text": f"text {node_id}",
        "createdAt": f"2025-01-01T00:00:{second:02d}Z",
    }


SMALL_TREE = [
    _node("r", None, "user", 0),
    _node("a", "r", "assistant", 1),
    _node("b", "r", "assistant", 2),
    _node("c", "a", "user", 3),
]


async def _import(client, content: bytes, **form):
    return await client.post(
        "/api/import",
        files={"file": ("export.json", content, "application/json")},
        data=form,
    )


class TestImportAsNewConversation:
    async def test_nodes_get_fresh_ids_and_keep_shape(self, client):
        resp = await _import(client, _document(SMALL_TREE))
        assert resp.status_code == 201, resp.text
        result = resp.json()
        assert result["title"] == "Exported"
        assert result["node_count"] == 4
        assert result["attached_to"] is None

        mapping = result["id_mapping"]
        assert set(mapping) == {"r", "a", "b", "c"}
        assert not set(mapping.values()) & {"r", "a", "b", "c"}
        assert result["root_node_id"] == mapping["r"]

        detail = (await client.get(f"/api/conversations/{result['conversation_id']}")).json()
        parents = {n["node_id"]: n["parent_id"] for n in detail["nodes"]}
        assert parents[mapping["c"]] == mapping["a"]
        assert parents[mapping["a"]] == mapping["r"]
        assert parents[mapping["r"]] is None

    async def test_title_override(self, client):
        resp = await _import(client, _document(SMALL_TREE), title="Mine")
        assert resp.json()["title"] == "Mine"

    async def test_round_trip_through_export(self, client):
        scenario = await create_scenario_conversation(client)
        exported = await client.get(f"/api/conversations/{scenario['conversation_id']}/export")
        resp = await _import(client, exported.content)
        assert resp.status_code == 201

        again = await client.get(f"/api/conversations/{resp.json()['conversation_id']}/export")
        texts = [n["text"] for n in again.json()["nodes"]]
        assert texts == ["hi", "hello", "tell me more", "..."]

    async def test_importing_twice_makes_two_conversations(self, client):
        first = (await _import(client, _document(SMALL_TREE))).json()
        second = (await _import(client, _document(SMALL_TREE))).json()
        assert first["conversation_id"] != second["conversation_id"]
        assert first["root_node_id"] != second["root_node_id"]


class TestImportUnderNode:
    async def test_attaches_subtree_under_parent(self, client):
        scenario = await create_scenario_conversation(client)
        cid, ids = scenario["conversation_id"], scenario["node_ids"]
        resp = await _import(
            client, _document(SMALL_TREE), conversation_id=cid, parent_id=ids["C"]
        )
        assert resp.status_code == 201, resp.text
        result = resp.json()
        assert result["conversation_id"] == cid
        assert result["attached_to"] == ids["C"]

        path = await client.get(
            f"/api/conversations/{cid}/nodes/{result['id_mapping']['c']}/path"
        )
        assert path.json()["node_ids"][:4] == [ids["root"], ids["A"], ids["B"], ids["C"]]
        assert len(path.json()["node_ids"]) == 7

    async def test_into_empty_conversation_as_root(self, client):
        conv = await create_conversation(client, "Empty")
        resp = await _import(client, _document(SMALL_TREE), conversation_id=conv["conversation_id"])
        assert resp.status_code == 201
        detail = (await client.get(f"/api/conversations/{conv['conversation_id']}")).json()
        assert detail["root_node_id"] == resp.json()["root_node_id"]
        assert detail["title"] == "Empty"

    async def test_second_root_is_409(self, client):
        scenario = await create_scenario_conversation(client)
        resp = await _import(
            client, _document(SMALL_TREE), conversation_id=scenario["conversation_id"]
        )
        assert resp.status_code == 409

    async def test_unknown_parent_is_400(self, client):
        scenario = await create_scenario_conversation(client)
        resp = await _import(
            client, _document(SMALL_TREE),
            conversation_id=scenario["conversation_id"], parent_id="nope",
        )
        assert resp.status_code == 400

    async def test_parent_without_conversation_is_400(self, client):
        scenario = await create_scenario_conversation(client)
        resp = await _import(client, _document(SMALL_TREE), parent_id=scenario["node_ids"]["C"])
        assert resp.status_code == 400

    async def test_unknown_conversation_is_404(self, client):
        resp = await _import(client, _document(SMALL_TREE), conversation_id="nope")
        assert resp.status_code == 404


class TestRejections:
    @pytest.mark.parametrize("content", [
        b"not json",
        b"[1, 2, 3]",
        _document(SMALL_TREE, version=2),
        _document(SMALL_TREE, version=True),
        _document(SMALL_TREE, version=1.0),
        _document(SMALL_TREE, version="1"),
        _document(SMALL_TREE, version=None),
        _document([]),
        _document([_node("r", None), _node("r", None)]),
        _document([_node("r1", None), _node("r2", None)]),
        _document([_node("r", None), _node("x", "ghost")]),
        _document([_node("p", "q"), _node("q", "p")]),
        _document([{"id": "r", "role": "robot", "text": "x", "createdAt": "2025-01-01T00:00:00Z"}]),
    ])
    async def test_malformed_documents_are_422(self, client, content):
        resp = await _import(client, content)
        assert resp.status_code == 422
        listed = (await client.get("/api/conversations")).json()
        assert listed == []

    async def test_rejected_attach_writes_nothing(self, client):
        scenario = await create_scenario_conversation(client)
        cid, ids = scenario["conversation_id"], scenario["node_ids"]
        bad = _document([_node("r", None), _node("x", "ghost")])
        resp = await _import(client, bad, conversation_id=cid, parent_id=ids["C"])
        assert resp.status_code == 422
        detail = (await client.get(f"/api/conversations/{cid}")).json()
        assert len(detail["nodes"]) == 4


class TestHelpers:
    def test_order_puts_parents_first_and_siblings_by_time(self):
        document = parse_document(_document([
            _node("c", "a", "user", 3),
            _node("b", "r", "assistant", 2),
            _node("a", "r", "assistant", 1),
            _node("r", None, "user", 0),
        ]))
        assert [n.id for n in order_nodes(document.nodes)] == ["r", "a", "b", "c"]

    def test_naive_timestamps_are_utc(self):
        raw = _node("r", None)
        raw["createdAt"] = "2025-01-01T00:00:00"
        document = parse_document(_document([raw]))
        assert document.nodes[0].created_at.utcoffset().total_seconds() == 0

    def test_snake_case_keys_accepted(self):
        raw = {"id": "r", "parent_id": None, "role": "user", "text": "x",
               "created_at": "2025-01-01T00:00:00Z"}
        document = parse_document(_document([raw]))
        check_structure(document.nodes)

    def test_check_structure_rejects_multiple_roots(self):
        document = parse_document(_document([_node("r1", None), _node("r2", None)]))
        with pytest.raises(ImportFormatError, match="multiple roots"):
            check_structure(document.nodes)

    @pytest.mark.parametrize("version", [True, 1.0, "1"])
    def test_version_must_be_the_integer_one(self, version):
        with pytest.raises(ImportFormatError, match="Unsupported export version"):
            parse_document(_document(SMALL_TREE, version=version))
