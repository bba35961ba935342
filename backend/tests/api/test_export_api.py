"""Tests for JSON and Markdown export."""

from datetime import UTC, datetime

from branchwise.export.service import (
    mermaid_id,
    mermaid_label,
    render_markdown,
    render_mermaid,
)
from branchwise.models import Conversation
from tests.fixtures import add_node, create_scenario_conversation, make_node


class TestJsonExport:
    async def test_document_shape(self, client):
        scenario = await create_scenario_conversation(client)
        cid, ids = scenario["conversation_id"], scenario["node_ids"]
        resp = await client.get(f"/api/conversations/{cid}/export")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/json")
        assert 'filename="Scenario.json"' in resp.headers["content-disposition"]

        doc = resp.json()
        assert doc["version"] == 1
        assert doc["conversation"] == {"id": cid, "title": "Scenario"}
        assert [n["id"] for n in doc["nodes"]] == [ids["root"], ids["A"], ids["B"], ids["C"]]
        first = doc["nodes"][0]
        assert set(first) == {"id", "parentId", "role", "text", "createdAt"}
        assert first["parentId"] is None
        assert doc["nodes"][1]["parentId"] == ids["root"]

    async def test_soft_deleted_nodes_are_left_out(self, client):
        scenario = await create_scenario_conversation(client)
        cid, ids = scenario["conversation_id"], scenario["node_ids"]
        await client.delete(f"/api/conversations/{cid}/nodes/{ids['B']}", params={"soft": True})
        doc = (await client.get(f"/api/conversations/{cid}/export")).json()
        assert [n["id"] for n in doc["nodes"]] == [ids["root"], ids["A"]]

    async def test_subtree_export_detaches_its_root(self, client):
        scenario = await create_scenario_conversation(client)
        cid, ids = scenario["conversation_id"], scenario["node_ids"]
        resp = await client.get(f"/api/conversations/{cid}/export", params={"node": ids["B"]})
        doc = resp.json()
        assert [n["id"] for n in doc["nodes"]] == [ids["B"], ids["C"]]
        assert doc["nodes"][0]["parentId"] is None

    async def test_missing_conversation_or_node_is_404(self, client):
        assert (await client.get("/api/conversations/nope/export")).status_code == 404
        scenario = await create_scenario_conversation(client)
        resp = await client.get(
            f"/api/conversations/{scenario['conversation_id']}/export", params={"node": "nope"}
        )
        assert resp.status_code == 404

    async def test_unknown_format_is_422(self, client):
        scenario = await create_scenario_conversation(client)
        resp = await client.get(
            f"/api/conversations/{scenario['conversation_id']}/export", params={"format": "pdf"}
        )
        assert resp.status_code == 422


class TestMarkdownExport:
    async def test_markdown_sections(self, client):
        scenario = await create_scenario_conversation(client)
        cid = scenario["conversation_id"]
        await add_node(client, cid, "actually, X", scenario["node_ids"]["A"])
        resp = await client.get(f"/api/conversations/{cid}/export", params={"format": "md"})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/markdown")
        assert 'filename="Scenario.md"' in resp.headers["content-disposition"]

        body = resp.text
        assert body.startswith("# Scenario\n")
        assert "## Conversation Tree" in body
        assert "    * **User:** tell me more" in body
        assert "    * **User:** actually, X" in body
        assert "```mermaid\ngraph TD" in body

    async def test_markdown_alias(self, client):
        scenario = await create_scenario_conversation(client)
        resp = await client.get(
            f"/api/conversations/{scenario['conversation_id']}/export",
            params={"format": "markdown"},
        )
        assert resp.status_code == 200


class TestRendering:
    def _conversation(self):
        return Conversation(
            conversation_id="c", owner_id="o", title="T", created_at="2025-01-01T00:00:00+00:00"
        )

    def test_bullets_nest_depth_first(self):
        nodes = [
            make_node("r", None, "user", "root"),
            make_node("a", "r", "assistant", "first"),
            make_node("b", "r", "assistant", "second"),
            make_node("a1", "a", "user", "deeper"),
        ]
        md = render_markdown(self._conversation(), nodes, datetime(2025, 1, 1, tzinfo=UTC))
        tree = md.split("## Conversation Tree\n\n")[1].split("\n\n")[0].splitlines()
        assert tree == [
            "* **User:** root",
            "  * **Assistant:** first",
            "    * **User:** deeper",
            "  * **Assistant:** second",
        ]
        assert "*Exported on 2025-01-01T00:00:00+00:00*" in md

    def test_long_text_is_truncated(self):
        nodes = [make_node("r", None, "user", "y" * 150)]
        md = render_markdown(self._conversation(), nodes, datetime.now(UTC))
        assert f"* **User:** {'y' * 100}..." in md

    def test_mermaid_edges_and_classes(self):
        nodes = [
            make_node("r-1", None, "user", "hi"),
            make_node("a.2", "r-1", "assistant", "hello"),
        ]
        lines = render_mermaid(nodes)
        assert lines[0] == "```mermaid"
        assert '  n_r_1["hi"]' in lines
        assert "  n_r_1 --> n_a_2" in lines
        assert "  class n_r_1 user" in lines
        assert "  class n_a_2 assistant" in lines
        assert not any("system" in line for line in lines)
        assert lines[-1] == "```"

    def test_mermaid_label_escaping(self):
        assert mermaid_label('say "hi"\r\nnow') == "say #quot;hi#quot; now"
        assert mermaid_label("z" * 40) == "z" * 28 + "..."
        assert mermaid_id("abc-def") == "n_abc_def"

    def test_deep_tree_renders_without_recursion(self):
        nodes = [make_node("n0", None, "user", "start")]
        for i in range(1, 3000):
            nodes.append(make_node(f"n{i}", f"n{i - 1}", "user", "x"))
        md = render_markdown(self._conversation(), nodes, datetime.now(UTC))
        assert md.count("* **User:**") == 3000
