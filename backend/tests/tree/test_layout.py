"""Tests for the graph layout engine."""

from itertools import product

import pytest

from branchwise.config import LayoutSettings
from branchwise.tree.layout import LayoutConfig, compute_subtree_widths, layout_turns
from tests.fixtures import comb_parents, full_parents, make_turns

CFG = LayoutConfig()


def _subtree_ids(layout, root_id):
    kids = {}
    for link in layout.links:
        kids.setdefault(link.source, []).append(link.target)
    found, stack = [], [root_id]
    while stack:
        current = stack.pop()
        found.append(current)
        stack.extend(kids.get(current, []))
    return found


def _assert_siblings_disjoint(layout, cfg=CFG):
    """Sibling subtrees never overlap horizontally."""
    by_id = {n.node_id: n for n in layout.nodes}
    kids = {}
    for link in layout.links:
        kids.setdefault(link.source, []).append(link.target)
    for siblings in kids.values():
        spans = []
        for sib in siblings:
            xs = [by_id[i].x for i in _subtree_ids(layout, sib)]
            spans.append((min(xs) - cfg.base_width / 2, max(xs) + cfg.base_width / 2))
        spans.sort()
        for (_, right), (left, _) in zip(spans, spans[1:]):
            assert left >= right - 1e-6


def _assert_parents_above(layout):
    by_id = {n.node_id: n for n in layout.nodes}
    for link in layout.links:
        assert by_id[link.source].y < by_id[link.target].y
        assert by_id[link.target].level == by_id[link.source].level + 1


@pytest.mark.parametrize("fanout,depth", list(product([1, 2, 5, 20], [1, 5, 20])))
def test_comb_trees_do_not_overlap(fanout, depth):
    turns = make_turns(comb_parents(fanout, depth))
    layout = layout_turns(turns)
    assert len(layout.nodes) == len(turns)
    _assert_siblings_disjoint(layout)
    _assert_parents_above(layout)


@pytest.mark.parametrize("fanout,depth", [(2, 5), (5, 3), (20, 1), (1, 20)])
def test_full_trees_do_not_overlap(fanout, depth):
    turns = make_turns(full_parents(fanout, depth))
    layout = layout_turns(turns)
    assert len(layout.nodes) == len(turns)
    _assert_siblings_disjoint(layout)
    _assert_parents_above(layout)


def test_empty_input():
    layout = layout_turns([])
    assert layout.nodes == []
    assert layout.links == []
    assert layout.width == 0


def test_single_root_sits_at_origin():
    layout = layout_turns(make_turns({"r": None}))
    (node,) = layout.nodes
    assert (node.x, node.y, node.level) == (CFG.origin_x, CFG.origin_y, 0)
    assert node.width == CFG.base_width
    assert layout.width == CFG.base_width
    assert layout.height == 0


def test_leaf_width_and_parent_width():
    parents = {"r": None, "a": "r", "b": "r", "c": "r"}
    turns = make_turns(parents)
    children = {t.turn_id: t.children for t in turns}
    widths = compute_subtree_widths(children, ["r"], CFG)
    assert widths["a"] == CFG.base_width
    assert widths["r"] == 3 * CFG.base_width + 2 * CFG.min_spacing


def test_parent_is_centred_over_children():
    layout = layout_turns(make_turns({"r": None, "a": "r", "b": "r"}))
    by_id = {n.node_id: n for n in layout.nodes}
    assert by_id["r"].x == pytest.approx((by_id["a"].x + by_id["b"].x) / 2)


def test_vertical_gap_grows_with_depth_and_fanout():
    assert CFG.vertical_gap(0, 1) < CFG.vertical_gap(3, 1)
    assert CFG.vertical_gap(0, 1) < CFG.vertical_gap(0, 4)
    assert CFG.vertical_gap(0, 100) == CFG.base_vertical + CFG.child_cap


def test_multiple_roots_laid_out_side_by_side():
    turns = make_turns({"r1": None, "a": "r1", "b": "r1", "r2": None})
    layout = layout_turns(turns)
    by_id = {n.node_id: n for n in layout.nodes}
    r1_width = CFG.base_width * 2 + CFG.min_spacing
    assert by_id["r1"].x == CFG.origin_x
    assert by_id["r2"].x == pytest.approx(
        CFG.origin_x + r1_width / 2 + CFG.min_spacing + CFG.base_width / 2
    )
    assert layout.width == pytest.approx(r1_width + CFG.min_spacing + CFG.base_width)


def test_orphan_parent_is_treated_as_root():
    turns = make_turns({"a": "missing", "b": "a"})
    layout = layout_turns(turns)
    assert {n.node_id for n in layout.nodes} == {"a", "b"}


def test_cycle_only_input_yields_empty_layout():
    turns = make_turns({"p": "q", "q": "p"})
    assert layout_turns(turns).nodes == []


def test_active_path_is_flagged():
    turns = make_turns({"r": None, "a": "r", "b": "r"})
    layout = layout_turns(turns, active_path=["r", "b"])
    flags = {n.node_id: n.is_active for n in layout.nodes}
    assert flags == {"r": True, "a": False, "b": True}


def test_deep_chain_does_not_recurse():
    layout = layout_turns(make_turns(comb_parents(1, 3000)))
    assert len(layout.nodes) == 3001
    assert max(n.level for n in layout.nodes) == 3000


def test_config_from_settings():
    cfg = LayoutConfig.from_settings(LayoutSettings(base_width=100, min_spacing=10))
    assert cfg.base_width == 100
    layout = layout_turns(make_turns({"r": None, "a": "r", "b": "r"}), config=cfg)
    assert layout.width == 210
