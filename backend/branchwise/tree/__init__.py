"""Conversation-tree engine: paths, branch selection, turns, and layout."""

from branchwise.tree.branches import BranchSelection
from branchwise.tree.layout import LayoutConfig, layout_turns
from branchwise.tree.paths import (
    TreeConsistencyError,
    build_children_map,
    build_node_index,
    compute_switch_steps,
    find_lca_index,
    path_to_root,
)
from branchwise.tree.turns import project_turns

__all__ = [
    "BranchSelection",
    "LayoutConfig",
    "TreeConsistencyError",
    "build_children_map",
    "build_node_index",
    "compute_switch_steps",
    "find_lca_index",
    "layout_turns",
    "path_to_root",
    "project_turns",
]
