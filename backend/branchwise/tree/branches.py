"""Sibling navigation keyed by an explicit per-parent selected-child index.

A parent with several children shows one of them at a time. Which one is
recorded in a map of parent id -> child index so the choice survives
re-renders. Parents absent from the map show their newest child.
"""

from branchwise.models import SiblingInfo


class BranchSelection:
    """Selected-child state for one conversation tree."""

    def __init__(
        self,
        children_map: dict[str, list[str]],
        selected: dict[str, int] | None = None,
    ) -> None:
        self._children = children_map
        self._parent_of = {
            child: parent for parent, kids in children_map.items() for child in kids
        }
        self._selected: dict[str, int] = {}
        for parent_id, idx in (selected or {}).items():
            if parent_id in children_map:
                self.select(parent_id, idx)

    @property
    def selected(self) -> dict[str, int]:
        """Explicit selections only; defaults are not materialized."""
        return dict(self._selected)

    def children(self, parent_id: str) -> list[str]:
        return self._children.get(parent_id, [])

    def selected_index(self, parent_id: str) -> int | None:
        kids = self.children(parent_id)
        if not kids:
            return None
        idx = self._selected.get(parent_id, len(kids) - 1)
        return min(max(idx, 0), len(kids) - 1)

    def selected_child(self, parent_id: str) -> str | None:
        idx = self.selected_index(parent_id)
        return None if idx is None else self.children(parent_id)[idx]

    def select(self, parent_id: str, index: int) -> str | None:
        """Select a child by index, clamped into range. Returns its id."""
        kids = self.children(parent_id)
        if not kids:
            return None
        self._selected[parent_id] = min(max(index, 0), len(kids) - 1)
        return kids[self._selected[parent_id]]

    def select_child_id(self, child_id: str) -> bool:
        """Make `child_id` the shown child of its parent. False if it has none."""
        parent_id = self._parent_of.get(child_id)
        if parent_id is None:
            return False
        self._selected[parent_id] = self._children[parent_id].index(child_id)
        return True

    def next_branch(self, parent_id: str) -> str | None:
        idx = self.selected_index(parent_id)
        return None if idx is None else self.select(parent_id, idx + 1)

    def previous_branch(self, parent_id: str) -> str | None:
        idx = self.selected_index(parent_id)
        return None if idx is None else self.select(parent_id, idx - 1)

    def sibling_info(self, node_id: str) -> SiblingInfo:
        parent_id = self._parent_of.get(node_id)
        if parent_id is None:
            return SiblingInfo(index=0, count=1)
        siblings = self._children[parent_id]
        idx = siblings.index(node_id)
        return SiblingInfo(
            index=idx,
            count=len(siblings),
            previous_id=siblings[idx - 1] if idx > 0 else None,
            next_id=siblings[idx + 1] if idx + 1 < len(siblings) else None,
        )

    def focus(self, path: list[str]) -> None:
        """Select every node of a root-first path under its parent."""
        for node_id in path:
            self.select_child_id(node_id)

    def descend(self, node_id: str) -> list[str]:
        """Follow selected children from `node_id` down to a leaf.

        Returns the ids below `node_id`, nearest first. Used to find the
        displayed leaf after switching to another sibling.
        """
        trail: list[str] = []
        seen = {node_id}
        current = self.selected_child(node_id)
        while current is not None and current not in seen:
            seen.add(current)
            trail.append(current)
            current = self.selected_child(current)
        return trail


def compute_sibling_info(children_map: dict[str, list[str]]) -> dict[str, SiblingInfo]:
    """sibling index/count for every child in the map. Roots are absent."""
    selection = BranchSelection(children_map)
    return {
        child: selection.sibling_info(child)
        for kids in children_map.values()
        for child in kids
    }
