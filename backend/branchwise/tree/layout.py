"""Tree layout for the conversation graph.

Computes x/y positions for every turn so that:
- parents sit above their children
- sibling subtrees never overlap horizontally
- wider subtrees get proportionally more room

Two passes over the turn tree. Subtree widths are computed bottom-up and
memoized; placement runs top-down from a caller-supplied origin. Both
passes are iterative so very deep conversations cannot hit the recursion
limit. Coordinates are node centres.
"""

from dataclasses import dataclass

from branchwise.config import LayoutSettings
from branchwise.models import LayoutLink, LayoutNode, TreeLayout, Turn


@dataclass(frozen=True)
class LayoutConfig:
    # Horizontal room reserved for a leaf; slightly wider than a drawn node.
    base_width: float = 220
    # Gap between adjacent sibling subtrees.
    min_spacing: float = 50
    # Parent-to-children distance before depth/fan-out adjustments.
    base_vertical: float = 180
    # Extra vertical distance per level of depth.
    level_factor: float = 15
    # Extra vertical distance per child, capped at child_cap.
    child_factor: float = 5
    child_cap: float = 30
    origin_x: float = 0
    origin_y: float = 50

    @classmethod
    def from_settings(cls, settings: LayoutSettings) -> "LayoutConfig":
        return cls(**settings.model_dump())

    def vertical_gap(self, level: int, child_count: int) -> float:
        return (
            self.base_vertical
            + level * self.level_factor
            + min(child_count * self.child_factor, self.child_cap)
        )


def find_layout_roots(turns: list[Turn]) -> list[str]:
    """Turns whose parent is absent from the set, in input order."""
    ids = {t.turn_id for t in turns}
    return [t.turn_id for t in turns if t.parent_id is None or t.parent_id not in ids]


def compute_subtree_widths(
    children: dict[str, list[str]], roots: list[str], cfg: LayoutConfig
) -> dict[str, float]:
    """Width reserved for each node's subtree, bottom-up.

    width(leaf) = base_width
    width(node) = max(base_width, sum(child widths) + (k - 1) * min_spacing)
    """
    widths: dict[str, float] = {}
    for root in roots:
        stack: list[tuple[str, bool]] = [(root, False)]
        while stack:
            node_id, expanded = stack.pop()
            if node_id in widths:
                continue
            kids = children.get(node_id, [])
            if expanded or not kids:
                widths[node_id] = _span(kids, widths, cfg)
                continue
            stack.append((node_id, True))
            stack.extend((k, False) for k in kids if k not in widths)
    return widths


def _span(kids: list[str], widths: dict[str, float], cfg: LayoutConfig) -> float:
    if not kids:
        return cfg.base_width
    total = sum(widths[k] for k in kids) + (len(kids) - 1) * cfg.min_spacing
    return max(cfg.base_width, total)


def layout_turns(
    turns: list[Turn],
    *,
    active_path: list[str] | None = None,
    config: LayoutConfig | None = None,
) -> TreeLayout:
    """Position every turn. Empty input yields an empty layout.

    Several roots (which a healthy conversation never has) are laid out
    independently, side by side from the origin, separated by min_spacing.
    """
    cfg = config or LayoutConfig()
    if not turns:
        return TreeLayout()

    by_id = {t.turn_id: t for t in turns}
    children = {
        t.turn_id: [c for c in t.children if c in by_id] for t in turns
    }
    roots = find_layout_roots(turns)
    if not roots:
        return TreeLayout()
    widths = compute_subtree_widths(children, roots, cfg)
    active = set(active_path or [])

    placed: dict[str, LayoutNode] = {}
    links: list[LayoutLink] = []

    # The first root sits at the origin; later roots continue to its right.
    left_edge = cfg.origin_x - widths[roots[0]] / 2
    cursor = left_edge
    for root in roots:
        root_x = cursor + widths[root] / 2
        cursor += widths[root] + cfg.min_spacing
        # Stack entries: (node_id, centre x, y, level)
        stack: list[tuple[str, float, float, int]] = [(root, root_x, cfg.origin_y, 0)]
        while stack:
            node_id, x, y, level = stack.pop()
            if node_id in placed:
                continue
            placed[node_id] = LayoutNode(
                turn=by_id[node_id],
                x=x,
                y=y,
                level=level,
                width=widths[node_id],
                is_active=node_id in active,
            )
            kids = children[node_id]
            if not kids:
                continue

            total = sum(widths[k] for k in kids) + (len(kids) - 1) * cfg.min_spacing
            child_y = y + cfg.vertical_gap(level, len(kids))
            child_x = x - total / 2
            for kid in kids:
                links.append(LayoutLink(source=node_id, target=kid))
                stack.append((kid, child_x + widths[kid] / 2, child_y, level + 1))
                child_x += widths[kid] + cfg.min_spacing

    # Turns caught in a parent cycle are unreachable from any root; skip them.
    ordered = [placed[t.turn_id] for t in turns if t.turn_id in placed]
    return TreeLayout(
        nodes=ordered,
        links=links,
        width=cursor - cfg.min_spacing - left_edge,
        height=max((n.y for n in ordered), default=cfg.origin_y) - cfg.origin_y,
    )
