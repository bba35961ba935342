"""Path algorithms over an in-memory node index.

All functions are pure and synchronous. Walking a broken parent chain
never raises by default: the path is truncated at the break so the tree
can always be rendered. `validate_tree` and `strict=True` exist for
diagnostics and tests.
"""

import logging
from collections import defaultdict, deque
from collections.abc import Iterable

from branchwise.models import ConsistencyIssue, Node, SwitchSteps

logger = logging.getLogger(__name__)


class TreeConsistencyError(Exception):
    def __init__(self, issues: list[ConsistencyIssue]) -> None:
        self.issues = issues
        summary = "; ".join(issue.detail for issue in issues[:5])
        super().__init__(f"Tree is inconsistent: {summary}")


def build_node_index(
    nodes: Iterable[Node], *, include_deleted: bool = False
) -> dict[str, Node]:
    """Map node_id -> Node, skipping soft-deleted nodes unless asked."""
    return {n.node_id: n for n in nodes if include_deleted or not n.deleted}


def build_children_map(nodes: Iterable[Node]) -> dict[str, list[str]]:
    """Map parent_id -> child ids, in the order the nodes are given.

    Callers pass nodes in creation order, so each child list is oldest first.
    """
    children: dict[str, list[str]] = defaultdict(list)
    for n in nodes:
        if n.parent_id is not None:
            children[n.parent_id].append(n.node_id)
    return dict(children)


def find_root(nodes: Iterable[Node]) -> Node | None:
    """The first parentless node, or None for an empty conversation."""
    return next((n for n in nodes if n.parent_id is None), None)


def path_to_root(
    node_id: str, index: dict[str, Node], *, strict: bool = False
) -> list[str]:
    """Ids from the root down to `node_id`, inclusive.

    A dangling parent reference or a cycle ends the walk; the partial path
    is returned. With strict=True those cases raise TreeConsistencyError.
    """
    if node_id not in index:
        if strict:
            raise TreeConsistencyError([ConsistencyIssue(
                kind="dangling_parent", node_id=node_id,
                detail=f"node {node_id} not found",
            )])
        return []

    path: list[str] = []
    seen: set[str] = set()
    current: str | None = node_id
    while current is not None:
        if current in seen:
            issue = ConsistencyIssue(
                kind="cycle", node_id=current, detail=f"cycle at node {current}"
            )
            if strict:
                raise TreeConsistencyError([issue])
            logger.warning("Path walk from %s hit a cycle at %s", node_id, current)
            break
        node = index.get(current)
        if node is None:
            issue = ConsistencyIssue(
                kind="dangling_parent", node_id=path[-1] if path else None,
                detail=f"parent {current} not found",
            )
            if strict:
                raise TreeConsistencyError([issue])
            logger.warning(
                "Path walk from %s truncated: parent %s not found", node_id, current
            )
            break
        seen.add(current)
        path.append(current)
        current = node.parent_id

    path.reverse()
    return path


def find_lca_index(path_a: list[str], path_b: list[str]) -> int:
    """Index of the last position where two root-first paths agree.

    -1 when they share nothing (including when either path is empty).
    """
    i = 0
    for a, b in zip(path_a, path_b):
        if a != b:
            break
        i += 1
    return i - 1


def compute_switch_steps(
    from_id: str, to_id: str, index: dict[str, Node]
) -> SwitchSteps:
    """Decompose a move between two nodes into a climb and a descent.

    `up` runs from `from_id` towards the root, stopping before the LCA.
    `down` runs from just below the LCA to `to_id`.
    """
    from_path = path_to_root(from_id, index)
    to_path = path_to_root(to_id, index)
    lca_index = find_lca_index(from_path, to_path)

    return SwitchSteps(
        lca=from_path[lca_index] if lca_index >= 0 else None,
        up=list(reversed(from_path[lca_index + 1:])),
        down=to_path[lca_index + 1:],
    )


def get_active_path(node_id: str, index: dict[str, Node]) -> list[Node]:
    """Nodes from the root down to `node_id`; what the chat pane shows."""
    return [index[i] for i in path_to_root(node_id, index)]


def collect_descendants(node_id: str, children_map: dict[str, list[str]]) -> list[str]:
    """Every node below `node_id`, breadth first. Excludes `node_id` itself."""
    found: list[str] = []
    seen = {node_id}
    queue = deque(children_map.get(node_id, []))
    while queue:
        current = queue.popleft()
        if current in seen:
            continue
        seen.add(current)
        found.append(current)
        queue.extend(children_map.get(current, []))
    return found


def validate_tree(nodes: list[Node]) -> list[ConsistencyIssue]:
    """Report every structural problem in a conversation's node set.

    Checks single root, resolvable parents within the same conversation,
    and absence of cycles. An empty list means the set is a proper tree.
    """
    issues: list[ConsistencyIssue] = []
    if not nodes:
        return issues

    by_id = {n.node_id: n for n in nodes}
    roots = [n for n in nodes if n.parent_id is None]
    if not roots:
        issues.append(ConsistencyIssue(kind="no_root", detail="no root node"))
    elif len(roots) > 1:
        ids = ", ".join(r.node_id for r in roots)
        issues.append(ConsistencyIssue(
            kind="multiple_roots", detail=f"multiple roots: {ids}"
        ))

    for n in nodes:
        if n.parent_id is None:
            continue
        parent = by_id.get(n.parent_id)
        if parent is None:
            issues.append(ConsistencyIssue(
                kind="dangling_parent", node_id=n.node_id,
                detail=f"node {n.node_id} references missing parent {n.parent_id}",
            ))
        elif parent.conversation_id != n.conversation_id:
            issues.append(ConsistencyIssue(
                kind="foreign_parent", node_id=n.node_id,
                detail=f"node {n.node_id} has parent {n.parent_id} in another conversation",
            ))

    # Cycle detection: a node is fine once its chain reaches a root or a break.
    settled: set[str] = set()
    for n in nodes:
        trail: list[str] = []
        on_trail: set[str] = set()
        current: str | None = n.node_id
        while current is not None and current in by_id and current not in settled:
            if current in on_trail:
                issues.append(ConsistencyIssue(
                    kind="cycle", node_id=current, detail=f"cycle through node {current}"
                ))
                break
            on_trail.add(current)
            trail.append(current)
            current = by_id[current].parent_id
        settled.update(trail)

    return issues


def assert_consistent(nodes: list[Node]) -> None:
    """Raise TreeConsistencyError if `validate_tree` finds anything."""
    issues = validate_tree(nodes)
    if issues:
        raise TreeConsistencyError(issues)
