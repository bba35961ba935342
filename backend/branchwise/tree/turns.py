"""Chat-pair projection: fold one-node-per-utterance into turns.

A turn is a user node plus the assistant reply currently selected under
it. Turns are what the graph view draws and what the layout engine
positions. The projection skips soft-deleted nodes.
"""

from branchwise.models import Node, Turn
from branchwise.tree.branches import BranchSelection
from branchwise.tree.paths import build_children_map, build_node_index


def nearest_turn_ancestor(node: Node, index: dict[str, Node]) -> str | None:
    """Id of the closest user node strictly above `node`, or None."""
    seen = {node.node_id}
    current = node.parent_id
    while current is not None and current not in seen:
        parent = index.get(current)
        if parent is None:
            return None
        if parent.role == "user":
            return parent.node_id
        seen.add(current)
        current = parent.parent_id
    return None


def project_turns(
    nodes: list[Node], selection: BranchSelection | None = None
) -> list[Turn]:
    """Build turns in creation order of their user nodes.

    `nodes` should be in creation order. The reply paired with each user
    node is the selected assistant child; with no explicit selection that
    is the most recently created one.
    """
    index = build_node_index(nodes)
    live = [n for n in nodes if n.node_id in index]
    children_map = build_children_map(live)
    selection = selection or BranchSelection(children_map)

    turns: dict[str, Turn] = {}
    for node in live:
        if node.role != "user":
            continue
        replies = [
            cid for cid in children_map.get(node.node_id, [])
            if index[cid].role == "assistant"
        ]
        assistant = _chosen_reply(node.node_id, replies, selection, index)
        turns[node.node_id] = Turn(
            turn_id=node.node_id,
            conversation_id=node.conversation_id,
            query=node.text,
            response=assistant.text if assistant else "",
            assistant_id=assistant.node_id if assistant else None,
            reply_count=len(replies),
            parent_id=nearest_turn_ancestor(node, index),
            created_at=assistant.created_at if assistant else node.created_at,
        )

    for turn in turns.values():
        if turn.parent_id is not None and turn.parent_id in turns:
            turns[turn.parent_id].children.append(turn.turn_id)

    return list(turns.values())


def _chosen_reply(
    user_id: str,
    replies: list[str],
    selection: BranchSelection,
    index: dict[str, Node],
) -> Node | None:
    if not replies:
        return None
    chosen = selection.selected_child(user_id)
    if chosen is not None and chosen in replies:
        return index[chosen]
    # Selected child is a user follow-up, not a reply: show the newest reply.
    return index[replies[-1]]


def turn_path(turns: list[Turn], active_turn_id: str | None) -> list[str]:
    """Root-first turn ids ending at `active_turn_id`."""
    if active_turn_id is None:
        return []
    by_id = {t.turn_id: t for t in turns}
    path: list[str] = []
    seen: set[str] = set()
    current: str | None = active_turn_id
    while current is not None and current in by_id and current not in seen:
        seen.add(current)
        path.append(current)
        current = by_id[current].parent_id
    path.reverse()
    return path


def turn_for_node(node_id: str | None, nodes: list[Node]) -> str | None:
    """The turn a raw node belongs to: itself if a user node, else its user ancestor."""
    if node_id is None:
        return None
    index = build_node_index(nodes)
    node = index.get(node_id)
    if node is None:
        return None
    if node.role == "user":
        return node.node_id
    return nearest_turn_ancestor(node, index)
