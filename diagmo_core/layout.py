"""
Initial placement for imported graphs.

Importers need readable starting positions before the editor's auto-layout
(if any) takes over:
- Grouped grid: square-ish grid per group, groups stacked vertically
- Layered: longest-path layering along a flow direction, back-edges ignored
- Handles: which side of each node an edge attaches to

All functions are pure and return new position maps keyed by node id.
"""

import math
from collections import defaultdict
from typing import Hashable, Iterable, Sequence

from .models import Position


# Default layout parameters
DEFAULT_START_X = 100
DEFAULT_START_Y = 100


def grouped_grid_layout(
    groups: Iterable[Sequence[str]],
    node_width: float = 160,
    node_height: float = 80,
    horizontal_gap: float = 60,
    vertical_gap: float = 100,
    group_gap: float = 150,
    start_x: float = DEFAULT_START_X,
    start_y: float = DEFAULT_START_Y,
) -> dict[str, Position]:
    """
    Arrange each group of keys in its own grid, stacking groups vertically.

    Each group gets ``ceil(sqrt(n))`` columns so it stays roughly square.

    Args:
        groups: Ordered groups of keys to place
        node_width: Cell width before the horizontal gap
        node_height: Cell height before the vertical gap
        horizontal_gap: Space between columns
        vertical_gap: Space between rows
        group_gap: Extra space between consecutive groups
        start_x: X coordinate of the first column
        start_y: Y coordinate of the first group

    Returns:
        Mapping of key to position
    """
    positions: dict[str, Position] = {}
    current_y = start_y

    for members in groups:
        if not members:
            continue
        columns = math.ceil(math.sqrt(len(members)))

        for i, key in enumerate(members):
            col = i % columns
            row = i // columns
            positions[key] = Position(
                x=start_x + col * (node_width + horizontal_gap),
                y=current_y + row * (node_height + vertical_gap),
            )

        rows = math.ceil(len(members) / columns)
        current_y += rows * (node_height + vertical_gap) + group_gap

    return positions


def group_by(items: Iterable, key) -> dict[Hashable, list]:
    """Group items by ``key(item)``, preserving first-seen group order."""
    grouped: dict[Hashable, list] = {}
    for item in items:
        grouped.setdefault(key(item), []).append(item)
    return grouped


def find_back_edges(node_ids: Sequence[str], adjacency: dict[str, list[str]]) -> set[tuple[str, str]]:
    """
    Find edges that close a cycle during a depth-first walk.

    Args:
        node_ids: Nodes in traversal order
        adjacency: Directed successor lists

    Returns:
        Set of (source, target) pairs that are back-edges
    """
    visited: set[str] = set()
    on_stack: set[str] = set()
    back_edges: set[tuple[str, str]] = set()

    for root in node_ids:
        if root in visited:
            continue
        visited.add(root)
        on_stack.add(root)
        stack = [(root, iter(adjacency.get(root, [])))]

        while stack:
            node_id, successors = stack[-1]
            for target in successors:
                if target not in visited:
                    visited.add(target)
                    on_stack.add(target)
                    stack.append((target, iter(adjacency.get(target, []))))
                    break
                if target in on_stack:
                    back_edges.add((node_id, target))
            else:
                on_stack.discard(node_id)
                stack.pop()

    return back_edges


def layered_layout(
    node_ids: Sequence[str],
    edges: Sequence[tuple[str, str]],
    direction: str = "TB",
    node_width: float = 120,
    node_height: float = 50,
    horizontal_gap: float = 80,
    vertical_gap: float = 100,
    start_x: float = 150,
    start_y: float = 100,
) -> tuple[dict[str, Position], set[tuple[str, str]]]:
    """
    Arrange nodes in layers following edge direction.

    Nodes with no incoming edges (ignoring back-edges) form layer 0; every
    other node sits one layer below its deepest parent. Within a layer,
    siblings keep the order of their parent's outgoing edges so the first
    branch of a decision lands first. Layers are centred on the widest one.

    Args:
        node_ids: Nodes in declaration order
        edges: Directed (source, target) pairs
        direction: "TB"/"TD", "BT", "LR" or "RL"
        node_width: Nominal node width
        node_height: Nominal node height
        horizontal_gap: Space between nodes across a layer (or between layers for LR/RL)
        vertical_gap: Space between layers (or between nodes for LR/RL)
        start_x: X offset of the layout
        start_y: Y offset of the layout

    Returns:
        (positions by node id, set of back-edges)
    """
    direction = "TB" if direction == "TD" else direction
    if not node_ids:
        return {}, set()

    known = set(node_ids)
    outgoing: dict[str, list[str]] = {nid: [] for nid in node_ids}
    incoming: dict[str, list[str]] = {nid: [] for nid in node_ids}
    for source, target in edges:
        if source in known and target in known:
            outgoing[source].append(target)
            incoming[target].append(source)

    back_edges = find_back_edges(node_ids, outgoing)

    roots = [
        nid for nid in node_ids
        if not any((parent, nid) not in back_edges for parent in incoming[nid])
    ]
    if not roots:
        roots = [node_ids[0]]

    # Longest-path layering over the forward edges
    layers: dict[str, int] = {r: 0 for r in roots}
    queue = list(roots)
    while queue:
        current = queue.pop(0)
        for target in outgoing[current]:
            if (current, target) in back_edges:
                continue
            new_layer = layers[current] + 1
            if target not in layers or new_layer > layers[target]:
                layers[target] = new_layer
                queue.append(target)

    for nid in node_ids:
        layers.setdefault(nid, 0)

    layer_groups: dict[int, list[str]] = defaultdict(list)
    for nid in node_ids:
        layer_groups[layers[nid]].append(nid)

    # Order siblings by (parent layer, index in parent's outgoing list)
    for layer, members in layer_groups.items():
        if layer == 0:
            continue
        order: dict[str, float] = {}
        for nid in members:
            for parent in incoming[nid]:
                if (parent, nid) in back_edges:
                    continue
                rank = layers[parent] * 1000 + outgoing[parent].index(nid)
                order[nid] = min(order.get(nid, math.inf), rank)
        members.sort(key=lambda n: order.get(n, math.inf))

    max_layer = max(layer_groups)
    widest = max(len(m) for m in layer_groups.values())
    positions: dict[str, Position] = {}

    for layer in sorted(layer_groups):
        members = layer_groups[layer]
        for index, nid in enumerate(members):
            if direction in ("TB", "BT"):
                offset = (widest - len(members)) * (node_width + horizontal_gap) / 2
                x = offset + index * (node_width + horizontal_gap) + start_x
                level = max_layer - layer if direction == "BT" else layer
                y = level * (node_height + vertical_gap) + start_y
            else:
                offset = (widest - len(members)) * (node_height + vertical_gap) / 2
                level = max_layer - layer if direction == "RL" else layer
                x = level * (node_width + horizontal_gap) + start_x
                y = offset + index * (node_height + vertical_gap) + start_y
            positions[nid] = Position(x=x, y=y)

    return positions, back_edges


def optimal_handles(
    source_center: tuple[float, float],
    target_center: tuple[float, float]
) -> tuple[str, str]:
    """
    Pick connection sides from the relative position of two node centers.

    The dominant axis of the displacement wins; ties go horizontal.

    Returns:
        (source side, target side)
    """
    dx = target_center[0] - source_center[0]
    dy = target_center[1] - source_center[1]

    if abs(dy) > abs(dx):
        return ("bottom", "top") if dy > 0 else ("top", "bottom")
    return ("right", "left") if dx > 0 else ("left", "right")


def flow_handles(
    source: Position,
    target: Position,
    direction: str,
    is_back_edge: bool = False,
    branch_threshold: float = 30,
) -> tuple[str, str]:
    """
    Pick connection sides for an edge in a layered layout.

    Forward edges leave from the side facing the next layer, or from the
    left/right side when the target is offset by more than
    ``branch_threshold`` (decision branches). Back-edges route around the
    outside of the diagram.

    Returns:
        (source side, target side)
    """
    vertical = direction in ("TB", "TD", "BT")
    dx = target.x - source.x
    dy = target.y - source.y

    if is_back_edge:
        if not vertical:
            return ("bottom", "bottom")
        if source.x < target.x:
            return ("left", "left")
        return ("right", "right")

    if vertical:
        entry = "top" if dy > 0 else "bottom"
        if abs(dx) > branch_threshold:
            return ("right" if dx > 0 else "left", entry)
        return ("bottom" if dy > 0 else "top", entry)

    entry = "left" if dx > 0 else "right"
    if abs(dy) > branch_threshold:
        return ("bottom" if dy > 0 else "top", entry)
    return ("right" if dx > 0 else "left", entry)
