"""
Graph analysis - structural metrics and complexity scoring.

Pure functions over a canonical graph. The graph is assumed to be
well-formed (parsers already drop dangling edges); edges that reference
unknown nodes are ignored rather than reported.
"""

import math
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Optional, Sequence

from .config import get_settings
from .layout import find_back_edges
from .models import ANNOTATION_SHAPES, JUNCTION_SHAPES, Graph, Provider, provider_for_shape


def _round(value: float, digits: int = 0) -> float:
    """Round half away from zero (``round`` rounds half to even)."""
    factor = 10 ** digits
    rounded = math.floor(abs(value) * factor + 0.5) / factor
    return math.copysign(rounded, value) if digits else int(math.copysign(rounded, value))


@dataclass
class NodeConnectionInfo:
    """Connection counts for a single node."""
    node_id: str
    label: str
    incoming: int = 0
    outgoing: int = 0

    @property
    def total(self) -> int:
        return self.incoming + self.outgoing


@dataclass
class ShapeShare:
    type: str
    count: int
    percentage: float


@dataclass
class HubNode:
    id: str
    label: str
    connections: int


@dataclass
class BoundingBox:
    width: float = 0
    height: float = 0
    area: float = 0


@dataclass
class GraphAnalytics:
    """Complete set of structural metrics for a graph."""
    node_count: int
    edge_count: int
    layer_count: int
    average_connections: float
    max_connections: int
    max_depth: int
    cycle_count: int
    connected_components: int
    shape_distribution: dict[str, int]
    top_shapes: list[ShapeShare]
    cloud_providers: dict[str, int]
    orphan_nodes: int
    unlabeled_nodes: int
    self_loops: int
    duplicate_labels: int
    source_nodes: int
    sink_nodes: int
    hub_nodes: list[HubNode]
    bounding_box: BoundingBox = field(default_factory=BoundingBox)
    average_node_size: dict[str, float] = field(default_factory=lambda: {"width": 0, "height": 0})

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


@dataclass
class ComplexityScore:
    score: int
    level: str  # simple, moderate, complex, very-complex
    factors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def _adjacency(graph: Graph) -> dict[str, list[str]]:
    ids = graph.node_ids()
    adjacency: dict[str, list[str]] = {n.id: [] for n in graph.nodes}
    for edge in graph.edges:
        if edge.source in ids and edge.target in ids:
            adjacency[edge.source].append(edge.target)
    return adjacency


def calculate_node_connections(graph: Graph) -> dict[str, NodeConnectionInfo]:
    """
    Calculate incoming/outgoing edge counts for all nodes.

    Args:
        graph: The graph to analyze

    Returns:
        Dictionary mapping node_id to NodeConnectionInfo
    """
    connections = {
        node.id: NodeConnectionInfo(node_id=node.id, label=node.label)
        for node in graph.nodes
    }
    for edge in graph.edges:
        if edge.source in connections:
            connections[edge.source].outgoing += 1
        if edge.target in connections:
            connections[edge.target].incoming += 1
    return connections


def count_cycles(graph: Graph) -> int:
    """
    Count DFS roots whose traversal runs into a cycle.

    Each root's traversal stops at the first back-edge it meets and adds one
    to the count, so several cycles reachable from one root count once. A
    stopped traversal leaves its path marked as active, which later roots
    that reach into that path also count.

    Returns:
        0 exactly when the graph is acyclic
    """
    adjacency = _adjacency(graph)
    visited: set[str] = set()
    on_stack: set[str] = set()
    cycle_count = 0

    for root in adjacency:
        if root in visited:
            continue
        visited.add(root)
        on_stack.add(root)
        stack = [(root, iter(adjacency[root]))]

        while stack:
            node_id, successors = stack[-1]
            for neighbor in successors:
                if neighbor not in visited:
                    visited.add(neighbor)
                    on_stack.add(neighbor)
                    stack.append((neighbor, iter(adjacency[neighbor])))
                    break
                if neighbor in on_stack:
                    cycle_count += 1
                    stack.clear()
                    break
            else:
                on_stack.discard(node_id)
                stack.pop()

    return cycle_count


def find_connected_components(graph: Graph) -> list[list[str]]:
    """
    Find weakly connected components using BFS over undirected edges.

    Args:
        graph: The graph to analyze

    Returns:
        Node ids of each component, in discovery order
    """
    adjacency: dict[str, set[str]] = {n.id: set() for n in graph.nodes}
    for edge in graph.edges:
        if edge.source in adjacency and edge.target in adjacency:
            adjacency[edge.source].add(edge.target)
            adjacency[edge.target].add(edge.source)

    visited: set[str] = set()
    components: list[list[str]] = []

    for start in adjacency:
        if start in visited:
            continue
        visited.add(start)
        component = []
        queue = [start]
        while queue:
            current = queue.pop(0)
            component.append(current)
            for neighbor in adjacency[current]:
                if neighbor not in visited:
                    visited.add(neighbor)
                    queue.append(neighbor)
        components.append(component)

    return components


def find_max_depth(graph: Graph) -> int:
    """
    Length of the longest path starting at a source node.

    All zero in-degree nodes start at depth 0 and each node takes the
    deepest predecessor depth plus one. Back-edges are ignored so cyclic
    parts still terminate. Graphs without source nodes have depth 0.
    """
    adjacency = _adjacency(graph)
    in_degree: dict[str, int] = {nid: 0 for nid in adjacency}
    for targets in adjacency.values():
        for target in targets:
            in_degree[target] += 1

    sources = [nid for nid, degree in in_degree.items() if degree == 0]
    if not sources:
        return 0

    back_edges = find_back_edges(sources + list(adjacency), adjacency)
    depths = {nid: 0 for nid in sources}
    queue = list(sources)
    max_depth = 0

    while queue:
        current = queue.pop(0)
        depth = depths[current]
        max_depth = max(max_depth, depth)
        for neighbor in adjacency[current]:
            if (current, neighbor) in back_edges:
                continue
            if depths.get(neighbor, -1) < depth + 1:
                depths[neighbor] = depth + 1
                queue.append(neighbor)

    return max_depth


def analyze_graph(graph: Graph, layers: Optional[Sequence] = None) -> GraphAnalytics:
    """
    Compute the structural metrics of a graph.

    Args:
        graph: The graph to analyze
        layers: Editor layers of the diagram, if any (only counted)

    Returns:
        GraphAnalytics with all metrics
    """
    settings = get_settings()
    nodes, edges = graph.nodes, graph.edges
    node_count = len(nodes)
    ids = graph.node_ids()

    connections = calculate_node_connections(graph)
    totals = [info.total for info in connections.values()]
    average_connections = sum(totals) / node_count if node_count else 0

    shape_distribution: dict[str, int] = defaultdict(int)
    for node in nodes:
        shape_distribution[node.shape] += 1
    top_shapes = sorted(
        (
            ShapeShare(type=shape, count=count, percentage=count / node_count * 100)
            for shape, count in shape_distribution.items()
        ),
        key=lambda s: s.count,
        reverse=True,
    )[:settings.top_shape_count]

    cloud_providers = {p.value: 0 for p in Provider}
    for node in nodes:
        cloud_providers[provider_for_shape(node.shape).value] += 1

    connected = {e.source for e in edges} | {e.target for e in edges}
    orphan_nodes = sum(
        1 for n in nodes if n.id not in connected and n.shape not in ANNOTATION_SHAPES
    )
    unlabeled_nodes = sum(
        1 for n in nodes if not n.label.strip() and n.shape not in JUNCTION_SHAPES
    )
    self_loops = sum(1 for e in edges if e.source == e.target)

    label_counts: dict[str, int] = defaultdict(int)
    for node in nodes:
        label = node.label.strip().lower()
        if label:
            label_counts[label] += 1
    duplicate_labels = sum(1 for count in label_counts.values() if count > 1)

    with_incoming = {e.target for e in edges if e.target in ids}
    with_outgoing = {e.source for e in edges if e.source in ids}
    source_nodes = sum(1 for n in nodes if n.id not in with_incoming and n.id in with_outgoing)
    sink_nodes = sum(1 for n in nodes if n.id in with_incoming and n.id not in with_outgoing)

    hubs = sorted(
        (info for info in connections.values() if info.total > 0),
        key=lambda info: info.total,
        reverse=True,
    )[:settings.hub_node_count]
    hub_nodes = [HubNode(id=h.node_id, label=h.label or "Unlabeled", connections=h.total) for h in hubs]

    bounding_box = BoundingBox()
    average_node_size = {"width": 0, "height": 0}
    if nodes:
        default_size = (settings.default_node_width, settings.default_node_height)
        bounds = [n.bounds(*default_size) for n in nodes]
        min_x = min(b[0] for b in bounds)
        min_y = min(b[1] for b in bounds)
        max_x = max(b[2] for b in bounds)
        max_y = max(b[3] for b in bounds)
        bounding_box = BoundingBox(
            width=_round(max_x - min_x),
            height=_round(max_y - min_y),
            area=_round((max_x - min_x) * (max_y - min_y)),
        )
        sizes = [n.effective_size(*default_size) for n in nodes]
        average_node_size = {
            "width": _round(sum(s[0] for s in sizes) / node_count),
            "height": _round(sum(s[1] for s in sizes) / node_count),
        }

    return GraphAnalytics(
        node_count=node_count,
        edge_count=len(edges),
        layer_count=len(layers) if layers else 1,
        average_connections=_round(average_connections, 2),
        max_connections=max(totals, default=0),
        max_depth=find_max_depth(graph),
        cycle_count=count_cycles(graph),
        connected_components=len(find_connected_components(graph)),
        shape_distribution=dict(shape_distribution),
        top_shapes=top_shapes,
        cloud_providers=cloud_providers,
        orphan_nodes=orphan_nodes,
        unlabeled_nodes=unlabeled_nodes,
        self_loops=self_loops,
        duplicate_labels=duplicate_labels,
        source_nodes=source_nodes,
        sink_nodes=sink_nodes,
        hub_nodes=hub_nodes,
        bounding_box=bounding_box,
        average_node_size=average_node_size,
    )


def complexity_score(analytics: GraphAnalytics) -> ComplexityScore:
    """
    Score how hard a graph is to read, from 0 to 100.

    Five capped contributions are summed: node count (25), average
    connections (25), depth (20), cycles (15) and disconnected components
    (15). ``factors`` names the contributions that hit or approach their cap.
    """
    score = 0.0
    factors: list[str] = []

    if analytics.node_count > 50:
        score += 25
        factors.append("Large number of nodes")
    elif analytics.node_count > 20:
        score += 15
    elif analytics.node_count > 10:
        score += 8
    else:
        score += analytics.node_count * 0.5

    if analytics.average_connections > 4:
        score += 25
        factors.append("High connectivity")
    elif analytics.average_connections > 2:
        score += 15
    else:
        score += analytics.average_connections * 5

    if analytics.max_depth > 10:
        score += 20
        factors.append("Deep hierarchy")
    elif analytics.max_depth > 5:
        score += 12
    else:
        score += analytics.max_depth * 2

    if analytics.cycle_count > 3:
        score += 15
        factors.append("Multiple cycles")
    elif analytics.cycle_count > 0:
        score += analytics.cycle_count * 5
        factors.append("Contains cycles")

    if analytics.connected_components > 5:
        score += 15
        factors.append("Multiple disconnected sections")
    elif analytics.connected_components > 1:
        score += analytics.connected_components * 3

    final = min(100, _round(score))

    if final < 25:
        level = "simple"
    elif final < 50:
        level = "moderate"
    elif final < 75:
        level = "complex"
    else:
        level = "very-complex"

    return ComplexityScore(score=final, level=level, factors=factors)
