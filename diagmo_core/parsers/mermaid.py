"""
Mermaid flowchart importer.

Two strategies share one statement scanner:
- Textual: nodes and edges come straight from the source and are placed
  with a layered layout along the declared direction
- Rendered: a ``MermaidRenderer`` lays the diagram out and node geometry is
  read back from it, while labels, shapes and edges still come from the
  scanner (the render output does not carry them reliably)

``import_mermaid`` tries the renderer first and falls back to the textual
strategy when rendering fails.

Supported syntax:
    graph TD / flowchart LR (TB, TD, BT, LR, RL)
    A[rect]  A(rounded)  A((circle))  A{diamond}  A{{hexagon}}
    A[(cylinder)]  A([stadium])  A[[subroutine]]  A>flag]  A[/para/]  A[/trap\\]
    A --> B   A --- B   A -.-> B   A -.- B   A ==> B   A === B   A <--> B
    A -->|label| B   A -- label --> B   A --> B --> C
    subgraph id [title] ... end
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from ..exceptions import RenderError
from ..layout import flow_handles, layered_layout, optimal_handles
from ..log import get_logger
from ..models import (
    Edge,
    EdgeMarker,
    EdgeStyle,
    Node,
    NodeData,
    ParseResult,
    Position,
    ShapeType,
    generate_edge_id,
    node_style,
)
from .mermaid_render import MermaidRenderer, RenderedNode

logger = get_logger(__name__)

# Mermaid-like palette
NODE_COLOR = "#ddd6fe"
BORDER_COLOR = "#a78bfa"
EDGE_COLOR = "#64748b"
SUBGRAPH_COLORS = ["#c4b5fd", "#a5b4fc", "#93c5fd", "#86efac", "#fcd34d", "#fca5a5"]

# Layered layout cell
NODE_WIDTH = 120
NODE_HEIGHT = 50

# Rendered nodes are never smaller than this
MIN_RENDERED_WIDTH = 80
MIN_RENDERED_HEIGHT = 40

_HEADER_RE = re.compile(r"^(?:graph|flowchart)\b(?:\s+(TB|TD|BT|LR|RL)\b)?", re.IGNORECASE)
_SUBGRAPH_RE = re.compile(r"^subgraph\s+([\w-]+)\s*(?:\[(.+)\])?\s*$", re.IGNORECASE)
_SUBGRAPH_TITLE_RE = re.compile(r"^subgraph\s+(.+)$", re.IGNORECASE)
_IGNORED_RE = re.compile(r"^(?:style|class|classDef|linkStyle|click|direction)\b", re.IGNORECASE)
_CLASS_SUFFIX_RE = re.compile(r":::[\w-]+$")

_ID = r"([\w-]+)"

# Most specific delimiters first
NODE_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(rf"^{_ID}\s*\(\((.+)\)\)$"), ShapeType.CIRCLE.value),
    (re.compile(rf"^{_ID}\s*\{{\{{(.+)\}}\}}$"), ShapeType.HEXAGON.value),
    (re.compile(rf"^{_ID}\s*\[\((.+)\)\]$"), ShapeType.CYLINDER.value),
    (re.compile(rf"^{_ID}\s*\(\[(.+)\]\)$"), ShapeType.ROUNDED_RECTANGLE.value),
    (re.compile(rf"^{_ID}\s*\[\[(.+)\]\]$"), ShapeType.RECTANGLE.value),
    (re.compile(rf"^{_ID}\s*>(.+)\]$"), ShapeType.ARROW.value),
    (re.compile(rf"^{_ID}\s*\[/(.+)/\]$"), ShapeType.PARALLELOGRAM.value),
    (re.compile(rf"^{_ID}\s*\[/(.+)\\\]$"), ShapeType.TRAPEZOID.value),
    (re.compile(rf"^{_ID}\s*\{{(.+)\}}$"), ShapeType.DIAMOND.value),
    (re.compile(rf"^{_ID}\s*\((.+)\)$"), ShapeType.ROUNDED_RECTANGLE.value),
    (re.compile(rf"^{_ID}\s*\[(.+)\]$"), ShapeType.RECTANGLE.value),
]
_BARE_ID_RE = re.compile(rf"^{_ID}$")

# A link between two node references. Either ``-- text -->`` or an
# operator with an optional ``|label|``.
_LINK_RE = re.compile(
    r"""\s*(?:
        (?P<open><?(?:--|==|-\.))\s+(?P<text>[^|]+?)\s+(?P<close>-{2,}>|-{3,}|-?\.+-+>|-?\.+-|={2,}>|={3,})
      | (?P<op><-->|<==>|<-\.+->|-{2,}>|-{3,}|-\.+->|-\.+-|={2,}>|={3,})(?:\s*\|(?P<pipe>[^|]*)\|)?
    )\s*""",
    re.VERBOSE,
)

_OPENERS = {"[": "]", "(": ")", "{": "}"}
_CLOSERS = {"]", ")", "}"}


@dataclass
class MermaidNode:
    id: str
    label: str
    shape: str
    # False when the node was only referenced by id
    explicit: bool = True
    subgraph: Optional[str] = None


@dataclass
class MermaidEdge:
    source: str
    target: str
    label: str = ""
    line: str = "solid"  # solid, dotted, thick
    has_arrow: bool = True
    bidirectional: bool = False


@dataclass
class Subgraph:
    id: str
    label: str
    nodes: list[str] = field(default_factory=list)


@dataclass
class MermaidDocument:
    """Statements recovered from Mermaid source, before layout."""
    direction: str = "TB"
    nodes: dict[str, MermaidNode] = field(default_factory=dict)
    edges: list[MermaidEdge] = field(default_factory=list)
    subgraphs: list[Subgraph] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def add_node(self, node: MermaidNode, subgraph: Optional[Subgraph]):
        existing = self.nodes.get(node.id)
        if existing is None:
            node.subgraph = subgraph.id if subgraph else None
            self.nodes[node.id] = node
            if subgraph:
                subgraph.nodes.append(node.id)
        elif node.explicit and not existing.explicit:
            # A later declaration gives a bare reference its label and shape
            existing.label, existing.shape, existing.explicit = node.label, node.shape, True


def _clean_label(text: str) -> str:
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] == '"':
        text = text[1:-1]
    return text.strip()


def parse_node_ref(text: str) -> Optional[MermaidNode]:
    """
    Parse a node reference such as ``A``, ``A[Label]`` or ``B{Question}``.

    Returns:
        The node, or None if the text is not a node reference
    """
    text = _CLASS_SUFFIX_RE.sub("", text.strip())
    for pattern, shape in NODE_PATTERNS:
        match = pattern.match(text)
        if match:
            return MermaidNode(id=match.group(1), label=_clean_label(match.group(2)), shape=shape)

    match = _BARE_ID_RE.match(text)
    if match:
        return MermaidNode(id=match.group(1), label=match.group(1), shape=ShapeType.RECTANGLE.value, explicit=False)
    return None


def _top_level(text: str) -> list[bool]:
    """Mark which characters sit outside any bracket or quoted string."""
    flags = []
    depth = 0
    quoted = False
    for char in text:
        if char == '"':
            quoted = not quoted
            flags.append(False)
            continue
        if quoted:
            flags.append(False)
            continue
        if char in _OPENERS:
            flags.append(depth == 0)
            depth += 1
            continue
        if char in _CLOSERS:
            depth = max(depth - 1, 0)
            flags.append(False)
            continue
        flags.append(depth == 0)
    return flags


def _link_style(operator: str) -> tuple[str, bool, bool]:
    """(line style, has arrow, bidirectional) for a link operator."""
    if "." in operator:
        line = "dotted"
    elif "=" in operator:
        line = "thick"
    else:
        line = "solid"
    return line, operator.endswith(">"), operator.startswith("<")


def parse_edge_statement(line: str) -> Optional[tuple[list[MermaidNode], list[MermaidEdge]]]:
    """
    Parse a chain of linked node references (``A --> B -->|x| C``).

    Operators inside node labels are ignored.

    Returns:
        (nodes in order, edges) or None if the line holds no valid link
    """
    top_level = _top_level(line)
    parts: list[str] = []
    links: list[tuple[str, bool, bool, str]] = []
    last = 0
    i = 0
    while i < len(line):
        if not top_level[i]:
            i += 1
            continue
        match = _LINK_RE.match(line, i)
        if not match or match.start() == match.end():
            i += 1
            continue

        if match.group("op"):
            line_style, has_arrow, bidirectional = _link_style(match.group("op"))
            label = match.group("pipe") or ""
        else:
            line_style, _, bidirectional = _link_style(match.group("open"))
            has_arrow = match.group("close").endswith(">")
            label = match.group("text")

        parts.append(line[last:match.start()])
        links.append((line_style, has_arrow, bidirectional, label.strip()))
        last = i = match.end()

    if not links:
        return None
    parts.append(line[last:])

    nodes = [parse_node_ref(part) for part in parts]
    if any(node is None for node in nodes):
        return None

    edges = [
        MermaidEdge(
            source=nodes[k].id,
            target=nodes[k + 1].id,
            label=label,
            line=line_style,
            has_arrow=has_arrow,
            bidirectional=bidirectional,
        )
        for k, (line_style, has_arrow, bidirectional, label) in enumerate(links)
    ]
    return nodes, edges


def scan_mermaid(source: str) -> MermaidDocument:
    """
    Read nodes, edges and subgraphs out of Mermaid flowchart source.

    Blank lines, ``%%`` comments and trailing semicolons are ignored, as are
    styling statements. Lines that are neither are reported as errors.
    """
    doc = MermaidDocument()
    lines = [
        (number, line.strip().rstrip(";").strip())
        for number, line in enumerate(source.splitlines(), start=1)
    ]
    lines = [(n, line) for n, line in lines if line and not line.startswith("%%")]

    if lines and _HEADER_RE.match(lines[0][1]):
        direction = (_HEADER_RE.match(lines[0][1]).group(1) or "TB").upper()
        doc.direction = "TB" if direction == "TD" else direction
        lines = lines[1:]
    else:
        doc.errors.append('Missing graph declaration. Expected "graph TD" or similar.')

    stack: list[Subgraph] = []
    for number, line in lines:
        current = stack[-1] if stack else None

        if line.lower().startswith("subgraph "):
            match = _SUBGRAPH_RE.match(line) or _SUBGRAPH_TITLE_RE.match(line)
            subgraph_id = _clean_label(match.group(1))
            title = match.group(2) if match.re is _SUBGRAPH_RE and match.group(2) else subgraph_id
            subgraph = Subgraph(id=subgraph_id, label=_clean_label(title))
            doc.subgraphs.append(subgraph)
            stack.append(subgraph)
            continue

        if line.lower() == "end":
            if stack:
                stack.pop()
            continue

        if _IGNORED_RE.match(line):
            continue

        statement = parse_edge_statement(line)
        if statement:
            nodes, edges = statement
            for node in nodes:
                doc.add_node(node, current)
            doc.edges.extend(edges)
            continue

        node = parse_node_ref(line)
        if node:
            doc.add_node(node, current)
            continue

        doc.errors.append(f'Could not parse line {number}: "{line}"')

    return doc


def node_size(shape: str, label: str) -> tuple[float, float]:
    """Node size for the textual layout, grown to fit the label."""
    length = len(label)
    if shape in ("diamond", "decision"):
        side = max(100, length * 9 + 50)
        return side, side
    if shape == "circle":
        side = max(70, length * 7 + 30)
        return side, side
    if shape == "rounded-rectangle":
        return max(100, length * 9 + 30), NODE_HEIGHT
    return max(100, min(200, length * 10 + 40)), NODE_HEIGHT


def _node_style(shape: str, background: str):
    if shape == "rounded-rectangle":
        radius = 12
    elif shape == "circle":
        radius = 50
    else:
        radius = 4
    return node_style(
        background_color=background,
        border_color=BORDER_COLOR,
        border_width=2,
        border_radius=radius,
        text_color=None,
        text_padding=20 if shape in ("diamond", "decision") else 8,
    )


def _subgraph_colors(doc: MermaidDocument) -> dict[str, str]:
    return {sg.id: SUBGRAPH_COLORS[i % len(SUBGRAPH_COLORS)] for i, sg in enumerate(doc.subgraphs)}


def _node_data(node: MermaidNode, doc: MermaidDocument, colors: dict[str, str]) -> NodeData:
    extra = {"mermaidId": node.id}
    if node.subgraph:
        titles = {sg.id: sg.label for sg in doc.subgraphs}
        extra["subgraph"] = titles.get(node.subgraph, node.subgraph)
    return NodeData(
        label=node.label,
        type=node.shape,
        style=_node_style(node.shape, colors.get(node.subgraph, NODE_COLOR)),
        group_id=node.subgraph,
        extra=extra,
    )


def _build_edge(edge: MermaidEdge, source_handle: str, target_handle: str) -> Edge:
    stroke_width = 3 if edge.line == "thick" else 2
    marker = EdgeMarker(type="arrowclosed", width=10, height=10, color=EDGE_COLOR)
    return Edge(
        id=generate_edge_id(),
        source=edge.source,
        target=edge.target,
        source_handle=source_handle,
        target_handle=target_handle,
        type="labeled",
        label=edge.label,
        style=EdgeStyle(
            stroke=EDGE_COLOR,
            stroke_width=stroke_width,
            stroke_dasharray="5,5" if edge.line == "dotted" else None,
            line_type="dashed" if edge.line == "dotted" else "solid",
        ),
        marker_end=marker if edge.has_arrow else None,
        marker_start=marker if edge.bidirectional else None,
    )


def parse_mermaid(source: str) -> ParseResult:
    """
    Convert Mermaid flowchart source into a graph without rendering it.

    Nodes keep their Mermaid ids. Positions come from a layered layout that
    follows the declared direction, with cycles broken at back-edges.

    Args:
        source: Mermaid flowchart source

    Returns:
        ParseResult with the graph and any unparsed-line errors
    """
    try:
        doc = scan_mermaid(source)
        node_ids = list(doc.nodes)
        positions, back_edges = layered_layout(
            node_ids,
            [(e.source, e.target) for e in doc.edges],
            direction=doc.direction,
            node_width=NODE_WIDTH,
            node_height=NODE_HEIGHT,
        )
        colors = _subgraph_colors(doc)

        nodes = []
        for node in doc.nodes.values():
            width, height = node_size(node.shape, node.label)
            nodes.append(Node(
                id=node.id,
                position=positions.get(node.id, Position(x=100, y=100)),
                width=width,
                height=height,
                data=_node_data(node, doc, colors),
            ))

        edges = []
        for edge in doc.edges:
            source_handle, target_handle = flow_handles(
                positions.get(edge.source, Position()),
                positions.get(edge.target, Position()),
                doc.direction,
                is_back_edge=(edge.source, edge.target) in back_edges,
            )
            edges.append(_build_edge(edge, source_handle, target_handle))

        logger.debug("Mermaid text import: %d nodes, %d edges", len(nodes), len(edges))
        return ParseResult(nodes=nodes, edges=edges, errors=doc.errors)

    except Exception as e:
        logger.exception("Unexpected error while parsing Mermaid source")
        return ParseResult(errors=[f"Failed to parse Mermaid diagram: {e}"])


_RENDERED_ID_PATTERNS = [
    re.compile(r"^flowchart-(.+)-\d+$"),
    re.compile(r"node-([\w-]+)"),
    re.compile(r"^(.+)-\d+$"),
]


def match_rendered_node(rendered: RenderedNode, doc: MermaidDocument) -> Optional[str]:
    """
    Recover the Mermaid node id of a rendered node group.

    Tries the renderer's generated element id first, then a ``node-<id>``
    class, then the label text.
    """
    for pattern in _RENDERED_ID_PATTERNS:
        match = pattern.search(rendered.element_id)
        if match and match.group(1) in doc.nodes:
            return match.group(1)

    match = re.search(r"\bnode-([\w-]+)\b", rendered.class_name)
    if match and match.group(1) in doc.nodes:
        return match.group(1)

    wanted = rendered.label.strip().lower()
    if wanted:
        for node in doc.nodes.values():
            if node.label.lower() == wanted:
                return node.id
    return None


async def parse_mermaid_with_renderer(source: str, renderer: MermaidRenderer) -> ParseResult:
    """
    Convert Mermaid source into a graph using rendered node geometry.

    Raises:
        RenderError: If the renderer rejects the source or fails
    """
    rendered_nodes = await renderer.render(source)
    doc = scan_mermaid(source)
    colors = _subgraph_colors(doc)

    nodes: dict[str, Node] = {}
    for rendered in rendered_nodes:
        node_id = match_rendered_node(rendered, doc)
        if not node_id:
            logger.debug("Could not match rendered node %r (%s)", rendered.element_id, rendered.label)
            continue
        if node_id in nodes:
            continue
        x, y = rendered.position
        nodes[node_id] = Node(
            id=node_id,
            position=Position(x=x, y=y),
            width=max(rendered.bbox.width, MIN_RENDERED_WIDTH),
            height=max(rendered.bbox.height, MIN_RENDERED_HEIGHT),
            data=_node_data(doc.nodes[node_id], doc, colors),
        )

    edges = []
    for edge in doc.edges:
        source_node, target_node = nodes.get(edge.source), nodes.get(edge.target)
        if not source_node or not target_node:
            logger.debug("Skipping edge %s -> %s without rendered endpoints", edge.source, edge.target)
            continue
        source_handle, target_handle = optimal_handles(source_node.center(), target_node.center())
        edges.append(_build_edge(edge, source_handle, target_handle))

    logger.debug("Mermaid rendered import: %d nodes, %d edges", len(nodes), len(edges))
    return ParseResult(nodes=list(nodes.values()), edges=edges)


async def import_mermaid(source: str, renderer: Optional[MermaidRenderer] = None) -> ParseResult:
    """
    Import Mermaid source, preferring rendered geometry.

    With a renderer, its layout is used unless rendering fails or finds no
    nodes, in which case the textual strategy takes over. Without one, the
    textual strategy runs directly.

    Args:
        source: Mermaid flowchart source
        renderer: Optional render backend

    Returns:
        ParseResult; a single "No diagram elements found" error when neither
        strategy finds a node
    """
    if renderer is not None:
        try:
            result = await parse_mermaid_with_renderer(source, renderer)
            if result.nodes:
                return result
            logger.warning("Mermaid render produced no nodes, using textual parser")
        except RenderError as e:
            logger.warning("Mermaid render failed, using textual parser: %s", e)
        except Exception:
            logger.exception("Unexpected error while rendering Mermaid, using textual parser")

    result = parse_mermaid(source)
    if not result.nodes:
        return ParseResult(errors=["No diagram elements found"])
    return result
