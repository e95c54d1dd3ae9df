"""
Draw.io / diagrams.net importer.

Accepts any of the shapes a Draw.io document comes in:
- a bare ``<mxGraphModel>``
- an ``<mxfile>`` whose ``<diagram>`` pages hold the model inline
- a ``<diagram>`` page holding base64 (optionally raw-deflated and
  URL-encoded) model text, the compressed format Draw.io saves by default
- a ``.drawio.svg`` whose root ``content`` attribute embeds the mxfile

Vertices become nodes and edges become edges. Draw.io ids are never reused:
every cell gets a fresh id and edges are remapped through that table, so
edges whose endpoints were not imported are dropped.
"""

import base64
import binascii
import html
import math
import re
import urllib.parse
import xml.etree.ElementTree as ET
import zlib
from dataclasses import dataclass, field
from typing import Optional

from ..exceptions import ParseError
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
    generate_node_id,
    node_style,
)

logger = get_logger(__name__)

_DIAGRAM_RE = re.compile(r"<diagram\b[^>]*>(.*?)</diagram>", re.DOTALL | re.IGNORECASE)
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")

# Draw.io shape keywords -> canonical shape tags, first match wins
SHAPE_KEYWORDS: list[tuple[tuple[str, ...], str]] = [
    (("ellipse", "circle"), ShapeType.ELLIPSE.value),
    (("rhombus", "diamond", "decision"), ShapeType.DIAMOND.value),
    (("hexagon",), ShapeType.HEXAGON.value),
    (("parallelogram",), ShapeType.PARALLELOGRAM.value),
    (("trapezoid",), ShapeType.TRAPEZOID.value),
    (("triangle",), ShapeType.TRIANGLE.value),
    (("cylinder",), ShapeType.CYLINDER.value),
    (("actor", "person"), ShapeType.UML_ACTOR.value),
    (("document",), ShapeType.DOCUMENT.value),
    (("cloud",), ShapeType.CLOUD.value),
    (("process", "step"), ShapeType.PROCESS.value),
    (("callout",), ShapeType.CALLOUT.value),
    (("note", "sticky"), ShapeType.NOTE.value),
    (("database", "datastore"), ShapeType.CYLINDER.value),
    (("card",), ShapeType.RECTANGLE.value),
    (("arrow",), ShapeType.ARROW.value),
]

DEFAULT_FILL = "#ffffff"
DEFAULT_STROKE = "#000000"
DEFAULT_FONT_COLOR = "#000000"
DEFAULT_EDGE_STROKE = "#64748b"


@dataclass
class DrawioStyle:
    """A parsed ``key=value;flag;...`` style string."""
    values: dict[str, str] = field(default_factory=dict)
    # First bare token, Draw.io's style-name convention ("ellipse", "text", ...)
    base: str = ""

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.values.get(key, default)

    def flag(self, key: str) -> bool:
        return self.values.get(key) == "1"


@dataclass
class DrawioCell:
    """One ``mxCell`` with its wrapper attributes resolved."""
    id: str
    value: str
    style: DrawioStyle
    vertex: bool = False
    edge: bool = False
    source: Optional[str] = None
    target: Optional[str] = None
    parent: Optional[str] = None
    visible: bool = True
    geometry: Optional[tuple[float, float, float, float]] = None


def parse_style(style: str) -> DrawioStyle:
    """
    Parse a Draw.io style string.

    Bare tokens are recorded as ``"1"`` flags; the first bare token is also
    kept as the style's base name.
    """
    parsed = DrawioStyle()
    if not style:
        return parsed

    for token in style.split(";"):
        token = token.strip()
        if not token:
            continue
        if "=" in token:
            key, value = token.split("=", 1)
            parsed.values[key.strip()] = value.strip()
        else:
            parsed.values[token] = "1"
            if not parsed.base:
                parsed.base = token
    return parsed


def map_shape(style: DrawioStyle) -> str:
    """Map a Draw.io style to a canonical shape tag."""
    shape = (style.get("shape") or "").lower()
    base = style.base.lower()

    if base == "text" and not shape:
        return "text"

    for candidate in (shape, base):
        if not candidate:
            continue
        for keywords, tag in SHAPE_KEYWORDS:
            if any(word in candidate for word in keywords):
                return tag

    if style.flag("rounded"):
        return ShapeType.ROUNDED_RECTANGLE.value
    return ShapeType.RECTANGLE.value


def parse_color(color: Optional[str], default: str) -> str:
    """Normalize a Draw.io color value."""
    if not color or color == "default":
        return default
    if color == "none":
        return "transparent"
    if color.startswith("#"):
        return color
    return f"#{color}"


def strip_html(value: str) -> str:
    """Reduce an HTML cell value to plain label text."""
    if not value:
        return ""
    text = _BR_RE.sub(" ", value)
    text = _TAG_RE.sub("", text)
    text = html.unescape(text).replace("\u00a0", " ")
    return " ".join(text.split())


def _to_float(value: Optional[str], default: float) -> float:
    if value is None or value == "":
        return default
    try:
        result = float(value)
    except ValueError:
        return default
    return result if math.isfinite(result) else default



def decode_diagram_payload(payload: str) -> str:
    """
    Decode the text content of a compressed ``<diagram>`` page.

    Draw.io stores pages as base64 of raw-deflated, URL-encoded XML. Payloads
    that base64-decode but do not inflate are passed through as-is.

    Raises:
        ParseError: if the payload is not base64
    """
    payload = payload.strip()
    if payload.startswith("<"):
        return payload

    normalized = payload.replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    try:
        raw = base64.b64decode(normalized, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ParseError("Failed to decompress diagram data") from e

    try:
        inflated = zlib.decompress(raw, -zlib.MAX_WBITS)
    except zlib.error:
        logger.debug("Diagram payload is not deflated, using base64 text as-is")
        return raw.decode("utf-8", errors="replace")

    return urllib.parse.unquote(inflated.decode("utf-8", errors="replace"))


def _parse_xml(text: str) -> ET.Element:
    try:
        return ET.fromstring(text)
    except ET.ParseError as e:
        raise ParseError("Failed to parse Draw.io XML: Invalid format") from e


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _model_from_page(page: ET.Element) -> Optional[ET.Element]:
    inline = page.find("mxGraphModel")
    if inline is not None:
        return inline
    payload = page.text or ""
    if not payload.strip():
        return None
    return _find_model(_parse_xml(decode_diagram_payload(payload)))


def _find_model(root: ET.Element) -> Optional[ET.Element]:
    if _local_name(root.tag) == "mxGraphModel":
        return root
    return root.find(".//mxGraphModel")


def locate_graph_model(source: str, page: int = 0) -> Optional[ET.Element]:
    """
    Find the ``mxGraphModel`` element in a Draw.io document.

    Args:
        source: Document text
        page: Index of the ``<diagram>`` page to read in multi-page files

    Returns:
        The model element, or None when the document has none

    Raises:
        ParseError: if the document (or its decoded page) is not valid XML
    """
    try:
        root = ET.fromstring(source)
    except ET.ParseError:
        # Not well-formed as a whole; salvage the first page payload if any
        match = _DIAGRAM_RE.search(source)
        if not match:
            raise ParseError("Failed to parse Draw.io XML: Invalid format")
        return _find_model(_parse_xml(decode_diagram_payload(html.unescape(match.group(1)))))

    if _local_name(root.tag) == "svg" and root.get("content"):
        root = _parse_xml(root.get("content"))

    pages = [el for el in root.iter() if _local_name(el.tag) == "diagram"]
    if pages:
        if page >= len(pages):
            raise ParseError(f"Page {page} not found (document has {len(pages)} pages)")
        return _model_from_page(pages[page])

    return _find_model(root)


def _read_cell(cell_el: ET.Element, wrapper: Optional[ET.Element] = None) -> DrawioCell:
    # UserObject/object wrappers own the id and label of the cell they hold
    owner = wrapper if wrapper is not None else cell_el
    value = owner.get("label", "") if wrapper is not None else cell_el.get("value", "")

    geometry = None
    geo_el = cell_el.find("mxGeometry")
    if geo_el is not None:
        geometry = (
            _to_float(geo_el.get("x"), 0.0),
            _to_float(geo_el.get("y"), 0.0),
            _to_float(geo_el.get("width"), 100.0),
            _to_float(geo_el.get("height"), 50.0),
        )

    return DrawioCell(
        id=owner.get("id", ""),
        value=value or "",
        style=parse_style(cell_el.get("style", "")),
        vertex=cell_el.get("vertex") == "1",
        edge=cell_el.get("edge") == "1",
        source=cell_el.get("source") or None,
        target=cell_el.get("target") or None,
        parent=cell_el.get("parent") or None,
        visible=cell_el.get("visible") != "0",
        geometry=geometry,
    )


def read_cells(model: ET.Element) -> list[DrawioCell]:
    """Read every cell of a graph model in document order."""
    cells: list[DrawioCell] = []
    root_el = model.find("root")
    container = root_el if root_el is not None else model

    for el in container.iter():
        tag = _local_name(el.tag)
        if tag in ("UserObject", "object"):
            inner = el.find("mxCell")
            if inner is not None:
                cells.append(_read_cell(inner, wrapper=el))
        elif tag == "mxCell" and el.get("id") is not None:
            cells.append(_read_cell(el))
    return cells


def _build_node(cell: DrawioCell, new_id: str, origin: tuple[float, float], group_id: Optional[str]) -> Node:
    x, y, width, height = cell.geometry
    style = cell.style
    font_style = int(_to_float(style.get("fontStyle"), 0))

    extra: dict = {"drawioId": cell.id}
    if style.base and style.base not in ("text", "rounded"):
        extra["drawioShape"] = style.get("shape") or style.base

    return Node(
        id=new_id,
        position=Position(x=origin[0] + x, y=origin[1] + y),
        width=width,
        height=height,
        hidden=not cell.visible,
        data=NodeData(
            label=strip_html(cell.value),
            type=map_shape(style),
            style=node_style(
                background_color=parse_color(style.get("fillColor"), DEFAULT_FILL),
                border_color=parse_color(style.get("strokeColor"), DEFAULT_STROKE),
                border_width=_to_float(style.get("strokeWidth"), 1.0),
                text_color=parse_color(style.get("fontColor"), DEFAULT_FONT_COLOR),
                font_size=_to_float(style.get("fontSize"), 12.0),
                font_weight="bold" if font_style & 1 else "normal",
                font_style="italic" if font_style & 2 else None,
                text_align=style.get("align") or "center",
                border_style="dashed" if style.flag("dashed") else None,
            ),
            group_id=group_id,
            locked=True if style.flag("locked") else None,
            extra=extra,
        ),
    )


def _build_edge(cell: DrawioCell, source_id: str, target_id: str, label: str) -> Edge:
    style = cell.style
    stroke = parse_color(style.get("strokeColor"), DEFAULT_EDGE_STROKE)
    dashed = style.flag("dashed")

    marker_end = None
    if style.get("endArrow") != "none":
        marker_end = EdgeMarker(type="arrowclosed", width=8, height=8, color=stroke)
    marker_start = None
    if style.get("startArrow") not in (None, "none"):
        marker_start = EdgeMarker(type="arrowclosed", width=8, height=8, color=stroke)

    return Edge(
        id=generate_edge_id(),
        source=source_id,
        target=target_id,
        type="labeled",
        label=label,
        style=EdgeStyle(
            stroke=stroke,
            stroke_width=_to_float(style.get("strokeWidth"), 1.5),
            stroke_dasharray="5,5" if dashed else None,
            line_type="dashed" if dashed else "solid",
        ),
        marker_start=marker_start,
        marker_end=marker_end,
    )


def cells_to_graph(cells: list[DrawioCell]) -> ParseResult:
    """Convert Draw.io cells to canonical nodes and edges."""
    by_id = {c.id: c for c in cells}
    edge_cells = [c for c in cells if c.edge and c.source and c.target]
    edge_ids = {c.id for c in edge_cells}

    # Labels attached to an edge are stored as child vertices of that edge
    edge_labels: dict[str, list[str]] = {}
    vertex_cells: list[DrawioCell] = []
    for cell in cells:
        if not cell.vertex or cell.geometry is None:
            continue
        if cell.parent in edge_ids:
            text = strip_html(cell.value)
            if text:
                edge_labels.setdefault(cell.parent, []).append(text)
            continue
        vertex_cells.append(cell)

    vertex_ids = {c.id for c in vertex_cells}
    id_map: dict[str, str] = {c.id: generate_node_id() for c in vertex_cells}

    def origin_of(cell: DrawioCell) -> tuple[float, float]:
        # Child geometry is relative to its container vertex
        x, y = 0.0, 0.0
        seen: set[str] = set()
        parent_id = cell.parent
        while parent_id in vertex_ids and parent_id not in seen:
            seen.add(parent_id)
            parent = by_id[parent_id]
            x += parent.geometry[0]
            y += parent.geometry[1]
            parent_id = parent.parent
        return (x, y)

    nodes = [
        _build_node(
            cell,
            id_map[cell.id],
            origin_of(cell),
            id_map.get(cell.parent) if cell.parent in vertex_ids else None,
        )
        for cell in vertex_cells
    ]

    edges: list[Edge] = []
    for cell in edge_cells:
        source_id = id_map.get(cell.source)
        target_id = id_map.get(cell.target)
        if not source_id or not target_id:
            logger.debug("Skipping Draw.io edge %s with unknown endpoint", cell.id)
            continue
        label = strip_html(cell.value) or " ".join(edge_labels.get(cell.id, []))
        edges.append(_build_edge(cell, source_id, target_id, label))

    return ParseResult(nodes=nodes, edges=edges)


def parse_drawio(source: str, page: int = 0) -> ParseResult:
    """
    Parse a Draw.io document into a canonical graph.

    Never raises for malformed input: problems are reported in
    ``ParseResult.errors`` and an empty node list signals total failure.

    Args:
        source: Draw.io XML text
        page: Page index for multi-page documents

    Returns:
        ParseResult with nodes, edges and errors
    """
    errors: list[str] = []

    try:
        model = locate_graph_model(source, page)
        if model is None:
            return ParseResult(errors=["No mxGraphModel found in the Draw.io file"])

        cells = read_cells(model)
        result = cells_to_graph(cells)
        logger.debug(
            "Draw.io import: %d cells -> %d nodes, %d edges",
            len(cells), len(result.nodes), len(result.edges),
        )
        if not result.nodes:
            errors.append("No shapes found in the Draw.io file")
        result.errors = errors
        return result

    except ParseError as e:
        errors.append(str(e))
    except Exception as e:
        logger.exception("Unexpected error while parsing Draw.io input")
        errors.append(f"Failed to parse Draw.io file: {e}")

    return ParseResult(errors=errors)
