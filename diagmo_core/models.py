"""
Canonical graph model shared by every parser and analysis engine.

These models define the format-agnostic schema all importers converge to:
- Nodes with a position, optional declared/measured size and a data payload
- Edges connecting nodes (using source/target naming convention)
- Explicit style records instead of loosely-typed key/value maps

Field Naming Convention:
- Python attributes are snake_case
- JSON serialization (``by_alias=True``) outputs the camelCase names used by
  the editor canvas (``backgroundColor``, ``sourceHandle``, ...)
- Both spellings are accepted on input
"""

import math
import secrets
import string
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_ID_ALPHABET = string.ascii_letters + string.digits + "_-"


class CanvasModel(BaseModel):
    """Base model emitting camelCase keys for the editor layer."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        """Convert to a JSON-serializable dict with editor field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Provider(str, Enum):
    """Cloud provider family a shape tag belongs to."""
    AWS = "aws"
    AZURE = "azure"
    GCP = "gcp"
    GENERIC = "generic"
    OTHER = "other"


# Shape tag prefix -> provider family
PROVIDER_PREFIXES: dict[str, Provider] = {
    "aws-": Provider.AWS,
    "azure-": Provider.AZURE,
    "gcp-": Provider.GCP,
    "generic-": Provider.GENERIC,
}

# Free text and sticky notes are annotations, never part of the flow
ANNOTATION_SHAPES = frozenset({"text", "sticky-note"})
JUNCTION_SHAPES = frozenset({"junction"})
DECISION_SHAPES = frozenset({"decision", "diamond"})
# Shapes allowed to end a flow without outgoing connections
TERMINAL_SHAPES = frozenset({
    "terminator", "end", "text", "sticky-note", "note", "comment",
    "database", "storage", "data-store", "cylinder",
})


def provider_for_shape(shape: str) -> Provider:
    """Look up the provider family of a shape tag."""
    for prefix, provider in PROVIDER_PREFIXES.items():
        if shape.startswith(prefix):
            return provider
    return Provider.OTHER


class ShapeType(str, Enum):
    """Shape tags produced by the importers (not exhaustive; tags are strings)."""
    RECTANGLE = "rectangle"
    ROUNDED_RECTANGLE = "rounded-rectangle"
    ELLIPSE = "ellipse"
    CIRCLE = "circle"
    DIAMOND = "diamond"
    HEXAGON = "hexagon"
    PARALLELOGRAM = "parallelogram"
    TRAPEZOID = "trapezoid"
    TRIANGLE = "triangle"
    CYLINDER = "cylinder"
    DOCUMENT = "document"
    CLOUD = "cloud"
    PROCESS = "process"
    CALLOUT = "callout"
    NOTE = "note"
    ARROW = "arrow"
    UML_ACTOR = "uml-actor"


def generate_id(size: int = 21) -> str:
    """Generate a URL-safe random id."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(size))


def generate_node_id() -> str:
    """Generate a unique node ID."""
    return f"n{generate_id(10)}"


def generate_edge_id() -> str:
    """Generate a unique edge ID."""
    return f"e{generate_id(10)}"


class Position(CanvasModel):
    """Top-left corner of a node on the canvas."""
    x: float = 0.0
    y: float = 0.0

    @field_validator("x", "y")
    @classmethod
    def check_finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("Position coordinates must be finite")
        return v


class NodeStyle(CanvasModel):
    """Visual style of a node. Unset fields fall back to the canvas theme."""
    background_color: Optional[str] = None
    border_color: Optional[str] = None
    border_width: Optional[float] = None
    border_radius: Optional[float] = None
    border_style: Optional[str] = None  # solid, dashed, dotted, none
    text_color: Optional[str] = None
    font_size: Optional[float] = None
    font_family: Optional[str] = None
    font_weight: Optional[str] = None
    font_style: Optional[str] = None
    text_align: Optional[str] = None  # left, center, right
    text_padding: Optional[float] = None
    opacity: Optional[float] = None


DEFAULT_NODE_STYLE = NodeStyle(
    background_color="#ffffff",
    border_color="#374151",
    border_width=2,
    border_radius=8,
    text_color="#1f2937",
    font_size=14,
    font_weight="normal",
)


def node_style(**overrides: Any) -> NodeStyle:
    """Build a style from the default node style plus overrides."""
    return DEFAULT_NODE_STYLE.model_copy(update=overrides)


class NodeData(CanvasModel):
    """The payload carried by every node."""
    label: str = ""
    type: str = ShapeType.RECTANGLE.value  # Shape tag
    style: Optional[NodeStyle] = None
    group_id: Optional[str] = None
    locked: Optional[bool] = None
    # Format-specific extension fields
    extra: dict[str, Any] = Field(default_factory=dict)


class Node(CanvasModel):
    """A node in the canonical graph."""
    id: str = Field(default_factory=generate_node_id)
    type: str = "custom"
    position: Position = Field(default_factory=Position)
    # Declared size
    width: Optional[float] = None
    height: Optional[float] = None
    # Size reported by the canvas after rendering
    measured_width: Optional[float] = None
    measured_height: Optional[float] = None
    hidden: bool = False
    data: NodeData = Field(default_factory=NodeData)

    @field_validator("width", "height", "measured_width", "measured_height")
    @classmethod
    def check_size(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not math.isfinite(v):
            raise ValueError("Node size must be finite")
        return v

    @property
    def label(self) -> str:
        return self.data.label

    @property
    def shape(self) -> str:
        return self.data.type

    def effective_size(
        self,
        default_width: float = 100,
        default_height: float = 50
    ) -> tuple[float, float]:
        """Measured size if known, else declared size, else the defaults."""
        width = self.measured_width or self.width or default_width
        height = self.measured_height or self.height or default_height
        return (width, height)

    def center(self, default_width: float = 100, default_height: float = 50) -> tuple[float, float]:
        """Get the center point of the node."""
        width, height = self.effective_size(default_width, default_height)
        return (self.position.x + width / 2, self.position.y + height / 2)

    def bounds(self, default_width: float = 100, default_height: float = 50) -> tuple[float, float, float, float]:
        """Get the bounding box (x, y, right, bottom)."""
        width, height = self.effective_size(default_width, default_height)
        return (self.position.x, self.position.y, self.position.x + width, self.position.y + height)


class EdgeStyle(CanvasModel):
    """Stroke style of an edge."""
    stroke: Optional[str] = None
    stroke_width: Optional[float] = None
    stroke_dasharray: Optional[str] = None
    line_type: Optional[str] = None  # solid, dashed, dotted
    animated: Optional[bool] = None


class EdgeMarker(CanvasModel):
    """Arrow marker drawn at an edge end."""
    type: str = "arrowclosed"
    width: float = 8
    height: float = 8
    color: Optional[str] = None


class Edge(CanvasModel):
    """
    An edge connecting two nodes.

    ``source_handle``/``target_handle`` name the side of each node the edge
    attaches to ("top", "right", "bottom", "left"), or None for auto.
    """
    id: str = Field(default_factory=generate_edge_id)
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    type: str = "labeled"
    label: str = ""
    style: Optional[EdgeStyle] = None
    marker_start: Optional[EdgeMarker] = None
    marker_end: Optional[EdgeMarker] = None
    animated: bool = False


class Graph(CanvasModel):
    """
    An ordered collection of nodes and edges.

    Insertion order matters for rendering only. The analysis engines treat
    a graph as read-only.
    """
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)

    def node_ids(self) -> set[str]:
        return {n.id for n in self.nodes}

    def drop_dangling_edges(self) -> "Graph":
        """Return a copy without edges whose endpoints are unknown."""
        ids = self.node_ids()
        return Graph(
            nodes=list(self.nodes),
            edges=[e for e in self.edges if e.source in ids and e.target in ids],
        )

    @classmethod
    def from_json_dict(cls, data: dict) -> "Graph":
        """Create a Graph from a JSON dict (camelCase or snake_case keys)."""
        return cls.model_validate({
            "nodes": data.get("nodes") or [],
            "edges": data.get("edges") or [],
        })


class ParseResult(Graph):
    """Output of every importer: a best-effort graph plus human-readable errors."""
    errors: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.nodes)

    def graph(self) -> Graph:
        return Graph(nodes=list(self.nodes), edges=list(self.edges))


class DiagramVersion(CanvasModel):
    """A stored, named snapshot of a diagram."""
    id: str = Field(default_factory=lambda: f"v{generate_id(10)}")
    diagram_id: str = ""
    version: int = 1
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
