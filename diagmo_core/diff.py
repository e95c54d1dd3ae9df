"""
Graph diff - compare two graphs or two stored versions.

Entities are matched by id. Every id is classified as added, removed,
modified or unchanged; modified entities carry the list of fields that
changed.

Two entry points:
- ``compare_graphs``: field-level changes with old/new values, for live
  graphs, plus ``generate_diff_summary`` for a text rendering
- ``compare_versions``: human-readable change names for stored version
  snapshots, sorted for display
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence, Union

from .config import get_settings
from .models import DiagramVersion, Edge, Graph, Node, NodeStyle


class DiffStatus(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"


STATUS_ORDER = {DiffStatus.ADDED: 0, DiffStatus.MODIFIED: 1, DiffStatus.REMOVED: 2, DiffStatus.UNCHANGED: 3}

STATUS_COLORS = {
    DiffStatus.ADDED: "#22c55e",
    DiffStatus.REMOVED: "#ef4444",
    DiffStatus.MODIFIED: "#eab308",
    DiffStatus.UNCHANGED: "#6b7280",
}

STATUS_BACKGROUND_COLORS = {
    DiffStatus.ADDED: "rgba(34, 197, 94, 0.15)",
    DiffStatus.REMOVED: "rgba(239, 68, 68, 0.15)",
    DiffStatus.MODIFIED: "rgba(234, 179, 8, 0.15)",
    DiffStatus.UNCHANGED: "transparent",
}


def status_color(status: DiffStatus) -> str:
    """Highlight colour for a diff status."""
    return STATUS_COLORS[DiffStatus(status)]


def status_background_color(status: DiffStatus) -> str:
    """Translucent background colour for a diff status."""
    return STATUS_BACKGROUND_COLORS[DiffStatus(status)]


@dataclass
class FieldChange:
    field: str
    old_value: Any
    new_value: Any

    def to_dict(self) -> dict:
        return {"field": self.field, "old_value": self.old_value, "new_value": self.new_value}


@dataclass
class EntityDiff:
    """Diff entry for one node or edge."""
    id: str
    status: DiffStatus
    item: Union[Node, Edge]
    previous: Optional[Union[Node, Edge]] = None
    changes: list[FieldChange] = field(default_factory=list)

    def to_dict(self) -> dict:
        result = {"id": self.id, "status": self.status.value}
        if self.changes:
            result["changes"] = [c.to_dict() for c in self.changes]
        return result


@dataclass
class DiffPartition:
    added: list[EntityDiff] = field(default_factory=list)
    removed: list[EntityDiff] = field(default_factory=list)
    modified: list[EntityDiff] = field(default_factory=list)
    unchanged: list[EntityDiff] = field(default_factory=list)

    def add(self, entry: EntityDiff):
        getattr(self, entry.status.value).append(entry)

    def ids(self, status: DiffStatus) -> set[str]:
        return {entry.id for entry in getattr(self, DiffStatus(status).value)}

    def to_dict(self) -> dict:
        return {status.value: [e.to_dict() for e in getattr(self, status.value)] for status in DiffStatus}


@dataclass
class DiffResult:
    nodes: DiffPartition
    edges: DiffPartition

    @property
    def summary(self) -> dict:
        counts = {
            "nodes_added": len(self.nodes.added),
            "nodes_removed": len(self.nodes.removed),
            "nodes_modified": len(self.nodes.modified),
            "edges_added": len(self.edges.added),
            "edges_removed": len(self.edges.removed),
            "edges_modified": len(self.edges.modified),
        }
        return {"total_changes": sum(counts.values()), **counts}

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "nodes": self.nodes.to_dict(),
            "edges": self.edges.to_dict(),
            "summary": self.summary,
        }


def _style_dict(style: Optional[NodeStyle]) -> dict:
    return style.to_json_dict() if style else {}


def _index(items: Optional[Sequence]) -> dict:
    return {item.id: item for item in items or []}


def node_changes(base: Node, compare: Node, position_tolerance: float = 0.5) -> list[FieldChange]:
    """
    Field-level changes between two versions of a node.

    Position drift within ``position_tolerance`` on both axes is ignored.
    Style is compared key by key over the keys set on either side.
    """
    changes: list[FieldChange] = []

    if (abs(base.position.x - compare.position.x) > position_tolerance
            or abs(base.position.y - compare.position.y) > position_tolerance):
        changes.append(FieldChange(
            "position", base.position.to_json_dict(), compare.position.to_json_dict()
        ))

    if base.data.label != compare.data.label:
        changes.append(FieldChange("label", base.data.label, compare.data.label))

    if base.data.type != compare.data.type:
        changes.append(FieldChange("type", base.data.type, compare.data.type))

    if base.width != compare.width or base.height != compare.height:
        changes.append(FieldChange(
            "dimensions",
            {"width": base.width, "height": base.height},
            {"width": compare.width, "height": compare.height},
        ))

    base_style = _style_dict(base.data.style)
    compare_style = _style_dict(compare.data.style)
    for key in sorted(set(base_style) | set(compare_style)):
        old, new = base_style.get(key), compare_style.get(key)
        if json.dumps(old) != json.dumps(new):
            changes.append(FieldChange(f"style.{key}", old, new))

    return changes


def edge_changes(base: Edge, compare: Edge) -> list[FieldChange]:
    """Field-level changes between two versions of an edge; style is compared whole."""
    changes: list[FieldChange] = []

    for name in ("source", "target", "label", "type"):
        old, new = getattr(base, name), getattr(compare, name)
        if old != new:
            changes.append(FieldChange(name, old, new))

    old_style = base.style.to_json_dict() if base.style else None
    new_style = compare.style.to_json_dict() if compare.style else None
    if old_style != new_style:
        changes.append(FieldChange("style", old_style, new_style))

    return changes


def _partition(base_items, compare_items, changes_of) -> DiffPartition:
    base_map = _index(base_items)
    compare_map = _index(compare_items)
    partition = DiffPartition()

    for item_id, item in compare_map.items():
        previous = base_map.get(item_id)
        if previous is None:
            partition.add(EntityDiff(item_id, DiffStatus.ADDED, item))
            continue
        changes = changes_of(previous, item)
        if changes:
            partition.add(EntityDiff(item_id, DiffStatus.MODIFIED, item, previous, changes))
        else:
            partition.add(EntityDiff(item_id, DiffStatus.UNCHANGED, item))

    for item_id, item in base_map.items():
        if item_id not in compare_map:
            partition.add(EntityDiff(item_id, DiffStatus.REMOVED, item))

    return partition


def compare_graphs(
    base: Optional[Graph],
    compare: Optional[Graph],
    position_tolerance: Optional[float] = None,
) -> DiffResult:
    """
    Compare two graphs entity by entity.

    Args:
        base: The older graph (None is treated as empty)
        compare: The newer graph (None is treated as empty)
        position_tolerance: Ignored position drift, defaults to the
            configured ``diff_position_tolerance``

    Returns:
        DiffResult partitioning node and edge ids
    """
    if position_tolerance is None:
        position_tolerance = get_settings().diff_position_tolerance

    base = base or Graph()
    compare = compare or Graph()

    return DiffResult(
        nodes=_partition(
            base.nodes, compare.nodes,
            lambda old, new: node_changes(old, new, position_tolerance),
        ),
        edges=_partition(base.edges, compare.edges, edge_changes),
    )


def _format_value(value: Any) -> str:
    if value is None:
        return "none"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def _node_title(entry: EntityDiff) -> str:
    return entry.item.data.label or entry.item.data.type


def generate_diff_summary(diff: DiffResult) -> str:
    """
    Render a diff as indented text.

    Example:
        Total changes: 2

        Nodes added: 1
          + Cache
        Nodes modified: 1
          ~ API
              label: Api → API
    """
    summary = diff.summary
    if summary["total_changes"] == 0:
        return "No changes detected"

    lines = [f"Total changes: {summary['total_changes']}", ""]

    if diff.nodes.added:
        lines.append(f"Nodes added: {len(diff.nodes.added)}")
        lines.extend(f"  + {_node_title(entry)}" for entry in diff.nodes.added)

    if diff.nodes.removed:
        lines.append(f"Nodes removed: {len(diff.nodes.removed)}")
        lines.extend(f"  - {_node_title(entry)}" for entry in diff.nodes.removed)

    if diff.nodes.modified:
        lines.append(f"Nodes modified: {len(diff.nodes.modified)}")
        for entry in diff.nodes.modified:
            lines.append(f"  ~ {_node_title(entry)}")
            for change in entry.changes:
                lines.append(
                    f"      {change.field}: {_format_value(change.old_value)} → {_format_value(change.new_value)}"
                )

    if diff.edges.added:
        lines.append(f"Connections added: {len(diff.edges.added)}")
    if diff.edges.removed:
        lines.append(f"Connections removed: {len(diff.edges.removed)}")
    if diff.edges.modified:
        lines.append(f"Connections modified: {len(diff.edges.modified)}")

    return "\n".join(lines)


# === Version snapshots ===

@dataclass
class VersionEntityDiff:
    id: str
    label: str
    status: DiffStatus
    changes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        result = {"id": self.id, "label": self.label, "status": self.status.value}
        if self.changes:
            result["changes"] = self.changes
        return result


@dataclass
class VersionDiffResult:
    node_diffs: list[VersionEntityDiff]
    edge_diffs: list[VersionEntityDiff]

    def _count(self, diffs: list[VersionEntityDiff], status: DiffStatus) -> int:
        return sum(1 for d in diffs if d.status == status)

    @property
    def summary(self) -> dict:
        result = {}
        for prefix, diffs in (("nodes", self.node_diffs), ("edges", self.edge_diffs)):
            for status in (DiffStatus.ADDED, DiffStatus.REMOVED, DiffStatus.MODIFIED, DiffStatus.UNCHANGED):
                result[f"{prefix}_{status.value}"] = self._count(diffs, status)
        return result

    def to_dict(self) -> dict:
        return {
            "summary": self.summary,
            "node_diffs": [d.to_dict() for d in self.node_diffs],
            "edge_diffs": [d.to_dict() for d in self.edge_diffs],
        }


# (style attribute, change name) pairs compared between node versions
NODE_STYLE_CHANGES = [
    ("background_color", "Background color changed"),
    ("border_color", "Border color changed"),
    ("border_width", "Border width changed"),
    ("font_size", "Font size changed"),
    ("text_color", "Text color changed"),
]


def version_node_changes(old: Node, new: Node, position_tolerance: float = 1.0) -> list[str]:
    changes = []
    if (abs(old.position.x - new.position.x) > position_tolerance
            or abs(old.position.y - new.position.y) > position_tolerance):
        changes.append("Position moved")
    if old.width != new.width or old.height != new.height:
        changes.append("Size changed")
    if old.data.label != new.data.label:
        changes.append("Label changed")
    if old.data.type != new.data.type:
        changes.append("Shape type changed")

    old_style = old.data.style or NodeStyle()
    new_style = new.data.style or NodeStyle()
    for attr, message in NODE_STYLE_CHANGES:
        if getattr(old_style, attr) != getattr(new_style, attr):
            changes.append(message)
    return changes


def version_edge_changes(old: Edge, new: Edge) -> list[str]:
    changes = []
    if old.source != new.source:
        changes.append("Source changed")
    if old.target != new.target:
        changes.append("Target changed")
    if old.label != new.label:
        changes.append("Label changed")

    old_style, new_style = old.style, new.style
    if (old_style and old_style.stroke) != (new_style and new_style.stroke):
        changes.append("Stroke color changed")
    if (old_style and old_style.stroke_width) != (new_style and new_style.stroke_width):
        changes.append("Stroke width changed")
    old_dash = (old_style.line_type, old_style.stroke_dasharray) if old_style else (None, None)
    new_dash = (new_style.line_type, new_style.stroke_dasharray) if new_style else (None, None)
    if old_dash != new_dash:
        changes.append("Stroke style changed")

    old_animated = old.animated or bool(old_style and old_style.animated)
    new_animated = new.animated or bool(new_style and new_style.animated)
    if old_animated != new_animated:
        changes.append("Animation changed")
    return changes


def _version_node_label(node: Node) -> str:
    return node.data.label or node.data.type or "Node"


def _version_edge_label(edge: Edge) -> str:
    return edge.label or f"{edge.source} → {edge.target}"


def _version_diffs(old_items, new_items, label_of, changes_of) -> list[VersionEntityDiff]:
    old_map, new_map = _index(old_items), _index(new_items)
    diffs = []

    for item_id, item in new_map.items():
        previous = old_map.get(item_id)
        if previous is None:
            diffs.append(VersionEntityDiff(item_id, label_of(item), DiffStatus.ADDED))
            continue
        changes = changes_of(previous, item)
        status = DiffStatus.MODIFIED if changes else DiffStatus.UNCHANGED
        diffs.append(VersionEntityDiff(item_id, label_of(item), status, changes))

    for item_id, item in old_map.items():
        if item_id not in new_map:
            diffs.append(VersionEntityDiff(item_id, label_of(item), DiffStatus.REMOVED))

    # Stable: discovery order is kept within a status
    return sorted(diffs, key=lambda d: STATUS_ORDER[d.status])


def compare_versions(
    older: Optional[DiagramVersion],
    newer: Optional[DiagramVersion],
    position_tolerance: Optional[float] = None,
) -> VersionDiffResult:
    """
    Compare two stored version snapshots.

    Args:
        older: The base version (None is treated as empty)
        newer: The version to compare (None is treated as empty)
        position_tolerance: Ignored position drift, defaults to the
            configured ``version_position_tolerance``

    Returns:
        VersionDiffResult listing added, modified, removed, then unchanged
    """
    if position_tolerance is None:
        position_tolerance = get_settings().version_position_tolerance

    old_nodes = older.nodes if older else []
    new_nodes = newer.nodes if newer else []
    old_edges = older.edges if older else []
    new_edges = newer.edges if newer else []

    return VersionDiffResult(
        node_diffs=_version_diffs(
            old_nodes, new_nodes, _version_node_label,
            lambda old, new: version_node_changes(old, new, position_tolerance),
        ),
        edge_diffs=_version_diffs(old_edges, new_edges, _version_edge_label, version_edge_changes),
    )
