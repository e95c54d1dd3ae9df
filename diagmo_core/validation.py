"""
Graph validation - rule-based checks for structural issues.

Each rule is a pure function ``(nodes, edges) -> list[ValidationResult]``.
The engine runs every enabled rule, isolates rules that raise, and returns
the combined results ordered by severity.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence

from .config import get_settings
from .exceptions import RuleError
from .log import get_logger
from .models import ANNOTATION_SHAPES, DECISION_SHAPES, JUNCTION_SHAPES, TERMINAL_SHAPES, Edge, Graph, Node

logger = get_logger(__name__)


class Severity(str, Enum):
    """Severity levels for validation results."""
    ERROR = "error"      # Invalid state, must be fixed
    WARNING = "warning"  # Potential problem, should review
    INFO = "info"        # Informational, may be intentional


SEVERITY_ORDER = {Severity.ERROR: 0, Severity.WARNING: 1, Severity.INFO: 2}


@dataclass
class ValidationResult:
    """A single issue reported by a rule."""
    rule_id: str
    rule_name: str
    severity: Severity
    message: str
    node_id: Optional[str] = None
    edge_id: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        result = {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "severity": self.severity.value,
            "message": self.message,
        }
        if self.node_id:
            result["node_id"] = self.node_id
        if self.edge_id:
            result["edge_id"] = self.edge_id
        return result


RuleCheck = Callable[[Sequence[Node], Sequence[Edge]], list[ValidationResult]]


@dataclass(frozen=True)
class ValidationRule:
    id: str
    name: str
    description: str
    severity: Severity
    check: RuleCheck
    enabled: bool = True

    def result(self, message: str, node_id: Optional[str] = None, edge_id: Optional[str] = None) -> ValidationResult:
        return ValidationResult(
            rule_id=self.id,
            rule_name=self.name,
            severity=self.severity,
            message=message,
            node_id=node_id,
            edge_id=edge_id,
        )


def _orphan_nodes(nodes, edges):
    connected = {e.source for e in edges} | {e.target for e in edges}
    return [
        ORPHAN_NODES.result(f'"{n.label or "Unlabeled node"}" has no connections', node_id=n.id)
        for n in nodes
        if n.id not in connected and n.shape not in ANNOTATION_SHAPES
    ]


def _missing_labels(nodes, edges):
    return [
        MISSING_LABELS.result(f"{n.shape} node is missing a label", node_id=n.id)
        for n in nodes
        if not n.label.strip() and n.shape not in JUNCTION_SHAPES
    ]


def _duplicate_labels(nodes, edges):
    by_label: dict[str, list[str]] = {}
    for node in nodes:
        label = node.label.strip().lower()
        if label:
            by_label.setdefault(label, []).append(node.id)

    results = []
    for label, node_ids in by_label.items():
        if len(node_ids) > 1:
            for node_id in node_ids:
                results.append(DUPLICATE_LABELS.result(
                    f'Duplicate label "{label}" ({len(node_ids)} nodes)', node_id=node_id
                ))
    return results


def _decision_outputs(nodes, edges):
    outgoing: dict[str, int] = {}
    for edge in edges:
        outgoing[edge.source] = outgoing.get(edge.source, 0) + 1
    return [
        DECISION_OUTPUTS.result(
            f'Decision "{n.label or "Unlabeled"}" should have at least 2 outgoing connections',
            node_id=n.id,
        )
        for n in nodes
        if n.shape in DECISION_SHAPES and outgoing.get(n.id, 0) < 2
    ]


def _self_loops(nodes, edges):
    return [
        SELF_LOOPS.result("Edge connects node to itself", node_id=e.source, edge_id=e.id)
        for e in edges
        if e.source == e.target
    ]


def _unlabeled_edges(nodes, edges):
    decisions = {n.id for n in nodes if n.shape in DECISION_SHAPES}
    return [
        UNLABELED_EDGES.result("Decision branch is missing a label (Yes/No, etc.)", edge_id=e.id)
        for e in edges
        if e.source in decisions and not e.label.strip()
    ]


def _dead_ends(nodes, edges):
    with_outgoing = {e.source for e in edges}
    with_incoming = {e.target for e in edges}
    return [
        DEAD_ENDS.result(
            f'"{n.label or "Unlabeled"}" has no outgoing connections (dead end)', node_id=n.id
        )
        for n in nodes
        if n.shape not in TERMINAL_SHAPES and n.id in with_incoming and n.id not in with_outgoing
    ]


def _hidden_nodes(nodes, edges):
    return [
        HIDDEN_NODES.result(f'"{n.label or "Unlabeled"}" is hidden', node_id=n.id)
        for n in nodes
        if n.hidden
    ]


def _overlapping_nodes(nodes, edges):
    settings = get_settings()
    limit = settings.overlap_node_limit
    if limit is not None and len(nodes) > limit:
        logger.info("Skipping overlap check: %d nodes exceeds limit of %d", len(nodes), limit)
        return []

    default_size = (settings.default_node_width, settings.default_node_height)
    boxes = [n.bounds(*default_size) for n in nodes]
    results = []

    # Each unordered pair is visited once
    for i, node_a in enumerate(nodes):
        ax1, ay1, ax2, ay2 = boxes[i]
        for j in range(i + 1, len(nodes)):
            bx1, by1, bx2, by2 = boxes[j]
            if ax1 < bx2 and ax2 > bx1 and ay1 < by2 and ay2 > by1:
                node_b = nodes[j]
                results.append(OVERLAPPING_NODES.result(
                    f'"{node_a.label or "Node"}" overlaps with "{node_b.label or "Node"}"',
                    node_id=node_a.id,
                ))
    return results


ORPHAN_NODES = ValidationRule(
    "orphan-nodes", "Orphan Nodes", "Find nodes with no connections",
    Severity.WARNING, _orphan_nodes,
)
MISSING_LABELS = ValidationRule(
    "missing-labels", "Missing Labels", "Find nodes without labels",
    Severity.INFO, _missing_labels,
)
DUPLICATE_LABELS = ValidationRule(
    "duplicate-labels", "Duplicate Labels", "Find nodes with identical labels",
    Severity.INFO, _duplicate_labels,
)
DECISION_OUTPUTS = ValidationRule(
    "decision-outputs", "Decision Outputs", "Decision nodes should have 2+ outgoing connections",
    Severity.WARNING, _decision_outputs,
)
SELF_LOOPS = ValidationRule(
    "self-loops", "Self Loops", "Find edges that connect a node to itself",
    Severity.WARNING, _self_loops,
)
UNLABELED_EDGES = ValidationRule(
    "unlabeled-edges", "Unlabeled Edges", "Find edges without labels (from decision nodes)",
    Severity.INFO, _unlabeled_edges,
)
DEAD_ENDS = ValidationRule(
    "dead-ends", "Dead Ends", "Find non-terminal nodes with no outgoing connections",
    Severity.WARNING, _dead_ends,
)
HIDDEN_NODES = ValidationRule(
    "hidden-nodes", "Hidden Nodes", "Find hidden nodes",
    Severity.INFO, _hidden_nodes,
)
OVERLAPPING_NODES = ValidationRule(
    "overlapping-nodes", "Overlapping Nodes", "Find nodes that overlap each other",
    Severity.WARNING, _overlapping_nodes,
)

BUILTIN_RULES: list[ValidationRule] = [
    ORPHAN_NODES,
    MISSING_LABELS,
    DUPLICATE_LABELS,
    DECISION_OUTPUTS,
    SELF_LOOPS,
    UNLABELED_EDGES,
    DEAD_ENDS,
    HIDDEN_NODES,
    OVERLAPPING_NODES,
]


def select_rules(rule_ids: Iterable[str], rules: Sequence[ValidationRule] = BUILTIN_RULES) -> list[ValidationRule]:
    """
    Enable exactly the given rules.

    Raises:
        RuleError: If an id does not name a known rule
    """
    wanted = set(rule_ids)
    known = {rule.id for rule in rules}
    unknown = sorted(wanted - known)
    if unknown:
        raise RuleError(f"Unknown validation rule(s): {', '.join(unknown)}")
    return [replace(rule, enabled=rule.id in wanted) for rule in rules]


def validate_graph(graph: Graph, rules: Optional[Sequence[ValidationRule]] = None) -> list[ValidationResult]:
    """
    Run every enabled rule over a graph.

    A rule that raises is logged and contributes no results; the other
    rules still run.

    Args:
        graph: The graph to validate
        rules: Rules to run (defaults to BUILTIN_RULES)

    Returns:
        Results ordered errors first, then warnings, then info; rule order
        is kept within a severity
    """
    results: list[ValidationResult] = []

    for rule in BUILTIN_RULES if rules is None else rules:
        if not rule.enabled:
            continue
        try:
            results.extend(rule.check(graph.nodes, graph.edges))
        except Exception:
            logger.exception("Validation rule %s failed", rule.id)

    return sorted(results, key=lambda r: SEVERITY_ORDER[r.severity])


def validation_summary(results: list[ValidationResult]) -> dict:
    """
    Create a summary of validation results.

    Args:
        results: List of validation results

    Returns:
        Dictionary with counts by severity
    """
    return {
        "errors": len([r for r in results if r.severity == Severity.ERROR]),
        "warnings": len([r for r in results if r.severity == Severity.WARNING]),
        "info": len([r for r in results if r.severity == Severity.INFO]),
        "total": len(results),
    }
