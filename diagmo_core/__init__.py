"""
diagmo-core - Diagram import, analysis, validation and diff.

Every importer produces the same canonical graph, which the analysis,
validation and diff engines consume.
"""

from .models import (
    # Enums
    ShapeType,
    Provider,
    # Core models
    Position,
    NodeStyle,
    NodeData,
    Node,
    EdgeStyle,
    EdgeMarker,
    Edge,
    Graph,
    ParseResult,
    DiagramVersion,
    provider_for_shape,
)

from .exceptions import DiagmoError, ParseError, RenderError, RendererUnavailableError, RuleError, ConfigurationError
from .config import Settings, get_settings
from .log import setup_logging, get_logger
from .parsers import parse_drawio, parse_terraform, parse_mermaid, import_mermaid
from .analysis import analyze_graph, complexity_score, GraphAnalytics, ComplexityScore
from .validation import validate_graph, validation_summary, ValidationResult, ValidationRule, Severity, BUILTIN_RULES
from .diff import compare_graphs, compare_versions, generate_diff_summary, DiffResult, DiffStatus

__all__ = [
    # Enums
    "ShapeType",
    "Provider",
    # Models
    "Position",
    "NodeStyle",
    "NodeData",
    "Node",
    "EdgeStyle",
    "EdgeMarker",
    "Edge",
    "Graph",
    "ParseResult",
    "DiagramVersion",
    "provider_for_shape",
    # Errors
    "DiagmoError",
    "ParseError",
    "RenderError",
    "RendererUnavailableError",
    "RuleError",
    "ConfigurationError",
    # Configuration
    "Settings",
    "get_settings",
    "setup_logging",
    "get_logger",
    # Parsers
    "parse_drawio",
    "parse_terraform",
    "parse_mermaid",
    "import_mermaid",
    # Analysis
    "analyze_graph",
    "complexity_score",
    "GraphAnalytics",
    "ComplexityScore",
    # Validation
    "validate_graph",
    "validation_summary",
    "ValidationResult",
    "ValidationRule",
    "Severity",
    "BUILTIN_RULES",
    # Diff
    "compare_graphs",
    "compare_versions",
    "generate_diff_summary",
    "DiffResult",
    "DiffStatus",
]
