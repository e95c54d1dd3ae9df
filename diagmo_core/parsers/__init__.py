"""
Format importers. Each turns source text into a ParseResult (nodes, edges,
errors) and never raises for malformed input.
"""

from .drawio import parse_drawio
from .terraform import parse_terraform
from .mermaid import import_mermaid, parse_mermaid, parse_mermaid_with_renderer
from .mermaid_render import MermaidCliRenderer, MermaidRenderer, RenderedNode, BoundingBox

__all__ = [
    "parse_drawio",
    "parse_terraform",
    "parse_mermaid",
    "parse_mermaid_with_renderer",
    "import_mermaid",
    "MermaidRenderer",
    "MermaidCliRenderer",
    "RenderedNode",
    "BoundingBox",
]
