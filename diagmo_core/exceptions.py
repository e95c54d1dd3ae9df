"""
Common exceptions for diagmo-core.

Parsers convert these into error strings at their public boundary; they are
only seen by callers that use the lower-level helpers directly.
"""


class DiagmoError(Exception):
    """Base exception for all diagmo-core errors."""
    pass


class ConfigurationError(DiagmoError):
    """Raised when there are configuration issues."""
    pass


class ParseError(DiagmoError):
    """Raised when source text cannot be turned into a graph."""
    pass


class RenderError(DiagmoError):
    """Raised when an off-screen diagram render fails."""
    pass


class RendererUnavailableError(RenderError):
    """Raised when no render backend is installed."""
    pass


class RuleError(DiagmoError):
    """Raised when a validation rule is misconfigured."""
    pass
