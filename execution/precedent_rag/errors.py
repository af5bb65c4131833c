"""
Error taxonomy for the Precedent RAG engine.

Best-effort steps catch these and substitute defaults; the mandatory
analysis call surfaces AnalysisFailed to the caller. A degraded parse is
never raised -- it shows up as a lowered confidence on the result.
"""

from typing import Optional


class PrecedentRAGError(Exception):
    """Base class for all engine errors."""


class UpstreamUnavailable(PrecedentRAGError):
    """An external API timed out, returned 5xx, or could not be reached."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}")


class Timeout(UpstreamUnavailable):
    """An external call exceeded its timeout."""


class AuthenticationError(PrecedentRAGError):
    """Credentials for an external API are missing or were rejected."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}")


class NotFound(PrecedentRAGError):
    """The external system has no document with this id."""

    def __init__(self, resource_id: str, service: str = "Kanoon API"):
        self.resource_id = resource_id
        self.service = service
        super().__init__(f"{service}: Document not found: {resource_id}")


class AnalysisFailed(PrecedentRAGError):
    """The LLM analysis call failed; there is no fallback content."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message)
