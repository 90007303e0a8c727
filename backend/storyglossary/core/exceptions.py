"""Custom exception hierarchy for the story glossary service.

Each class carries the HTTP status the API answers with; pipeline code
raises them too, and the extraction path contains most of them per chunk.

Hierarchy:
    GlossaryError (base)
    +-- NotFoundError            -> 404
    +-- ValidationError          -> 422
    |   +-- SerializationError   -> 422
    +-- ConflictError            -> 409
    |   +-- IdentityAmbiguityError
    +-- ExtractionError          -> 500
    |   +-- MalformedReplyError  -> 502
    +-- ServiceUnavailableError  -> 503
        +-- OracleUnavailableError
"""

from __future__ import annotations


class GlossaryError(Exception):
    """Base exception for all glossary business-logic errors."""

    status_code: int = 500
    detail: str = "Internal server error"

    def __init__(self, detail: str | None = None, *, context: dict[str, object] | None = None):
        self.detail = detail or self.__class__.detail
        self.context = context or {}
        super().__init__(self.detail)


class NotFoundError(GlossaryError):
    """Resource not found (404)."""

    status_code = 404
    detail = "Resource not found"


class ValidationError(GlossaryError):
    """Input validation failed (422)."""

    status_code = 422
    detail = "Validation error"


class SerializationError(ValidationError):
    """A glossary snapshot is structurally unreadable (422).

    Distinct from a missing field inside an otherwise readable snapshot,
    which is defaulted rather than rejected.
    """

    detail = "Glossary snapshot is not readable"


class ConflictError(GlossaryError):
    """Operation conflicts with current state (409)."""

    status_code = 409
    detail = "Resource conflict"


class IdentityAmbiguityError(ConflictError):
    """An identity key matched more than one existing record."""

    detail = "Identity key matches more than one record"


class ExtractionError(GlossaryError):
    """Extraction pipeline failure (500)."""

    status_code = 500
    detail = "Extraction failed"


class MalformedReplyError(ExtractionError):
    """Oracle reply holds no usable JSON object (502)."""

    status_code = 502
    detail = "Oracle reply contained no valid JSON object"


class ServiceUnavailableError(GlossaryError):
    """External service unavailable (503)."""

    status_code = 503
    detail = "Service unavailable"


class OracleUnavailableError(ServiceUnavailableError):
    """The extraction oracle could not be reached or timed out."""

    detail = "Extraction oracle unavailable"
