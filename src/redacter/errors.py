"""Error taxonomy.

Every error carries a stable ``kind`` string that ends up in the run summary
next to the failed item. Errors deriving from :class:`FatalError` abort the
whole run; everything else is scoped to a single item.
"""

from __future__ import annotations


class RedacterError(Exception):
    kind = "error"


class FatalError(RedacterError):
    """Raised when no further item could succeed (credentials, missing bucket)."""

    kind = "fatal"


class ConfigurationError(FatalError):
    kind = "configuration"


# Storage


class StorageError(RedacterError):
    kind = "storage"


class StorageNotFoundError(StorageError):
    kind = "storage.not_found"


class StoragePermissionError(StorageError):
    kind = "storage.permission_denied"


class StorageTransientError(StorageError):
    kind = "storage.transient"


class StorageFatalError(StorageError, FatalError):
    kind = "storage.fatal"


class DestinationNotContainerError(StorageFatalError):
    kind = "storage.destination_not_container"

    def __init__(self, destination: str):
        super().__init__(
            f"Destination '{destination}' doesn't support multiple files. Trailing slash needed?"
        )
        self.destination = destination


# Redaction


class RedactionError(RedacterError):
    kind = "redaction"


class UnsupportedCategoryError(RedactionError):
    kind = "redaction.unsupported_category"


class BackendUnavailableError(RedactionError):
    kind = "redaction.backend_unavailable"


class QuotaExceededError(RedactionError):
    kind = "redaction.quota_exceeded"


class TransientRedactionError(RedactionError):
    kind = "redaction.transient"


class MalformedResponseError(RedactionError):
    kind = "redaction.malformed_response"


class AuthenticationError(RedactionError, FatalError):
    kind = "redaction.authentication"


# Conversion


class ConversionError(RedacterError):
    kind = "conversion"


class RenderError(ConversionError):
    kind = "conversion.render_failed"


class RecognitionError(ConversionError):
    kind = "conversion.recognition_failed"


RETRYABLE_ERRORS = (StorageTransientError, TransientRedactionError, QuotaExceededError)


def error_kind(exc: BaseException) -> str:
    """Return the taxonomy kind of ``exc`` (``internal`` for foreign errors)."""
    return getattr(exc, "kind", None) or "internal"
