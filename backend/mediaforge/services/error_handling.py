"""Error taxonomy and classification for provider and storage operations.

Every failure that crosses a component boundary is turned into a
``StorageError`` carrying one code from the closed ``StorageErrorCode`` set
and a ``retryable`` flag. The retry executor (``retry_policy``) only ever
looks at that flag.

Raw provider text survives as ``details`` for logs; end users only ever see
the fixed message from ``get_user_message``.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from datetime import datetime, timezone
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class StorageErrorCode(str, enum.Enum):
    """Closed error taxonomy. New codes may be added; codes are never reused."""

    # Network
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    CONNECTION_FAILED = "CONNECTION_FAILED"

    # File
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
    CORRUPTED_FILE = "CORRUPTED_FILE"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"

    # Storage
    BUCKET_NOT_FOUND = "BUCKET_NOT_FOUND"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    STORAGE_QUOTA_EXCEEDED = "STORAGE_QUOTA_EXCEEDED"
    UPLOAD_FAILED = "UPLOAD_FAILED"

    # Authentication
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    UNAUTHORIZED = "UNAUTHORIZED"

    # Configuration
    INVALID_CONFIG = "INVALID_CONFIG"
    MISSING_ENVIRONMENT = "MISSING_ENVIRONMENT"

    # General
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


RETRYABLE_CODES: frozenset[StorageErrorCode] = frozenset({
    StorageErrorCode.NETWORK_ERROR,
    StorageErrorCode.TIMEOUT_ERROR,
    StorageErrorCode.CONNECTION_FAILED,
    StorageErrorCode.UPLOAD_FAILED,
})

USER_MESSAGES: dict[StorageErrorCode, str] = {
    StorageErrorCode.NETWORK_ERROR: "Network connection failed. Please check your internet connection and try again.",
    StorageErrorCode.TIMEOUT_ERROR: "The operation timed out. Please try again.",
    StorageErrorCode.CONNECTION_FAILED: "Connection failed. Please check your internet connection.",
    StorageErrorCode.FILE_TOO_LARGE: "The file is too large. Please choose a smaller file.",
    StorageErrorCode.INVALID_FILE_TYPE: "This file type is not supported. Please choose a different file.",
    StorageErrorCode.CORRUPTED_FILE: "The file appears to be corrupted. Please try a different file.",
    StorageErrorCode.FILE_NOT_FOUND: "File not found.",
    StorageErrorCode.BUCKET_NOT_FOUND: "Storage location not found. Please contact support.",
    StorageErrorCode.INSUFFICIENT_PERMISSIONS: "You don't have permission to perform this action.",
    StorageErrorCode.STORAGE_QUOTA_EXCEEDED: "Storage quota exceeded. Please contact support.",
    StorageErrorCode.UPLOAD_FAILED: "Upload failed. Please try again.",
    StorageErrorCode.INVALID_CREDENTIALS: "Authentication failed. Please refresh the page.",
    StorageErrorCode.TOKEN_EXPIRED: "Session expired. Please refresh the page.",
    StorageErrorCode.UNAUTHORIZED: "You are not authorized to perform this action.",
    StorageErrorCode.INVALID_CONFIG: "Configuration error. Please contact support.",
    StorageErrorCode.MISSING_ENVIRONMENT: "Environment configuration missing. Please contact support.",
    StorageErrorCode.VALIDATION_ERROR: "Validation failed. Please check your input.",
    StorageErrorCode.UNKNOWN_ERROR: "An unexpected error occurred. Please try again.",
}


def is_retryable(code: StorageErrorCode) -> bool:
    """Only transient network/upload failures are worth another attempt."""
    return code in RETRYABLE_CODES


# ---------------------------------------------------------------------------
# Exception types
# ---------------------------------------------------------------------------

class MediaForgeError(Exception):
    """Base class for every error raised by the pipeline.

    ``str(exc)`` is for logs. ``user_message`` is the only text shown to end users.
    """

    user_message: str = "The generation could not be completed. Please try again."


class StorageError(MediaForgeError):
    """A classified failure. Attributes are read-only once constructed."""

    def __init__(
        self,
        code: StorageErrorCode,
        message: str,
        operation: str,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self._code = StorageErrorCode(code)
        self._message = message
        self._operation = operation
        self._details = details
        self._retryable = is_retryable(self._code)
        self._timestamp = datetime.now(timezone.utc).isoformat()

    @property
    def code(self) -> StorageErrorCode:
        return self._code

    @property
    def message(self) -> str:
        return self._message

    @property
    def operation(self) -> str:
        return self._operation

    @property
    def details(self) -> Any:
        return self._details

    @property
    def retryable(self) -> bool:
        return self._retryable

    @property
    def timestamp(self) -> str:
        return self._timestamp

    @property
    def user_message(self) -> str:
        return get_user_message(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self._code.value,
            "message": self._message,
            "operation": self._operation,
            "retryable": self._retryable,
            "timestamp": self._timestamp,
            "details": self._details,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self._code.value}, "
            f"operation={self._operation!r}, message={self._message!r})"
        )


class ValidationIssue:
    """One failed rule from request validation."""

    __slots__ = ("param", "message")

    def __init__(self, param: str, message: str) -> None:
        self.param = param
        self.message = message

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ValidationIssue):
            return NotImplemented
        return (self.param, self.message) == (other.param, other.message)

    def __hash__(self) -> int:
        return hash((self.param, self.message))

    def __repr__(self) -> str:
        return f"ValidationIssue({self.param!r}, {self.message!r})"


class RequestValidationError(StorageError):
    """A generation request failed schema validation. Never retried."""

    def __init__(self, model_id: str, issues: list[ValidationIssue]) -> None:
        self.issues = list(issues)
        summary = "; ".join(f"{i.param}: {i.message}" for i in self.issues)
        super().__init__(
            StorageErrorCode.VALIDATION_ERROR,
            f"Invalid parameters for {model_id}: {summary}",
            "request-validation",
            details={"model_id": model_id, "issues": [[i.param, i.message] for i in self.issues]},
        )


class GenerationTimeoutError(StorageError):
    """Local wait for a prediction gave up. The remote job keeps running."""

    def __init__(
        self,
        job_id: str,
        waited_seconds: float,
        last_status: str | None = None,
        last_job: Any = None,
    ) -> None:
        self.job_id = job_id
        self.waited_seconds = waited_seconds
        self.last_status = last_status
        self.last_job = last_job
        super().__init__(
            StorageErrorCode.TIMEOUT_ERROR,
            f"Prediction {job_id} not terminal after {waited_seconds:.1f}s (last status: {last_status})",
            "wait-for-terminal",
            details={"job_id": job_id, "last_status": last_status},
        )


class ModelNotFoundError(MediaForgeError):
    """No descriptor is registered under the requested model id."""

    def __init__(self, model_id: str) -> None:
        super().__init__(f"Unknown model: {model_id}")
        self.model_id = model_id
        self.user_message = f"Unknown model: {model_id}"


class GenerationFailedError(MediaForgeError):
    """The provider finished the job as failed or canceled.

    The provider's own error text is kept in ``error`` for logging only.
    """

    def __init__(self, job_id: str, status: str, error: str | None = None) -> None:
        super().__init__(f"Prediction {job_id} ended {status}")
        self.job_id = job_id
        self.status = status
        self.error = error
        self.user_message = (
            "The generation was canceled." if status == "canceled" else "The generation failed."
        )


class NoAssetsProducedError(MediaForgeError):
    """A succeeded job whose output held no usable asset URL."""

    user_message = "The model produced no output."

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Prediction {job_id} produced no assets")
        self.job_id = job_id
        self.status = "succeeded"


class ProviderProtocolError(MediaForgeError):
    """The remote provider answered with a payload we cannot interpret."""


class StorageProviderError(MediaForgeError):
    """A storage backend reported an error in its response body."""

    def __init__(self, message: str, status_code: int | None = None, payload: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

# Ordered (keywords, code) rules for the message-content last resort.
_MESSAGE_RULES: tuple[tuple[tuple[str, ...], StorageErrorCode], ...] = (
    (("timeout", "timed out"), StorageErrorCode.TIMEOUT_ERROR),
    (("file size", "too large"), StorageErrorCode.FILE_TOO_LARGE),
    (("token expired", "jwt expired"), StorageErrorCode.TOKEN_EXPIRED),
    (("invalid api key", "invalid credentials", "api token"), StorageErrorCode.INVALID_CREDENTIALS),
    (("unauthorized", "not authenticated"), StorageErrorCode.UNAUTHORIZED),
    (("permission", "forbidden"), StorageErrorCode.INSUFFICIENT_PERMISSIONS),
    (("quota", "insufficient funds", "rate limit"), StorageErrorCode.STORAGE_QUOTA_EXCEEDED),
    (("connection refused", "connection reset"), StorageErrorCode.CONNECTION_FAILED),
    (("network", "fetch"), StorageErrorCode.NETWORK_ERROR),
)

_STORAGE_MESSAGE_RULES: tuple[tuple[tuple[str, ...], StorageErrorCode], ...] = (
    (("not found", "does not exist"), StorageErrorCode.BUCKET_NOT_FOUND),
    (("permission", "unauthorized"), StorageErrorCode.INSUFFICIENT_PERMISSIONS),
    (("quota", "limit"), StorageErrorCode.STORAGE_QUOTA_EXCEEDED),
)

_STATUS_CODES: dict[int, StorageErrorCode] = {
    401: StorageErrorCode.UNAUTHORIZED,
    402: StorageErrorCode.STORAGE_QUOTA_EXCEEDED,
    403: StorageErrorCode.INSUFFICIENT_PERMISSIONS,
    404: StorageErrorCode.FILE_NOT_FOUND,
    413: StorageErrorCode.FILE_TOO_LARGE,
    415: StorageErrorCode.INVALID_FILE_TYPE,
    429: StorageErrorCode.STORAGE_QUOTA_EXCEEDED,
}


def _match_message(message: str, rules) -> StorageErrorCode | None:
    lowered = message.lower()
    for keywords, code in rules:
        if any(k in lowered for k in keywords):
            return code
    return None


def classify_status(status_code: int, operation: str) -> StorageErrorCode:
    """Map an HTTP status to a code. 4xx never retries, 5xx always does."""
    if status_code >= 500:
        if "upload" in operation:
            return StorageErrorCode.UPLOAD_FAILED
        return StorageErrorCode.NETWORK_ERROR
    if status_code >= 400:
        return _STATUS_CODES.get(status_code, StorageErrorCode.VALIDATION_ERROR)
    return StorageErrorCode.UNKNOWN_ERROR


def _response_excerpt(response: httpx.Response) -> Any:
    try:
        return response.json()
    except httpx.ResponseNotRead:
        return None
    except ValueError:
        return response.text[:500]


def classify(error: BaseException, operation: str) -> StorageError:
    """Turn any exception into a ``StorageError``.

    Ordered matching: already-classified errors pass through, then storage
    backend payloads, HTTP statuses, transport exceptions, and finally
    message keywords.
    """
    if isinstance(error, StorageError):
        return error

    if isinstance(error, StorageProviderError):
        code = _match_message(str(error), _STORAGE_MESSAGE_RULES)
        if code is None and error.status_code is not None and error.status_code >= 400:
            code = classify_status(error.status_code, operation)
            if code is StorageErrorCode.NETWORK_ERROR:
                code = StorageErrorCode.UPLOAD_FAILED
        return StorageError(
            code or StorageErrorCode.UPLOAD_FAILED,
            str(error) or "Storage provider error",
            operation,
            details={"status_code": error.status_code, "payload": error.payload},
        )

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return StorageError(
            classify_status(status, operation),
            f"HTTP {status} from {error.request.url.host}",
            operation,
            details={"status_code": status, "body": _response_excerpt(error.response)},
        )

    if isinstance(error, httpx.TimeoutException):
        return StorageError(StorageErrorCode.TIMEOUT_ERROR, "Operation timed out", operation, str(error))

    if isinstance(error, httpx.ConnectError):
        return StorageError(StorageErrorCode.CONNECTION_FAILED, "Connection failed", operation, str(error))

    if isinstance(error, httpx.TransportError):
        return StorageError(StorageErrorCode.NETWORK_ERROR, "Network connection failed", operation, str(error))

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return StorageError(StorageErrorCode.TIMEOUT_ERROR, "Operation timed out", operation, str(error))

    if isinstance(error, ConnectionError):
        return StorageError(StorageErrorCode.CONNECTION_FAILED, "Connection failed", operation, str(error))

    message = str(error)
    code = _match_message(message, _MESSAGE_RULES) if message else None
    return StorageError(
        code or StorageErrorCode.UNKNOWN_ERROR,
        message or "Unknown error occurred",
        operation,
        details=repr(error),
    )


def get_user_message(error: StorageError) -> str:
    """Stable, human-readable text for a classified error."""
    return USER_MESSAGES.get(error.code, USER_MESSAGES[StorageErrorCode.UNKNOWN_ERROR])


def log_storage_error(error: StorageError, context: dict[str, Any] | None = None) -> None:
    """Log a classified error with its context for monitoring."""
    logger.error(
        "Storage error code=%s operation=%s retryable=%s message=%s details=%s context=%s",
        error.code.value,
        error.operation,
        error.retryable,
        error.message,
        error.details,
        context or {},
    )
