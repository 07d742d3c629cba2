"""Exceptions raised by pyovirt.

Every failure carries an :class:`ErrorCode` so callers can branch on the kind
of problem instead of parsing messages::

    try:
        await client.remove_vm(vm_id)
    except OvirtError as e:
        if not has_error_code(e, ErrorCode.NOT_FOUND):
            raise
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    ACCESS_DENIED = "access_denied"
    BAD_ARGUMENT = "bad_argument"
    BUG = "bug"
    CONFLICT = "conflict"
    CONNECTION = "connection"
    DISK_LOCKED = "disk_locked"
    FIELD_MISSING = "field_missing"
    NOT_FOUND = "not_found"
    PENDING = "pending"
    PERMANENT_HTTP_ERROR = "permanent_http_error"
    RELATED_OPERATION_IN_PROGRESS = "related_operation_in_progress"
    TIMEOUT = "timeout"
    VM_LOCKED = "vm_locked"
    UNIDENTIFIED = "unidentified"

    @property
    def can_auto_retry(self) -> bool:
        """Whether a failure with this code is transient and worth another attempt."""
        return self in _RETRYABLE_CODES


_RETRYABLE_CODES = frozenset(
    {
        ErrorCode.CONFLICT,
        ErrorCode.CONNECTION,
        ErrorCode.DISK_LOCKED,
        ErrorCode.PENDING,
        ErrorCode.RELATED_OPERATION_IN_PROGRESS,
        ErrorCode.VM_LOCKED,
    }
)

# Defects and contract mismatches; a retry can never fix these.
NEVER_RETRY_CODES = frozenset({ErrorCode.BAD_ARGUMENT, ErrorCode.BUG, ErrorCode.FIELD_MISSING})


class OvirtError(Exception):
    """Base exception for all pyovirt errors."""

    code = ErrorCode.UNIDENTIFIED

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.cause = cause

    @property
    def can_auto_retry(self) -> bool:
        return self.code.can_auto_retry

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message} ({self.cause})"
        return self.message


class OvirtBadArgumentError(OvirtError):
    """Raised when a caller-supplied value fails local validation."""

    code = ErrorCode.BAD_ARGUMENT


class OvirtFieldMissingError(OvirtError):
    """Raised when a response lacks a field the local model requires."""

    code = ErrorCode.FIELD_MISSING

    def __init__(self, object_name: str, field: str):
        super().__init__(f"{field} field missing from {object_name} object")
        self.object_name = object_name
        self.field = field


class OvirtNotFoundError(OvirtError):
    """Raised when the targeted resource does not exist."""

    code = ErrorCode.NOT_FOUND


class OvirtBugError(OvirtError):
    """Raised when an internal invariant is violated."""

    code = ErrorCode.BUG


class OvirtConnectionError(OvirtError):
    """Raised when the engine cannot be reached."""

    code = ErrorCode.CONNECTION


class OvirtPendingError(OvirtError):
    """Raised when an operation has not reached its desired end state yet."""

    code = ErrorCode.PENDING


class OvirtTimeoutError(OvirtError):
    """Raised when the retry budget of an operation is exhausted."""

    code = ErrorCode.TIMEOUT

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        attempts: Optional[int] = None,
    ):
        super().__init__(message, cause=cause)
        self.attempts = attempts


class OvirtStatusTimeoutError(OvirtTimeoutError):
    """Raised when a resource did not reach the desired status in time.

    ``last_status`` is the status observed on the final fetch (``None`` if no
    fetch ever succeeded) and ``last_seen`` the matching snapshot.
    """

    def __init__(
        self,
        message: str,
        last_status: Any = None,
        last_seen: Any = None,
        cause: Optional[BaseException] = None,
        attempts: Optional[int] = None,
    ):
        super().__init__(message, cause=cause, attempts=attempts)
        self.last_status = last_status
        self.last_seen = last_seen


class OvirtServerError(OvirtError):
    """Raised when the engine answers with an HTTP error."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.PERMANENT_HTTP_ERROR,
        status_code: Optional[int] = None,
        response_text: Optional[str] = None,
    ):
        super().__init__(message, code=code)
        self.status_code = status_code
        self.response_text = response_text


def has_error_code(error: BaseException, code: ErrorCode) -> bool:
    """Check whether error, or any error in its cause chain, has the given code."""
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, OvirtError) and current.code == code:
            return True
        if isinstance(current, OvirtError) and current.cause is not None:
            current = current.cause
        else:
            current = current.__cause__
    return False


_LOCK_MARKERS = (
    ("related operation", ErrorCode.RELATED_OPERATION_IN_PROGRESS),
    ("disk is locked", ErrorCode.DISK_LOCKED),
    ("disks are locked", ErrorCode.DISK_LOCKED),
    ("vm is locked", ErrorCode.VM_LOCKED),
    ("vm is being", ErrorCode.VM_LOCKED),
)


def error_for_status(
    status_code: int,
    reason: Optional[str] = None,
    detail: Optional[str] = None,
    operation: str = "request",
) -> OvirtError:
    """Build the classified error for an HTTP failure answered by the engine."""
    text = " ".join(part for part in (reason, detail) if part)
    if status_code == 404:
        return OvirtNotFoundError(f"Resource not found during {operation}" + (f": {text}" if text else ""))
    if status_code in (401, 403):
        code = ErrorCode.ACCESS_DENIED
    elif status_code == 409:
        code = ErrorCode.CONFLICT
    elif status_code in (502, 503, 504):
        return OvirtConnectionError(f"Engine unavailable during {operation} (HTTP {status_code})")
    elif status_code == 400:
        code = ErrorCode.PERMANENT_HTTP_ERROR
        lowered = text.lower()
        for marker, marker_code in _LOCK_MARKERS:
            if marker in lowered:
                code = marker_code
                break
    else:
        code = ErrorCode.PERMANENT_HTTP_ERROR
    return OvirtServerError(
        f"Error during {operation}" + (f": {text}" if text else ""),
        code=code,
        status_code=status_code,
        response_text=text or None,
    )
