"""
keysync error contract.

This module defines the structured exceptions used by the request dispatcher
and the notification router. Callers should use these types to decide whether
to re-submit a request, fix a registration, or ignore a bad server record.

Policy:
- TransportError is surfaced through a request's error callbacks; nothing in
  keysync retries on its own.
- MalformedRecordError aborts the current dispatch only.
- CallbackFault is never raised out of the dispatcher or router; it is the
  shape in which a failing callback is handed to the diagnostics sink.
- ConsistencyViolation is a programmer error and is raised eagerly.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class KeysyncErrorCode(str, Enum):
    """Stable error codes for logging and external mapping."""
    TRANSPORT_ERROR = "transport_error"
    TIMEOUT = "timeout"
    MALFORMED_RECORD = "malformed_record"
    CALLBACK_FAULT = "callback_fault"
    CONSISTENCY_VIOLATION = "consistency_violation"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True, slots=True)
class KeysyncErrorContext:
    """
    Optional structured context for debugging/logging.

    Keep this safe for logs: do NOT include request payloads or record bodies,
    only identifiers.
    """
    key: Optional[str] = None
    phase: Optional[str] = None  # e.g. "before_send", "success", "transport", "dispatch"
    domain_type: Optional[str] = None
    listener_id: Optional[int] = None
    url: Optional[str] = None
    detail: Optional[str] = None  # short non-sensitive info


class KeysyncError(RuntimeError):
    """
    Base exception for all keysync failures.

    `message` should be clear English suitable for logs.
    `code` is a stable identifier suitable for programmatic mapping.
    `context` should never contain payload data.
    """

    def __init__(
        self,
        message: str,
        *,
        code: KeysyncErrorCode = KeysyncErrorCode.INTERNAL_ERROR,
        context: Optional[KeysyncErrorContext] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.code: KeysyncErrorCode = code
        self.context: Optional[KeysyncErrorContext] = context
        self.__cause__ = cause


class TransportError(KeysyncError):
    """
    Raised (or reported) for failures at the transport boundary.

    Examples:
    - connection refused / reset
    - non-success HTTP status reported by the adapter
    - the adapter itself raising while accepting a request
    """

    def __init__(
        self,
        message: str = "Transport failure while performing request.",
        *,
        status: str = "error",
        code: KeysyncErrorCode = KeysyncErrorCode.TRANSPORT_ERROR,
        context: Optional[KeysyncErrorContext] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, code=code, context=context, cause=cause)
        self.status = status


class TransportTimeout(TransportError):
    """
    The transport gave up waiting for a response.

    The dispatcher treats this exactly like any other TransportError.
    """

    def __init__(
        self,
        message: str = "Request timed out waiting for a response.",
        *,
        context: Optional[KeysyncErrorContext] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            message,
            status="timeout",
            code=KeysyncErrorCode.TIMEOUT,
            context=context,
            cause=cause,
        )


class MalformedRecordError(KeysyncError):
    """
    An inbound record could not be parsed as structured data.

    The dispatch call that received it is abandoned before any listener runs.
    """

    def __init__(
        self,
        message: str = "Inbound record is not a valid JSON object.",
        *,
        context: Optional[KeysyncErrorContext] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            message,
            code=KeysyncErrorCode.MALFORMED_RECORD,
            context=context,
            cause=cause,
        )


class CallbackFault(KeysyncError):
    """
    An exception escaped a caller-supplied callback or listener handler.

    The original exception is available as `__cause__`.
    """

    def __init__(
        self,
        message: str = "Callback raised an exception.",
        *,
        context: Optional[KeysyncErrorContext] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            message,
            code=KeysyncErrorCode.CALLBACK_FAULT,
            context=context,
            cause=cause,
        )


class ConsistencyViolation(KeysyncError):
    """
    Programmer error: an API was called with arguments that would corrupt
    dispatcher or router state (missing owner identity, bad key list, missing
    handler).
    """

    def __init__(
        self,
        message: str = "Invalid arguments for keysync operation.",
        *,
        context: Optional[KeysyncErrorContext] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            message,
            code=KeysyncErrorCode.CONSISTENCY_VIOLATION,
            context=context,
            cause=cause,
        )
