"""Custom exception hierarchy for SCEP Adapter.

All exceptions inherit from SCEPAdapterError for consistent handling.
Each exception maps to an HTTP status code for responder error pages.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping


class SCEPAdapterError(Exception):
    """Base exception for all SCEP Adapter errors.

    Attributes:
        message: Human-readable error description.
        http_status: HTTP status code used when the responder reports the error.
        details: Additional context for audit logging.
    """

    http_status: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        *,
        details: Mapping[str, str | int | bool | None] | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Human-readable error description.
            details: Additional context for audit logging.
        """
        super().__init__(message)
        self.message = message
        self.details = dict(details) if details else {}

    def to_audit_dict(self) -> dict[str, str | int | bool | None]:
        """Return dictionary suitable for audit logging.

        Returns:
            Dictionary with exception type, message, and details.
        """
        return {
            "exception_type": self.__class__.__name__,
            "message": self.message,
            **self.details,
        }


class InvalidServerURLError(SCEPAdapterError):
    """SCEP server address could not be parsed."""

    @classmethod
    def from_instance(cls, *, instance: str, reason: str) -> InvalidServerURLError:
        """Create exception for a malformed server address.

        Args:
            instance: The address as given by the caller.
            reason: Why parsing failed.

        Returns:
            InvalidServerURLError instance.
        """
        return cls(
            f"Invalid SCEP server URL '{instance}': {reason}",
            details={"instance": instance, "reason": reason},
        )


class UnsupportedMethodError(SCEPAdapterError):
    """HTTP method other than GET or POST was requested.

    HTTP Status: 405 Method Not Allowed
    """

    http_status = HTTPStatus.METHOD_NOT_ALLOWED

    @classmethod
    def for_method(cls, *, method: str) -> UnsupportedMethodError:
        """Create exception for an unsupported HTTP method."""
        return cls(f"scep: {method} method not supported", details={"method": method})


class RequestConstructionError(SCEPAdapterError):
    """An outbound HTTP request could not be built."""

    @classmethod
    def for_operation(cls, *, operation: str, reason: str) -> RequestConstructionError:
        """Create exception for a request that failed to build.

        Args:
            operation: SCEP operation being encoded.
            reason: Underlying failure.

        Returns:
            RequestConstructionError instance.
        """
        return cls(
            f"Creating new POST request for {operation} failed: {reason}",
            details={"operation": operation, "reason": reason},
        )


class TransportReadError(SCEPAdapterError):
    """Message body could not be read or exceeds the payload cap.

    HTTP Status: 413 Content Too Large
    """

    http_status = HTTPStatus.REQUEST_ENTITY_TOO_LARGE

    @classmethod
    def payload_too_large(cls, *, limit: int) -> TransportReadError:
        """Create exception for a body exceeding the payload cap.

        Args:
            limit: Maximum accepted body size in bytes.

        Returns:
            TransportReadError instance.
        """
        return cls(
            f"Body exceeds maximum payload size of {limit} bytes",
            details={"limit": limit},
        )

    @classmethod
    def read_failed(cls, *, reason: str) -> TransportReadError:
        """Create exception for an I/O fault while reading the body."""
        return cls(f"Reading response body failed: {reason}", details={"reason": reason})


class HTTPStatusError(SCEPAdapterError):
    """SCEP server answered with an error status.

    Attributes:
        status_code: HTTP status code returned by the server.
        reason: Reason phrase of the status line.
        body: Diagnostic prefix of the response body.
    """

    http_status = HTTPStatus.BAD_GATEWAY

    def __init__(self, status_code: int, reason: str, body: str) -> None:
        """Initialize from the failed response's status line and body prefix.

        Args:
            status_code: HTTP status code.
            reason: Reason phrase.
            body: Up to the first 4096 bytes of the body, decoded leniently.
        """
        super().__init__(
            f"http request failed with status {status_code} {reason}, msg: {body}",
            details={"status_code": status_code, "reason": reason},
        )
        self.status_code = status_code
        self.reason = reason
        self.body = body


class RequestCancelledError(SCEPAdapterError):
    """Call deadline expired before the server answered.

    HTTP Status: 504 Gateway Timeout
    """

    http_status = HTTPStatus.GATEWAY_TIMEOUT

    @classmethod
    def deadline_exceeded(cls, *, operation: str, timeout: float | None) -> RequestCancelledError:
        """Create exception for a call that ran out of time.

        Args:
            operation: SCEP operation that was in flight.
            timeout: Deadline in seconds, if one was set.

        Returns:
            RequestCancelledError instance.
        """
        return cls(
            f"{operation} request cancelled: deadline exceeded",
            details={"operation": operation, "timeout": str(timeout)},
        )


class TransportError(SCEPAdapterError):
    """Connection-level failure (DNS, refused connection, TLS)."""

    http_status = HTTPStatus.BAD_GATEWAY

    @classmethod
    def from_httpx(cls, *, operation: str, error: Exception) -> TransportError:
        """Create exception wrapping a transport-layer failure.

        Args:
            operation: SCEP operation that was in flight.
            error: The original transport exception.

        Returns:
            TransportError instance.
        """
        return cls(
            f"{operation} transport error: {error}",
            details={"operation": operation, "error_type": type(error).__name__},
        )


class MalformedRequestError(SCEPAdapterError):
    """Incoming SCEP request could not be interpreted.

    HTTP Status: 400 Bad Request
    """

    http_status = HTTPStatus.BAD_REQUEST

    @classmethod
    def invalid_message(cls, *, reason: str) -> MalformedRequestError:
        """Create exception for a GET message that is not valid base64."""
        return cls(f"Invalid message parameter: {reason}", details={"reason": reason})

    @classmethod
    def unknown_operation(cls, *, operation: str) -> MalformedRequestError:
        """Create exception for an operation the responder does not know."""
        return cls(f"Unknown SCEP operation: {operation!r}", details={"operation": operation})


class PKIOperationNotSupportedError(SCEPAdapterError):
    """Responder has no handler for PKI messages.

    HTTP Status: 500 Internal Server Error
    """

    @classmethod
    def no_handler(cls, *, operation: str) -> PKIOperationNotSupportedError:
        """Create exception for an operation without a configured handler."""
        return cls(f"No handler configured for {operation}", details={"operation": operation})


class CAStoreError(SCEPAdapterError):
    """CA certificate store could not be initialized."""

    @classmethod
    def cert_load_failed(cls, *, path: str, reason: str) -> CAStoreError:
        """Create exception for CA certificate loading failure.

        Args:
            path: Path to the certificate file.
            reason: Why loading failed.

        Returns:
            CAStoreError instance.
        """
        return cls(
            f"Failed to load CA certificate from {path}: {reason}",
            details={"phase": "initialization", "cert_path": path, "reason": reason},
        )


class ConfigurationError(SCEPAdapterError):
    """Configuration error.

    HTTP Status: 500 Internal Server Error (startup failure)
    """

    @classmethod
    def missing_required(cls, *, field: str) -> ConfigurationError:
        """Create exception for missing required configuration."""
        return cls(f"Missing required configuration: {field}", details={"field": field})
