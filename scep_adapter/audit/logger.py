"""Audit logging for SCEP exchanges.

Provides structured logging with correlation IDs so that each SCEP call
can be traced from the dispatcher through the wire and back.
"""

from __future__ import annotations

import sys
import uuid
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from scep_adapter.config import AuditConfig


# Context variable for request correlation ID
_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """Get the current correlation ID for request tracing."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set correlation ID for current request context."""
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    _correlation_id.set(correlation_id)
    return correlation_id


def clear_correlation_id() -> None:
    """Clear the correlation ID after request completes."""
    _correlation_id.set("")


_AUDIT_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} [{level}] "
    "[{extra[correlation_id]}] <{extra[event]}> {message} | {extra}"
)


def configure_audit_logger(config: AuditConfig) -> None:
    """Configure the audit logger based on settings."""
    logger.remove()

    logger.add(
        sys.stderr,
        level="DEBUG",
        format=_AUDIT_FORMAT,
        filter=lambda r: r["extra"].get("audit", False),
    )

    log_path = Path(config.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger.add(
        str(log_path),
        level=config.log_level.value,
        format=_AUDIT_FORMAT,
        rotation="10 MB",
        retention="90 days",
        compression="gz",
        filter=lambda r: r["extra"].get("audit", False),
    )


def _get_audit_logger() -> Any:
    """Get logger bound with audit context."""
    return logger.bind(
        audit=True,
        correlation_id=get_correlation_id() or "-",
        event="",
    )


def log_request_sent(*, operation: str, method: str, url: str, message_size: int) -> None:
    """Log an outbound SCEP request."""
    audit = _get_audit_logger().bind(
        event="request_sent",
        operation=operation,
        method=method,
        url=url,
        message_size=message_size,
    )
    audit.debug("{} {} sent to {}", method, operation, url)


def log_response_received(*, operation: str, status_code: int, payload_size: int, ca_cert_num: int) -> None:
    """Log a decoded SCEP response."""
    audit = _get_audit_logger().bind(
        event="response_received",
        operation=operation,
        status_code=status_code,
        payload_size=payload_size,
        ca_cert_num=ca_cert_num,
    )
    audit.debug("{} answered with status {}", operation, status_code)


def log_capabilities_updated(*, capabilities: bytes, implicit: bool) -> None:
    """Log replacement of the cached capability list."""
    tokens = capabilities.decode("utf-8", errors="replace").split()
    audit = _get_audit_logger().bind(
        event="capabilities_updated",
        capabilities=",".join(tokens),
        implicit=implicit,
    )
    audit.info("Server capabilities updated ({} tokens)", len(tokens))


def log_transport_selected(*, operation: str, method: str) -> None:
    """Log the HTTP method chosen for a PKI operation."""
    audit = _get_audit_logger().bind(event="transport_selected", operation=operation, method=method)
    audit.debug("{} routed via {}", operation, method)


def log_request_served(*, operation: str, method: str, status_code: int, payload_size: int) -> None:
    """Log a SCEP request answered by the responder."""
    audit = _get_audit_logger().bind(
        event="request_served",
        operation=operation,
        method=method,
        status_code=status_code,
        payload_size=payload_size,
    )
    if status_code < 400:
        audit.info("{} {} served", method, operation)
    else:
        audit.warning("{} {} failed with status {}", method, operation, status_code)


def log_ca_loaded(*, ca_subject: str, chain_length: int) -> None:
    """Log CA certificate store initialization."""
    audit = _get_audit_logger().bind(
        event="ca_loaded",
        ca_subject=ca_subject,
        chain_length=chain_length,
    )
    audit.info("CA certificates loaded for {}", ca_subject)


def log_error(*, error: Exception, context: str) -> None:
    """Log an error with full context."""
    audit = _get_audit_logger().bind(
        event="error",
        error_type=type(error).__name__,
        error_message=str(error),
        context=context,
    )
    audit.opt(exception=error).error("Error during {}: {}", context, error)


def log_startup(*, version: str, host: str, port: int) -> None:
    """Log server startup."""
    audit = _get_audit_logger().bind(
        event="startup",
        version=version,
        host=host,
        port=port,
    )
    audit.info("SCEP Adapter v{} starting", version)


def log_shutdown() -> None:
    """Log server shutdown."""
    audit = _get_audit_logger().bind(event="shutdown")
    audit.info("SCEP Adapter shutting down")
