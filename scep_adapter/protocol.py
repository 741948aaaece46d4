"""SCEP protocol model.

Operation names, content types, payload limits, and the request/response
shapes exchanged between the dispatcher and the transport codec.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType


class Operation(str, Enum):
    """SCEP operations carried in the ``operation`` query parameter."""

    GET_CA_CAPS = "GetCACaps"
    GET_CA_CERT = "GetCACert"
    PKI_OPERATION = "PKIOperation"
    GET_NEXT_CA_CERT = "GetNextCACert"


# Capability tokens that allow PKIOperation over POST
CAP_POST_PKI_OPERATION = "POSTPKIOperation"
CAP_SCEP_STANDARD = "SCEPStandard"

CONTENT_TYPE_CA_CERT = "application/x-x509-ca-cert"
CONTENT_TYPE_CA_RA_CERT = "application/x-x509-ca-ra-cert"
CONTENT_TYPE_PKI_MESSAGE = "application/x-pki-message"
CONTENT_TYPE_TEXT = "text/plain"

# 2 MiB cap on any response or POST body
MAX_PAYLOAD_SIZE = 2 << 20
# Bytes of an error body surfaced as diagnostic text
ERROR_SNIPPET_SIZE = 4096

# Chain hint set when the server labels its answer as a certificate chain.
# The real count is only known after parsing the PKCS#7 payload.
CERT_CHAIN_HINT = 2

_CONTENT_TYPES: MappingProxyType[Operation, str] = MappingProxyType(
    {
        Operation.GET_CA_CERT: CONTENT_TYPE_CA_CERT,
        Operation.PKI_OPERATION: CONTENT_TYPE_PKI_MESSAGE,
    },
)


def content_header(operation: Operation | None, ca_cert_num: int) -> str:
    """Return the Content-Type a responder sends for an operation.

    Args:
        operation: Operation being answered.
        ca_cert_num: Number of certificates in a GetCACert answer.

    Returns:
        Content-Type header value.
    """
    if operation is None:
        return CONTENT_TYPE_TEXT
    if operation is Operation.GET_CA_CERT and ca_cert_num > 1:
        return CONTENT_TYPE_CA_RA_CERT
    return _CONTENT_TYPES.get(operation, CONTENT_TYPE_TEXT)


def parse_operation(value: str | None) -> Operation | None:
    """Map a query parameter value to an Operation, or None if unknown."""
    if not value:
        return None
    try:
        return Operation(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class SCEPRequest:
    """A SCEP request before it is put on the wire.

    An ``operation`` of None is an empty request, encoded with an empty
    ``operation`` query value.
    """

    operation: Operation | None
    message: bytes = b""

    @property
    def operation_name(self) -> str:
        """Protocol name of the operation, empty for an empty request."""
        return self.operation.value if self.operation else ""


@dataclass(frozen=True)
class SCEPResponse:
    """A SCEP response on either side of the wire.

    Business errors of a PKI operation are carried inside the CertRep payload;
    ``error`` is only set for failures of the responder itself.
    """

    operation: Operation | None = None
    ca_cert_num: int = 0
    data: bytes = b""
    error: Exception | None = None

    @property
    def is_chain(self) -> bool:
        """Whether the server labelled the payload as a certificate chain."""
        return self.ca_cert_num >= CERT_CHAIN_HINT
