"""SCEP responder service.

Answers the four SCEP operations. Capabilities and CA certificates come
from configuration; PKI messages are opaque and handed to a pluggable
handler that owns the CMS processing.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from scep_adapter.exceptions import PKIOperationNotSupportedError
from scep_adapter.protocol import Operation

if TYPE_CHECKING:
    from scep_adapter.ca.store import CACertificateStore


class PKIMessageHandler(Protocol):
    """Processes SCEP PKI messages; implemented outside this package."""

    async def pki_operation(self, message: bytes) -> bytes:
        """Handle a PKIMessage (PKCSReq, RenewalReq, CertPoll, ...) and return a CertRep."""
        ...

    async def get_next_ca_cert(self) -> bytes:
        """Return the signed rollover CA certificate response."""
        ...


class SCEPService:
    """SCEP operations as seen by the responder."""

    def __init__(
        self,
        capabilities: list[str],
        ca_store: CACertificateStore,
        pki_handler: PKIMessageHandler | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            capabilities: Capability tokens advertised by GetCACaps.
            ca_store: Certificates returned by GetCACert.
            pki_handler: Handler for PKIOperation and GetNextCACert, if any.
        """
        self._capabilities = list(capabilities)
        self._ca_store = ca_store
        self._pki_handler = pki_handler

    async def get_ca_caps(self) -> bytes:
        """Return the newline-separated capability list."""
        return "\n".join(self._capabilities).encode("utf-8")

    async def get_ca_cert(self) -> tuple[bytes, int]:
        """Return the CA certificate payload and certificate count."""
        return self._ca_store.get_ca_cert()

    async def pki_operation(self, message: bytes) -> bytes:
        """Forward a PKI message to the handler."""
        if self._pki_handler is None:
            raise PKIOperationNotSupportedError.no_handler(operation=Operation.PKI_OPERATION.value)
        return await self._pki_handler.pki_operation(message)

    async def get_next_ca_cert(self) -> bytes:
        """Return the rollover CA certificate from the handler."""
        if self._pki_handler is None:
            raise PKIOperationNotSupportedError.no_handler(operation=Operation.GET_NEXT_CA_CERT.value)
        return await self._pki_handler.get_next_ca_cert()
