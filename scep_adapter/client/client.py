"""SCEP client: the four protocol operations plus capability negotiation.

Usage::

    async with SCEPClient("ca.example.com/scep") as client:
        caps = await client.get_ca_caps()
        ca_der, chain_hint = await client.get_ca_cert()
        cert_rep = await client.pki_operation(pkcs_req)
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import httpx

from scep_adapter.audit.logger import log_capabilities_updated, log_transport_selected
from scep_adapter.client.capabilities import CapabilityStore
from scep_adapter.client.endpoints import make_client_endpoints, parse_server_url
from scep_adapter.exceptions import RequestCancelledError, TransportError
from scep_adapter.protocol import (
    CAP_POST_PKI_OPERATION,
    CAP_SCEP_STANDARD,
    Operation,
    SCEPRequest,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path
    from types import TracebackType

    from scep_adapter.client.endpoints import Endpoint
    from scep_adapter.config import ClientConfig
    from scep_adapter.protocol import SCEPResponse


class SCEPClient:
    """Async SCEP client bound to one server instance.

    Every operation accepts ``timeout``, a deadline in seconds covering the
    whole call including any implicit capability fetch. ``None`` falls back
    to the client's default. An expired deadline raises RequestCancelledError.
    """

    def __init__(
        self,
        server_url: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = 30.0,
        verify: bool | str = True,
    ) -> None:
        """Create a client; no network I/O happens here.

        Args:
            server_url: SCEP server address, scheme optional (defaults to http).
            http_client: Async HTTP client to use. Created and owned if omitted.
            timeout: Default call deadline in seconds, None for no deadline.
            verify: TLS verification flag or CA bundle path for an owned client.

        Raises:
            InvalidServerURLError: If ``server_url`` cannot be parsed.
        """
        parse_server_url(server_url)

        self._owned_client = http_client is None
        if http_client is None:
            http_client = httpx.AsyncClient(timeout=timeout, verify=verify)
        self._http_client = http_client
        self._endpoints = make_client_endpoints(server_url, http_client)
        self._timeout = timeout
        self._capabilities = CapabilityStore(self._fetch_capabilities)

    @classmethod
    def from_config(cls, config: ClientConfig, *, http_client: httpx.AsyncClient | None = None) -> SCEPClient:
        """Create client from configuration."""
        verify: bool | Path = config.verify_tls
        return cls(
            config.server_url,
            http_client=http_client,
            timeout=config.timeout,
            verify=verify if isinstance(verify, bool) else str(verify),
        )

    @property
    def server_url(self) -> httpx.URL:
        """Parsed server URL shared by both endpoints."""
        return self._endpoints.get.url

    @property
    def capabilities(self) -> bytes:
        """Cached capability list; empty until the first query."""
        return self._capabilities.snapshot()

    async def aclose(self) -> None:
        """Stop any pending capability fetch, then close the HTTP client if owned."""
        await self._capabilities.aclose()
        if self._owned_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> SCEPClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # ---------- Operations ---------------------------------------------------

    async def get_ca_caps(self, *, timeout: float | None = None) -> bytes:
        """Query the server's capability list and replace the cache with it.

        Returns:
            Raw capability list as sent by the server.
        """
        async with self._deadline(Operation.GET_CA_CAPS, timeout):
            response = await self._endpoints.get(SCEPRequest(Operation.GET_CA_CAPS))
        data = _unwrap(response)
        self._capabilities.replace(data)
        log_capabilities_updated(capabilities=data, implicit=False)
        return data

    async def get_ca_cert(self, *, timeout: float | None = None) -> tuple[bytes, int]:
        """Fetch the CA certificate or certificate chain.

        Returns:
            Tuple of payload and chain hint. The hint is 2 when the server
            labelled the payload as a chain, else 0.
        """
        async with self._deadline(Operation.GET_CA_CERT, timeout):
            response = await self._endpoints.get(SCEPRequest(Operation.GET_CA_CERT))
        return _unwrap(response), response.ca_cert_num

    async def pki_operation(self, message: bytes, *, timeout: float | None = None) -> bytes:
        """Send a PKI message (PKCSReq, RenewalReq, CertPoll, ...).

        Uses POST when the server advertises POSTPKIOperation or SCEPStandard,
        fetching capabilities first if none are cached; otherwise GET.

        Returns:
            Raw CertRep message.
        """
        async with self._deadline(Operation.PKI_OPERATION, timeout):
            endpoint = await self._pki_endpoint()
            response = await endpoint(SCEPRequest(Operation.PKI_OPERATION, message))
        return _unwrap(response)

    async def get_next_ca_cert(self, *, timeout: float | None = None) -> bytes:
        """Fetch the rollover CA certificate chain."""
        async with self._deadline(Operation.GET_NEXT_CA_CERT, timeout):
            response = await self._endpoints.get(SCEPRequest(Operation.GET_NEXT_CA_CERT))
        return _unwrap(response)

    async def supports(self, capability: str, *, timeout: float | None = None) -> bool:
        """Whether the server advertises ``capability``.

        Fetches the capability list first if none is cached. A failed fetch
        raises rather than reporting the capability as unsupported.
        """
        async with self._deadline(Operation.GET_CA_CAPS, timeout):
            return await self._capabilities.supports(capability)

    # ---------- Internals ----------------------------------------------------

    async def _pki_endpoint(self) -> Endpoint:
        caps = await self._capabilities.ensure()
        if CAP_POST_PKI_OPERATION.encode("utf-8") in caps or CAP_SCEP_STANDARD.encode("utf-8") in caps:
            endpoint = self._endpoints.post
        else:
            endpoint = self._endpoints.get
        log_transport_selected(operation=Operation.PKI_OPERATION.value, method=endpoint.method)
        return endpoint

    async def _fetch_capabilities(self) -> bytes:
        async with self._deadline(Operation.GET_CA_CAPS, None):
            response = await self._endpoints.get(SCEPRequest(Operation.GET_CA_CAPS))
        data = _unwrap(response)
        log_capabilities_updated(capabilities=data, implicit=True)
        return data

    @asynccontextmanager
    async def _deadline(self, operation: Operation, timeout: float | None) -> AsyncIterator[None]:
        """Apply the call deadline and translate transport failures."""
        deadline = self._timeout if timeout is None else timeout
        try:
            async with asyncio.timeout(deadline):
                yield
        except (TimeoutError, httpx.TimeoutException) as e:
            raise RequestCancelledError.deadline_exceeded(operation=operation.value, timeout=deadline) from e
        except httpx.TransportError as e:
            raise TransportError.from_httpx(operation=operation.value, error=e) from e


def _unwrap(response: SCEPResponse) -> bytes:
    if response.error is not None:
        raise response.error
    return response.data
