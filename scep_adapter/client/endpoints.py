"""GET- and POST-bound invokers for one SCEP server URL."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from scep_adapter.audit.logger import log_request_sent, log_response_received
from scep_adapter.exceptions import InvalidServerURLError
from scep_adapter.transport.codec import METHOD_GET, METHOD_POST, decode_response, encode_request

if TYPE_CHECKING:
    from scep_adapter.protocol import SCEPRequest, SCEPResponse


class Endpoint:
    """Issues SCEP requests with a fixed HTTP method against a fixed URL."""

    def __init__(self, method: str, url: httpx.URL, http_client: httpx.AsyncClient) -> None:
        self.method = method
        self.url = url
        self._http_client = http_client

    async def __call__(self, request: SCEPRequest) -> SCEPResponse:
        """Encode, send and decode one SCEP exchange.

        Raises:
            HTTPStatusError: If the server answered with an error status.
            TransportReadError: If the body could not be read.
            httpx.TransportError: On connection-level failures and timeouts.
        """
        http_request = encode_request(self.method, self.url, request)
        log_request_sent(
            operation=request.operation_name,
            method=self.method,
            url=str(self.url),
            message_size=len(request.message),
        )

        http_response = await self._http_client.send(http_request, stream=True)
        response = await decode_response(http_response, request.operation)

        log_response_received(
            operation=request.operation_name,
            status_code=http_response.status_code,
            payload_size=len(response.data),
            ca_cert_num=response.ca_cert_num,
        )
        return response


@dataclass(frozen=True)
class EndpointPair:
    """GET and POST endpoints sharing one server URL."""

    get: Endpoint
    post: Endpoint


def parse_server_url(instance: str) -> httpx.URL:
    """Parse a SCEP server address, defaulting to plain HTTP.

    Raises:
        InvalidServerURLError: If the address cannot be parsed or has no host.
    """
    if "://" not in instance:
        instance = "http://" + instance
    try:
        url = httpx.URL(instance)
    except httpx.InvalidURL as e:
        raise InvalidServerURLError.from_instance(instance=instance, reason=str(e)) from e
    if not url.host:
        raise InvalidServerURLError.from_instance(instance=instance, reason="missing host")
    return url


def make_client_endpoints(instance: str, http_client: httpx.AsyncClient) -> EndpointPair:
    """Build the endpoint pair for a SCEP server.

    No network I/O happens here.

    Args:
        instance: Server address, with or without scheme.
        http_client: Shared async HTTP client used by both endpoints.

    Returns:
        EndpointPair bound to the parsed URL.
    """
    url = parse_server_url(instance)
    return EndpointPair(
        get=Endpoint(METHOD_GET, url, http_client),
        post=Endpoint(METHOD_POST, url, http_client),
    )
