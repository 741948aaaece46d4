"""SCEP transport codec.

Pure functions translating between SCEP requests/responses and HTTP:

- ``encode_request``: SCEPRequest -> ``httpx.Request`` (client side)
- ``decode_response``: ``httpx.Response`` -> SCEPResponse (client side)
- ``encode_response``: SCEPResponse -> ``fastapi.Response`` (responder side)
- ``extract_message``: incoming GET/POST -> raw message bytes (responder side)
"""

from __future__ import annotations

import base64
import binascii
from http import HTTPStatus
from typing import TYPE_CHECKING

import httpx
from fastapi import Response

from scep_adapter.exceptions import (
    HTTPStatusError,
    MalformedRequestError,
    RequestConstructionError,
    TransportReadError,
    UnsupportedMethodError,
)
from scep_adapter.protocol import (
    CERT_CHAIN_HINT,
    CONTENT_TYPE_CA_RA_CERT,
    CONTENT_TYPE_TEXT,
    ERROR_SNIPPET_SIZE,
    MAX_PAYLOAD_SIZE,
    SCEPRequest,
    SCEPResponse,
    content_header,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from scep_adapter.protocol import Operation

METHOD_GET = "GET"
METHOD_POST = "POST"

# Faults while streaming a body, other than timeouts
_READ_FAULTS = (httpx.ReadError, httpx.RemoteProtocolError, httpx.DecodingError)


def encode_request(method: str, url: httpx.URL, request: SCEPRequest) -> httpx.Request:
    """Encode a SCEP request for the given HTTP method.

    GET carries the message base64url-encoded in the ``message`` query
    parameter. POST carries it verbatim as the body, with an explicit
    Content-Length since some CA servers reject chunked uploads.

    Args:
        method: HTTP method, GET or POST.
        url: Base URL of the SCEP server; existing query parameters are kept.
        request: The request to encode.

    Returns:
        A new ``httpx.Request``; ``url`` is not modified.

    Raises:
        UnsupportedMethodError: If method is neither GET nor POST.
        RequestConstructionError: If the POST request cannot be built.
    """
    target = url.copy_set_param("operation", request.operation_name)

    if method == METHOD_GET:
        if request.message:
            msg = base64.urlsafe_b64encode(request.message).decode("ascii")
            target = target.copy_set_param("message", msg)
        return httpx.Request(METHOD_GET, target)

    if method == METHOD_POST:
        body = bytes(request.message)
        try:
            return httpx.Request(
                METHOD_POST,
                target,
                content=body,
                headers={"Content-Length": str(len(body))},
            )
        except (httpx.InvalidURL, TypeError, ValueError) as e:
            raise RequestConstructionError.for_operation(
                operation=request.operation_name,
                reason=str(e),
            ) from e

    raise UnsupportedMethodError.for_method(method=method)


async def _read_body(response: httpx.Response, limit: int, *, best_effort: bool) -> bytes:
    """Read a streamed body up to ``limit`` bytes.

    With ``best_effort`` the body is cut at the limit and a read fault ends
    the read with whatever arrived. Otherwise a body over the limit or a read
    fault raises TransportReadError.
    """
    buf = bytearray()
    try:
        async for chunk in response.aiter_bytes():
            buf.extend(chunk)
            if len(buf) > limit:
                if best_effort:
                    return bytes(buf[:limit])
                raise TransportReadError.payload_too_large(limit=limit)
    except _READ_FAULTS as e:
        if best_effort:
            return bytes(buf[:limit])
        raise TransportReadError.read_failed(reason=str(e)) from e
    return bytes(buf)


async def decode_response(
    response: httpx.Response,
    operation: Operation | None = None,
) -> SCEPResponse:
    """Decode a streamed HTTP response into a SCEPResponse.

    The response stream is always closed, whatever the outcome.

    Args:
        response: Response obtained with ``stream=True``.
        operation: Operation the response answers, recorded on the result.

    Returns:
        SCEPResponse with payload and chain hint.

    Raises:
        HTTPStatusError: If the server answered with status 400 or above.
        TransportReadError: If the body exceeds MAX_PAYLOAD_SIZE or reading fails.
    """
    try:
        if response.status_code != HTTPStatus.OK and response.status_code >= HTTPStatus.BAD_REQUEST:
            snippet = await _read_body(response, ERROR_SNIPPET_SIZE, best_effort=True)
            raise HTTPStatusError(
                response.status_code,
                response.reason_phrase,
                snippet.decode("utf-8", errors="replace"),
            )
        data = await _read_body(response, MAX_PAYLOAD_SIZE, best_effort=False)
    finally:
        await response.aclose()

    ca_cert_num = 0
    if response.headers.get("Content-Type") == CONTENT_TYPE_CA_RA_CERT:
        # Only signals a chain; the actual count is in the PKCS#7 payload.
        ca_cert_num = CERT_CHAIN_HINT

    return SCEPResponse(operation=operation, ca_cert_num=ca_cert_num, data=data)


def encode_response(response: SCEPResponse) -> Response:
    """Encode a SCEP response for the responder.

    Errors become a plain-text 500 page. Otherwise the Content-Type is looked
    up by operation and certificate count, and the payload is sent verbatim.
    """
    if response.error is not None:
        return Response(
            content=str(response.error),
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            media_type=CONTENT_TYPE_TEXT,
        )
    return Response(
        content=response.data,
        headers={"Content-Type": content_header(response.operation, response.ca_cert_num)},
    )


def _decode_get_message(value: str) -> bytes:
    # Accept both alphabets and missing padding; clients disagree on both.
    normalized = value.replace("+", "-").replace("/", "_").replace(" ", "-")
    normalized += "=" * (-len(normalized) % 4)
    try:
        return base64.b64decode(normalized, altchars=b"-_", validate=True)
    except binascii.Error as e:
        raise MalformedRequestError.invalid_message(reason=str(e)) from e


def extract_message(method: str, query: Mapping[str, str], body: bytes) -> bytes:
    """Extract the SCEP message from an incoming request.

    GET decodes the base64 ``message`` query value (absent means empty).
    POST returns the body, which must fit in MAX_PAYLOAD_SIZE.

    Raises:
        UnsupportedMethodError: If method is neither GET nor POST.
        MalformedRequestError: If a GET message is not valid base64.
        TransportReadError: If a POST body exceeds MAX_PAYLOAD_SIZE.
    """
    if method == METHOD_GET:
        return _decode_get_message(query.get("message", ""))
    if method == METHOD_POST:
        if len(body) > MAX_PAYLOAD_SIZE:
            raise TransportReadError.payload_too_large(limit=MAX_PAYLOAD_SIZE)
        return body
    raise UnsupportedMethodError.for_method(method=method)
