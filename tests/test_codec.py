"""Contract tests for the SCEP transport codec.

Tests request encoding, response decoding, and responder-side encoding.
"""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING

import httpx
import pytest

from scep_adapter.exceptions import (
    HTTPStatusError,
    MalformedRequestError,
    TransportReadError,
    UnsupportedMethodError,
)
from scep_adapter.protocol import (
    CONTENT_TYPE_CA_CERT,
    CONTENT_TYPE_CA_RA_CERT,
    CONTENT_TYPE_PKI_MESSAGE,
    MAX_PAYLOAD_SIZE,
    Operation,
    SCEPRequest,
    SCEPResponse,
    content_header,
    parse_operation,
)
from scep_adapter.transport.codec import (
    decode_response,
    encode_request,
    encode_response,
    extract_message,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class RecordingStream(httpx.AsyncByteStream):
    """Async body stream that records whether it was closed."""

    def __init__(self, chunks: list[bytes], *, fail_after: int | None = None) -> None:
        self._chunks = chunks
        self._fail_after = fail_after
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for i, chunk in enumerate(self._chunks):
            if self._fail_after is not None and i >= self._fail_after:
                raise httpx.ReadError("connection reset")
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


# --- Fixtures ---


@pytest.fixture
def base_url() -> httpx.URL:
    """SCEP server URL."""
    return httpx.URL("http://ca.example.com/scep")


@pytest.fixture
def binary_message() -> bytes:
    """Payload whose standard base64 form contains '+' and '/'."""
    return bytes([0xFB, 0xFF, 0xBF, 0x00, 0x3E, 0x3F]) * 11


# --- Request encoding ---


class TestEncodeRequest:
    """Tests for encode_request."""

    def test_get_sets_operation(self, base_url: httpx.URL) -> None:
        """GET always carries the operation query parameter."""
        request = encode_request("GET", base_url, SCEPRequest(Operation.GET_CA_CAPS))

        assert request.method == "GET"
        assert request.url.params["operation"] == "GetCACaps"
        assert "message" not in request.url.params
        assert request.content == b""

    def test_get_message_is_base64url(self, base_url: httpx.URL, binary_message: bytes) -> None:
        """GET message decodes back to the exact payload with the URL-safe alphabet."""
        request = encode_request("GET", base_url, SCEPRequest(Operation.PKI_OPERATION, binary_message))

        encoded = request.url.params["message"]
        assert "+" not in encoded
        assert "/" not in encoded
        assert base64.urlsafe_b64decode(encoded) == binary_message

    def test_post_sends_raw_body(self, base_url: httpx.URL, binary_message: bytes) -> None:
        """POST carries the payload verbatim with an explicit Content-Length."""
        request = encode_request("POST", base_url, SCEPRequest(Operation.PKI_OPERATION, binary_message))

        assert request.method == "POST"
        assert request.content == binary_message
        assert request.headers["Content-Length"] == str(len(binary_message))
        assert "Transfer-Encoding" not in request.headers
        assert request.url.params["operation"] == "PKIOperation"
        assert "message" not in request.url.params

    def test_post_empty_body_has_zero_length(self, base_url: httpx.URL) -> None:
        """An empty POST still declares its length."""
        request = encode_request("POST", base_url, SCEPRequest(Operation.PKI_OPERATION))

        assert request.headers["Content-Length"] == "0"

    def test_empty_request_has_empty_operation(self, base_url: httpx.URL) -> None:
        """A request without operation encodes an empty operation value."""
        request = encode_request("GET", base_url, SCEPRequest(None))

        assert request.url.params["operation"] == ""

    def test_existing_query_is_kept(self) -> None:
        """Query parameters in the server URL survive encoding."""
        url = httpx.URL("http://ca.example.com/cgi-bin/pkiclient.exe?profile=devices")

        request = encode_request("GET", url, SCEPRequest(Operation.GET_CA_CERT))

        assert request.url.params["profile"] == "devices"
        assert request.url.params["operation"] == "GetCACert"
        assert url.params.get("operation") is None

    def test_unsupported_method_raises(self, base_url: httpx.URL) -> None:
        """Methods other than GET and POST are rejected."""
        with pytest.raises(UnsupportedMethodError, match="PUT"):
            encode_request("PUT", base_url, SCEPRequest(Operation.GET_CA_CAPS))


# --- Response decoding ---


class TestDecodeResponse:
    """Tests for decode_response."""

    @pytest.mark.asyncio
    async def test_success_payload(self) -> None:
        """A 200 response yields its body as payload."""
        response = httpx.Response(200, content=b"payload")

        decoded = await decode_response(response, Operation.PKI_OPERATION)

        assert decoded.data == b"payload"
        assert decoded.operation is Operation.PKI_OPERATION
        assert decoded.error is None

    @pytest.mark.asyncio
    async def test_error_status_raises_with_body(self) -> None:
        """A 404 raises HTTPStatusError carrying the body text."""
        response = httpx.Response(404, content=b"not found")

        with pytest.raises(HTTPStatusError) as exc_info:
            await decode_response(response)

        assert exc_info.value.status_code == 404
        assert "not found" in exc_info.value.body
        assert "not found" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_error_body_is_truncated(self) -> None:
        """Only the first 4096 bytes of an error body are kept."""
        response = httpx.Response(500, content=b"e" * 10000)

        with pytest.raises(HTTPStatusError) as exc_info:
            await decode_response(response)

        assert len(exc_info.value.body) == 4096

    @pytest.mark.asyncio
    async def test_redirect_status_is_not_an_error(self) -> None:
        """Statuses below 400 are decoded as payload."""
        response = httpx.Response(302, content=b"moved")

        decoded = await decode_response(response)

        assert decoded.data == b"moved"

    @pytest.mark.asyncio
    async def test_chain_content_type_sets_hint(self) -> None:
        """The CA/RA content type yields chain hint 2 regardless of payload."""
        response = httpx.Response(200, content=b"x", headers={"Content-Type": CONTENT_TYPE_CA_RA_CERT})

        decoded = await decode_response(response, Operation.GET_CA_CERT)

        assert decoded.ca_cert_num == 2
        assert decoded.is_chain

    @pytest.mark.asyncio
    async def test_leaf_content_type_hint_below_two(self) -> None:
        """The single CA content type yields a hint below 2."""
        response = httpx.Response(200, content=b"x" * 5000, headers={"Content-Type": CONTENT_TYPE_CA_CERT})

        decoded = await decode_response(response, Operation.GET_CA_CERT)

        assert decoded.ca_cert_num < 2
        assert not decoded.is_chain

    @pytest.mark.asyncio
    async def test_oversized_body_raises(self) -> None:
        """A body over the payload cap raises TransportReadError."""
        response = httpx.Response(200, content=b"x" * (MAX_PAYLOAD_SIZE + 1))

        with pytest.raises(TransportReadError):
            await decode_response(response)

    @pytest.mark.asyncio
    async def test_body_at_cap_is_accepted(self) -> None:
        """A body of exactly the payload cap is accepted."""
        response = httpx.Response(200, content=b"x" * MAX_PAYLOAD_SIZE)

        decoded = await decode_response(response)

        assert len(decoded.data) == MAX_PAYLOAD_SIZE

    @pytest.mark.asyncio
    async def test_stream_closed_on_success(self) -> None:
        """The body stream is released after a successful read."""
        stream = RecordingStream([b"ab", b"cd"])
        response = httpx.Response(200, stream=stream)

        decoded = await decode_response(response)

        assert decoded.data == b"abcd"
        assert stream.closed

    @pytest.mark.asyncio
    async def test_stream_closed_on_error_status(self) -> None:
        """The body stream is released when the status is an error."""
        stream = RecordingStream([b"server exploded"])
        response = httpx.Response(503, stream=stream)

        with pytest.raises(HTTPStatusError):
            await decode_response(response)

        assert stream.closed

    @pytest.mark.asyncio
    async def test_read_fault_raises_and_closes(self) -> None:
        """A read fault raises TransportReadError and still releases the stream."""
        stream = RecordingStream([b"ab", b"cd"], fail_after=1)
        response = httpx.Response(200, stream=stream)

        with pytest.raises(TransportReadError, match="connection reset"):
            await decode_response(response)

        assert stream.closed

    @pytest.mark.asyncio
    async def test_read_fault_on_error_status_keeps_status(self) -> None:
        """A broken error body still raises HTTPStatusError with what arrived."""
        stream = RecordingStream([b"partial", b"more"], fail_after=1)
        response = httpx.Response(503, stream=stream)

        with pytest.raises(HTTPStatusError) as exc_info:
            await decode_response(response)

        assert exc_info.value.status_code == 503
        assert exc_info.value.body == "partial"
        assert stream.closed


# --- Responder encoding ---


class TestEncodeResponse:
    """Tests for encode_response and content_header."""

    def test_error_is_plain_text_500(self) -> None:
        """An error response becomes a plain-text 500 page."""
        response = encode_response(SCEPResponse(operation=Operation.PKI_OPERATION, error=RuntimeError("boom")))

        assert response.status_code == 500
        assert response.body == b"boom"
        assert response.headers["content-type"].startswith("text/plain")

    def test_payload_written_verbatim(self) -> None:
        """The payload is sent unchanged with the looked-up content type."""
        response = encode_response(SCEPResponse(operation=Operation.PKI_OPERATION, data=b"\x30\x82"))

        assert response.status_code == 200
        assert response.body == b"\x30\x82"
        assert response.headers["content-type"] == CONTENT_TYPE_PKI_MESSAGE

    @pytest.mark.parametrize(
        ("operation", "cert_num", "expected"),
        [
            (Operation.GET_CA_CERT, 1, CONTENT_TYPE_CA_CERT),
            (Operation.GET_CA_CERT, 0, CONTENT_TYPE_CA_CERT),
            (Operation.GET_CA_CERT, 3, CONTENT_TYPE_CA_RA_CERT),
            (Operation.PKI_OPERATION, 0, CONTENT_TYPE_PKI_MESSAGE),
            (Operation.GET_CA_CAPS, 0, "text/plain"),
            (Operation.GET_NEXT_CA_CERT, 2, "text/plain"),
            (None, 0, "text/plain"),
        ],
    )
    def test_content_header_table(self, operation: Operation | None, cert_num: int, expected: str) -> None:
        """Content type depends on operation and certificate count."""
        assert content_header(operation, cert_num) == expected

    def test_parse_operation(self) -> None:
        """Known names map to operations, anything else to None."""
        assert parse_operation("GetCACert") is Operation.GET_CA_CERT
        assert parse_operation("getcacert") is None
        assert parse_operation("") is None
        assert parse_operation(None) is None


# --- Message extraction ---


class TestExtractMessage:
    """Tests for extract_message."""

    def test_get_decodes_urlsafe(self, binary_message: bytes) -> None:
        """GET message in URL-safe base64 is decoded."""
        encoded = base64.urlsafe_b64encode(binary_message).decode()

        assert extract_message("GET", {"message": encoded}, b"") == binary_message

    def test_get_decodes_standard_alphabet(self, binary_message: bytes) -> None:
        """GET message in standard base64 is decoded too."""
        encoded = base64.b64encode(binary_message).decode()

        assert extract_message("GET", {"message": encoded}, b"") == binary_message

    def test_get_accepts_missing_padding(self) -> None:
        """Unpadded base64 is accepted."""
        assert extract_message("GET", {"message": "YWI"}, b"") == b"ab"

    def test_get_without_message_is_empty(self) -> None:
        """GET without message yields an empty payload."""
        assert extract_message("GET", {}, b"") == b""

    def test_get_invalid_base64_raises(self) -> None:
        """Non-base64 characters are rejected."""
        with pytest.raises(MalformedRequestError):
            extract_message("GET", {"message": "!!!!"}, b"")

    def test_post_returns_body(self) -> None:
        """POST yields the body unchanged."""
        assert extract_message("POST", {}, b"raw") == b"raw"

    def test_post_over_cap_raises(self) -> None:
        """POST bodies over the cap are rejected."""
        with pytest.raises(TransportReadError):
            extract_message("POST", {}, b"x" * (MAX_PAYLOAD_SIZE + 1))

    def test_other_method_raises(self) -> None:
        """Other methods are rejected."""
        with pytest.raises(UnsupportedMethodError):
            extract_message("DELETE", {}, b"")
