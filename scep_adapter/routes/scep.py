"""SCEP responder endpoint.

A single route answers every operation, selected by the ``operation``
query parameter:

- GET  ?operation=GetCACaps
- GET  ?operation=GetCACert
- GET  ?operation=PKIOperation&message=<base64>
- POST ?operation=PKIOperation (raw PKIMessage body)
- GET  ?operation=GetNextCACert
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response

from scep_adapter.audit.logger import (
    clear_correlation_id,
    log_error,
    log_request_served,
    set_correlation_id,
)
from scep_adapter.exceptions import MalformedRequestError, SCEPAdapterError, TransportReadError
from scep_adapter.protocol import MAX_PAYLOAD_SIZE, Operation, SCEPResponse, parse_operation
from scep_adapter.service import SCEPService
from scep_adapter.transport.codec import METHOD_POST, encode_response, extract_message

# Mounted under ServerConfig.path by main.create_app
router = APIRouter()


@dataclass
class RouteState:
    """Mutable state container for route dependencies."""

    service: SCEPService | None = None


_state = RouteState()


def configure_routes(service: SCEPService) -> None:
    """Configure routes with the service instance.

    Called by main.py during startup.
    """
    _state.service = service


def get_service() -> SCEPService:
    """Dependency to get the SCEP service."""
    if _state.service is None:
        msg = "SCEP service not configured"
        raise RuntimeError(msg)
    return _state.service


async def _read_body(request: Request) -> bytes:
    """Read the POST body, giving up as soon as it passes MAX_PAYLOAD_SIZE."""
    buf = bytearray()
    async for chunk in request.stream():
        buf.extend(chunk)
        if len(buf) > MAX_PAYLOAD_SIZE:
            raise TransportReadError.payload_too_large(limit=MAX_PAYLOAD_SIZE)
    return bytes(buf)


async def _dispatch(service: SCEPService, operation: Operation, message: bytes) -> SCEPResponse:
    if operation is Operation.GET_CA_CAPS:
        return SCEPResponse(operation=operation, data=await service.get_ca_caps())
    if operation is Operation.GET_CA_CERT:
        data, cert_num = await service.get_ca_cert()
        return SCEPResponse(operation=operation, ca_cert_num=cert_num, data=data)
    if operation is Operation.PKI_OPERATION:
        return SCEPResponse(operation=operation, data=await service.pki_operation(message))
    return SCEPResponse(operation=operation, data=await service.get_next_ca_cert())


@router.api_route("", methods=["GET", "POST"])
async def scep_operation(
    request: Request,
    service: Annotated[SCEPService, Depends(get_service)],
    operation: str | None = None,
) -> Response:
    """Answer one SCEP operation.

    Service failures are reported as plain-text 500 pages; malformed
    requests propagate to the application's error handler.
    """
    set_correlation_id()
    try:
        op = parse_operation(operation)
        if op is None:
            raise MalformedRequestError.unknown_operation(operation=operation or "")

        body = await _read_body(request) if request.method == METHOD_POST else b""
        message = extract_message(request.method, request.query_params, body)

        try:
            scep_response = await _dispatch(service, op, message)
        except SCEPAdapterError as e:
            log_error(error=e, context=op.value)
            scep_response = SCEPResponse(operation=op, error=e)

        response = encode_response(scep_response)
        log_request_served(
            operation=op.value,
            method=request.method,
            status_code=response.status_code,
            payload_size=len(scep_response.data),
        )
        return response
    finally:
        clear_correlation_id()
