"""
HTTP surface of the relay.

``POST /api/relay`` accepts ``{request, signature}`` and answers with
``{success, txHash}`` or ``{error, details}``. Relaying blocks on RPC calls,
so it runs in the threadpool rather than on the event loop.
"""
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.concurrency import run_in_threadpool

from .exceptions import ErrorKind
from .forwarder import ForwarderError, ForwarderTransport
from .models import NonceResponse, to_checksum
from .relay import RelayResult, RelayService
from .version import __version__

logger = logging.getLogger(__name__)


def _error_response(kind: ErrorKind, details: str) -> JSONResponse:
    result = RelayResult.failure(kind, details)
    return JSONResponse(result.to_response(), status_code=result.http_status)


def create_app(service: RelayService, forwarder: Optional[ForwarderTransport] = None) -> FastAPI:
    """
    Build the FastAPI application serving ``service``.

    Args:
        service: Relay service handling ``POST /api/relay``
        forwarder: Transport used for nonce lookups (defaults to the
            service's forwarder)
    """
    forwarder = forwarder or service.forwarder
    app = FastAPI(title="Gasless Relay", version=__version__)

    @app.post("/api/relay")
    async def relay(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            return _error_response(ErrorKind.MALFORMED_INPUT, "Request body is not valid JSON")

        result = await run_in_threadpool(service.relay_payload, body)
        return JSONResponse(result.to_response(), status_code=result.http_status)

    @app.get("/api/nonce/{account}")
    async def nonce(account: str) -> JSONResponse:
        try:
            account = to_checksum(account, "account")
        except ValueError as e:
            return _error_response(ErrorKind.MALFORMED_INPUT, str(e))

        try:
            value = await run_in_threadpool(forwarder.read_nonce, account)
        except ForwarderError as e:
            logger.error(f"Nonce lookup failed for {account[:10]}…: {e}")
            return _error_response(ErrorKind.SUBMISSION_FAILED, "Nonce lookup failed")

        return JSONResponse(NonceResponse(account=account, nonce=str(value)).model_dump())

    @app.get("/health")
    async def health() -> dict:
        return {
            "status": "ok",
            "chainId": service.domain.chain_id,
            "forwarder": service.domain.verifying_contract,
            "relayer": forwarder.relayer_address,
        }

    return app
