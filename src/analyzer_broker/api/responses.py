"""Map broker outcomes to the uniform JSON envelope and HTTP status."""

from __future__ import annotations

from typing import Any

from fastapi.responses import JSONResponse

from analyzer_broker.errors import BrokerError, EngineExecutionError, EngineOutputError
from analyzer_broker.models import BlockResults, ErrorCode

INVALID_INPUT_ERROR = "Invalid input JSON"
ANALYZER_FAILED_ERROR = "Analyzer failed"
INVALID_OUTPUT_ERROR = "Invalid JSON from analyzer"

_SINGLE_TX_HEADLINES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_INPUT: INVALID_INPUT_ERROR,
    ErrorCode.PAYLOAD_TOO_LARGE: INVALID_INPUT_ERROR,
    ErrorCode.ENGINE_FAILED: ANALYZER_FAILED_ERROR,
    ErrorCode.INVALID_ENGINE_OUTPUT: INVALID_OUTPUT_ERROR,
}


def health_payload() -> dict[str, Any]:
    return {"ok": True}


def single_tx_success(result: dict[str, Any]) -> JSONResponse:
    """Pass the engine object through verbatim."""

    return JSONResponse(status_code=200, content=result)


def block_success(results: BlockResults) -> JSONResponse:
    return JSONResponse(status_code=200, content=results.to_payload())


def single_tx_error(error: BrokerError) -> JSONResponse:
    """Flat envelope: string `error` headline plus a machine-readable `code`."""

    payload: dict[str, Any] = {
        "ok": False,
        "error": _SINGLE_TX_HEADLINES.get(error.code, error.message),
        "code": error.code.value,
    }
    if isinstance(error, EngineExecutionError):
        payload["details"] = error.stderr
        payload["message"] = error.message
    elif isinstance(error, EngineOutputError):
        payload["raw_output"] = error.raw_output
    elif error.code in _SINGLE_TX_HEADLINES:
        payload["details"] = error.message
    elif error.details:
        payload["details"] = error.details
    return JSONResponse(status_code=error.http_status, content=payload)


def block_error(error: BrokerError) -> JSONResponse:
    """Nested envelope: `error` is a `{code, message}` object."""

    payload: dict[str, Any] = {
        "ok": False,
        "error": {"code": error.code.value, "message": error.message},
    }
    if isinstance(error, EngineOutputError):
        payload["raw_output"] = error.raw_output
    elif error.details and error.details != error.message:
        payload["details"] = error.details
    return JSONResponse(status_code=error.http_status, content=payload)
