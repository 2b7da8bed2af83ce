"""FastAPI application exposing the analysis broker."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException

from analyzer_broker import __version__
from analyzer_broker.api.responses import (
    block_error,
    block_success,
    health_payload,
    single_tx_error,
    single_tx_success,
)
from analyzer_broker.config import Settings
from analyzer_broker.errors import BrokerError, InternalError, RequestValidationError
from analyzer_broker.models import ErrorCode, UploadedFile
from analyzer_broker.service import AnalysisService
from analyzer_broker.validation import (
    BLOCK_FIELDS,
    decode_json_body,
    validate_block_upload,
    validate_single_tx,
)

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    service: AnalysisService | None = None,
) -> FastAPI:
    """Build the broker app; `service` may be injected for tests."""

    settings = settings or Settings.from_env()
    service = service or AnalysisService.from_settings(settings)

    app = FastAPI(title="analyzer-broker", version=__version__)
    app.state.settings = settings
    app.state.service = service

    if settings.server.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.server.cors_origins),
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        return health_payload()

    @app.post("/api/analyze")
    async def analyze(request: Request) -> JSONResponse:
        try:
            body = decode_json_body(
                await request.body(),
                max_bytes=settings.server.max_body_bytes,
            )
            tx_request = validate_single_tx(body)
            result = await service.analyze_transaction(
                tx_request,
                disconnected=request.is_disconnected,
            )
        except BrokerError as error:
            _log_rejection("/api/analyze", error)
            return single_tx_error(error)
        except Exception as error:
            logger.exception("Unexpected failure in /api/analyze")
            return single_tx_error(InternalError(str(error) or type(error).__name__))
        return single_tx_success(result)

    @app.post("/api/analyze-block")
    async def analyze_block(request: Request) -> JSONResponse:
        try:
            upload = validate_block_upload(await _read_block_files(request))
            results = await service.analyze_block(
                upload,
                disconnected=request.is_disconnected,
            )
        except BrokerError as error:
            _log_rejection("/api/analyze-block", error)
            return block_error(error)
        except Exception as error:
            logger.exception("Unexpected failure in /api/analyze-block")
            return block_error(InternalError(str(error) or type(error).__name__))
        return block_success(results)

    if settings.server.static_dir is not None:
        app.mount(
            "/",
            StaticFiles(directory=settings.server.static_dir, html=True),
            name="dashboard",
        )

    return app


async def _read_block_files(request: Request) -> dict[str, list[UploadedFile]]:
    try:
        form = await request.form()
    except HTTPException as error:
        raise RequestValidationError(
            f"Malformed multipart body: {error.detail}",
            code=ErrorCode.MISSING_FILES,
        ) from error

    files: dict[str, list[UploadedFile]] = {}
    try:
        for name in BLOCK_FIELDS:
            files[name] = [
                UploadedFile(
                    field_name=name,
                    filename=item.filename or name,
                    content=await item.read(),
                )
                for item in form.getlist(name)
                if isinstance(item, UploadFile)
            ]
    finally:
        await form.close()
    return files


def _log_rejection(route: str, error: BrokerError) -> None:
    if isinstance(error, RequestValidationError):
        logger.info("%s rejected: %s (%s)", route, error.code.value, error.message)
        return
    logger.warning("%s failed: %s (%s)", route, error.code.value, error.message)
