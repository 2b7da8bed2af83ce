"""Controllers for broker CLI commands."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import uvicorn

from analyzer_broker.api import create_app
from analyzer_broker.api.responses import block_error, single_tx_error
from analyzer_broker.config import Settings
from analyzer_broker.errors import BrokerError, RequestValidationError
from analyzer_broker.models import UploadedFile
from analyzer_broker.service import AnalysisService
from analyzer_broker.validation import decode_json_body, validate_block_upload, validate_single_tx


@dataclass(slots=True)
class ServeCommand:
    """CLI input for running the HTTP API."""

    host: str | None = None
    port: int | None = None
    engine_command: str | None = None
    scratch_dir: Path | None = None


@dataclass(slots=True)
class AnalyzeTxCommand:
    """CLI input for one local single-tx analysis."""

    input_path: Path
    engine_command: str | None = None


@dataclass(slots=True)
class AnalyzeBlockCommand:
    """CLI input for one local block analysis."""

    blk_path: Path
    rev_path: Path
    xor_path: Path
    engine_command: str | None = None


@dataclass(slots=True)
class CommandOutcome:
    """Rendered command output plus success flag."""

    success: bool
    lines: list[str] = field(default_factory=list)


class BrokerCliController:
    """Resolve settings and run broker use-cases for the CLI."""

    def serve(self, command: ServeCommand) -> None:
        settings = _settings(engine_command=command.engine_command, scratch_dir=command.scratch_dir)
        if command.host is not None:
            settings.server.host = command.host
        if command.port is not None:
            settings.server.port = command.port
        settings.validate()
        _configure_logging(settings)
        uvicorn.run(
            create_app(settings),
            host=settings.server.host,
            port=settings.server.port,
            log_level=settings.log_level.lower(),
        )

    def analyze_tx(self, command: AnalyzeTxCommand) -> CommandOutcome:
        settings = _settings(engine_command=command.engine_command)
        settings.validate()
        _configure_logging(settings)
        service = AnalysisService.from_settings(settings)
        try:
            request = validate_single_tx(
                decode_json_body(
                    command.input_path.read_bytes(),
                    max_bytes=settings.server.max_body_bytes,
                ),
            )
            result = asyncio.run(service.analyze_transaction(request))
        except BrokerError as error:
            return _failure(single_tx_error(error).body)
        return CommandOutcome(success=True, lines=[_dump(result)])

    def analyze_block(self, command: AnalyzeBlockCommand) -> CommandOutcome:
        settings = _settings(engine_command=command.engine_command)
        settings.validate()
        _configure_logging(settings)
        service = AnalysisService.from_settings(settings)
        try:
            upload = validate_block_upload(
                {
                    "blk": [_read_upload("blk", command.blk_path)],
                    "rev": [_read_upload("rev", command.rev_path)],
                    "xor": [_read_upload("xor", command.xor_path)],
                },
            )
            results = asyncio.run(service.analyze_block(upload))
        except BrokerError as error:
            return _failure(block_error(error).body)
        return CommandOutcome(success=True, lines=[_dump(results.to_payload())])


def _settings(*, engine_command: str | None, scratch_dir: Path | None = None) -> Settings:
    settings = Settings.from_env()
    if engine_command is not None:
        settings.engine = replace(settings.engine, command=engine_command)
    if scratch_dir is not None:
        settings.scratch_dir = scratch_dir
    return settings


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _read_upload(field_name: str, path: Path) -> UploadedFile:
    try:
        content = path.read_bytes()
    except OSError as error:
        raise RequestValidationError(f"Cannot read {field_name} file {path}: {error}") from error
    return UploadedFile(field_name=field_name, filename=path.name, content=content)


def _failure(body: bytes) -> CommandOutcome:
    return CommandOutcome(success=False, lines=[_dump(json.loads(body))])


def _dump(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)
