"""Typed models for analysis requests, engine runs and results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class ErrorCode(str, Enum):
    """Envelope error codes returned to API callers."""

    INVALID_INPUT = "INVALID_INPUT"
    MISSING_FILES = "MISSING_FILES"
    TOO_MANY_FILES = "TOO_MANY_FILES"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    ENGINE_FAILED = "ENGINE_FAILED"
    BLOCK_PARSE_FAILED = "BLOCK_PARSE_FAILED"
    INVALID_ENGINE_OUTPUT = "INVALID_ENGINE_OUTPUT"
    UNSUPPORTED_ENGINE_PROTOCOL = "UNSUPPORTED_ENGINE_PROTOCOL"
    READ_OUTPUT_FAILED = "READ_OUTPUT_FAILED"
    TIMEOUT = "TIMEOUT"
    CLIENT_DISCONNECTED = "CLIENT_DISCONNECTED"
    ENGINE_UNAVAILABLE = "ENGINE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(frozen=True, slots=True)
class SingleTxRequest:
    """Validated single-transaction analysis request."""

    raw_tx: str
    network: str | None = None
    prevouts: tuple[Any, ...] = ()
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class UploadedFile:
    """One multipart upload held in memory until materialized."""

    field_name: str
    filename: str
    content: bytes


@dataclass(frozen=True, slots=True)
class BlockUpload:
    """Validated block-mode upload trio."""

    blk: UploadedFile
    rev: UploadedFile
    xor: UploadedFile

    def files(self) -> tuple[UploadedFile, UploadedFile, UploadedFile]:
        return (self.blk, self.rev, self.xor)


@dataclass(frozen=True, slots=True)
class BlockFilesRequest:
    """Block-mode request after its uploads were written to scratch."""

    blk_path: Path
    rev_path: Path
    xor_path: Path


AnalysisRequest = SingleTxRequest | BlockFilesRequest


@dataclass(slots=True)
class BlockResults:
    """Ordered block-mode results, one per discovered result file."""

    blocks: list[dict[str, Any]] = field(default_factory=list)
    source_files: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        """Unwrap a single result, otherwise tag the collection."""

        if len(self.blocks) == 1:
            return self.blocks[0]
        return {"ok": True, "blocks": self.blocks}


@dataclass(slots=True)
class EngineInvocation:
    """One engine subprocess run, completed exactly once."""

    argv: tuple[str, ...]
    cwd: Path
    stdout: bytearray = field(default_factory=bytearray)
    stderr: bytearray = field(default_factory=bytearray)
    exit_code: int | None = None
    timed_out: bool = False
    cancelled: bool = False
    duration_seconds: float = 0.0

    @property
    def completed(self) -> bool:
        return self.exit_code is not None

    def complete(
        self,
        exit_code: int,
        *,
        duration_seconds: float,
        timed_out: bool = False,
        cancelled: bool = False,
    ) -> None:
        """Record the terminal state; a second completion is a bug."""

        if self.exit_code is not None:
            raise RuntimeError(f"Engine invocation already completed with {self.exit_code}.")
        self.exit_code = exit_code
        self.duration_seconds = duration_seconds
        self.timed_out = timed_out
        self.cancelled = cancelled

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")
