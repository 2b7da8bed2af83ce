"""Orchestration of one analysis: scratch, engine run, collection, release."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from analyzer_broker.collector import collect_block_outputs, parse_single_output
from analyzer_broker.config import Settings
from analyzer_broker.engine.contract import EngineContract
from analyzer_broker.engine.diagnostics import describe_engine_failure
from analyzer_broker.engine.invoker import DisconnectProbe, EngineInvoker
from analyzer_broker.errors import (
    ClientDisconnectedError,
    EngineExecutionError,
    EngineTimeoutError,
    InternalError,
)
from analyzer_broker.models import (
    BlockFilesRequest,
    BlockResults,
    BlockUpload,
    EngineInvocation,
    ErrorCode,
    SingleTxRequest,
)
from analyzer_broker.scratch import ScratchManager, ScratchResource

logger = logging.getLogger(__name__)

SINGLE_TX_FAILURE_DEFAULT = "Analyzer failed"
BLOCK_FAILURE_DEFAULT = "Analyzer exited with error"


class AnalysisService:
    """Runs the engine for validated requests and owns their scratch space."""

    def __init__(
        self,
        *,
        scratch: ScratchManager,
        invoker: EngineInvoker,
        contract: EngineContract,
    ) -> None:
        self.scratch = scratch
        self.invoker = invoker
        self.contract = contract

    @classmethod
    def from_settings(cls, settings: Settings) -> AnalysisService:
        return cls(
            scratch=ScratchManager(settings.scratch_dir),
            invoker=EngineInvoker(
                timeout_seconds=settings.engine.timeout_seconds,
                terminate_grace_seconds=settings.engine.terminate_grace_seconds,
                poll_interval_seconds=settings.engine.poll_interval_seconds,
            ),
            contract=EngineContract(
                command=tuple(settings.engine.resolved_argv()),
                result_suffix=settings.engine.result_suffix,
            ),
        )

    async def analyze_transaction(
        self,
        request: SingleTxRequest,
        *,
        disconnected: DisconnectProbe | None = None,
    ) -> dict[str, Any]:
        """Run single-tx mode and return the engine's JSON object."""

        with self.scratch.scope("tx") as resource:
            workdir = _make_workdir(resource)
            input_path = _materialize(
                resource,
                json.dumps(request.payload, indent=2).encode("utf-8"),
                label="input",
                suffix=".json",
            )
            invocation = await self._run(
                self.contract.single_tx_argv(input_path),
                workdir=workdir,
                disconnected=disconnected,
            )
            if invocation.exit_code != 0:
                raise _engine_failure(
                    invocation,
                    default=SINGLE_TX_FAILURE_DEFAULT,
                    code=ErrorCode.ENGINE_FAILED,
                )
            return parse_single_output(invocation.stdout_text, contract=self.contract)

    async def analyze_block(
        self,
        upload: BlockUpload,
        *,
        disconnected: DisconnectProbe | None = None,
    ) -> BlockResults:
        """Run block mode in a private workdir and aggregate its result files."""

        with self.scratch.scope("block") as resource:
            workdir = _make_workdir(resource)
            request = BlockFilesRequest(
                blk_path=_materialize(resource, upload.blk.content, label="blk", suffix=".dat"),
                rev_path=_materialize(resource, upload.rev.content, label="rev", suffix=".dat"),
                xor_path=_materialize(resource, upload.xor.content, label="xor", suffix=".dat"),
            )
            invocation = await self._run(
                self.contract.block_argv(request.blk_path, request.rev_path, request.xor_path),
                workdir=workdir,
                disconnected=disconnected,
            )
            if invocation.exit_code != 0:
                raise _engine_failure(
                    invocation,
                    default=BLOCK_FAILURE_DEFAULT,
                    code=ErrorCode.BLOCK_PARSE_FAILED,
                )
            results = collect_block_outputs(
                self.contract.output_dir(workdir),
                contract=self.contract,
            )
            logger.info("Block analysis produced %d result file(s)", len(results.blocks))
            return results

    async def _run(
        self,
        argv: list[str],
        *,
        workdir: Path,
        disconnected: DisconnectProbe | None,
    ) -> EngineInvocation:
        invocation = await self.invoker.run(
            argv,
            cwd=workdir,
            extra_env=self.contract.environment(workdir),
            disconnected=disconnected,
        )
        if invocation.timed_out:
            raise EngineTimeoutError(
                f"Analyzer did not finish within {self.invoker.timeout_seconds:g}s",
                details=invocation.stderr_text,
            )
        if invocation.cancelled:
            raise ClientDisconnectedError(
                "Client disconnected before analysis finished",
                details=invocation.stderr_text,
            )
        return invocation


def _engine_failure(
    invocation: EngineInvocation,
    *,
    default: str,
    code: ErrorCode,
) -> EngineExecutionError:
    exit_code = invocation.exit_code if invocation.exit_code is not None else -1
    stdout = invocation.stdout_text
    stderr = invocation.stderr_text
    report = describe_engine_failure(
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        default=default,
    )
    logger.warning(
        "Engine failed exit_code=%s code=%s rule=%s engine_code=%s",
        exit_code,
        code.value,
        report.matched_rule,
        report.engine_code,
    )
    return EngineExecutionError(
        report.message,
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        code=code,
    )


def _make_workdir(resource: ScratchResource) -> Path:
    try:
        return resource.make_private_dir(label="work")
    except OSError as error:
        raise InternalError(f"Cannot create scratch workdir: {error}") from error


def _materialize(resource: ScratchResource, data: bytes, *, label: str, suffix: str) -> Path:
    try:
        return resource.materialize(data, label=label, suffix=suffix)
    except OSError as error:
        raise InternalError(f"Cannot write scratch input {label}: {error}") from error
