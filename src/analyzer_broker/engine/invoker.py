"""Async subprocess runner for the external analysis engine."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path

from analyzer_broker.errors import EngineStartError
from analyzer_broker.models import EngineInvocation

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
_READ_CHUNK_BYTES = 64 * 1024

DisconnectProbe = Callable[[], Awaitable[bool]]


class EngineInvoker:
    """Spawn the engine, collect its streams and report one exit code."""

    def __init__(
        self,
        *,
        timeout_seconds: float,
        terminate_grace_seconds: float = 2.0,
        poll_interval_seconds: float = 0.1,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.terminate_grace_seconds = terminate_grace_seconds
        self.poll_interval_seconds = poll_interval_seconds

    async def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        extra_env: dict[str, str] | None = None,
        disconnected: DisconnectProbe | None = None,
    ) -> EngineInvocation:
        invocation = EngineInvocation(argv=tuple(argv), cwd=cwd)
        env = os.environ.copy()
        if extra_env:
            env.update(extra_env)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd),
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as error:
            raise EngineStartError(f"Engine executable not found: {argv[0]}") from error
        except OSError as error:
            raise EngineStartError(f"Engine failed to start: {error}") from error

        logger.info("Engine started pid=%s argv=%s", process.pid, list(argv))
        start_monotonic = time.monotonic()
        streams = asyncio.gather(
            _drain(process.stdout, invocation.stdout),
            _drain(process.stderr, invocation.stderr),
        )
        try:
            outcome = await self._supervise(process, streams, start_monotonic, disconnected)
        except BaseException:
            logger.warning("Engine pid=%s supervision aborted, terminating", process.pid)
            await _terminate_process(process, self.terminate_grace_seconds)
            streams.cancel()
            raise

        if outcome == "exited":
            await streams
            exit_code = await process.wait()
            invocation.complete(exit_code, duration_seconds=time.monotonic() - start_monotonic)
        else:
            await _terminate_process(process, self.terminate_grace_seconds)
            await _settle(streams, self.terminate_grace_seconds)
            invocation.complete(
                TIMEOUT_EXIT_CODE if outcome == "timed_out" else (process.returncode or -1),
                duration_seconds=time.monotonic() - start_monotonic,
                timed_out=outcome == "timed_out",
                cancelled=outcome == "disconnected",
            )

        logger.info(
            "Engine pid=%s finished exit_code=%s timed_out=%s cancelled=%s in %.2fs",
            process.pid,
            invocation.exit_code,
            invocation.timed_out,
            invocation.cancelled,
            invocation.duration_seconds,
        )
        return invocation

    async def _supervise(
        self,
        process: asyncio.subprocess.Process,
        streams: asyncio.Future,
        start_monotonic: float,
        disconnected: DisconnectProbe | None,
    ) -> str:
        waiter = asyncio.ensure_future(process.wait())
        try:
            while True:
                done, _ = await asyncio.wait(
                    {waiter, streams},
                    timeout=self.poll_interval_seconds,
                    return_when=asyncio.ALL_COMPLETED,
                )
                if waiter in done and streams in done:
                    return "exited"

                if time.monotonic() - start_monotonic >= self.timeout_seconds:
                    logger.warning(
                        "Engine pid=%s exceeded %.1fs timeout",
                        process.pid,
                        self.timeout_seconds,
                    )
                    return "timed_out"

                if disconnected is not None and await disconnected():
                    logger.warning("Client disconnected, stopping engine pid=%s", process.pid)
                    return "disconnected"
        finally:
            if not waiter.done():
                waiter.cancel()


async def _drain(stream: asyncio.StreamReader | None, sink: bytearray) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK_BYTES)
        if not chunk:
            return
        sink.extend(chunk)


async def _settle(streams: asyncio.Future, timeout: float) -> None:
    # Grandchildren may keep the pipes open after the engine is gone.
    try:
        await asyncio.wait_for(asyncio.shield(streams), timeout=max(timeout, 0.1))
    except asyncio.TimeoutError:
        streams.cancel()


async def _terminate_process(process: asyncio.subprocess.Process, grace_seconds: float) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_seconds)
    except asyncio.TimeoutError:
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()
