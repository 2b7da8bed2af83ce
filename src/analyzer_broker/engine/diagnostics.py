"""Deterministic explanation of failed engine runs."""

from __future__ import annotations

import json
import signal
from dataclasses import dataclass


@dataclass(slots=True)
class EngineFailureReport:
    """Normalized failure cause for envelopes and logs."""

    message: str
    matched_rule: str
    engine_code: str | None = None


def describe_engine_failure(
    *,
    exit_code: int,
    stdout: str,
    stderr: str,
    default: str,
) -> EngineFailureReport:
    """Pick the most specific cause available for a non-zero exit."""

    if stderr.strip():
        return EngineFailureReport(message=stderr, matched_rule="stderr")

    reported = _engine_error_from_stdout(stdout)
    if reported is not None:
        code, message = reported
        return EngineFailureReport(
            message=message,
            matched_rule="stdout_error_document",
            engine_code=code,
        )

    if exit_code < 0:
        return EngineFailureReport(
            message=f"Analyzer terminated by {_signal_name(-exit_code)}",
            matched_rule="signal",
        )

    return EngineFailureReport(message=default, matched_rule="fallback_default")


def _engine_error_from_stdout(stdout: str) -> tuple[str | None, str] | None:
    # The engine reports its own failures as {"ok": false, "error": {code, message}}.
    try:
        parsed = json.loads(stdout)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict) or parsed.get("ok") is not False:
        return None
    error = parsed.get("error")
    if isinstance(error, str) and error.strip():
        return None, error
    if not isinstance(error, dict):
        return None
    message = error.get("message")
    if not isinstance(message, str) or not message.strip():
        return None
    code = error.get("code")
    return (code if isinstance(code, str) else None), message


def _signal_name(number: int) -> str:
    try:
        return signal.Signals(number).name
    except ValueError:
        return f"signal {number}"
