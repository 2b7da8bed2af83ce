"""Deterministic stand-in engine for broker integration tests and demos.

Honors the engine argv contract:

    stub_engine <input.json>
    stub_engine --block <blk> <rev> <xor>

Behavior is steered through environment variables:

- ``STUB_ENGINE_EXIT_CODE``: exit code to return (default 0).
- ``STUB_ENGINE_STDERR``: text written to stderr before exiting.
- ``STUB_ENGINE_STDOUT``: raw stdout replacing the generated document.
- ``STUB_ENGINE_SLEEP_SECONDS``: delay before producing output.
- ``STUB_ENGINE_BLOCK_COUNT``: number of block result files (default 1).
- ``STUB_ENGINE_PROTOCOL_VERSION``: value announced as ``protocol_version``.
- ``STUB_ENGINE_BLOCK_RAW``: raw text written to each block result file.
"""

from __future__ import annotations

import hashlib
import json
import os
import sys
import time
from pathlib import Path
from typing import Any

_OUTPUT_DIR = Path("out")


def main(argv: list[str] | None = None) -> int:
    """Run one stub analysis and return the process exit code."""

    args = sys.argv[1:] if argv is None else argv
    delay = float(os.getenv("STUB_ENGINE_SLEEP_SECONDS", "0") or 0)
    if delay > 0:
        time.sleep(delay)

    exit_code = int(os.getenv("STUB_ENGINE_EXIT_CODE", "0") or 0)
    stderr_text = os.getenv("STUB_ENGINE_STDERR", "")
    if stderr_text:
        sys.stderr.write(stderr_text)
        sys.stderr.flush()
    if exit_code != 0:
        _emit_error("CLI_ERROR", "stub engine failure")
        return exit_code

    try:
        if len(args) == 4 and args[0] == "--block":
            return _run_block_mode(Path(args[1]), Path(args[2]), Path(args[3]))
        if len(args) == 1:
            return _run_tx_mode(Path(args[0]))
    except (OSError, KeyError, ValueError) as error:
        _emit_error("CLI_ERROR", str(error))
        return 1

    _emit_error(
        "INVALID_USAGE",
        "Usage: stub_engine <input.json> | stub_engine --block <blk.dat> <rev.dat> <xor.dat>",
    )
    return 1


def _run_tx_mode(input_path: Path) -> int:
    payload = json.loads(input_path.read_text("utf-8"))
    raw_tx = payload["raw_tx"]
    txid = hashlib.sha256(raw_tx.encode("utf-8")).hexdigest()
    document = _with_protocol_version(
        {
            "ok": True,
            "network": payload.get("network") or "mainnet",
            "txid": txid,
            "prevout_count": len(payload.get("prevouts") or []),
        },
    )
    _OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    (_OUTPUT_DIR / f"{txid}.json").write_text(json.dumps(document, indent=4), "utf-8")

    raw_stdout = os.getenv("STUB_ENGINE_STDOUT")
    sys.stdout.write(raw_stdout if raw_stdout is not None else json.dumps(document, indent=4) + "\n")
    return 0


def _run_block_mode(blk_path: Path, rev_path: Path, xor_path: Path) -> int:
    blk = blk_path.read_bytes()
    rev_path.read_bytes()
    xor_path.read_bytes()
    blk_digest = hashlib.sha256(blk).hexdigest()
    count = int(os.getenv("STUB_ENGINE_BLOCK_COUNT", "1"))

    _OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    for index in range(count):
        block_hash = hashlib.sha256(blk + index.to_bytes(4, "little")).hexdigest()
        document = _with_protocol_version(
            {
                "ok": True,
                "mode": "block",
                "index": index,
                "block_hash": block_hash,
                "blk_sha256": blk_digest,
            },
        )
        name = f"{index:04d}-{block_hash[:16]}.json"
        raw_text = os.getenv("STUB_ENGINE_BLOCK_RAW")
        text = raw_text if raw_text is not None else json.dumps(document, indent=4)
        (_OUTPUT_DIR / name).write_text(text, "utf-8")
    return 0


def _with_protocol_version(document: dict[str, Any]) -> dict[str, Any]:
    announced = os.getenv("STUB_ENGINE_PROTOCOL_VERSION")
    if announced:
        document["protocol_version"] = int(announced)
    return document


def _emit_error(code: str, message: str) -> None:
    sys.stdout.write(json.dumps({"ok": False, "error": {"code": code, "message": message}}) + "\n")


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
