from __future__ import annotations

import shlex
import sys
from pathlib import Path

import allure
import pytest

from analyzer_broker.engine.invoker import EngineInvoker

pytestmark = [
    allure.epic("Analysis Broker"),
    allure.feature("HTTP API"),
]

RAW_TX = "0200000001" + "ab" * 32 + "00000000" + "00ffffffff0100000000000000000000000000"


def _block_files(blk: bytes = b"\xf9\xbe\xb4\xd9block") -> dict[str, tuple[str, bytes]]:
    return {
        "blk": ("blk00000.dat", blk),
        "rev": ("rev00000.dat", b"undo"),
        "xor": ("xor.dat", b"\x00" * 8),
    }


def test_health_reports_ok(client) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_analyze_passes_engine_object_through(client, monkeypatch, scratch_leftovers) -> None:
    monkeypatch.setenv("STUB_ENGINE_STDOUT", '{"txid":"abc"}')

    response = client.post("/api/analyze", json={"raw_tx": "0200"})

    assert response.status_code == 200
    assert response.json() == {"txid": "abc"}
    assert scratch_leftovers() == []


def test_analyze_forwards_network_and_prevouts_to_engine(client, scratch_leftovers) -> None:
    response = client.post(
        "/api/analyze",
        json={"raw_tx": RAW_TX, "network": "testnet", "prevouts": [{"value_sats": 1}]},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["network"] == "testnet"
    assert body["prevout_count"] == 1
    assert scratch_leftovers() == []


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"network": "mainnet", "prevouts": []},
        {"raw_tx": ""},
        {"raw_tx": 1234},
        [RAW_TX],
    ],
)
def test_analyze_rejects_missing_raw_tx(client, body, scratch_leftovers) -> None:
    response = client.post("/api/analyze", json=body)

    assert response.status_code == 400
    payload = response.json()
    assert payload["ok"] is False
    assert payload["error"] == "Invalid input JSON"
    assert payload["code"] == "INVALID_INPUT"
    assert scratch_leftovers() == []


def test_analyze_rejects_unparsable_body(client) -> None:
    response = client.post(
        "/api/analyze",
        content=b'{"raw_tx": ',
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["ok"] is False


def test_analyze_reports_engine_failure_with_stderr(client, monkeypatch, scratch_leftovers) -> None:
    monkeypatch.setenv("STUB_ENGINE_EXIT_CODE", "2")
    monkeypatch.setenv("STUB_ENGINE_STDERR", "prevouts count mismatch")

    response = client.post("/api/analyze", json={"raw_tx": RAW_TX})

    assert response.status_code == 500
    assert response.json() == {
        "ok": False,
        "error": "Analyzer failed",
        "code": "ENGINE_FAILED",
        "details": "prevouts count mismatch",
        "message": "prevouts count mismatch",
    }
    assert scratch_leftovers() == []


def test_analyze_uses_engine_error_document_when_stderr_is_empty(client, monkeypatch) -> None:
    monkeypatch.setenv("STUB_ENGINE_EXIT_CODE", "1")

    response = client.post("/api/analyze", json={"raw_tx": RAW_TX})

    assert response.status_code == 500
    payload = response.json()
    assert payload["details"] == ""
    assert payload["message"] == "stub engine failure"


def test_analyze_keeps_raw_output_when_stdout_is_not_json(
    client,
    monkeypatch,
    scratch_leftovers,
) -> None:
    raw = "Segmentation report:\n{not json"
    monkeypatch.setenv("STUB_ENGINE_STDOUT", raw)

    response = client.post("/api/analyze", json={"raw_tx": RAW_TX})

    assert response.status_code == 500
    assert response.json() == {
        "ok": False,
        "error": "Invalid JSON from analyzer",
        "code": "INVALID_ENGINE_OUTPUT",
        "raw_output": raw,
    }
    assert scratch_leftovers() == []


def test_analyze_rejects_unsupported_protocol_version(client, monkeypatch) -> None:
    monkeypatch.setenv("STUB_ENGINE_PROTOCOL_VERSION", "2")

    response = client.post("/api/analyze", json={"raw_tx": RAW_TX})

    assert response.status_code == 500
    assert response.json()["code"] == "UNSUPPORTED_ENGINE_PROTOCOL"


def test_analyze_accepts_matching_protocol_version(client, monkeypatch) -> None:
    monkeypatch.setenv("STUB_ENGINE_PROTOCOL_VERSION", "1")

    response = client.post("/api/analyze", json={"raw_tx": RAW_TX})

    assert response.status_code == 200
    assert response.json()["protocol_version"] == 1


def test_analyze_times_out_and_releases_scratch(
    settings,
    monkeypatch,
    scratch_leftovers,
) -> None:
    from fastapi.testclient import TestClient

    from analyzer_broker.api import create_app

    settings.engine.timeout_seconds = 0.5
    monkeypatch.setenv("STUB_ENGINE_SLEEP_SECONDS", "20")

    with TestClient(create_app(settings)) as client:
        response = client.post("/api/analyze", json={"raw_tx": RAW_TX})

    assert response.status_code == 504
    assert response.json()["code"] == "TIMEOUT"
    assert scratch_leftovers() == []


def test_analyze_reports_unavailable_engine(settings, scratch_leftovers) -> None:
    from fastapi.testclient import TestClient

    from analyzer_broker.api import create_app

    settings.engine.command = "/nonexistent/analyzer-engine"

    with TestClient(create_app(settings)) as client:
        response = client.post("/api/analyze", json={"raw_tx": RAW_TX})

    assert response.status_code == 500
    assert response.json()["code"] == "ENGINE_UNAVAILABLE"
    assert scratch_leftovers() == []


def test_analyze_block_unwraps_single_result(client, scratch_leftovers) -> None:
    response = client.post("/api/analyze-block", files=_block_files())

    assert response.status_code == 200
    body = response.json()
    assert body["mode"] == "block"
    assert body["index"] == 0
    assert scratch_leftovers() == []


def test_analyze_block_aggregates_multiple_results_in_filename_order(
    client,
    monkeypatch,
    scratch_leftovers,
) -> None:
    monkeypatch.setenv("STUB_ENGINE_BLOCK_COUNT", "3")

    response = client.post("/api/analyze-block", files=_block_files())

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert [block["index"] for block in body["blocks"]] == [0, 1, 2]
    assert scratch_leftovers() == []


def test_analyze_block_returns_empty_collection_without_result_files(client, monkeypatch) -> None:
    monkeypatch.setenv("STUB_ENGINE_BLOCK_COUNT", "0")

    response = client.post("/api/analyze-block", files=_block_files())

    assert response.status_code == 200
    assert response.json() == {"ok": True, "blocks": []}


@pytest.mark.parametrize("missing", ["blk", "rev", "xor"])
def test_analyze_block_rejects_missing_files_without_spawning(
    client,
    monkeypatch,
    missing,
    scratch_leftovers,
) -> None:
    async def _must_not_run(*args, **kwargs):
        raise AssertionError("engine must not be spawned for invalid requests")

    monkeypatch.setattr(EngineInvoker, "run", _must_not_run)
    files = _block_files()
    files.pop(missing)

    response = client.post("/api/analyze-block", files=files)

    assert response.status_code == 400
    payload = response.json()
    assert payload["ok"] is False
    assert payload["error"]["code"] == "MISSING_FILES"
    assert payload["error"]["message"] == "blk, rev, and xor files are all required"
    assert scratch_leftovers() == []


def test_analyze_block_rejects_duplicate_files(client) -> None:
    files = [
        ("blk", ("blk00000.dat", b"a")),
        ("blk", ("blk00001.dat", b"b")),
        ("rev", ("rev00000.dat", b"c")),
        ("xor", ("xor.dat", b"d")),
    ]

    response = client.post("/api/analyze-block", files=files)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "TOO_MANY_FILES"


def test_analyze_block_reports_engine_failure(client, monkeypatch, scratch_leftovers) -> None:
    monkeypatch.setenv("STUB_ENGINE_EXIT_CODE", "1")
    monkeypatch.setenv("STUB_ENGINE_STDERR", "bad magic")

    response = client.post("/api/analyze-block", files=_block_files())

    assert response.status_code == 500
    assert response.json() == {
        "ok": False,
        "error": {"code": "BLOCK_PARSE_FAILED", "message": "bad magic"},
    }
    assert scratch_leftovers() == []


def test_analyze_block_failure_falls_back_to_engine_error_document(client, monkeypatch) -> None:
    monkeypatch.setenv("STUB_ENGINE_EXIT_CODE", "1")

    response = client.post("/api/analyze-block", files=_block_files())

    assert response.status_code == 500
    assert response.json()["error"] == {
        "code": "BLOCK_PARSE_FAILED",
        "message": "stub engine failure",
    }


def test_analyze_rejects_oversized_body_with_413(settings, scratch_leftovers) -> None:
    from fastapi.testclient import TestClient

    from analyzer_broker.api import create_app

    settings.server.max_body_bytes = 16

    with TestClient(create_app(settings)) as client:
        response = client.post("/api/analyze", json={"raw_tx": RAW_TX})

    assert response.status_code == 413
    payload = response.json()
    assert payload["error"] == "Invalid input JSON"
    assert payload["code"] == "PAYLOAD_TOO_LARGE"
    assert scratch_leftovers() == []


def test_analyze_runs_engine_configured_by_relative_path(
    settings,
    monkeypatch,
    tmp_path: Path,
    scratch_leftovers,
) -> None:
    from fastapi.testclient import TestClient

    from analyzer_broker.api import create_app

    engine = tmp_path / "analyzer"
    engine.write_text(
        f'#!/bin/sh\nexec {shlex.quote(sys.executable)} -m analyzer_broker.engine.stub_engine "$@"\n',
    )
    engine.chmod(0o755)
    monkeypatch.chdir(tmp_path)
    settings.engine.command = "./analyzer"

    with TestClient(create_app(settings)) as client:
        response = client.post("/api/analyze", json={"raw_tx": RAW_TX})

    assert response.status_code == 200
    assert response.json()["ok"] is True
    assert scratch_leftovers() == []


def test_analyze_with_relative_scratch_dir(settings, monkeypatch, tmp_path: Path) -> None:
    from fastapi.testclient import TestClient

    from analyzer_broker.api import create_app

    monkeypatch.chdir(tmp_path)
    settings.scratch_dir = Path("relative-scratch")

    with TestClient(create_app(settings)) as client:
        tx_response = client.post("/api/analyze", json={"raw_tx": RAW_TX})
        block_response = client.post("/api/analyze-block", files=_block_files())

    assert tx_response.status_code == 200
    assert tx_response.json()["ok"] is True
    assert block_response.status_code == 200
    assert block_response.json()["mode"] == "block"
    assert list((tmp_path / "relative-scratch").iterdir()) == []


def test_analyze_block_reports_unreadable_result_file(
    client,
    monkeypatch,
    scratch_leftovers,
) -> None:
    monkeypatch.setenv("STUB_ENGINE_BLOCK_RAW", "{truncated")

    response = client.post("/api/analyze-block", files=_block_files())

    assert response.status_code == 500
    payload = response.json()
    assert payload["ok"] is False
    assert payload["error"]["code"] == "READ_OUTPUT_FAILED"
    assert payload["error"]["message"].startswith("Invalid JSON in 0000-")
    assert scratch_leftovers() == []


def test_analyze_block_rejects_unsupported_protocol_version(
    client,
    monkeypatch,
    scratch_leftovers,
) -> None:
    monkeypatch.setenv("STUB_ENGINE_PROTOCOL_VERSION", "2")

    response = client.post("/api/analyze-block", files=_block_files())

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "UNSUPPORTED_ENGINE_PROTOCOL"
    assert scratch_leftovers() == []


def test_analyze_block_reports_scratch_write_failure(
    client,
    monkeypatch,
    scratch_leftovers,
) -> None:
    write_bytes = Path.write_bytes

    def _disk_full(self: Path, data: bytes) -> int:
        if self.suffix == ".dat":
            raise OSError(28, "No space left on device")
        return write_bytes(self, data)

    async def _must_not_run(*args, **kwargs):
        raise AssertionError("engine must not be spawned without its inputs")

    monkeypatch.setattr(Path, "write_bytes", _disk_full)
    monkeypatch.setattr(EngineInvoker, "run", _must_not_run)

    response = client.post("/api/analyze-block", files=_block_files())

    assert response.status_code == 500
    error = response.json()["error"]
    assert error["code"] == "INTERNAL_ERROR"
    assert error["message"].startswith("Cannot write scratch input blk")
    assert scratch_leftovers() == []
