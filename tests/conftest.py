"""Shared test fixtures."""

from __future__ import annotations

import shlex
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from analyzer_broker.api import create_app
from analyzer_broker.config import EngineSettings, Settings

STUB_ENGINE_COMMAND = f"{shlex.quote(sys.executable)} -m analyzer_broker.engine.stub_engine"

_STUB_ENV_VARS = (
    "STUB_ENGINE_EXIT_CODE",
    "STUB_ENGINE_STDERR",
    "STUB_ENGINE_STDOUT",
    "STUB_ENGINE_SLEEP_SECONDS",
    "STUB_ENGINE_BLOCK_COUNT",
    "STUB_ENGINE_PROTOCOL_VERSION",
    "STUB_ENGINE_BLOCK_RAW",
)


@pytest.fixture(autouse=True)
def _isolated_stub_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _STUB_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def scratch_dir(tmp_path: Path) -> Path:
    return tmp_path / "scratch"


@pytest.fixture()
def settings(scratch_dir: Path) -> Settings:
    return Settings(
        scratch_dir=scratch_dir,
        engine=EngineSettings(
            command=STUB_ENGINE_COMMAND,
            timeout_seconds=30.0,
            terminate_grace_seconds=1.0,
            poll_interval_seconds=0.02,
        ),
    )


@pytest.fixture()
def client(settings: Settings) -> Iterator[TestClient]:
    with TestClient(create_app(settings)) as test_client:
        yield test_client


@pytest.fixture()
def scratch_leftovers(scratch_dir: Path):
    """Return a probe listing scratch entries still on disk."""

    def _probe() -> list[Path]:
        if not scratch_dir.exists():
            return []
        return sorted(scratch_dir.iterdir())

    return _probe


@pytest.fixture()
def stub_engine_command() -> str:
    return STUB_ENGINE_COMMAND
