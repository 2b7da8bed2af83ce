"""Runtime configuration for the analysis broker."""

from __future__ import annotations

import os
import shlex
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

_DEFAULT_SCRATCH_DIR = Path(tempfile.gettempdir()) / "analyzer-broker"


@dataclass(slots=True)
class EngineSettings:
    """How the external analysis engine is launched and supervised."""

    command: str = "./analyzer"
    timeout_seconds: float = 120.0
    terminate_grace_seconds: float = 2.0
    poll_interval_seconds: float = 0.1
    result_suffix: str = ".json"

    def command_argv(self) -> list[str]:
        """Split the configured engine command into argv prefix."""

        return shlex.split(self.command)

    def resolved_argv(self) -> list[str]:
        """Argv prefix with the executable head made absolute.

        The engine runs inside a per-request workdir, so a relative head has
        to be anchored to the broker's own working directory or `PATH` first.
        """

        argv = self.command_argv()
        if not argv:
            return argv
        head = argv[0]
        if os.sep in head or (os.altsep and os.altsep in head):
            argv[0] = str(Path(head).absolute())
        else:
            argv[0] = shutil.which(head) or head
        return argv


@dataclass(slots=True)
class ServerSettings:
    """HTTP server settings."""

    host: str = "127.0.0.1"
    port: int = 3000
    max_body_bytes: int = 10 * 1024 * 1024
    cors_origins: tuple[str, ...] = ()
    static_dir: Path | None = None


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    scratch_dir: Path = _DEFAULT_SCRATCH_DIR
    log_level: str = "INFO"
    engine: EngineSettings = field(default_factory=EngineSettings)
    server: ServerSettings = field(default_factory=ServerSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults for local development."""

        static_dir = os.getenv("ANALYZER_BROKER_STATIC_DIR", "").strip()
        return cls(
            scratch_dir=Path(
                os.getenv("ANALYZER_BROKER_SCRATCH_DIR", "").strip() or _DEFAULT_SCRATCH_DIR,
            ),
            log_level=os.getenv("ANALYZER_BROKER_LOG_LEVEL", "INFO").strip().upper(),
            engine=EngineSettings(
                command=os.getenv("ANALYZER_BROKER_ENGINE_COMMAND", "./analyzer"),
                timeout_seconds=float(
                    os.getenv("ANALYZER_BROKER_ENGINE_TIMEOUT_SECONDS", "120"),
                ),
                terminate_grace_seconds=float(
                    os.getenv("ANALYZER_BROKER_TERMINATE_GRACE_SECONDS", "2"),
                ),
                poll_interval_seconds=float(
                    os.getenv("ANALYZER_BROKER_POLL_INTERVAL_SECONDS", "0.1"),
                ),
                result_suffix=os.getenv("ANALYZER_BROKER_RESULT_SUFFIX", ".json"),
            ),
            server=ServerSettings(
                host=os.getenv("ANALYZER_BROKER_HOST", "127.0.0.1"),
                port=int(os.getenv("ANALYZER_BROKER_PORT", "3000")),
                max_body_bytes=int(
                    os.getenv("ANALYZER_BROKER_MAX_BODY_BYTES", str(10 * 1024 * 1024)),
                ),
                cors_origins=_collect_csv("ANALYZER_BROKER_CORS_ORIGINS"),
                static_dir=Path(static_dir) if static_dir else None,
            ),
        )

    def validate(self) -> None:
        """Raise configuration error on values the broker cannot run with."""

        if not self.engine.command_argv():
            raise ValueError("ANALYZER_BROKER_ENGINE_COMMAND must not be empty.")
        if self.engine.timeout_seconds <= 0:
            raise ValueError("ANALYZER_BROKER_ENGINE_TIMEOUT_SECONDS must be > 0.")
        if self.engine.terminate_grace_seconds < 0:
            raise ValueError("ANALYZER_BROKER_TERMINATE_GRACE_SECONDS must be >= 0.")
        if self.engine.poll_interval_seconds <= 0:
            raise ValueError("ANALYZER_BROKER_POLL_INTERVAL_SECONDS must be > 0.")
        if not self.engine.result_suffix.strip():
            raise ValueError("ANALYZER_BROKER_RESULT_SUFFIX must not be empty.")
        if self.server.max_body_bytes <= 0:
            raise ValueError("ANALYZER_BROKER_MAX_BODY_BYTES must be a positive integer.")
        if not 0 < self.server.port < 65536:
            raise ValueError(f"ANALYZER_BROKER_PORT out of range: {self.server.port}")
        if self.server.static_dir is not None and not self.server.static_dir.is_dir():
            raise ValueError(
                f"ANALYZER_BROKER_STATIC_DIR is not a directory: {self.server.static_dir}",
            )


def _collect_csv(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return ()
    values: list[str] = []
    for part in raw.split(","):
        normalized = part.strip()
        if normalized and normalized not in values:
            values.append(normalized)
    return tuple(values)
