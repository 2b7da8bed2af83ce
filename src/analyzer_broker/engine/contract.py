"""Versioned broker-to-engine invocation contract."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from analyzer_broker.errors import EngineProtocolError

ENGINE_PROTOCOL_VERSION = 1
OUTPUT_DIR_NAME = "out"
BLOCK_FLAG = "--block"
PROTOCOL_VERSION_ENV = "ANALYZER_BROKER_PROTOCOL_VERSION"
OUTPUT_DIR_ENV = "ANALYZER_BROKER_OUTPUT_DIR"

_VERSION_KEYS = ("protocol_version", "contract_version")


@dataclass(slots=True)
class EngineContract:
    """Argv shapes, output layout and version the broker expects.

    The engine writes result files to `out/` relative to its working
    directory, so running it inside a private workdir gives every
    invocation its own output directory.
    """

    command: tuple[str, ...]
    result_suffix: str = ".json"
    protocol_version: int = ENGINE_PROTOCOL_VERSION

    def single_tx_argv(self, input_path: Path) -> list[str]:
        return [*self.command, str(input_path)]

    def block_argv(self, blk_path: Path, rev_path: Path, xor_path: Path) -> list[str]:
        return [*self.command, BLOCK_FLAG, str(blk_path), str(rev_path), str(xor_path)]

    def output_dir(self, workdir: Path) -> Path:
        return workdir / OUTPUT_DIR_NAME

    def environment(self, workdir: Path) -> dict[str, str]:
        """Extra variables exported to the engine process."""

        return {
            PROTOCOL_VERSION_ENV: str(self.protocol_version),
            OUTPUT_DIR_ENV: str(self.output_dir(workdir)),
        }

    def is_result_file(self, name: str) -> bool:
        return name.endswith(self.result_suffix)

    def check_document(self, document: Any, *, source: str) -> dict[str, Any]:
        """Reject documents that are not objects or announce another version."""

        if not isinstance(document, dict):
            raise EngineProtocolError(
                f"Engine {source} is a JSON {type(document).__name__}, expected an object.",
            )
        for key in _VERSION_KEYS:
            if key not in document:
                continue
            announced = document[key]
            if announced != self.protocol_version:
                raise EngineProtocolError(
                    f"Engine {source} announces {key}={announced!r}, "
                    f"broker speaks version {self.protocol_version}.",
                )
        return document
