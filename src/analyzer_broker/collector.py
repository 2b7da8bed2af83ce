"""Turn engine output into structured analysis results."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from analyzer_broker.engine.contract import EngineContract
from analyzer_broker.errors import EngineOutputError, OutputReadError
from analyzer_broker.models import BlockResults

logger = logging.getLogger(__name__)


def parse_single_output(stdout_text: str, *, contract: EngineContract) -> dict[str, Any]:
    """Parse the whole stdout buffer as one JSON object."""

    try:
        document = json.loads(stdout_text)
    except json.JSONDecodeError as error:
        raise EngineOutputError(
            f"Analyzer stdout is not valid JSON: {error}",
            raw_output=stdout_text,
        ) from error
    return contract.check_document(document, source="stdout")


def collect_block_outputs(output_dir: Path, *, contract: EngineContract) -> BlockResults:
    """Read every result file in `output_dir`, ordered by filename."""

    if not output_dir.exists():
        logger.warning("Engine output directory %s was never created", output_dir)
        return BlockResults()

    try:
        names = sorted(
            entry.name
            for entry in output_dir.iterdir()
            if entry.is_file() and contract.is_result_file(entry.name)
        )
    except OSError as error:
        raise OutputReadError(f"Cannot list output directory: {error}") from error

    results = BlockResults()
    for name in names:
        document = _load_result_file(output_dir / name)
        results.blocks.append(contract.check_document(document, source=f"result file {name}"))
        results.source_files.append(name)

    if not results.blocks:
        logger.warning("Engine exited 0 but wrote no result files to %s", output_dir)
    return results


def _load_result_file(path: Path) -> Any:
    try:
        text = path.read_text("utf-8")
    except (OSError, UnicodeDecodeError) as error:
        raise OutputReadError(f"Cannot read {path.name}: {error}") from error
    try:
        return json.loads(text)
    except json.JSONDecodeError as error:
        raise OutputReadError(f"Invalid JSON in {path.name}: {error}") from error
