"""Request validation performed before any scratch resource exists."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

from analyzer_broker.errors import PayloadTooLargeError, RequestValidationError
from analyzer_broker.models import BlockUpload, ErrorCode, SingleTxRequest, UploadedFile

BLOCK_FIELDS = ("blk", "rev", "xor")
MISSING_FILES_MESSAGE = "blk, rev, and xor files are all required"


def decode_json_body(raw_body: bytes, *, max_bytes: int) -> Any:
    """Decode a request body, rejecting oversized or malformed input."""

    if len(raw_body) > max_bytes:
        raise PayloadTooLargeError(f"Request body exceeds {max_bytes} bytes.")
    try:
        return json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as error:
        raise RequestValidationError(f"Body is not valid JSON: {error}") from error


def validate_single_tx(body: Any) -> SingleTxRequest:
    """Accept a JSON object carrying a non-empty `raw_tx` string."""

    if not isinstance(body, dict):
        raise RequestValidationError("Body must be a JSON object.")
    raw_tx = body.get("raw_tx")
    if not isinstance(raw_tx, str) or not raw_tx.strip():
        raise RequestValidationError("raw_tx is required.")
    network = body.get("network")
    if network is not None and not isinstance(network, str):
        raise RequestValidationError("network must be a string.")
    prevouts = body.get("prevouts")
    if prevouts is not None and not isinstance(prevouts, list):
        raise RequestValidationError("prevouts must be an array.")
    return SingleTxRequest(
        raw_tx=raw_tx,
        network=network,
        prevouts=tuple(prevouts or ()),
        payload=dict(body),
    )


def validate_block_upload(files: Mapping[str, Sequence[UploadedFile]]) -> BlockUpload:
    """Require exactly one upload for each of blk, rev and xor."""

    missing = [name for name in BLOCK_FIELDS if not files.get(name)]
    if missing:
        raise RequestValidationError(
            MISSING_FILES_MESSAGE,
            code=ErrorCode.MISSING_FILES,
            details=f"missing: {', '.join(missing)}",
        )
    duplicated = [name for name in BLOCK_FIELDS if len(files[name]) > 1]
    if duplicated:
        raise RequestValidationError(
            f"Exactly one file is allowed per field: {', '.join(duplicated)}",
            code=ErrorCode.TOO_MANY_FILES,
        )
    return BlockUpload(blk=files["blk"][0], rev=files["rev"][0], xor=files["xor"][0])
