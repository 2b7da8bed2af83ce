"""Error taxonomy shared by the service layer and the HTTP mapper."""

from __future__ import annotations

from analyzer_broker.models import ErrorCode


class BrokerError(RuntimeError):
    """Base broker failure with an envelope code and HTTP status."""

    http_status = 500
    default_code = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details


class RequestValidationError(BrokerError):
    """Malformed or missing input; rejected before any resource is allocated."""

    http_status = 400
    default_code = ErrorCode.INVALID_INPUT


class PayloadTooLargeError(RequestValidationError):
    """Request body exceeds the configured size cap."""

    http_status = 413
    default_code = ErrorCode.PAYLOAD_TOO_LARGE


class EngineExecutionError(BrokerError):
    """Engine exited non-zero."""

    default_code = ErrorCode.ENGINE_FAILED

    def __init__(
        self,
        message: str,
        *,
        exit_code: int,
        stdout: str,
        stderr: str,
        code: ErrorCode | None = None,
    ) -> None:
        super().__init__(message, code=code, details=stderr)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class EngineOutputError(BrokerError):
    """Engine exited zero but its stdout is not a JSON document."""

    default_code = ErrorCode.INVALID_ENGINE_OUTPUT

    def __init__(self, message: str, *, raw_output: str) -> None:
        super().__init__(message)
        self.raw_output = raw_output


class EngineProtocolError(BrokerError):
    """Engine output does not follow the expected contract version."""

    default_code = ErrorCode.UNSUPPORTED_ENGINE_PROTOCOL


class EngineTimeoutError(BrokerError):
    """Engine did not finish within the configured time budget."""

    http_status = 504
    default_code = ErrorCode.TIMEOUT


class ClientDisconnectedError(BrokerError):
    """Client went away while the engine was running."""

    http_status = 499
    default_code = ErrorCode.CLIENT_DISCONNECTED


class EngineStartError(BrokerError):
    """Engine executable could not be spawned."""

    default_code = ErrorCode.ENGINE_UNAVAILABLE


class OutputReadError(BrokerError):
    """Block result directory could not be listed, read or decoded."""

    default_code = ErrorCode.READ_OUTPUT_FAILED


class InternalError(BrokerError):
    """Filesystem or orchestration fault unrelated to the engine."""
