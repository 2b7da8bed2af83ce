"""External analysis engine: contract, invocation and diagnostics."""

from analyzer_broker.engine.contract import ENGINE_PROTOCOL_VERSION, EngineContract
from analyzer_broker.engine.diagnostics import EngineFailureReport, describe_engine_failure
from analyzer_broker.engine.invoker import TIMEOUT_EXIT_CODE, EngineInvoker

__all__ = [
    "ENGINE_PROTOCOL_VERSION",
    "TIMEOUT_EXIT_CODE",
    "EngineContract",
    "EngineFailureReport",
    "EngineInvoker",
    "describe_engine_failure",
]
