"""Intent model and intent store"""
from ccsolver.core.intent.intent import (
    ChainId,
    IntentFunction,
    IntentState,
    TERMINAL_STATES,
    Intent,
    IntentRecord,
    SwapTransferInput,
    SwapTransferOutput,
    LendInput,
    LendOutput,
    BorrowInput,
    BorrowOutput,
    OperationInput,
    OperationOutput,
    parse_intent,
)
from ccsolver.core.intent.store import IntentStore

__all__ = [
    "ChainId",
    "IntentFunction",
    "IntentState",
    "TERMINAL_STATES",
    "Intent",
    "IntentRecord",
    "SwapTransferInput",
    "SwapTransferOutput",
    "LendInput",
    "LendOutput",
    "BorrowInput",
    "BorrowOutput",
    "OperationInput",
    "OperationOutput",
    "parse_intent",
    "IntentStore",
]
