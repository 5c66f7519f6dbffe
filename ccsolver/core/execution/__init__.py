"""Settlement of won intents"""
from ccsolver.core.execution.orchestrator import (
    ExecutionOrchestrator,
    SettlementReport,
    SettlementStep,
    StepResult,
)

__all__ = [
    "ExecutionOrchestrator",
    "SettlementReport",
    "SettlementStep",
    "StepResult",
]
