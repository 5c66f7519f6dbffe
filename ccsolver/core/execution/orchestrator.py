"""
Execution Orchestrator - settles a won intent.

Each won intent runs the same linear sequence as its own task:

    START -> REBALANCE_OUT? -> RELEASE_FUNDS -> REBALANCE_IN? -> ACCOUNTED -> DONE

- REBALANCE_OUT: obtain token_out on the destination ledger from the
  bridging token. Skipped when token_out is the bridging token.
- RELEASE_FUNDS: escrow pays the user and hands token_in to the solver.
- REBALANCE_IN: swap token_in back into the bridging token. Only on a
  single ledger and only when token_in is not the bridging token.
- ACCOUNTED: signed bridging-token balance delta of the solver.

Every step awaits its confirmed receipt before the next one starts. There
is no rollback across ledgers: a failure stops the sequence and is reported
with the step it happened in.

Failure semantics:
- REBALANCE_OUT fails  -> FAILED, nothing reached the user
- RELEASE_FUNDS fails  -> FAILED, pre-swap may be sunk, manual action
- REBALANCE_IN fails   -> SETTLED_DEGRADED, user was paid
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Type

from ccsolver.chains.base import ChainAdapter, TxReceipt, TxTimeout
from ccsolver.core.errors import (
    ExecutionError,
    ExecutionTimeout,
    PreSwapFailed,
    RebalanceFailed,
    SettlementFailed,
    SolverError,
)
from ccsolver.core.intent.intent import (
    ChainId,
    Intent,
    IntentRecord,
    IntentState,
    SwapTransferInput,
    SwapTransferOutput,
)
from ccsolver.core.intent.store import IntentStore
from ccsolver.core.quoting.tokens import TokenRegistry, same_token
from ccsolver.routers.base import PriceRouter, SwapSide
from ccsolver.utils.logger import get_logger

logger = get_logger("orchestrator")


# =============================================================================
# Report
# =============================================================================


class SettlementStep(str, Enum):
    REBALANCE_OUT = "rebalance_out"
    RELEASE_FUNDS = "release_funds"
    REBALANCE_IN = "rebalance_in"
    ACCOUNTED = "accounted"


STEP_ERRORS: Dict[SettlementStep, Type[ExecutionError]] = {
    SettlementStep.REBALANCE_OUT: PreSwapFailed,
    SettlementStep.RELEASE_FUNDS: SettlementFailed,
    SettlementStep.REBALANCE_IN: RebalanceFailed,
}


@dataclass
class StepResult:
    """What one step did."""
    step: SettlementStep
    skipped: bool = False
    receipts: List[TxReceipt] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def tx_refs(self) -> List[str]:
        return [receipt.tx_ref for receipt in self.receipts]


@dataclass
class SettlementReport:
    """
    Operator-facing outcome of one settlement.

    Attributes:
        intent_id: Intent settled
        outcome: SETTLED_OK, SETTLED_DEGRADED or FAILED
        steps: Results of the steps that ran or were skipped, in order
        error: Error that ended or degraded the sequence
        balance_before: Bridging-token balance before REBALANCE_OUT
        balance_after: Bridging-token balance after the last executed step
    """
    intent_id: str
    outcome: IntentState = IntentState.SETTLING
    steps: List[StepResult] = field(default_factory=list)
    error: Optional[SolverError] = None
    balance_before: Optional[int] = None
    balance_after: Optional[int] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def pnl(self) -> Optional[int]:
        """Signed bridging-token delta; None if a balance read failed."""
        if self.balance_before is None or self.balance_after is None:
            return None
        return self.balance_after - self.balance_before

    @property
    def failed_step(self) -> Optional[SettlementStep]:
        for result in self.steps:
            if result.error is not None:
                return result.step
        return None

    @property
    def executed_steps(self) -> List[SettlementStep]:
        return [result.step for result in self.steps if not result.skipped and result.error is None]

    @property
    def manual_action_required(self) -> bool:
        return isinstance(self.error, SettlementFailed) or (
            isinstance(self.error, ExecutionTimeout) and self.error.step == SettlementStep.RELEASE_FUNDS.value
        )

    @property
    def last_tx_ref(self) -> Optional[str]:
        for result in reversed(self.steps):
            if result.receipts:
                return result.receipts[-1].tx_ref
        return None

    def to_dict(self) -> dict:
        return {
            "intent_id": self.intent_id,
            "outcome": self.outcome.value,
            "failed_step": self.failed_step.value if self.failed_step else None,
            "error": str(self.error) if self.error else None,
            "steps": [
                {
                    "step": result.step.value,
                    "skipped": result.skipped,
                    "tx_refs": result.tx_refs,
                    "error": result.error,
                }
                for result in self.steps
            ],
            "balance_before": self.balance_before,
            "balance_after": self.balance_after,
            "pnl": self.pnl,
            "manual_action_required": self.manual_action_required,
            "duration": (self.finished_at - self.started_at) if self.finished_at else None,
        }


ReportCallback = Callable[[SettlementReport], Awaitable[None]]


# =============================================================================
# Orchestrator
# =============================================================================


class ExecutionOrchestrator:
    """
    Drives settlement of won intents.

    Args:
        adapters: Ledger adapters by chain
        router: Price router for the swap legs
        tokens: Registry resolving the bridging token
        bridge_symbol: Bridging token symbol
        store: Intent store; the settled intent is removed from it at the end
        on_report: Coroutine called with every finished report
    """

    def __init__(
        self,
        adapters: Dict[ChainId, ChainAdapter],
        router: PriceRouter,
        tokens: TokenRegistry,
        bridge_symbol: str = "USDT",
        store: Optional[IntentStore] = None,
        on_report: Optional[ReportCallback] = None,
    ):
        self.adapters = adapters
        self.router = router
        self.tokens = tokens
        self.bridge_symbol = bridge_symbol
        self.store = store
        self.on_report = on_report

    def bridge_token(self, chain: ChainId) -> str:
        return self.tokens.resolve(self.bridge_symbol, chain)[0]

    async def settle(self, record: IntentRecord) -> SettlementReport:
        """
        Run the settlement sequence for a won intent.

        Never raises for settlement-path failures; they are captured in the
        returned report.

        Raises:
            ValueError: if the record already reached a terminal state
        """
        if record.is_terminal:
            raise ValueError(f"{record!r} is already finished")

        intent = record.intent
        report = SettlementReport(intent_id=intent.intent_id)
        logger.info(f"Settling {intent!r} for {record.settle_amount}")

        try:
            inputs, outputs = intent.swap_transfer()
            src_adapter = self._adapter(intent.src_chain)
            dst_adapter = self._adapter(intent.dst_chain)
            bridge_src = self.bridge_token(intent.src_chain)
            bridge_dst = self.bridge_token(intent.dst_chain)
        except SolverError as e:
            report.steps.append(StepResult(SettlementStep.REBALANCE_OUT, error=str(e)))
            report.error = PreSwapFailed(intent.intent_id, str(e), cause=e)
            return await self._finish(report, IntentState.FAILED)

        report.balance_before = await self._balance(dst_adapter, bridge_dst, intent.intent_id)

        # Step 1: bridging token -> token_out
        if same_token(intent.dst_chain, outputs.token_out, bridge_dst):
            report.steps.append(StepResult(SettlementStep.REBALANCE_OUT, skipped=True))
        else:
            ok = await self._run_step(
                report,
                SettlementStep.REBALANCE_OUT,
                lambda: self._rebalance_out(intent, outputs, record.settle_amount, dst_adapter, bridge_dst),
            )
            if not ok:
                return await self._finish(report, IntentState.FAILED)

        # Step 2: escrow release
        ok = await self._run_step(
            report,
            SettlementStep.RELEASE_FUNDS,
            lambda: self._release_funds(intent, inputs, outputs, src_adapter, dst_adapter),
        )
        if not ok:
            return await self._finish(report, IntentState.FAILED)

        # Step 3: token_in -> bridging token, same ledger only
        outcome = IntentState.SETTLED_OK
        if intent.single_domain and not same_token(intent.src_chain, inputs.token_in, bridge_src):
            ok = await self._run_step(
                report,
                SettlementStep.REBALANCE_IN,
                lambda: self._rebalance_in(intent, inputs, src_adapter, bridge_src),
            )
            if not ok:
                outcome = IntentState.SETTLED_DEGRADED
        else:
            report.steps.append(StepResult(SettlementStep.REBALANCE_IN, skipped=True))

        # Step 4: accounting
        report.balance_after = await self._balance(dst_adapter, bridge_dst, intent.intent_id)
        report.steps.append(StepResult(SettlementStep.ACCOUNTED))
        return await self._finish(report, outcome)

    # =========================================================================
    # Steps
    # =========================================================================

    async def _rebalance_out(
        self,
        intent: Intent,
        outputs: SwapTransferOutput,
        amount: int,
        adapter: ChainAdapter,
        bridge: str,
    ) -> List[TxReceipt]:
        receipts: List[TxReceipt] = []

        # Transfers and swaps both buy exactly the settle amount.
        route = await self.router.simulate(
            intent.dst_chain,
            bridge,
            outputs.token_out,
            amount,
            SwapSide.EXACT_OUT,
            account=adapter.solver_address,
        )
        if adapter.requires_allowance and route.spender:
            receipts.append(await adapter.approve(bridge, route.spender, route.amount_in))
        receipts.append(await adapter.send_swap(route))

        if adapter.requires_allowance and adapter.escrow_spender:
            receipts.append(await adapter.approve(outputs.token_out, adapter.escrow_spender, amount))
        return receipts

    async def _release_funds(
        self,
        intent: Intent,
        inputs: SwapTransferInput,
        outputs: SwapTransferOutput,
        src_adapter: ChainAdapter,
        dst_adapter: ChainAdapter,
    ) -> List[TxReceipt]:
        receipt = await dst_adapter.call_escrow(
            "send_funds_to_user",
            {
                "intent_id": intent.intent_id,
                "solver_out": src_adapter.solver_address,
                "token_in": inputs.token_in,
                "token_out": outputs.token_out,
                "user": outputs.dst_chain_user,
                "single_domain": intent.single_domain,
            },
        )
        return [receipt]

    async def _rebalance_in(
        self,
        intent: Intent,
        inputs: SwapTransferInput,
        adapter: ChainAdapter,
        bridge: str,
    ) -> List[TxReceipt]:
        receipts: List[TxReceipt] = []
        route = await self.router.simulate(
            intent.src_chain,
            inputs.token_in,
            bridge,
            inputs.amount_in,
            SwapSide.EXACT_IN,
            account=adapter.solver_address,
        )
        spender = route.spender or route.target
        if adapter.requires_allowance and spender:
            receipts.append(await adapter.approve(inputs.token_in, spender, inputs.amount_in))
        receipts.append(await adapter.send_swap(route))
        return receipts

    # =========================================================================
    # Helpers
    # =========================================================================

    def _adapter(self, chain: ChainId) -> ChainAdapter:
        adapter = self.adapters.get(chain)
        if adapter is None:
            raise SolverError(f"No chain adapter for {chain.value}")
        return adapter

    async def _run_step(
        self,
        report: SettlementReport,
        step: SettlementStep,
        action: Callable[[], Awaitable[List[TxReceipt]]],
    ) -> bool:
        """Run one step, recording receipts or the typed failure."""
        result = StepResult(step)
        report.steps.append(result)
        try:
            result.receipts = await action()
        except Exception as e:
            result.error = str(e)
            if isinstance(e, TxTimeout):
                report.error = ExecutionTimeout(report.intent_id, str(e), cause=e, step=step.value)
            else:
                report.error = STEP_ERRORS[step](report.intent_id, str(e), cause=e)
            return False
        logger.debug(f"[{report.intent_id}] {step.value} done: {result.tx_refs}")
        return True

    async def _balance(self, adapter: ChainAdapter, token: str, intent_id: str) -> Optional[int]:
        try:
            return await adapter.get_balance(adapter.solver_address, token)
        except Exception as e:
            logger.warning(f"[{intent_id}] Balance read failed, PnL unavailable: {e}")
            return None

    async def _finish(self, report: SettlementReport, outcome: IntentState) -> SettlementReport:
        report.outcome = outcome
        report.finished_at = time.time()
        self._log_report(report)

        if self.store is not None:
            await self.store.remove(report.intent_id)

        if self.on_report is not None:
            try:
                await self.on_report(report)
            except Exception as e:
                logger.warning(f"[{report.intent_id}] Settlement report callback failed: {e}")
        return report

    def _log_report(self, report: SettlementReport) -> None:
        extra = {
            "event": f"settlement_{report.outcome.value}",
            "intent_id": report.intent_id,
            "failed_step": report.failed_step.value if report.failed_step else None,
            "pnl": report.pnl,
            "tx_refs": {result.step.value: result.tx_refs for result in report.steps if result.receipts},
            "manual_action_required": report.manual_action_required,
        }

        if report.outcome == IntentState.SETTLED_OK:
            logger.info(f"[{report.intent_id}] Settled", extra=extra)
        elif report.outcome == IntentState.SETTLED_DEGRADED:
            logger.warning(f"[{report.intent_id}] Settled degraded, user paid but rebalance failed: {report.error}", extra=extra)
        elif report.manual_action_required:
            logger.error(f"[{report.intent_id}] Settlement failed, MANUAL RECONCILIATION REQUIRED: {report.error}", extra=extra)
        else:
            logger.error(f"[{report.intent_id}] Settlement failed: {report.error}", extra=extra)

        if report.pnl is not None:
            verdict = "won" if report.pnl >= 0 else "lost"
            logger.info(f"[{report.intent_id}] Solver {verdict} {abs(report.pnl)} {self.bridge_symbol} base units")
