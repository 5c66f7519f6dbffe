"""
Unit tests for the execution orchestrator.

Tests cover:
1. Which steps run for each intent shape
2. Strict step ordering
3. Typed failures and terminal outcomes
4. Balance accounting
"""

import asyncio

import pytest

from ccsolver.core.errors import (
    ExecutionTimeout,
    PreSwapFailed,
    RebalanceFailed,
    SettlementFailed,
)
from ccsolver.core.execution import ExecutionOrchestrator, SettlementStep
from ccsolver.core.intent import ChainId, IntentRecord, IntentState, IntentStore, parse_intent
from ccsolver.core.quoting import DEFAULT_TOKENS, TokenRegistry
from ccsolver.routers.base import SwapSide
from tests.fakes import (
    ETH_USDC,
    ETH_USDT,
    SOL_USDT,
    FakeAdapter,
    FakeRouter,
    intent_payload,
    rejected,
)


ETH = ChainId.ETHEREUM
SOL = ChainId.SOLANA
ESCROW = "0x00000000000000000000000000000000000000ee"


class Harness:
    """Orchestrator wired to fakes that share one journal."""

    def __init__(self, eth_fail=None, sol_fail=None, router_failing=None, balances=None):
        self.journal = []
        self.router = FakeRouter(failing=router_failing, journal=self.journal)
        self.eth = FakeAdapter(
            ETH,
            solver_address="0xsolver",
            requires_allowance=True,
            escrow_spender=ESCROW,
            fail=eth_fail,
            balances=balances,
            journal=self.journal,
        )
        self.sol = FakeAdapter(SOL, solver_address="SoLvEr", fail=sol_fail, journal=self.journal)
        self.store = IntentStore()
        self.reports = []
        self.orchestrator = ExecutionOrchestrator(
            {ETH: self.eth, SOL: self.sol},
            self.router,
            TokenRegistry(DEFAULT_TOKENS),
            store=self.store,
            on_report=self._collect,
        )

    async def _collect(self, report):
        self.reports.append(report)

    def settle(self, record):
        async def run():
            await self.store.insert(record)
            report = await self.orchestrator.settle(record)
            return report, await self.store.get(record.intent_id) is not None

        return asyncio.run(run())


def won_record(intent_id="intent-1", bid=495_000_000, auction_amount=None, **fields):
    intent = parse_intent(intent_payload(**fields), intent_id=intent_id)
    return IntentRecord(intent=intent, bid_amount=bid, state=IntentState.WON, auction_amount=auction_amount)


# =============================================================================
# Step selection
# =============================================================================


class TestStepSelection:
    """Tests for which steps run."""

    def test_bridge_token_out_skips_rebalance_out(self):
        """token_out == bridging token: settlement only, router untouched."""
        h = Harness()
        report, _ = h.settle(won_record())

        assert report.outcome == IntentState.SETTLED_OK
        assert report.executed_steps == [SettlementStep.RELEASE_FUNDS, SettlementStep.ACCOUNTED]
        assert h.router.calls == []
        assert h.eth.kinds() == ["escrow"]

    def test_escrow_arguments(self):
        h = Harness()
        h.settle(won_record(dst_chain="ethereum"))

        escrow = h.eth.submitted[0]
        assert escrow["op"] == "send_funds_to_user"
        assert escrow["args"]["intent_id"] == "intent-1"
        assert escrow["args"]["solver_out"] == "0xsolver"
        assert escrow["args"]["single_domain"] is True

    def test_swap_buys_exact_output(self):
        """function=swap buys exactly the settled amount of token_out."""
        h = Harness()
        report, _ = h.settle(won_record(function_name="swap", token_out=ETH_USDC, bid=480_000_000))

        assert report.outcome == IntentState.SETTLED_OK
        chain, token_in, token_out, amount, side = h.router.calls[0]
        assert (chain, token_in, token_out, amount, side) == (ETH, ETH_USDT, ETH_USDC, 480_000_000, SwapSide.EXACT_OUT)
        assert h.eth.kinds() == ["approve", "swap", "approve", "escrow"]
        assert h.eth.submitted[2]["spender"] == ESCROW
        assert h.eth.submitted[2]["amount"] == 480_000_000

    def test_transfer_also_buys_token_out_through_router(self):
        """A transfer of a non-bridging token is bought like a swap, never moved from inventory."""
        h = Harness()
        report, _ = h.settle(won_record(function_name="transfer", token_out=ETH_USDC, bid=100))

        assert report.outcome == IntentState.SETTLED_OK
        assert h.router.calls[0] == (ETH, ETH_USDT, ETH_USDC, 100, SwapSide.EXACT_OUT)
        assert h.eth.kinds() == ["approve", "swap", "approve", "escrow"]
        assert "transfer" not in h.eth.kinds()

    def test_auction_amount_used_for_settlement(self):
        h = Harness()
        h.settle(won_record(function_name="swap", token_out=ETH_USDC, bid=100, auction_amount=90))
        assert h.router.calls[0][3] == 90

    def test_rebalance_in_same_ledger(self):
        h = Harness()
        report, _ = h.settle(won_record(token_in=ETH_USDC))

        assert report.executed_steps == [
            SettlementStep.RELEASE_FUNDS,
            SettlementStep.REBALANCE_IN,
            SettlementStep.ACCOUNTED,
        ]
        assert h.router.calls[0][1:3] == (ETH_USDC, ETH_USDT)
        assert h.router.calls[0][4] == SwapSide.EXACT_IN
        assert h.eth.kinds() == ["escrow", "approve", "swap"]

    def test_cross_domain_skips_rebalance_in(self):
        h = Harness()
        report, _ = h.settle(won_record(token_in=ETH_USDC, dst_chain="solana", token_out=SOL_USDT))

        assert report.outcome == IntentState.SETTLED_OK
        assert h.eth.kinds() == []
        assert h.sol.kinds() == ["escrow"]
        assert h.sol.submitted[0]["args"]["solver_out"] == "0xsolver"
        assert h.sol.submitted[0]["args"]["single_domain"] is False
        assert [r.step for r in report.steps if r.skipped] == [
            SettlementStep.REBALANCE_OUT,
            SettlementStep.REBALANCE_IN,
        ]


# =============================================================================
# Ordering
# =============================================================================


class TestSequencing:
    """Each step starts only after the previous step confirmed."""

    def test_full_sequence_order(self):
        h = Harness()
        h.settle(won_record(function_name="swap", token_in=ETH_USDC, token_out=ETH_USDC))

        submits = [entry for entry in h.journal if entry.endswith(":submit")]
        assert submits == [
            "ethereum:approve:submit",
            "ethereum:swap:submit",
            "ethereum:approve:submit",
            "ethereum:escrow:submit",
            "ethereum:approve:submit",
            "ethereum:swap:submit",
        ]

        # every submit is followed by its confirmation before the next submit
        for i, entry in enumerate(h.journal):
            if entry.endswith(":submit"):
                assert h.journal[i + 1] == "ethereum:confirmed"


# =============================================================================
# Failures
# =============================================================================


class TestFailures:
    """Tests for typed failures and their outcomes."""

    def test_release_failure_after_pre_swap(self):
        """Escrow fails after a successful swap: SettlementFailed, no rebalance, record removed."""
        h = Harness(eth_fail={"escrow": rejected()})
        report, still_stored = h.settle(won_record(function_name="swap", token_in=ETH_USDC, token_out=ETH_USDC))

        assert report.outcome == IntentState.FAILED
        assert isinstance(report.error, SettlementFailed)
        assert report.failed_step == SettlementStep.RELEASE_FUNDS
        assert report.manual_action_required
        assert SettlementStep.REBALANCE_IN not in [r.step for r in report.steps]
        assert h.eth.kinds() == ["approve", "swap", "approve"]
        assert len(h.router.calls) == 1
        assert not still_stored

    def test_pre_swap_failure_stops_before_escrow(self):
        h = Harness(router_failing={(ETH_USDT, ETH_USDC)})
        report, still_stored = h.settle(won_record(function_name="swap", token_out=ETH_USDC))

        assert report.outcome == IntentState.FAILED
        assert isinstance(report.error, PreSwapFailed)
        assert not report.manual_action_required
        assert h.eth.kinds() == []
        assert not still_stored

    def test_rebalance_failure_is_degraded(self):
        h = Harness(eth_fail={"swap": rejected()})
        report, _ = h.settle(won_record(token_in=ETH_USDC))

        assert report.outcome == IntentState.SETTLED_DEGRADED
        assert isinstance(report.error, RebalanceFailed)
        assert report.failed_step == SettlementStep.REBALANCE_IN
        assert SettlementStep.ACCOUNTED in report.executed_steps

    def test_confirmation_timeout(self):
        class PendingAdapter(FakeAdapter):
            async def fetch_receipt(self, tx_ref):
                return None

        h = Harness()
        h.eth = PendingAdapter(ETH, solver_address="0xsolver")
        h.eth.confirm_timeout = 0.02
        h.orchestrator.adapters[ETH] = h.eth

        report, _ = h.settle(won_record())

        assert report.outcome == IntentState.FAILED
        assert isinstance(report.error, ExecutionTimeout)
        assert report.error.step == "release_funds"
        assert report.manual_action_required

    def test_solana_cross_domain_release_fails_as_settlement(self):
        from ccsolver.chains.base import ChainError

        h = Harness(sol_fail={"escrow": ChainError("Cross-domain escrow release is not supported")})
        report, _ = h.settle(won_record(src_chain="ethereum", dst_chain="solana", token_out=SOL_USDT))
        assert isinstance(report.error, SettlementFailed)

    def test_unsupported_variant_fails_without_transactions(self):
        payload = intent_payload()
        payload["inputs"] = {"Lend": {}}
        payload["outputs"] = {"Lend": {}}
        record = IntentRecord(intent=parse_intent(payload, intent_id="lend"), bid_amount=1)

        h = Harness()
        report, _ = h.settle(record)

        assert report.outcome == IntentState.FAILED
        assert isinstance(report.error, PreSwapFailed)
        assert h.journal == []

    def test_missing_adapter(self):
        h = Harness()
        del h.orchestrator.adapters[SOL]
        report, _ = h.settle(won_record(dst_chain="solana", token_out=SOL_USDT))
        assert report.outcome == IntentState.FAILED

    def test_report_callback_failure_is_contained(self):
        h = Harness()

        async def broken(report):
            raise RuntimeError("alert sink down")

        h.orchestrator.on_report = broken
        report, _ = h.settle(won_record())
        assert report.outcome == IntentState.SETTLED_OK

    def test_finished_record_not_settled_again(self):
        h = Harness()
        done = won_record().with_state(IntentState.SETTLED_OK)

        with pytest.raises(ValueError):
            asyncio.run(h.orchestrator.settle(done))
        assert h.eth.kinds() == []
        assert h.reports == []


# =============================================================================
# Accounting
# =============================================================================


class TestAccounting:
    """Tests for the signed balance delta."""

    def test_positive_pnl(self):
        h = Harness(balances=[1_000, 1_500])
        report, _ = h.settle(won_record())
        assert report.pnl == 500

    def test_negative_pnl(self):
        h = Harness(balances=[1_500, 1_000])
        report, _ = h.settle(won_record())
        assert report.pnl == -500

    def test_balance_failure_blanks_pnl_only(self):
        h = Harness()
        h.eth.balance_error = RuntimeError("rpc down")
        report, _ = h.settle(won_record())

        assert report.outcome == IntentState.SETTLED_OK
        assert report.pnl is None

    def test_report_delivered_and_serializable(self):
        h = Harness(balances=[10, 20])
        report, _ = h.settle(won_record())

        assert h.reports == [report]
        data = report.to_dict()
        assert data["outcome"] == "settled_ok"
        assert data["pnl"] == 10
        assert data["steps"][1]["tx_refs"] == ["ethereum-tx-1"]
        assert report.last_tx_ref == "ethereum-tx-1"
