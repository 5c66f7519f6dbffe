"""
Unit tests for fees, tokens and the quoting engine.

Tests cover:
1. Flat fee table and commission arithmetic
2. Live fee recomputation and failure fallback
3. Offer computation through the bridging token
"""

import asyncio

import pytest

from ccsolver.core.errors import SimulationFailed, UnknownToken, UnsupportedOperationError
from ccsolver.core.intent import ChainId, parse_intent
from ccsolver.core.quoting import (
    COMMISSION_DENOMINATOR,
    DEFAULT_FLAT_FEES,
    DEFAULT_TOKENS,
    FeeSchedule,
    FeeUpdater,
    QuotingEngine,
    TokenInfo,
    TokenRegistry,
    compute_flat_fees,
    parse_flat_fees,
    same_token,
)
from tests.fakes import ETH_USDC, ETH_USDT, ETH_WETH, SOL_USDT, SOL_WSOL, FakeRouter, intent_payload


ETH = ChainId.ETHEREUM
SOL = ChainId.SOLANA


def no_flat_fees():
    return {pair: (0, 0) for pair in DEFAULT_FLAT_FEES}


def make_engine(router=None, commission=100, flat_fees=None, min_dust=0):
    return QuotingEngine(
        router or FakeRouter(),
        FeeSchedule(commission, flat_fees if flat_fees is not None else no_flat_fees()),
        TokenRegistry(DEFAULT_TOKENS),
        min_dust=min_dust,
    )


# =============================================================================
# Fees
# =============================================================================


class TestFeeSchedule:
    """Tests for the static fee table."""

    def test_default_table(self):
        fees = FeeSchedule(100)
        assert fees.flat_cost(ETH, ETH) == 30_000_000
        assert fees.flat_cost(SOL, SOL) == 2_000_000
        assert fees.flat_cost(ETH, SOL) == 10_000_000
        assert fees.flat_cost(SOL, ETH) == 41_000_000

    def test_commission_per_hundred_thousand(self):
        """100 means 0.1%."""
        assert COMMISSION_DENOMINATOR == 100_000
        assert FeeSchedule(100).commission_on(500_000_000) == 500_000

    def test_commission_rounds_down(self):
        assert FeeSchedule(1).commission_on(99_999) == 0

    def test_missing_pair_costs_nothing(self):
        fees = FeeSchedule(0, {})
        assert fees.flat_cost(ETH, SOL) == 0

    def test_negative_commission_rejected(self):
        with pytest.raises(ValueError):
            FeeSchedule(-1)

    def test_replace_table(self):
        fees = FeeSchedule(0)
        fees.replace_table({(ETH, ETH): (1, 2)})
        assert fees.flat_cost(ETH, ETH) == 3
        assert fees.updated_at is not None

    def test_parse_flat_fees(self):
        table = parse_flat_fees({"ethereum->solana": [5, 7], "Solana -> Solana": [1, 1]})
        assert table == {(ETH, SOL): (5, 7), (SOL, SOL): (1, 1)}

    def test_parse_flat_fees_rejects_bad_entries(self):
        with pytest.raises(ValueError):
            parse_flat_fees({"ethereum": [1, 2]})
        with pytest.raises(ValueError):
            parse_flat_fees({"ethereum->solana": [1]})
        with pytest.raises(ValueError):
            parse_flat_fees({"ethereum->solana": [-1, 0]})

    def test_to_dict(self):
        data = FeeSchedule(100, {(ETH, SOL): (0, 10)}).to_dict()
        assert data["commission"] == 100
        assert data["flat_fees"] == {"ethereum->solana": {"src_cost": 0, "dst_cost": 10}}


class TestFeeUpdater:
    """Tests for recomputing the fee table from market data."""

    def test_compute_flat_fees(self):
        table = compute_flat_fees(10_000_000_000, eth_usd=2000.0, sol_usd=100.0, decimals=6)

        # (gas) * 12 gwei * 2000 USD, in 6-decimal units
        assert table[(ETH, ETH)] == (0, 6_000_000 + 4_080_000)
        assert table[(SOL, SOL)] == (0, 16_000)
        assert table[(ETH, SOL)] == (3_600_000, 16_000)
        assert table[(SOL, ETH)] == (50_008_000, 10_080_000)

    def test_refresh_replaces_table(self):
        class Prices:
            async def usd_price(self, asset_id):
                return {"ethereum": 2000.0, "solana": 100.0}[asset_id]

        async def gas_price():
            return 10_000_000_000

        fees = FeeSchedule(100)
        updater = FeeUpdater(fees, gas_price, Prices())

        assert asyncio.run(updater.refresh()) is True
        assert fees.flat_cost(ETH, ETH) == 10_080_000

    def test_refresh_failure_keeps_previous_table(self):
        class BrokenPrices:
            async def usd_price(self, asset_id):
                raise RuntimeError("rate limited")

        async def gas_price():
            return 1

        fees = FeeSchedule(100)
        updater = FeeUpdater(fees, gas_price, BrokenPrices())

        assert asyncio.run(updater.refresh()) is False
        assert fees.flat_cost(ETH, ETH) == 30_000_000
        assert fees.updated_at is None


# =============================================================================
# Tokens
# =============================================================================


class TestTokenRegistry:
    """Tests for symbol resolution."""

    def test_resolve_default_bridge_token(self):
        registry = TokenRegistry(DEFAULT_TOKENS)
        assert registry.resolve("USDT", ETH) == (ETH_USDT, 6)
        assert registry.resolve("usdt", SOL) == (SOL_USDT, 6)

    def test_unknown_token(self):
        with pytest.raises(UnknownToken):
            TokenRegistry().resolve("USDT", ETH)

    def test_register(self):
        registry = TokenRegistry()
        registry.register(TokenInfo("WETH", ETH, ETH_WETH, 18))
        assert registry.get("WETH", ETH).decimals == 18
        assert len(registry) == 1

    def test_same_token_evm_case_insensitive(self):
        assert same_token(ETH, ETH_USDT.lower(), ETH_USDT)

    def test_same_token_solana_case_sensitive(self):
        assert not same_token(SOL, SOL_USDT.lower(), SOL_USDT)


# =============================================================================
# Quoting Engine
# =============================================================================


class TestQuotingEngine:
    """Tests for the offer computation."""

    def test_bridge_to_bridge_offer(self):
        """500 USDT at 0.1% commission and no flat fee quotes 499.5 USDT."""
        router = FakeRouter()
        intent = parse_intent(intent_payload(amount_in=500_000_000, amount_out=490_000_000), intent_id="A")

        offer = asyncio.run(make_engine(router).quote(intent))

        assert offer == 499_500_000
        assert router.calls == []

    def test_flat_fee_above_amount_gives_no_offer(self):
        """15 USDT against a 20 USDT flat fee is unprofitable."""
        fees = no_flat_fees()
        fees[(ETH, ETH)] = (0, 20_000_000)
        intent = parse_intent(intent_payload(amount_in=15_000_000, amount_out=1), intent_id="B")

        assert asyncio.run(make_engine(flat_fees=fees).quote(intent)) == 0

    def test_below_dust_gives_no_offer(self):
        intent = parse_intent(intent_payload(amount_in=1_000_000), intent_id="dust")
        assert asyncio.run(make_engine(min_dust=5_000_000).quote(intent)) == 0

    def test_token_in_swapped_to_bridge(self):
        router = FakeRouter(rates={(ETH_USDC, ETH_USDT): (99, 100)})
        intent = parse_intent(intent_payload(token_in=ETH_USDC, amount_in=100_000_000), intent_id="in")

        result = asyncio.run(make_engine(router, commission=0).quote_detailed(intent))

        assert result.bridged == 99_000_000
        assert result.offer == 99_000_000
        assert router.calls[0][1:3] == (ETH_USDC, ETH_USDT)

    def test_bridge_swapped_to_token_out(self):
        router = FakeRouter(rates={(SOL_USDT, SOL_WSOL): (1, 1000)})
        intent = parse_intent(
            intent_payload(dst_chain="solana", token_out=SOL_WSOL, amount_in=100_000_000),
            intent_id="out",
        )

        result = asyncio.run(make_engine(router, commission=0).quote_detailed(intent))

        assert result.remainder == 100_000_000
        assert result.offer == 100_000
        assert router.calls[-1][0] == SOL

    def test_flat_fee_and_commission_both_applied(self):
        fees = no_flat_fees()
        fees[(ETH, SOL)] = (0, 10_000_000)
        intent = parse_intent(intent_payload(dst_chain="solana", token_out=SOL_USDT), intent_id="x")

        result = asyncio.run(make_engine(flat_fees=fees).quote_detailed(intent))

        assert result.flat_cost == 10_000_000
        assert result.commission == 500_000
        assert result.offer == 500_000_000 - 10_000_000 - 500_000
        assert result.profitable

    def test_router_failure_is_simulation_failed(self):
        router = FakeRouter(failing={(ETH_USDC, ETH_USDT)})
        intent = parse_intent(intent_payload(token_in=ETH_USDC), intent_id="fail")

        with pytest.raises(SimulationFailed):
            asyncio.run(make_engine(router).quote(intent))

    def test_unexpected_router_exception_wrapped(self):
        class ExplodingRouter(FakeRouter):
            async def simulate(self, *args, **kwargs):
                raise KeyError("priceRoute")

        intent = parse_intent(intent_payload(token_in=ETH_USDC), intent_id="boom")
        with pytest.raises(SimulationFailed):
            asyncio.run(make_engine(ExplodingRouter()).quote(intent))

    def test_unknown_bridge_token(self):
        engine = QuotingEngine(FakeRouter(), FeeSchedule(0), TokenRegistry())
        intent = parse_intent(intent_payload(), intent_id="t")
        with pytest.raises(UnknownToken):
            asyncio.run(engine.quote(intent))

    def test_unsupported_variant(self):
        payload = intent_payload()
        payload["inputs"] = {"Lend": {}}
        payload["outputs"] = {"Lend": {}}
        intent = parse_intent(payload, intent_id="lend")
        with pytest.raises(UnsupportedOperationError):
            asyncio.run(make_engine().quote(intent))
