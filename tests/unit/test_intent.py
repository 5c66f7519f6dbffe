"""
Unit tests for the intent layer.

Tests cover:
1. Parsing wire intents (string and object payloads)
2. Tagged operation variants and unsupported kinds
3. Intent records and state transitions
"""

import json
import time

import pytest

from ccsolver.core.errors import ProtocolError, UnsupportedOperationError
from ccsolver.core.intent import (
    ChainId,
    IntentFunction,
    IntentRecord,
    IntentState,
    LendInput,
    SwapTransferInput,
    parse_intent,
)
from tests.fakes import ETH_USDC, ETH_USDT, SOL_USDT, intent_payload


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def payload():
    return intent_payload(function_name="swap", token_out=ETH_USDC, amount_out=480_000_000)


@pytest.fixture
def intent(payload):
    return parse_intent(payload, intent_id="intent-1")


# =============================================================================
# Parsing
# =============================================================================


class TestParseIntent:
    """Tests for parsing intents off the feed."""

    def test_parse_object(self, intent):
        assert intent.intent_id == "intent-1"
        assert intent.function_name == IntentFunction.SWAP
        assert intent.src_chain == ChainId.ETHEREUM
        assert intent.single_domain

    def test_parse_json_string(self, payload):
        """The feed may embed the intent as a JSON string."""
        intent = parse_intent(json.dumps(payload), intent_id="intent-2")
        assert intent.intent_id == "intent-2"
        assert intent.min_amount_out == 480_000_000

    def test_amounts_are_integers(self, intent):
        inputs, outputs = intent.swap_transfer()
        assert isinstance(inputs, SwapTransferInput)
        assert inputs.amount_in == 500_000_000
        assert outputs.amount_out == 480_000_000

    def test_case_insensitive_enums(self, payload):
        payload["src_chain"] = "Ethereum"
        payload["function_name"] = "TRANSFER"
        intent = parse_intent(payload)
        assert intent.src_chain == ChainId.ETHEREUM
        assert intent.function_name == IntentFunction.TRANSFER

    def test_cross_domain(self):
        intent = parse_intent(intent_payload(dst_chain="solana", token_out=SOL_USDT))
        assert not intent.single_domain

    def test_invalid_json_raises_protocol_error(self):
        with pytest.raises(ProtocolError):
            parse_intent("{not json")

    def test_unknown_chain_raises_protocol_error(self, payload):
        payload["dst_chain"] = "bitcoin"
        with pytest.raises(ProtocolError):
            parse_intent(payload)

    def test_negative_amount_rejected(self, payload):
        payload["inputs"]["SwapTransfer"]["amount_in"] = "-5"
        with pytest.raises(ProtocolError):
            parse_intent(payload)

    def test_non_numeric_amount_rejected(self, payload):
        payload["outputs"]["SwapTransfer"]["amount_out"] = "lots"
        with pytest.raises(ProtocolError):
            parse_intent(payload)

    def test_unknown_variant_rejected(self, payload):
        payload["inputs"] = {"Stake": {}}
        with pytest.raises(ProtocolError):
            parse_intent(payload)

    def test_mismatched_variants_rejected(self, payload):
        payload["outputs"] = {"Lend": {}}
        with pytest.raises(ProtocolError):
            parse_intent(payload)

    def test_payload_must_be_object(self):
        with pytest.raises(ProtocolError):
            parse_intent("[1, 2, 3]")


class TestVariants:
    """Tests for Lend/Borrow, which parse but are not supported."""

    def test_lend_parses(self, payload):
        payload["inputs"] = {"Lend": {"market": "x"}}
        payload["outputs"] = {"Lend": {}}
        intent = parse_intent(payload)
        assert isinstance(intent.inputs, LendInput)

    def test_lend_consumers_raise_unsupported(self, payload):
        payload["inputs"] = {"Borrow": {}}
        payload["outputs"] = {"Borrow": {}}
        intent = parse_intent(payload)

        with pytest.raises(UnsupportedOperationError):
            intent.swap_transfer()
        with pytest.raises(UnsupportedOperationError):
            _ = intent.min_amount_out

    def test_to_wire_keeps_tags_and_string_amounts(self, intent):
        wire = intent.to_wire()
        assert "intent_id" not in wire
        assert wire["inputs"]["SwapTransfer"]["amount_in"] == "500000000"
        assert wire["outputs"]["SwapTransfer"]["token_out"] == ETH_USDC

    def test_to_wire_parses_back(self, intent):
        assert parse_intent(intent.to_wire(), intent_id=intent.intent_id) == intent


# =============================================================================
# Records
# =============================================================================


class TestIntentRecord:
    """Tests for the immutable record kept per bid."""

    def test_defaults(self, intent):
        record = IntentRecord(intent=intent, bid_amount=495_000_000)
        assert record.state == IntentState.QUOTED
        assert record.intent_id == "intent-1"
        assert not record.is_terminal

    def test_with_state_returns_new_record(self, intent):
        record = IntentRecord(intent=intent, bid_amount=1)
        won = record.with_state(IntentState.WON, auction_amount=2)

        assert record.state == IntentState.QUOTED
        assert won.state == IntentState.WON
        assert won.auction_amount == 2
        assert won.created_at == record.created_at

    def test_settle_amount_prefers_auction_amount(self, intent):
        record = IntentRecord(intent=intent, bid_amount=100)
        assert record.settle_amount == 100
        assert record.with_state(IntentState.WON, auction_amount=90).settle_amount == 90

    def test_terminal_states(self, intent):
        record = IntentRecord(intent=intent, bid_amount=1)
        for state in (IntentState.SETTLED_OK, IntentState.FAILED, IntentState.LOST, IntentState.TIMEOUT):
            assert record.with_state(state).is_terminal

    def test_age(self, intent):
        record = IntentRecord(intent=intent, bid_amount=1, created_at=time.time() - 10)
        assert 9 < record.age() < 60
