"""
Unit tests for the auction feed wire protocol and message signing.
"""

import json

import pytest

from ccsolver.core.errors import ProtocolError
from ccsolver.core.intent import ChainId
from ccsolver.crypto import canonical_json, keccak256, keypair_from_hex
from ccsolver.network.identity import MessageSigner, recover_signer
from ccsolver.network.protocol import (
    MessageCode,
    bid_message,
    decode_message,
    error_message,
    parse_auction_result,
    parse_new_intent,
    registration_message,
    serialize,
    settlement_message,
)
from tests.fakes import TEST_SIGNING_KEY, intent_payload, new_intent_message


# =============================================================================
# Builders
# =============================================================================


class TestOutboundMessages:
    """Tests for outbound envelope shapes."""

    def test_registration(self):
        envelope = registration_message("solver-1", ["0xabc", "SoLaNa"])
        assert envelope == {
            "code": 1,
            "msg": {"solver_id": "solver-1", "solver_addresses": ["0xabc", "SoLaNa"]},
        }

    def test_bid_amount_is_decimal_string(self):
        envelope = bid_message("intent-1", "solver-1", 499_500_000)
        assert envelope["code"] == MessageCode.BID
        assert envelope["msg"] == {"intent_id": "intent-1", "solver_id": "solver-1", "amount": "499500000"}

    def test_settlement_report(self):
        envelope = settlement_message("intent-1", "solver-1", "0xhash")
        assert envelope["code"] == 1
        assert envelope["msg"]["tx_hash"] == "0xhash"

    def test_error_report(self):
        envelope = error_message("solver-1", "Transaction failed: boom", intent_id="intent-1")
        assert envelope["code"] == 0
        assert envelope["msg"]["intent_id"] == "intent-1"

    def test_serialize_is_compact(self):
        assert serialize({"code": 2, "msg": {"a": 1}}) == '{"code":2,"msg":{"a":1}}'


# =============================================================================
# Parsers
# =============================================================================


class TestDecode:
    """Tests for inbound envelope decoding."""

    def test_decode_string(self):
        code, msg = decode_message('{"code": 3, "msg": {"ok": true}}')
        assert code == MessageCode.REGISTERED
        assert msg == {"ok": True}

    def test_decode_bytes_and_dict(self):
        assert decode_message(b'{"code": 0, "msg": "bad"}')[0] == MessageCode.ERROR
        assert decode_message({"code": 4, "msg": {}})[0] == MessageCode.AUCTION_RESULT

    def test_decode_numeric_string_code(self):
        assert decode_message({"code": "2", "msg": {}})[0] == MessageCode.BID

    @pytest.mark.parametrize("raw", [
        "not json",
        "[1, 2]",
        '{"msg": {}}',
        '{"code": true, "msg": {}}',
        '{"code": 9, "msg": {}}',
    ])
    def test_malformed_envelopes(self, raw):
        with pytest.raises(ProtocolError):
            decode_message(raw)


class TestNewIntent:
    """Tests for new-intent bodies."""

    def test_string_payload(self):
        new = parse_new_intent(new_intent_message("i-1", as_string=True)["msg"])
        assert new.intent_id == "i-1"
        assert new.intent.intent_id == "i-1"

    def test_object_payload(self):
        new = parse_new_intent(new_intent_message("i-2", as_string=False, dst_chain="solana")["msg"])
        assert new.intent.dst_chain == ChainId.SOLANA

    def test_missing_intent_id(self):
        with pytest.raises(ProtocolError):
            parse_new_intent({"intent": json.dumps(intent_payload())})

    def test_missing_payload(self):
        with pytest.raises(ProtocolError):
            parse_new_intent({"intent_id": "i-3"})

    def test_body_must_be_object(self):
        with pytest.raises(ProtocolError):
            parse_new_intent("i-4")


class TestAuctionResult:
    """Tests for auction result bodies."""

    def test_won_marker(self):
        result = parse_auction_result({"intent_id": "i", "amount": "100", "msg": "You won the auction"})
        assert result.won
        assert result.amount == 100

    def test_lost(self):
        result = parse_auction_result({"intent_id": "i", "amount": "100", "msg": "Another solver was selected"})
        assert not result.won

    def test_marker_is_case_sensitive(self):
        assert not parse_auction_result({"intent_id": "i", "msg": "WON"}).won

    def test_amount_optional(self):
        assert parse_auction_result({"intent_id": "i", "msg": "won"}).amount is None

    def test_invalid_amount(self):
        with pytest.raises(ProtocolError):
            parse_auction_result({"intent_id": "i", "amount": "1.5e3x", "msg": "won"})

    def test_missing_msg(self):
        with pytest.raises(ProtocolError):
            parse_auction_result({"intent_id": "i", "amount": "1"})


# =============================================================================
# Signing
# =============================================================================


@pytest.fixture
def signer():
    return MessageSigner(TEST_SIGNING_KEY)


class TestMessageSigner:
    """Tests for envelope signing."""

    def test_hash_covers_unsigned_envelope(self, signer):
        envelope = bid_message("intent-1", "solver-1", 42)
        signed = signer.sign_envelope(envelope)

        expected = keccak256(canonical_json(envelope).encode()).hex()
        assert signed["msg"]["hash"] == expected
        assert not signed["msg"]["hash"].startswith("0x")

    def test_signature_format(self, signer):
        signed = signer.sign_envelope(bid_message("intent-1", "solver-1", 42))
        signature = signed["msg"]["signature"]

        assert len(signature) == 130
        assert int(signature[-2:], 16) in (27, 28)

    def test_original_envelope_untouched(self, signer):
        envelope = bid_message("intent-1", "solver-1", 42)
        signer.sign_envelope(envelope)
        assert "hash" not in envelope["msg"]

    def test_signer_recoverable(self, signer):
        signed = signer.sign_envelope(registration_message("solver-1", ["0xabc"]))
        assert recover_signer(signed) == keypair_from_hex(TEST_SIGNING_KEY).address

    def test_unprefixed_mode(self):
        signer = MessageSigner(TEST_SIGNING_KEY, prefix_messages=False)
        signed = signer.sign_envelope(bid_message("i", "s", 1))

        assert recover_signer(signed, prefix_messages=False) == signer.address
        assert recover_signer(signed, prefix_messages=True) != signer.address

    def test_tampered_message_detected(self, signer):
        signed = signer.sign_envelope(bid_message("intent-1", "solver-1", 42))
        signed["msg"]["amount"] = "43"
        assert recover_signer(signed) is None

    def test_signature_deterministic(self, signer):
        envelope = bid_message("intent-1", "solver-1", 42)
        assert signer.sign_envelope(envelope) == signer.sign_envelope(envelope)

    def test_non_object_msg_rejected(self, signer):
        with pytest.raises(ValueError):
            signer.sign_envelope({"code": 0, "msg": "text"})
