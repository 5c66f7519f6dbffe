"""
Auction Feed Protocol - message codes, envelope builders and parsers.

Every message is a JSON envelope:

    {"code": <int>, "msg": {...}}

    code  outbound                         inbound
    0     error report                     error
    1     registration / settlement report new intent {intent_id, intent}
    2     bid {intent_id, solver_id, amount}  rollup ack
    3     -                                registration confirmed
    4     -                                auction result {intent_id, amount, msg}

Outbound messages are signed before sending (see identity.MessageSigner).
"""

import json
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple, Union

from ccsolver.core.errors import ProtocolError
from ccsolver.core.intent.intent import Intent, parse_intent


class MessageCode(IntEnum):
    """Envelope codes used by the auction feed."""
    ERROR = 0
    INTENT = 1          # inbound new intent / outbound registration
    BID = 2             # outbound bid / inbound rollup ack
    REGISTERED = 3
    AUCTION_RESULT = 4


WON_MARKER = "won"

Envelope = Dict[str, Any]


# =============================================================================
# Outbound builders
# =============================================================================


def make_envelope(code: MessageCode, msg: Dict[str, Any]) -> Envelope:
    return {"code": int(code), "msg": dict(msg)}


def registration_message(solver_id: str, solver_addresses: List[str]) -> Envelope:
    """Register the solver and its payout addresses (one per ledger)."""
    return make_envelope(
        MessageCode.INTENT,
        {"solver_id": solver_id, "solver_addresses": list(solver_addresses)},
    )


def bid_message(intent_id: str, solver_id: str, amount: int) -> Envelope:
    """Bid ``amount`` of token_out (decimal string on the wire)."""
    return make_envelope(
        MessageCode.BID,
        {"intent_id": intent_id, "solver_id": solver_id, "amount": str(amount)},
    )


def settlement_message(intent_id: str, solver_id: str, tx_hash: str) -> Envelope:
    """Report a completed settlement."""
    return make_envelope(
        MessageCode.INTENT,
        {"intent_id": intent_id, "solver_id": solver_id, "tx_hash": tx_hash},
    )


def error_message(solver_id: str, error: str, intent_id: Optional[str] = None) -> Envelope:
    """Report a failed settlement."""
    msg: Dict[str, Any] = {"solver_id": solver_id, "error": error}
    if intent_id is not None:
        msg["intent_id"] = intent_id
    return make_envelope(MessageCode.ERROR, msg)


def serialize(envelope: Envelope) -> str:
    return json.dumps(envelope, separators=(",", ":"), ensure_ascii=False)


# =============================================================================
# Inbound parsers
# =============================================================================


def decode_message(raw: Union[str, bytes, Envelope]) -> Tuple[MessageCode, Any]:
    """
    Decode an inbound envelope.

    Returns:
        (code, msg)

    Raises:
        ProtocolError: malformed JSON, missing fields or unknown code
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Message is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise ProtocolError(f"Message must be an object, got {type(raw).__name__}")

    code = raw.get("code")
    if isinstance(code, str) and code.isdigit():
        code = int(code)
    if not isinstance(code, int) or isinstance(code, bool):
        raise ProtocolError(f"Message has no integer code: {raw!r}")
    try:
        message_code = MessageCode(code)
    except ValueError:
        raise ProtocolError(f"Unknown message code {code}") from None

    return message_code, raw.get("msg")


def _require_object(msg: Any, what: str) -> Dict[str, Any]:
    if not isinstance(msg, dict):
        raise ProtocolError(f"{what} message body must be an object, got {msg!r}")
    return msg


def _require_str(msg: Dict[str, Any], key: str, what: str) -> str:
    value = msg.get(key)
    if not isinstance(value, str) or not value:
        raise ProtocolError(f"{what} message has no {key}")
    return value


@dataclass(frozen=True)
class NewIntent:
    intent_id: str
    intent: Intent


@dataclass(frozen=True)
class AuctionResult:
    intent_id: str
    amount: Optional[int]
    msg: str

    @property
    def won(self) -> bool:
        return WON_MARKER in self.msg


def parse_new_intent(msg: Any) -> NewIntent:
    """
    Parse ``{intent_id, intent}``; ``intent`` may be a JSON string or an object.

    Raises:
        ProtocolError: if the body or the embedded intent is malformed
    """
    body = _require_object(msg, "New intent")
    intent_id = _require_str(body, "intent_id", "New intent")
    payload = body.get("intent")
    if payload is None:
        raise ProtocolError(f"New intent {intent_id} has no intent payload")
    return NewIntent(intent_id=intent_id, intent=parse_intent(payload, intent_id=intent_id))


def parse_auction_result(msg: Any) -> AuctionResult:
    """
    Parse ``{intent_id, amount, msg}``.

    Raises:
        ProtocolError: if intent_id or msg is missing, or amount is not an integer
    """
    body = _require_object(msg, "Auction result")
    intent_id = _require_str(body, "intent_id", "Auction result")
    text = body.get("msg")
    if not isinstance(text, str):
        raise ProtocolError(f"Auction result for {intent_id} has no msg")

    raw_amount = body.get("amount")
    amount: Optional[int] = None
    if raw_amount is not None and raw_amount != "":
        try:
            amount = int(raw_amount)
        except (TypeError, ValueError):
            raise ProtocolError(f"Auction result for {intent_id} has invalid amount {raw_amount!r}") from None

    return AuctionResult(intent_id=intent_id, amount=amount, msg=text)
