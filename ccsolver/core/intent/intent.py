"""
Intent Layer - user intents as received from the auction feed.

An intent names a source and destination ledger and a pair of operation
payloads. The payloads are a closed, externally tagged sum type on the wire:

    {"SwapTransfer": {"token_in": ..., "amount_in": "500000000", ...}}

Only ``SwapTransfer`` is implemented; ``Lend`` and ``Borrow`` parse so the
feed can carry them, but every consumer raises UnsupportedOperationError.
"""

import json
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple, Type, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)

from ccsolver.core.errors import ProtocolError, UnsupportedOperationError


# =============================================================================
# Enums
# =============================================================================


class ChainId(str, Enum):
    """Ledgers the solver can settle on."""
    ETHEREUM = "ethereum"
    SOLANA = "solana"


class IntentFunction(str, Enum):
    """What the user asked for."""
    TRANSFER = "transfer"
    SWAP = "swap"


class IntentState(str, Enum):
    """Lifecycle of an intent record held by the solver."""
    RECEIVED = "received"
    QUOTED = "quoted"              # Bid sent, waiting for auction result
    WON = "won"
    SETTLING = "settling"
    SETTLED_OK = "settled_ok"
    SETTLED_DEGRADED = "settled_degraded"   # User paid, rebalance failed
    FAILED = "failed"
    LOST = "lost"
    TIMEOUT = "timeout"
    REMOVED = "removed"


TERMINAL_STATES = frozenset({
    IntentState.SETTLED_OK,
    IntentState.SETTLED_DEGRADED,
    IntentState.FAILED,
    IntentState.LOST,
    IntentState.TIMEOUT,
    IntentState.REMOVED,
})


# =============================================================================
# Operation payloads
# =============================================================================


class _Operation(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ClassVar[str] = ""


class SwapTransferInput(_Operation):
    """Source-side leg: what the user locks in escrow."""
    kind: ClassVar[str] = "SwapTransfer"

    token_in: str
    amount_in: int
    src_chain_user: str
    timeout: str = ""

    @field_validator("amount_in")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("amount_in must be non-negative")
        return value

    @field_serializer("amount_in")
    def _amount_as_str(self, value: int) -> str:
        return str(value)


class SwapTransferOutput(_Operation):
    """Destination-side leg: the minimum the user accepts."""
    kind: ClassVar[str] = "SwapTransfer"

    token_out: str
    amount_out: int
    dst_chain_user: str

    @field_validator("amount_out")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("amount_out must be non-negative")
        return value

    @field_serializer("amount_out")
    def _amount_as_str(self, value: int) -> str:
        return str(value)


class LendInput(_Operation):
    model_config = ConfigDict(frozen=True, extra="allow")
    kind: ClassVar[str] = "Lend"


class LendOutput(_Operation):
    model_config = ConfigDict(frozen=True, extra="allow")
    kind: ClassVar[str] = "Lend"


class BorrowInput(_Operation):
    model_config = ConfigDict(frozen=True, extra="allow")
    kind: ClassVar[str] = "Borrow"


class BorrowOutput(_Operation):
    model_config = ConfigDict(frozen=True, extra="allow")
    kind: ClassVar[str] = "Borrow"


OperationInput = Union[SwapTransferInput, LendInput, BorrowInput]
OperationOutput = Union[SwapTransferOutput, LendOutput, BorrowOutput]

INPUT_VARIANTS: Dict[str, Type[_Operation]] = {
    cls.kind: cls for cls in (SwapTransferInput, LendInput, BorrowInput)
}
OUTPUT_VARIANTS: Dict[str, Type[_Operation]] = {
    cls.kind: cls for cls in (SwapTransferOutput, LendOutput, BorrowOutput)
}


def _untag(value: Any, variants: Dict[str, Type[_Operation]]) -> Any:
    """Turn ``{"SwapTransfer": {...}}`` into the matching variant model."""
    if isinstance(value, _Operation):
        return value
    if not isinstance(value, dict) or len(value) != 1:
        raise ValueError("operation must be an object with exactly one variant tag")
    tag, body = next(iter(value.items()))
    variant = variants.get(tag)
    if variant is None:
        raise ValueError(f"unknown operation variant {tag!r}")
    return variant.model_validate(body if body is not None else {})


# =============================================================================
# Intent
# =============================================================================


class Intent(BaseModel):
    """
    A user's cross-chain intent.

    Attributes:
        intent_id: Identifier assigned by the auction feed
        function_name: transfer or swap
        src_chain: Ledger where the user locks token_in
        dst_chain: Ledger where the user receives token_out
        inputs: Source-side operation payload
        outputs: Destination-side operation payload
    """
    model_config = ConfigDict(frozen=True)

    intent_id: str = ""
    function_name: IntentFunction
    src_chain: ChainId
    dst_chain: ChainId
    inputs: OperationInput
    outputs: OperationOutput

    @field_validator("function_name", "src_chain", "dst_chain", mode="before")
    @classmethod
    def _lowercase(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @field_validator("inputs", mode="before")
    @classmethod
    def _parse_inputs(cls, value: Any) -> Any:
        return _untag(value, INPUT_VARIANTS)

    @field_validator("outputs", mode="before")
    @classmethod
    def _parse_outputs(cls, value: Any) -> Any:
        return _untag(value, OUTPUT_VARIANTS)

    @model_validator(mode="after")
    def _matching_variants(self) -> "Intent":
        if self.inputs.kind != self.outputs.kind:
            raise ValueError(
                f"input variant {self.inputs.kind} does not match output variant {self.outputs.kind}"
            )
        return self

    @field_serializer("inputs", "outputs")
    def _tag(self, value: _Operation) -> Dict[str, Any]:
        return {value.kind: value.model_dump()}

    @property
    def single_domain(self) -> bool:
        """Source and destination are the same ledger."""
        return self.src_chain == self.dst_chain

    def swap_transfer(self) -> Tuple[SwapTransferInput, SwapTransferOutput]:
        """
        Return the SwapTransfer legs.

        Raises:
            UnsupportedOperationError: for Lend/Borrow intents
        """
        if isinstance(self.inputs, SwapTransferInput) and isinstance(self.outputs, SwapTransferOutput):
            return self.inputs, self.outputs
        raise UnsupportedOperationError(self.inputs.kind)

    @property
    def min_amount_out(self) -> int:
        """Minimum output the user accepts."""
        return self.swap_transfer()[1].amount_out

    def to_wire(self) -> Dict[str, Any]:
        """Serialize to the feed's JSON shape (without intent_id)."""
        return self.model_dump(mode="json", exclude={"intent_id"})

    def __repr__(self) -> str:
        return (
            f"Intent(id={self.intent_id[:10] or '?'}, fn={self.function_name.value}, "
            f"{self.src_chain.value}->{self.dst_chain.value}, variant={self.inputs.kind})"
        )


def parse_intent(payload: Union[str, bytes, Dict[str, Any]], intent_id: str = "") -> Intent:
    """
    Parse an intent as embedded in a feed message.

    The feed sometimes sends the intent as a JSON-encoded string and
    sometimes as an embedded object; both are accepted.

    Raises:
        ProtocolError: if the payload is not a valid intent
    """
    try:
        if isinstance(payload, (str, bytes)):
            payload = json.loads(payload)
        if not isinstance(payload, dict):
            raise ProtocolError(f"Intent payload must be an object, got {type(payload).__name__}")
        data = dict(payload)
        if intent_id:
            data["intent_id"] = intent_id
        return Intent.model_validate(data)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Intent payload is not valid JSON: {e}") from e
    except ValidationError as e:
        raise ProtocolError(f"Invalid intent {intent_id or '?'}: {e.errors(include_url=False)}") from e


# =============================================================================
# Intent Record
# =============================================================================


@dataclass(frozen=True)
class IntentRecord:
    """
    What the solver remembers about an intent it bid on.

    Records are immutable; state transitions produce a new record through
    ``with_state`` so that snapshots handed out by the store never change
    under the reader.
    """
    intent: Intent
    bid_amount: int
    state: IntentState = IntentState.QUOTED
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    auction_amount: Optional[int] = None

    @property
    def intent_id(self) -> str:
        return self.intent.intent_id

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def settle_amount(self) -> int:
        """Amount owed to the user: the auction's amount if it sent one, else our bid."""
        return self.auction_amount if self.auction_amount is not None else self.bid_amount

    def with_state(self, state: IntentState, **changes: Any) -> "IntentRecord":
        return replace(self, state=state, updated_at=time.time(), **changes)

    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.created_at

    def __repr__(self) -> str:
        return f"IntentRecord(id={self.intent_id[:10]}, bid={self.bid_amount}, state={self.state.value})"
