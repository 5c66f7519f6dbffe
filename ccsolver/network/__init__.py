"""Auction feed networking: wire protocol, signing, transport and session."""

from ccsolver.network.channel import ChannelError, ChannelState, MessageChannel, WebSocketChannel
from ccsolver.network.identity import MessageSigner, recover_signer
from ccsolver.network.protocol import (
    AuctionResult,
    MessageCode,
    NewIntent,
    bid_message,
    decode_message,
    error_message,
    parse_auction_result,
    parse_new_intent,
    registration_message,
    serialize,
    settlement_message,
)
from ccsolver.network.session import AuctionSession

__all__ = [
    "AuctionResult",
    "AuctionSession",
    "ChannelError",
    "ChannelState",
    "MessageChannel",
    "MessageCode",
    "MessageSigner",
    "NewIntent",
    "WebSocketChannel",
    "bid_message",
    "decode_message",
    "error_message",
    "parse_auction_result",
    "parse_new_intent",
    "recover_signer",
    "registration_message",
    "serialize",
    "settlement_message",
]
