"""Quoting: token registry, fee schedule and the quoting engine"""
from ccsolver.core.quoting.tokens import TokenInfo, TokenRegistry, DEFAULT_TOKENS, same_token
from ccsolver.core.quoting.fees import (
    COMMISSION_DENOMINATOR,
    DEFAULT_FLAT_FEES,
    FeeQuote,
    FeeSchedule,
    FeeUpdater,
    CoinGeckoPriceFeed,
    compute_flat_fees,
    parse_flat_fees,
)
from ccsolver.core.quoting.engine import NO_OFFER, Quote, QuotingEngine

__all__ = [
    "TokenInfo",
    "TokenRegistry",
    "DEFAULT_TOKENS",
    "same_token",
    "COMMISSION_DENOMINATOR",
    "DEFAULT_FLAT_FEES",
    "FeeQuote",
    "FeeSchedule",
    "FeeUpdater",
    "CoinGeckoPriceFeed",
    "compute_flat_fees",
    "parse_flat_fees",
    "NO_OFFER",
    "Quote",
    "QuotingEngine",
]
