"""
Token Registry - symbol -> (address, decimals) per ledger.

The default table carries the bridging token on every supported chain.
Address comparison is ledger aware: EVM hex addresses compare
case-insensitively, Solana base58 mints compare exactly.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from ccsolver.core.errors import UnknownToken
from ccsolver.core.intent.intent import ChainId


@dataclass(frozen=True)
class TokenInfo:
    """A token deployment on one ledger."""
    symbol: str
    chain: ChainId
    address: str
    decimals: int


DEFAULT_TOKENS = (
    TokenInfo("USDT", ChainId.ETHEREUM, "0xdAC17F958D2ee523a2206206994597C13D831ec7", 6),
    TokenInfo("USDT", ChainId.SOLANA, "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB", 6),
    TokenInfo("USDC", ChainId.ETHEREUM, "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", 6),
    TokenInfo("USDC", ChainId.SOLANA, "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", 6),
)


def normalize_address(chain: ChainId, address: str) -> str:
    """Canonical form used for comparisons."""
    if chain == ChainId.ETHEREUM:
        return address.lower()
    return address


def same_token(chain: ChainId, a: str, b: str) -> bool:
    """True if both addresses name the same token on ``chain``."""
    return normalize_address(chain, a) == normalize_address(chain, b)


class TokenRegistry:
    """Lookup of token deployments by symbol and ledger. Starts empty unless seeded."""

    def __init__(self, tokens: Optional[Iterable[TokenInfo]] = None):
        self._tokens: Dict[Tuple[str, ChainId], TokenInfo] = {}
        for token in tokens or ():
            self.register(token)

    def register(self, token: TokenInfo) -> None:
        self._tokens[(token.symbol.upper(), token.chain)] = token

    def get(self, symbol: str, chain: ChainId) -> TokenInfo:
        """
        Raises:
            UnknownToken: if the symbol is not deployed on ``chain``
        """
        token = self._tokens.get((symbol.upper(), chain))
        if token is None:
            raise UnknownToken(symbol, chain.value)
        return token

    def resolve(self, symbol: str, chain: ChainId) -> Tuple[str, int]:
        """Return (address, decimals) of ``symbol`` on ``chain``."""
        token = self.get(symbol, chain)
        return token.address, token.decimals

    def symbols(self, chain: ChainId) -> Iterable[str]:
        return sorted(symbol for symbol, token_chain in self._tokens if token_chain == chain)

    def __len__(self) -> int:
        return len(self._tokens)
