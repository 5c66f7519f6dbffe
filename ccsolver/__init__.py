"""
ccsolver - cross-chain intent solver.

Listens to an auction feed, bids on SwapTransfer intents it can fill at a
profit and settles the ones it wins across Ethereum and Solana:
- Quoting through a bridging token with flat and proportional fees
- Signed bids over a WebSocket feed
- Sequential settlement with per-step failure reporting
"""

__version__ = "0.1.0"
