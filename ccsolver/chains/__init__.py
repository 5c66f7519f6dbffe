"""Ledger adapters"""
from ccsolver.chains.base import (
    ChainAdapter,
    ChainError,
    TxReceipt,
    TxRejected,
    TxReverted,
    TxStatus,
    TxTimeout,
    poll_until_confirmed,
)
from ccsolver.chains.rpc import JsonRpcClient, RpcError
from ccsolver.chains.evm import EvmChainAdapter
from ccsolver.chains.solana import SolanaChainAdapter

__all__ = [
    "ChainAdapter",
    "ChainError",
    "TxReceipt",
    "TxRejected",
    "TxReverted",
    "TxStatus",
    "TxTimeout",
    "poll_until_confirmed",
    "JsonRpcClient",
    "RpcError",
    "EvmChainAdapter",
    "SolanaChainAdapter",
]
