"""
SwapBot - Automated Multi-Wallet DEX Swap Agent

Rotates a set of wallets through repeated swaps on an Avalanche
Uniswap-V2 style router, gated on network fees.

Usage:
    from swapbot import KeyVault, FileStore, SwapExecutor, SwapScheduler

    # See DESIGN.md for the module layout
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .config import ConfigManager, NetworkConfig, SwapConfig
from .storage import KeyValueStore, MemoryStore, FileStore
from .vault import KeyVault
from .derivation import derive_wallets, merge_secrets, add_secret, address_of
from .registry import TokenInfo, TokenRegistry, TreasuryWallet
from .gas import FeeGuard, FeeObservation
from .dex_router import DexRouter
from .executor import SwapExecutor, SwapResult, SwapReceipt, QuoteResult, ForwardResult
from .scheduler import SwapScheduler, CycleState, CycleRecord, Direction, RunStatus
from .utils import (
    logger,
    setup_logging,
    SwapBotError,
    ConfigurationError,
    CustodyError,
    SwapError,
)

__all__ = [
    "ConfigManager",
    "NetworkConfig",
    "SwapConfig",
    "KeyValueStore",
    "MemoryStore",
    "FileStore",
    "KeyVault",
    "derive_wallets",
    "merge_secrets",
    "add_secret",
    "address_of",
    "TokenInfo",
    "TokenRegistry",
    "TreasuryWallet",
    "FeeGuard",
    "FeeObservation",
    "DexRouter",
    "SwapExecutor",
    "SwapResult",
    "SwapReceipt",
    "QuoteResult",
    "ForwardResult",
    "SwapScheduler",
    "CycleState",
    "CycleRecord",
    "Direction",
    "RunStatus",
    "logger",
    "setup_logging",
    "SwapBotError",
    "ConfigurationError",
    "CustodyError",
    "SwapError",
]
