"""
Token and Treasury Wallet Registry

Read-only lookup tables for the tokens the bot may trade and the treasury
wallets proceeds may be forwarded to. The scheduler receives a snapshot
of these at start time and never re-reads them mid-run.
"""

from pathlib import Path
from dataclasses import dataclass, asdict
from typing import Dict, Any, List, Optional

import yaml
from web3 import Web3

from .utils import logger, ConfigurationError


@dataclass(frozen=True)
class TokenInfo:
    """ERC-20 token known to the dashboard."""
    symbol: str
    address: str
    name: str = ""
    decimals: Optional[int] = None
    logo: str = ""
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TokenInfo':
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    @property
    def checksum_address(self) -> str:
        return Web3.to_checksum_address(self.address)


@dataclass(frozen=True)
class TreasuryWallet:
    """Forward-target candidate (multisig / ledger)."""
    address: str
    label: str
    enabled: bool = True


# Avalanche C-Chain defaults
DEFAULT_TOKENS: List[TokenInfo] = [
    TokenInfo("ARENA", "0xB8d7710f7d8349A506b75dD184F05777c82dAd0C", "Arena Token", 18),
    TokenInfo("ORDER", "0x1BEd077195307229FcCBC719C5f2ce6416A58180", "ORDER Token", 18),
    TokenInfo("USDC", "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E", "USD Coin", 6),
    TokenInfo("DAI.e", "0xd586E7F844cEa2F87f50152665BCbc2C279D8d70", "Dai Stablecoin", 18),
    TokenInfo("GHO", "0xfc421aD3C883Bf9E7C4f42dE845C4e4405799e73", "GHO Stablecoin", 18),
    TokenInfo("BTC.b", "0x152b9d0FdC40C096757F570A51E494bd4b943E50", "Bitcoin (Bridged)", 8),
    TokenInfo("WAVAX", "0xB31f66AA3C1e785363F0875A1B74E27b85FD66c7", "Wrapped AVAX", 18),
    TokenInfo("USDT", "0x9702230A8Ea53601f5cD2dc00fDBc13d4dF4A8c7", "Tether USD", 6),
    TokenInfo("EURC", "0xC891EB4cbdEFf6e073e859e987815Ed1505c2ACD", "Circle EURO", 6),
]

TREASURY_WALLETS: List[TreasuryWallet] = [
    TreasuryWallet("0xB799CD1f2ED5dB96ea94EdF367fBA2d90dfd9634", "Main Multisig"),
    TreasuryWallet("0xAA1A1c49b8fd0AA010387Cb2d8b5A0fc950205aB", "0xAA Ledger"),
    TreasuryWallet("0x149cF6b96F4A73B3F273993ee6FFFACB37e0A4Fa", "0x149 Ledger", enabled=False),
    TreasuryWallet("0x5151Ecca198557Abe46478a86879BAD91Dc423D3", "ECO LP Multisig"),
    TreasuryWallet("0x91b5965e81DAC2687D0dAD000bd6ef207D2D167f", "0x91 Ledger"),
    TreasuryWallet("0x881327E6B5b73859E12247863E904d80e77bAF85", "0x88 Ledger"),
]


class TokenRegistry:
    """Immutable token list with symbol and address lookup."""

    def __init__(self, tokens: Optional[List[TokenInfo]] = None):
        self._tokens = list(DEFAULT_TOKENS if tokens is None else tokens)

    @classmethod
    def from_yaml(cls, path) -> 'TokenRegistry':
        """
        Load a token list from YAML::

            tokens:
              - symbol: USDC
                address: "0x..."
                decimals: 6
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Token file not found: {path}")

        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        tokens = [TokenInfo.from_dict(t) for t in data.get("tokens", [])]
        for token in tokens:
            if not Web3.is_address(token.address):
                raise ConfigurationError(f"Invalid address for {token.symbol}: {token.address}")

        logger.info(f"Loaded {len(tokens)} tokens from {path}")
        return cls(tokens)

    def all(self) -> List[TokenInfo]:
        return list(self._tokens)

    def enabled(self) -> List[TokenInfo]:
        """Snapshot of the enabled tokens."""
        return [t for t in self._tokens if t.enabled]

    def get(self, key: str) -> TokenInfo:
        """
        Look up an enabled token by symbol (case-insensitive) or address.

        Raises:
            ConfigurationError: unknown or disabled token
        """
        key_lower = (key or "").strip().lower()
        for token in self.enabled():
            if token.symbol.lower() == key_lower or token.address.lower() == key_lower:
                return token
        raise ConfigurationError(f"Unknown or disabled token: {key}")


def enabled_treasury_wallets(wallets: Optional[List[TreasuryWallet]] = None) -> List[TreasuryWallet]:
    return [w for w in (TREASURY_WALLETS if wallets is None else wallets) if w.enabled]
