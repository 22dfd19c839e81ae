"""
Wallet Derivation

Expands a BIP-39 recovery phrase into swap wallets along the standard
Ethereum path m/44'/60'/0'/0/{index}, and merges key lists without
duplicates.
"""

from typing import Iterable, List, Tuple

from eth_account import Account
from eth_account.hdaccount import key_from_seed, seed_from_mnemonic

from .utils import (
    logger,
    normalize_private_key,
    ConfigurationError,
    InvalidPhraseError,
)


DERIVATION_PATH_TEMPLATE = "m/44'/60'/0'/0/{index}"
DEFAULT_DERIVATION_COUNT = 100
VALID_WORD_COUNTS = (12, 24)


def derive_wallets(phrase: str, count: int = DEFAULT_DERIVATION_COUNT) -> List[str]:
    """
    Derive ``count`` private keys from a recovery phrase.

    Args:
        phrase: 12 or 24 word mnemonic
        count: Number of consecutive indexes to derive, starting at 0

    Returns:
        Private keys (0x-prefixed), index order

    Raises:
        InvalidPhraseError: wrong word count or invalid mnemonic
    """
    words = (phrase or "").split()
    if len(words) not in VALID_WORD_COUNTS:
        raise InvalidPhraseError(
            f"Recovery phrase must have 12 or 24 words, got {len(words)}"
        )
    if count <= 0:
        raise ConfigurationError("Derivation count must be positive")

    try:
        seed = seed_from_mnemonic(" ".join(words), "")
    except Exception as e:
        raise InvalidPhraseError(f"Invalid recovery phrase: {e}") from e

    keys = []
    for index in range(count):
        key = key_from_seed(seed, DERIVATION_PATH_TEMPLATE.format(index=index))
        keys.append("0x" + bytes(key).hex())

    logger.info(f"Derived {count} wallets from recovery phrase")
    return keys


def merge_secrets(existing: Iterable[str], new: Iterable[str]) -> Tuple[List[str], int]:
    """
    Append keys from ``new`` that are not already present.

    Returns:
        (merged list, number of keys actually added)
    """
    merged = [normalize_private_key(s) for s in existing]
    seen = set(merged)
    added = 0

    for secret in new:
        key = normalize_private_key(secret)
        if key in seen:
            continue
        seen.add(key)
        merged.append(key)
        added += 1

    return merged, added


def add_secret(existing: Iterable[str], secret: str) -> List[str]:
    """
    Add a manually entered private key.

    Raises:
        ConfigurationError: missing 0x prefix, malformed, or already listed
    """
    if not secret or not secret.strip().startswith("0x"):
        raise ConfigurationError("Private key must start with 0x")

    merged, added = merge_secrets(existing, [secret])
    if added == 0:
        raise ConfigurationError("This key is already in the list")
    return merged


def address_of(secret: str) -> str:
    """Checksummed address controlled by ``secret``."""
    return Account.from_key(normalize_private_key(secret)).address
