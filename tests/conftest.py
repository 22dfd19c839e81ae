"""
Shared fixtures: an in-memory router/ERC-20 double and well-known keys.

FakeDex implements the DexRouter interface with integer balances and
fixed exchange rates, so swaps, allowances and transfers are observable
without a node.
"""

import asyncio
from decimal import Decimal
from fractions import Fraction
from typing import Dict, List, Optional, Tuple

import pytest
from web3 import Web3

from swapbot.config import SwapConfig
from swapbot.dex_router import MAX_UINT256
from swapbot.gas import FeeObservation
from swapbot.registry import TokenInfo
from swapbot.utils import TransactionError


# Hardhat / Anvil default accounts for "test test ... junk"
TEST_PHRASE = "test test test test test test test test test test test junk"
KEY0 = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
KEY1 = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
ADDRESS0 = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
ADDRESS1 = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

USDC = TokenInfo("USDC", "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E", "USD Coin", 6)
WAVAX = TokenInfo("WAVAX", "0xB31f66AA3C1e785363F0875A1B74E27b85FD66c7", "Wrapped AVAX", 18)
TREASURY = "0xb799cd1f2ed5db96ea94edf367fba2d90dfd9634"
ROUTER = "0x60aE616a2155Ee3d9A68541Ba4544862310933d4"

# 1 USDC -> 0.05 WAVAX, 1 WAVAX -> 20 USDC (raw units)
DEFAULT_RATES = {
    (USDC.address, WAVAX.address): Fraction(5 * 10**10),
    (WAVAX.address, USDC.address): Fraction(20 * 10**6, 10**18),
}


def _cs(address: str) -> str:
    return Web3.to_checksum_address(address)


class FakeDex:
    """
    In-memory stand-in for DexRouter.

    Executed swaps deliver ``fill_ratio`` of the quote so the measured
    output differs from the quoted one.
    """

    router_address = ROUTER

    def __init__(self, rates=None, decimals=None, fill_ratio=Fraction(99, 100)):
        self.rates = {(_cs(a), _cs(b)): r for (a, b), r in (rates or DEFAULT_RATES).items()}
        self.token_decimals = {_cs(k): v for k, v in (decimals or {
            USDC.address: 6,
            WAVAX.address: 18,
        }).items()}
        self.fill_ratio = fill_ratio
        self.balances: Dict[Tuple[str, str], int] = {}
        self.allowances: Dict[Tuple[str, str, str], int] = {}
        self.gas_price_wei = Web3.to_wei(1, 'gwei')

        self.swaps: List[dict] = []
        self.approvals: List[dict] = []
        self.transfers: List[dict] = []
        self.fail: Dict[str, Exception] = {}
        self.deliver_output = True

        # Set both to hold a swap in flight
        self.swap_entered: Optional[asyncio.Event] = None
        self.swap_gate: Optional[asyncio.Event] = None
        self._nonce = 0

    def fund(self, token: TokenInfo, owner: str, amount: Decimal):
        key = (_cs(token.address), _cs(owner))
        raw = int(Decimal(str(amount)) * (Decimal(10) ** self.token_decimals[key[0]]))
        self.balances[key] = self.balances.get(key, 0) + raw

    def raw_balance(self, token: TokenInfo, owner: str) -> int:
        return self.balances.get((_cs(token.address), _cs(owner)), 0)

    def _maybe_fail(self, op: str):
        if op in self.fail:
            raise self.fail[op]

    def _tx_hash(self) -> str:
        self._nonce += 1
        return "0x" + format(self._nonce, "064x")

    async def gas_price(self) -> int:
        self._maybe_fail("gas_price")
        return self.gas_price_wei

    async def decimals(self, token: str) -> int:
        return self.token_decimals[_cs(token)]

    async def balance_of(self, token: str, owner: str) -> int:
        self._maybe_fail("balance_of")
        return self.balances.get((_cs(token), _cs(owner)), 0)

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        self._maybe_fail("allowance")
        return self.allowances.get((_cs(token), _cs(owner), _cs(spender)), 0)

    async def approve(self, account, token: str, spender: str, amount: int = MAX_UINT256) -> str:
        self._maybe_fail("approve")
        self.allowances[(_cs(token), account.address, _cs(spender))] = amount
        self.approvals.append({'owner': account.address, 'token': _cs(token), 'amount': amount})
        return self._tx_hash()

    async def quote_output(self, path: List[str], amount_in: int) -> int:
        self._maybe_fail("quote")
        rate = self.rates[(_cs(path[0]), _cs(path[-1]))]
        return int(amount_in * rate)

    async def swap_exact_input(self, account, amount_in, min_amount_out, path, recipient, deadline) -> str:
        if self.swap_entered is not None:
            self.swap_entered.set()
        if self.swap_gate is not None:
            await self.swap_gate.wait()
        self._maybe_fail("swap")

        token_in, token_out = _cs(path[0]), _cs(path[-1])
        owner = account.address
        allowed = self.allowances.get((token_in, owner, _cs(ROUTER)), 0)
        if allowed < amount_in:
            raise TransactionError("TRANSFER_FROM_FAILED")

        out = int(amount_in * self.rates[(token_in, token_out)] * self.fill_ratio)
        if out < min_amount_out:
            raise TransactionError("INSUFFICIENT_OUTPUT_AMOUNT")

        self.balances[(token_in, owner)] -= amount_in
        if self.deliver_output:
            key = (token_out, _cs(recipient))
            self.balances[key] = self.balances.get(key, 0) + out

        self.swaps.append({
            'owner': owner,
            'token_in': token_in,
            'token_out': token_out,
            'amount_in': amount_in,
            'min_out': min_amount_out,
            'out': out,
            'deadline': deadline,
        })
        return self._tx_hash()

    async def transfer(self, account, token: str, to: str, amount: int) -> str:
        self._maybe_fail("transfer")
        token, owner, to = _cs(token), account.address, _cs(to)
        if self.balances.get((token, owner), 0) < amount:
            raise TransactionError("transfer amount exceeds balance")
        self.balances[(token, owner)] -= amount
        self.balances[(token, to)] = self.balances.get((token, to), 0) + amount
        self.transfers.append({'from': owner, 'token': token, 'to': to, 'amount': amount})
        return self._tx_hash()


class ScriptedFeeGuard:
    """Fee guard reporting a fixed script of high/low answers, then low."""

    def __init__(self, above=()):
        self.script = list(above)
        self.calls = 0

    def current_fee_level(self) -> FeeObservation:
        self.calls += 1
        above = self.script.pop(0) if self.script else False
        return FeeObservation(
            price_wei=3 * 10**9 if above else 10**9,
            price_gwei=3.0 if above else 1.0,
            is_above_threshold=above,
            observed_at=0.0,
        )


@pytest.fixture
def dex():
    fake = FakeDex()
    for address in (ADDRESS0, ADDRESS1):
        fake.fund(USDC, address, Decimal(1000))
        fake.fund(WAVAX, address, Decimal(10))
    return fake


@pytest.fixture
def secrets():
    return [KEY0, KEY1]


@pytest.fixture
def swap_config():
    return SwapConfig(
        input_token=USDC,
        output_token=WAVAX,
        per_cycle_amount=Decimal(100),
        total_cycle_pairs=2,
        interval_seconds=0.01,
    )
