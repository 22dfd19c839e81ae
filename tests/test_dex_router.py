"""
Tests for the async router client against a mocked web3 connection.
"""

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock

from web3 import Web3
from web3.exceptions import TransactionNotFound

from swapbot.config import NetworkConfig
from swapbot.dex_router import DexRouter, DEFAULT_GAS_LIMITS, MAX_UINT256
from swapbot.utils import TransactionError

from conftest import ADDRESS0, ROUTER, USDC, WAVAX


TX_HASH = bytes.fromhex("ab" * 32)


class FakeEth:
    """Minimal async ``w3.eth`` namespace."""

    def __init__(self, receipts=None, estimate=100_000):
        self.receipts = list(receipts or [{'status': 1}])
        self.estimate = estimate
        self.contracts = {}
        self.sent = []
        self.receipt_polls = 0

    @property
    def gas_price(self):
        async def price():
            return 25 * 10**9
        return price()

    def contract(self, address, abi):
        return self.contracts.setdefault(address, MagicMock(name=address))

    async def get_transaction_count(self, address, block):
        return 7

    async def estimate_gas(self, tx):
        if isinstance(self.estimate, Exception):
            raise self.estimate
        return self.estimate

    async def send_raw_transaction(self, raw):
        self.sent.append(raw)
        return TX_HASH

    async def get_transaction_receipt(self, tx_hash):
        self.receipt_polls += 1
        receipt = self.receipts.pop(0)
        if isinstance(receipt, Exception):
            raise receipt
        return receipt


class FakeWeb3:

    def __init__(self, eth):
        self.eth = eth

    def to_hex(self, value):
        return Web3.to_hex(value)


def make_account():
    account = MagicMock()
    account.address = ADDRESS0
    account.sign_transaction.return_value = MagicMock(raw_transaction=b"\x01\x02")
    return account


def make_fn():
    fn = MagicMock()
    fn.build_transaction = AsyncMock(side_effect=lambda params: dict(params, to=ROUTER, data="0x"))
    return fn


class TestSend(unittest.TestCase):
    """Tests for building, signing and confirming transactions."""

    def setUp(self):
        self.eth = FakeEth()
        self.dex = DexRouter(FakeWeb3(self.eth), ROUTER, 43114, receipt_poll_seconds=0)

    def test_gas_buffer_applied(self):
        account = make_account()
        tx_hash = asyncio.run(self.dex._send(account, make_fn(), 300_000, "swap"))

        tx = account.sign_transaction.call_args[0][0]
        self.assertEqual(tx['gas'], 120_000)
        self.assertEqual(tx['nonce'], 7)
        self.assertEqual(tx['chainId'], 43114)
        self.assertEqual(tx['gasPrice'], 25 * 10**9)
        self.assertEqual(tx_hash, "0x" + "ab" * 32)
        self.assertEqual(self.eth.sent, [b"\x01\x02"])

    def test_estimate_failure_uses_default(self):
        self.eth.estimate = ValueError("execution reverted")
        account = make_account()

        asyncio.run(self.dex._send(account, make_fn(), DEFAULT_GAS_LIMITS["swap"], "swap"))

        tx = account.sign_transaction.call_args[0][0]
        self.assertEqual(tx['gas'], DEFAULT_GAS_LIMITS["swap"])

    def test_reverted_transaction(self):
        self.eth.receipts = [{'status': 0}]

        with self.assertRaises(TransactionError):
            asyncio.run(self.dex._send(make_account(), make_fn(), 100_000, "approve"))

    def test_waits_until_receipt_exists(self):
        self.eth.receipts = [TransactionNotFound("pending"), TransactionNotFound("pending"), {'status': 1}]

        receipt = asyncio.run(self.dex.wait_for_receipt("0x" + "ab" * 32))

        self.assertEqual(receipt, {'status': 1})
        self.assertEqual(self.eth.receipt_polls, 3)


class TestReads(unittest.TestCase):
    """Tests for view calls."""

    def setUp(self):
        self.eth = FakeEth()
        self.dex = DexRouter(FakeWeb3(self.eth), ROUTER, 43114)

    def token(self, token_info):
        return self.eth.contract(Web3.to_checksum_address(token_info.address), None)

    def test_router_address_is_checksummed(self):
        dex = DexRouter(FakeWeb3(FakeEth()), ROUTER.lower(), 43114)
        self.assertEqual(dex.router_address, Web3.to_checksum_address(ROUTER))

    def test_decimals_are_cached(self):
        call = AsyncMock(return_value=6)
        self.token(USDC).functions.decimals.return_value.call = call

        async def main():
            return [await self.dex.decimals(USDC.address), await self.dex.decimals(USDC.address.lower())]

        self.assertEqual(asyncio.run(main()), [6, 6])
        self.assertEqual(call.await_count, 1)

    def test_quote_returns_last_hop(self):
        router = self.eth.contract(Web3.to_checksum_address(ROUTER), None)
        router.functions.getAmountsOut.return_value.call = AsyncMock(return_value=[100, 42])

        amount = asyncio.run(self.dex.quote_output([USDC.address, WAVAX.address], 100))

        self.assertEqual(amount, 42)
        args = router.functions.getAmountsOut.call_args[0]
        self.assertEqual(args[1], [USDC.checksum_address, WAVAX.checksum_address])

    def test_balance_of(self):
        self.token(WAVAX).functions.balanceOf.return_value.call = AsyncMock(return_value=10**18)

        balance = asyncio.run(self.dex.balance_of(WAVAX.address, ADDRESS0.lower()))

        self.assertEqual(balance, 10**18)
        self.token(WAVAX).functions.balanceOf.assert_called_with(ADDRESS0)

    def test_gas_price(self):
        self.assertEqual(asyncio.run(self.dex.gas_price()), 25 * 10**9)


class TestWrites(unittest.TestCase):
    """Tests for approve / swap / transfer wiring."""

    def setUp(self):
        self.eth = FakeEth()
        self.dex = DexRouter(FakeWeb3(self.eth), ROUTER, 43114, receipt_poll_seconds=0)
        self.dex._send = AsyncMock(return_value="0xhash")

    def test_approve_defaults_to_unlimited(self):
        account = make_account()
        asyncio.run(self.dex.approve(account, USDC.address, ROUTER))

        token = self.eth.contract(USDC.checksum_address, None)
        token.functions.approve.assert_called_with(Web3.to_checksum_address(ROUTER), MAX_UINT256)

    def test_swap_arguments(self):
        account = make_account()
        asyncio.run(self.dex.swap_exact_input(
            account, 100, 95, [USDC.address, WAVAX.address], ADDRESS0.lower(), 2200
        ))

        router = self.eth.contract(Web3.to_checksum_address(ROUTER), None)
        router.functions.swapExactTokensForTokens.assert_called_with(
            100, 95, [USDC.checksum_address, WAVAX.checksum_address], ADDRESS0, 2200
        )

    def test_from_config(self):
        dex = DexRouter.from_config(NetworkConfig())
        self.assertEqual(dex.chain_id, 43114)
        self.assertEqual(dex.router_address, Web3.to_checksum_address(ROUTER))


if __name__ == '__main__':
    unittest.main()
