"""
DEX Router Module
=================
Async client for a Uniswap-V2 style router (Trader Joe V1 on Avalanche)
and the ERC-20 tokens it trades.

Every method takes and returns raw integer base units; conversion to
Decimal amounts happens once, in the executor.
"""

from typing import Dict, List

from web3 import AsyncWeb3
from web3.exceptions import TransactionNotFound
from eth_account.signers.local import LocalAccount
from tenacity import AsyncRetrying, retry_if_exception_type, stop_never, wait_fixed

from .config import NetworkConfig
from .utils import logger, format_tx_hash, TransactionError


# Trader Joe V1 Router ABI (Uniswap V2 compatible subset)
ROUTER_ABI = [
    {
        "inputs": [
            {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
            {"internalType": "uint256", "name": "amountOutMin", "type": "uint256"},
            {"internalType": "address[]", "name": "path", "type": "address[]"},
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "deadline", "type": "uint256"}
        ],
        "name": "swapExactTokensForTokens",
        "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
            {"internalType": "address[]", "name": "path", "type": "address[]"}
        ],
        "name": "getAmountsOut",
        "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
        "stateMutability": "view",
        "type": "function"
    }
]

# ERC20 ABI (minimal)
ERC20_ABI = [
    {"constant": True, "inputs": [], "name": "decimals", "outputs": [{"name": "", "type": "uint8"}], "stateMutability": "view", "type": "function"},
    {"constant": True, "inputs": [{"name": "_owner", "type": "address"}], "name": "balanceOf", "outputs": [{"name": "balance", "type": "uint256"}], "stateMutability": "view", "type": "function"},
    {"constant": True, "inputs": [{"name": "_owner", "type": "address"}, {"name": "_spender", "type": "address"}], "name": "allowance", "outputs": [{"name": "", "type": "uint256"}], "stateMutability": "view", "type": "function"},
    {"constant": False, "inputs": [{"name": "_spender", "type": "address"}, {"name": "_value", "type": "uint256"}], "name": "approve", "outputs": [{"name": "", "type": "bool"}], "stateMutability": "nonpayable", "type": "function"},
    {"constant": False, "inputs": [{"name": "_to", "type": "address"}, {"name": "_value", "type": "uint256"}], "name": "transfer", "outputs": [{"name": "", "type": "bool"}], "stateMutability": "nonpayable", "type": "function"},
]

MAX_UINT256 = 2**256 - 1

DEFAULT_GAS_LIMITS = {
    "approve": 100_000,
    "swap": 300_000,
    "transfer": 100_000,
}


class DexRouter:
    """
    Router + ERC-20 access over an AsyncWeb3 connection.

    Write methods sign with the given account, broadcast, and block until
    the receipt is available. Receipts are awaited without a timeout.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        router_address: str,
        chain_id: int,
        gas_limit_buffer: float = 1.2,
        receipt_poll_seconds: float = 1.0,
    ):
        self.w3 = w3
        self.router_address = AsyncWeb3.to_checksum_address(router_address)
        self.chain_id = chain_id
        self.gas_limit_buffer = gas_limit_buffer
        self.receipt_poll_seconds = receipt_poll_seconds

        self.router = w3.eth.contract(address=self.router_address, abi=ROUTER_ABI)
        self._tokens: Dict[str, object] = {}
        self._decimals_cache: Dict[str, int] = {}

    @classmethod
    def from_config(cls, config: NetworkConfig) -> "DexRouter":
        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(config.rpc_url))
        return cls(
            w3,
            config.router_address,
            config.chain_id,
            gas_limit_buffer=config.gas_limit_buffer,
            receipt_poll_seconds=config.receipt_poll_seconds,
        )

    def _token(self, token_address: str):
        address = AsyncWeb3.to_checksum_address(token_address)
        if address not in self._tokens:
            self._tokens[address] = self.w3.eth.contract(address=address, abi=ERC20_ABI)
        return self._tokens[address]

    # Fee oracle

    async def gas_price(self) -> int:
        """Current network gas price in wei."""
        return int(await self.w3.eth.gas_price)

    # Token reads

    async def decimals(self, token_address: str) -> int:
        """Cache and return token decimals."""
        address = AsyncWeb3.to_checksum_address(token_address)
        if address not in self._decimals_cache:
            self._decimals_cache[address] = int(
                await self._token(address).functions.decimals().call()
            )
        return self._decimals_cache[address]

    async def balance_of(self, token_address: str, owner: str) -> int:
        owner = AsyncWeb3.to_checksum_address(owner)
        return int(await self._token(token_address).functions.balanceOf(owner).call())

    async def allowance(self, token_address: str, owner: str, spender: str) -> int:
        return int(await self._token(token_address).functions.allowance(
            AsyncWeb3.to_checksum_address(owner),
            AsyncWeb3.to_checksum_address(spender),
        ).call())

    # Router reads

    async def quote_output(self, path: List[str], amount_in: int) -> int:
        """Expected output of ``amount_in`` along ``path`` (last hop)."""
        checksummed = [AsyncWeb3.to_checksum_address(p) for p in path]
        amounts = await self.router.functions.getAmountsOut(amount_in, checksummed).call()
        return int(amounts[-1])

    # Writes

    async def approve(self, account: LocalAccount, token_address: str, spender: str,
                      amount: int = MAX_UINT256) -> str:
        fn = self._token(token_address).functions.approve(
            AsyncWeb3.to_checksum_address(spender), amount
        )
        return await self._send(account, fn, DEFAULT_GAS_LIMITS["approve"], "approve")

    async def swap_exact_input(self, account: LocalAccount, amount_in: int, min_amount_out: int,
                               path: List[str], recipient: str, deadline: int) -> str:
        fn = self.router.functions.swapExactTokensForTokens(
            amount_in,
            min_amount_out,
            [AsyncWeb3.to_checksum_address(p) for p in path],
            AsyncWeb3.to_checksum_address(recipient),
            deadline,
        )
        return await self._send(account, fn, DEFAULT_GAS_LIMITS["swap"], "swap")

    async def transfer(self, account: LocalAccount, token_address: str, to: str, amount: int) -> str:
        fn = self._token(token_address).functions.transfer(
            AsyncWeb3.to_checksum_address(to), amount
        )
        return await self._send(account, fn, DEFAULT_GAS_LIMITS["transfer"], "transfer")

    async def _send(self, account: LocalAccount, fn, default_gas: int, label: str) -> str:
        """Build, sign, broadcast and confirm a contract call."""
        tx = await fn.build_transaction({
            'from': account.address,
            'nonce': await self.w3.eth.get_transaction_count(account.address, 'pending'),
            'gas': default_gas,
            'gasPrice': await self.w3.eth.gas_price,
            'chainId': self.chain_id,
        })

        try:
            gas_estimate = await self.w3.eth.estimate_gas(tx)
            tx['gas'] = int(gas_estimate * self.gas_limit_buffer)
        except Exception as e:
            logger.warning(f"Gas estimation for {label} failed: {e}, using default")
            tx['gas'] = default_gas

        signed = account.sign_transaction(tx)
        tx_hash = self.w3.to_hex(await self.w3.eth.send_raw_transaction(signed.raw_transaction))
        logger.info(f"{label.capitalize()} transaction sent: {format_tx_hash(tx_hash)}")

        receipt = await self.wait_for_receipt(tx_hash)
        if receipt['status'] != 1:
            raise TransactionError(
                f"{label.capitalize()} transaction reverted: {format_tx_hash(tx_hash)}"
            )
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str):
        """Poll until the transaction is mined; no timeout."""
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(TransactionNotFound),
            wait=wait_fixed(self.receipt_poll_seconds),
            stop=stop_never,
            reraise=True,
        ):
            with attempt:
                return await self.w3.eth.get_transaction_receipt(tx_hash)
