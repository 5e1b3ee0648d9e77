# hyperdrive/endpoint_pool.py
from decimal import Decimal
from typing import Callable, List, Sequence

import aiohttp
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3

from .models import NetworkProfile

EXECUTOR_ABI = [
    {
        "type": "function",
        "name": "executeComplexPath",
        "stateMutability": "payable",
        "inputs": [
            {"name": "path", "type": "string[]"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [],
    }
]

class EmptyPoolError(RuntimeError):
    """Raised when an endpoint is requested from a pool with no live handles."""

class EndpointHandle:
    """
    One RPC connection bound to the signing account and the executor contract.
    Built once at startup and never mutated afterwards.
    """
    def __init__(self, url: str, chain_id: int, web3: AsyncWeb3, account: LocalAccount, contract):
        self.url = url
        self.chain_id = chain_id
        self.web3 = web3
        self.account = account
        self.contract = contract

    @classmethod
    def build(cls, url: str, profile: NetworkProfile, private_key: str, executor_address: str,
              request_timeout: float = 10.0) -> "EndpointHandle":
        web3 = AsyncWeb3(AsyncHTTPProvider(url, request_kwargs={'timeout': aiohttp.ClientTimeout(total=request_timeout)}))
        account = Account.from_key(private_key)
        contract = web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(executor_address),
            abi=EXECUTOR_ABI,
        )
        return cls(url, profile.chain_id, web3, account, contract)

    async def get_sequence(self) -> int:
        """The account's next nonce as observed by this endpoint (pending block)."""
        return await self.web3.eth.get_transaction_count(self.account.address, 'pending')

    async def submit(self, path: Sequence[str], amount: int, *, nonce: int, gas: int,
                     max_fee_wei: int, priority_fee_wei: int, value: int = 0) -> str:
        """
        Builds, signs locally, and broadcasts executeComplexPath(path, amount).
        Every transport field is supplied up-front so building needs no RPC round trip.
        Returns the transaction hash as 0x-hex.
        """
        tx = await self.contract.functions.executeComplexPath(list(path), amount).build_transaction({
            'from': self.account.address,
            'chainId': self.chain_id,
            'nonce': nonce,
            'gas': gas,
            'maxFeePerGas': max_fee_wei,
            'maxPriorityFeePerGas': priority_fee_wei,
            'value': value,
        })
        signed = self.account.sign_transaction(tx)
        tx_hash = await self.web3.eth.send_raw_transaction(signed.raw_transaction)
        return AsyncWeb3.to_hex(tx_hash)

HandleFactory = Callable[[str, NetworkProfile, str, str], EndpointHandle]

class EndpointPool:
    """
    Ordered set of endpoint handles for one network.
    next() walks them in fixed round-robin order (0 -> 1 -> 2 -> 0 ...) to spread
    load and dodge per-RPC rate limits (HTTP 429). Never adaptive.
    """
    def __init__(self, network: str, handles: List[EndpointHandle]):
        self.network = network
        self.handles = handles
        self.cursor = 0

    @classmethod
    def initialize(cls, profile: NetworkProfile, private_key: str, executor_address: str,
                   logger, factory: HandleFactory = EndpointHandle.build) -> "EndpointPool":
        """
        Builds a handle for every configured RPC. A broken RPC is logged and dropped;
        this never raises. An empty result means the network is inactive.
        """
        logger.info(f"[{profile.name}] Initializing {len(profile.rpcs)} RPC vectors...")
        handles = []
        for url in profile.rpcs:
            try:
                handles.append(factory(url, profile, private_key, executor_address))
            except Exception as e:
                logger.warning(f"[{profile.name}] Dropping RPC {url}: {e}")

        if not handles:
            logger.error(f"[{profile.name}] ❌ No usable RPCs. Network disabled.")
        return cls(profile.name, handles)

    def __len__(self) -> int:
        return len(self.handles)

    @property
    def is_empty(self) -> bool:
        return not self.handles

    def first(self) -> EndpointHandle:
        """Trusted endpoint used for sequence queries."""
        if not self.handles:
            raise EmptyPoolError(self.network)
        return self.handles[0]

    def next(self) -> EndpointHandle:
        if not self.handles:
            raise EmptyPoolError(self.network)
        handle = self.handles[self.cursor % len(self.handles)]
        self.cursor += 1
        return handle

def gwei_to_wei(value: Decimal) -> int:
    return AsyncWeb3.to_wei(Decimal(value), 'gwei')
