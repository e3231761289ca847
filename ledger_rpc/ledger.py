"""
Ledger access through web3, always against the pool's current endpoint.

Contract methods are opaque here: a MethodCall names a contract address,
its ABI, a method name and arguments. The layer never interprets results.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 20


@dataclass
class MethodCall:
    address: str
    abi: Sequence[Dict[str, Any]] = field(repr=False)
    name: str = ""
    args: Tuple[Any, ...] = ()
    value: int = 0

    def __str__(self) -> str:
        return f"{self.name}({', '.join(map(repr, self.args))}) @ {self.address}"


def _mk_w3(endpoint: str, timeout: float = DEFAULT_REQUEST_TIMEOUT) -> AsyncWeb3:
    provider = AsyncHTTPProvider(endpoint, request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)})
    return AsyncWeb3(provider)


class Web3Ledger:
    """
    Reads, gas queries and writes for MethodCalls.

    One AsyncWeb3 client is kept per endpoint address; which one is used is
    decided on every call by pool.current_endpoint(), so a rotation made by
    the retry executor takes effect on the very next attempt.
    """

    def __init__(self, pool, signer=None, request_timeout: float = DEFAULT_REQUEST_TIMEOUT):
        self.pool = pool
        self.signer = signer
        self.request_timeout = request_timeout
        self._clients: Dict[str, AsyncWeb3] = {}

    def web3(self) -> AsyncWeb3:
        address = self.pool.current_endpoint().address
        if address not in self._clients:
            logger.debug(f"Creating web3 client for {address}")
            self._clients[address] = _mk_w3(address, self.request_timeout)
        return self._clients[address]

    def _function(self, call: MethodCall):
        contract = self.web3().eth.contract(address=Web3.to_checksum_address(call.address), abi=call.abi)
        return getattr(contract.functions, call.name)(*call.args)

    @staticmethod
    def _params(call: MethodCall, sender: Optional[str]) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if sender:
            params["from"] = Web3.to_checksum_address(sender)
        if call.value:
            params["value"] = call.value
        return params

    async def call(self, call: MethodCall, sender: Optional[str] = None) -> Any:
        return await self._function(call).call(self._params(call, sender))

    async def estimate_gas(self, call: MethodCall, sender: str) -> int:
        return int(await self._function(call).estimate_gas(self._params(call, sender)))

    async def gas_price(self) -> int:
        return int(await self.web3().eth.gas_price)

    async def block_number(self) -> int:
        return int(await self.web3().eth.block_number)

    async def chain_id(self) -> int:
        return int(await self.web3().eth.chain_id)

    async def get_nonce(self, sender: str) -> int:
        return int(await self.web3().eth.get_transaction_count(Web3.to_checksum_address(sender), "pending"))

    async def get_code(self, address: str) -> bytes:
        return bytes(await self.web3().eth.get_code(Web3.to_checksum_address(address)))

    async def send(self, call: MethodCall, sender: str, gas: int, gas_price: int,
                   extra: Optional[Dict[str, Any]] = None) -> str:
        if self.signer is None:
            raise RuntimeError("Web3Ledger has no signer configured")
        # nonce is read here, on every submission, never reused
        params = self._params(call, sender)
        params.update({"gas": int(gas), "gasPrice": int(gas_price), "nonce": await self.get_nonce(sender)})
        params.update(extra or {})
        tx = await self._function(call).build_transaction(params)
        return await self.signer.sign_and_send(tx)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        try:
            receipt = await self.web3().eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return dict(receipt) if receipt is not None else None

    async def accounts(self) -> List[str]:
        return list(await self.web3().eth.accounts)

    async def send_transaction(self, tx: Dict[str, Any]) -> str:
        return Web3.to_hex(await self.web3().eth.send_transaction(tx))

    async def close(self) -> None:
        for w3 in self._clients.values():
            await w3.provider.disconnect()
        self._clients.clear()
