"""
Fakes for the network edges: a scripted JSON-RPC transport for probing, a
scripted ledger for the pipeline, a signer, and a sleep that records delays
instead of waiting.
"""

import asyncio

from ledger_rpc.wallet import Signer

ENDPOINTS = ["https://a.example", "https://b.example", "https://c.example"]
SENDER = "0x1111111111111111111111111111111111111111"
TX_HASH = "0x" + "ab" * 32


class FakeTransport:
    """Answers per endpoint: ok, timeout, hang, bad_block, read_only, or an exception instance."""

    def __init__(self, behaviours=None, default="ok"):
        self.behaviours = dict(behaviours or {})
        self.default = default
        self.calls = []
        self.closed = False

    async def request(self, endpoint, method, params, timeout):
        self.calls.append((endpoint, method))
        mode = self.behaviours.get(endpoint, self.default)
        if isinstance(mode, BaseException):
            raise mode
        if mode == "timeout":
            raise asyncio.TimeoutError()
        if mode == "hang":
            await asyncio.sleep(3600)
        if method == "eth_blockNumber":
            if mode == "bad_block":
                return {"jsonrpc": "2.0", "id": 1, "result": "latest"}
            return {"jsonrpc": "2.0", "id": 1, "result": "0x3a1f2c0"}
        if mode == "read_only":
            return {"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "Method not found"}}
        # a node that implements the method rejects the zero-address tx for other reasons
        return {"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "unknown account"}}

    async def close(self):
        self.closed = True


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


class ScriptedLedger:
    """
    Each method pops its next outcome from a script (a value, or an exception
    to raise); once the script runs dry it returns the default.
    """

    defaults = {
        "call": True,
        "estimate_gas": 100_000,
        "gas_price": 30_000_000_000,
        "send": TX_HASH,
        "get_transaction_receipt": {"status": 1, "blockNumber": 5, "gasUsed": 90_000, "transactionHash": TX_HASH},
        "get_nonce": 7,
        "get_code": b"\x60\x80\x60\x40",
        "accounts": [SENDER],
        "block_number": 61_000_000,
        "chain_id": 137,
    }

    def __init__(self, **scripts):
        self.scripts = {k: list(v) for k, v in scripts.items()}
        self.calls = []
        self.sent = []

    def _next(self, name):
        self.calls.append(name)
        script = self.scripts.get(name)
        if not script:
            return self.defaults[name]
        outcome = script.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def count(self, name):
        return self.calls.count(name)

    async def call(self, call, sender=None):
        return self._next("call")

    async def estimate_gas(self, call, sender):
        return self._next("estimate_gas")

    async def gas_price(self):
        return self._next("gas_price")

    async def send(self, call, sender, gas, gas_price, extra=None):
        self.sent.append({"gas": gas, "gasPrice": gas_price, "nonce": self._next("get_nonce"), **(extra or {})})
        return self._next("send")

    async def get_transaction_receipt(self, tx_hash):
        return self._next("get_transaction_receipt")

    async def get_nonce(self, sender):
        return self._next("get_nonce")

    async def get_code(self, address):
        return self._next("get_code")

    async def accounts(self):
        return self._next("accounts")

    async def block_number(self):
        return self._next("block_number")

    async def chain_id(self):
        return self._next("chain_id")


class FakeSigner(Signer):
    def __init__(self, accounts=None):
        self.accounts = [SENDER] if accounts is None else accounts
        self.signed = []

    async def request_accounts(self):
        return list(self.accounts)

    async def sign_and_send(self, tx):
        self.signed.append(tx)
        return TX_HASH


