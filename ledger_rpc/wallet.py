from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from .errors import LedgerRPCError, ReinitializeRequired
from .events import ACCOUNT_CHANGED, NETWORK_CHANGED, EventBus

logger = logging.getLogger(__name__)


class Signer:
    """Wallet capability: accounts plus sign-and-broadcast. Signing itself happens elsewhere."""

    async def request_accounts(self) -> List[str]:
        raise NotImplementedError

    async def sign_and_send(self, tx: Dict[str, Any]) -> str:
        raise NotImplementedError


class NodeSigner(Signer):
    """Delegates to node-managed accounts (eth_accounts / eth_sendTransaction)."""

    def __init__(self, ledger):
        self.ledger = ledger

    async def request_accounts(self) -> List[str]:
        return await self.ledger.accounts()

    async def sign_and_send(self, tx: Dict[str, Any]) -> str:
        return await self.ledger.send_transaction(tx)


class WalletSession:
    """
    Tracks the active account. Account or network change notifications drop
    the cached selection and mark the session stale; nothing is patched up
    in place, the owner has to reinitialize.
    """

    def __init__(self, signer: Signer, bus: Optional[EventBus] = None):
        self.signer = signer
        self.bus = bus
        self.account: Optional[str] = None
        self.chain_id: Optional[int] = None
        self.stale = False

    @property
    def connected(self) -> bool:
        return self.account is not None and not self.stale

    async def connect(self) -> str:
        accounts = await self.signer.request_accounts()
        if not accounts:
            raise LedgerRPCError("No accounts found. Please connect your wallet.")
        self.account = accounts[0]
        self.stale = False
        logger.info(f"Wallet connected: {self.account}")
        return self.account

    def require_account(self) -> str:
        if self.stale:
            raise ReinitializeRequired("Wallet account or network changed; reinitialize the session")
        if self.account is None:
            raise LedgerRPCError("Wallet not connected")
        return self.account

    def disconnect(self) -> None:
        self.account = None
        self.chain_id = None
        self.stale = False

    def _emit(self, name: str, **data: Any) -> None:
        if self.bus is not None:
            self.bus.emit(name, **data)

    def accounts_changed(self, accounts: List[str]) -> None:
        if not accounts:
            logger.info("Wallet disconnected")
            self.disconnect()
            self._emit(ACCOUNT_CHANGED, account=None, reinitialize=False)
            return
        logger.info(f"Wallet account changed to {accounts[0]}; reinitialization required")
        self.account = None
        self.stale = True
        self._emit(ACCOUNT_CHANGED, account=accounts[0], reinitialize=True)

    def chain_changed(self, chain_id: Any) -> None:
        logger.info(f"Wallet network changed to {chain_id}; reinitialization required")
        self.account = None
        self.chain_id = None
        self.stale = True
        self._emit(NETWORK_CHANGED, chain_id=chain_id, reinitialize=True)
