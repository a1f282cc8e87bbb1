# /oo_keeper/core/nonce_manager.py
# Durable nonce for the keeper account. The state file is flock'ed for the
# life of the process, so two keepers can not share an account on one host,
# and it records the chain it belongs to so a file from another network is
# never trusted.

import fcntl
import json
import os

from oo_keeper.core.config import settings
from oo_keeper.core.logger import get_logger

log = get_logger(__name__)


class NonceManager:
    def __init__(self, w3, address: str, chain_id: int | None = None):
        self.w3 = w3
        self.address = address
        self.chain_id = settings.chain_id if chain_id is None else chain_id
        os.makedirs(settings.SESSION_DIR, exist_ok=True)
        self.path = os.path.join(settings.SESSION_DIR, f"nonce_{self.chain_id}_{str(address).lower()}.json")
        self._fd = None
        self.nonce = -1

    def _read_persisted(self) -> int | None:
        self._fd.seek(0)
        raw = self._fd.read().strip()
        if not raw:
            return None
        try:
            state = json.loads(raw)
        except json.JSONDecodeError:
            log.warning("NONCE_FILE_CORRUPT_IGNORED", path=self.path)
            return None
        if state.get("chain_id") != self.chain_id or str(state.get("address")).lower() != str(self.address).lower():
            log.warning("NONCE_FILE_FOR_OTHER_ACCOUNT_IGNORED", path=self.path, state=state)
            return None
        return int(state["nonce"])

    async def initialize(self):
        self._fd = open(self.path, "a+")
        fcntl.flock(self._fd, fcntl.LOCK_EX)
        persisted = self._read_persisted()
        chain_nonce = await self.w3.eth.get_transaction_count(self.address)
        # Broadcasts not yet mined leave the chain behind the file.
        if persisted is not None and persisted >= chain_nonce:
            self.nonce = persisted
            log.info("NONCE_LOADED", nonce=self.nonce, chain_nonce=chain_nonce)
        else:
            self.nonce = chain_nonce
            log.info("NONCE_FROM_RPC", nonce=self.nonce, persisted=persisted)
            self._write()
        return self.nonce

    async def get(self) -> int:
        return self.nonce

    async def bump(self):
        self.nonce += 1
        self._write()
        log.debug("NONCE_BUMPED", nonce=self.nonce)

    async def resync(self):
        """Realigns with the node's pending count after a 'nonce too low' rejection."""
        self.nonce = await self.w3.eth.get_transaction_count(self.address, "pending")
        self._write()
        log.warning("NONCE_RESYNCED", nonce=self.nonce)

    def _write(self):
        self._fd.seek(0)
        self._fd.truncate()
        json.dump({"chain_id": self.chain_id, "address": self.address, "nonce": self.nonce}, self._fd)
        self._fd.flush()

    def close(self):
        if self._fd:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
            self._fd.close()
            self._fd = None
            log.info("NONCE_LOCK_RELEASED", address=self.address)
