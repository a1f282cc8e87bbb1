# /oo_keeper/core/tx.py
# Signs and broadcasts the keeper's oracle transactions. One nonce sequence
# per account, serialized through a Redis lock so a second keeper process on
# the same account queues behind us instead of racing for the same nonce.
from typing import Any, Dict

import redis.asyncio as redis
from web3 import AsyncWeb3

from oo_keeper.core.config import settings
from oo_keeper.core.kill import kill_switch_reason
from oo_keeper.core.logger import get_logger
from oo_keeper.core.resilient_rpc import ResilientWeb3Provider
from oo_keeper.core.nonce_manager import NonceManager

log = get_logger(__name__)

# Headroom over eth_estimateGas; settle() cost depends on the payout path.
GAS_LIMIT_MULTIPLIER = 1.25


class TransactionKillSwitchError(Exception):
    pass


class TransactionManager:
    def __init__(self, provider: ResilientWeb3Provider | None = None):
        self.provider = provider or ResilientWeb3Provider()
        self.w3 = self.provider.get_primary_provider()
        self.account = self.provider.account
        self.address = self.provider.address
        self.nonce_manager = NonceManager(self.w3, self.address)
        self.redis = redis.Redis.from_url(settings.REDIS_URL)
        self.is_initialized = False

    async def initialize(self):
        if self.is_initialized:
            return
        await self.provider.initialize()
        # The primary may have changed if the first node was unreachable.
        self.w3 = self.provider.get_primary_provider()
        self.nonce_manager.w3 = self.w3
        await self.nonce_manager.initialize()
        self.is_initialized = True
        log.info("TRANSACTION_MANAGER_INITIALIZED", address=self.address, chain_id=settings.chain_id)

    async def _prepare(self, tx_params: Dict[str, Any], nonce: int) -> Dict[str, Any]:
        tx = {'from': self.address, 'chainId': settings.chain_id, **tx_params, 'nonce': nonce}
        if 'gas' not in tx:
            tx['gas'] = int(await self.w3.eth.estimate_gas(tx) * GAS_LIMIT_MULTIPLIER)
        if 'gasPrice' in tx:
            return tx
        if 'maxFeePerGas' not in tx:
            tx['maxFeePerGas'] = await self.w3.eth.gas_price * 2
        if 'maxPriorityFeePerGas' not in tx:
            # A tip above the cap would be rejected by the node.
            tx['maxPriorityFeePerGas'] = min(await self.w3.eth.max_priority_fee, tx['maxFeePerGas'])
        return tx

    async def build_and_send_transaction(self, tx_params: Dict[str, Any]) -> str:
        """Fills nonce, gas and fees, signs and broadcasts. Returns the 0x tx hash."""
        halt_reason = kill_switch_reason()
        if halt_reason is not None:
            log.critical("TRANSACTION_BLOCKED_BY_KILL_SWITCH", reason=halt_reason, to=tx_params.get("to"))
            raise TransactionKillSwitchError(f"Keeper halted ({halt_reason}), transaction not sent.")

        async with self.redis.lock(f"oo_keeper:nonce:{self.address}", timeout=30):
            nonce = await self.nonce_manager.get()
            try:
                tx = await self._prepare(tx_params, nonce)
                signed = self.w3.eth.account.sign_transaction(tx, self.account.key)
                tx_hash = AsyncWeb3.to_hex(await self.w3.eth.send_raw_transaction(signed.raw_transaction))
            except Exception as e:
                log.error("TRANSACTION_BROADCAST_FAILED", nonce=nonce, to=tx_params.get("to"), error=str(e))
                if "nonce too low" in str(e).lower():
                    await self.nonce_manager.resync()
                raise
            # Only an accepted broadcast consumes the nonce.
            await self.nonce_manager.bump()
            log.info("TRANSACTION_BROADCASTED", tx_hash=tx_hash, nonce=nonce, to=tx.get("to"), gas=tx["gas"])
            return tx_hash

    async def close(self):
        self.nonce_manager.close()
        await self.redis.aclose()
