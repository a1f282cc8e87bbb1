# /oo_keeper/core/gas_estimator.py
# Centralized, resilient gas price estimation. The keeper only ever reads the
# cached value, so a slow or dead node can not stall the action pipeline.

import asyncio
import time
from decimal import Decimal
from typing import Optional

from oo_keeper.core.config import settings
from oo_keeper.core.logger import get_logger
from oo_keeper.core.decorators import retriable_network_call

log = get_logger(__name__)

GWEI = 10**9


class GasEstimator:
    """
    Provides EIP-1559 based gas price estimates with a bounded-staleness fallback.
    """
    def __init__(
        self,
        w3=None,
        update_threshold: int = settings.GAS_UPDATE_THRESHOLD_SECONDS,
        default_fast_price_gwei: int = settings.GAS_FALLBACK_PRICE_GWEI,
        query_timeout: float = settings.GAS_QUERY_TIMEOUT_SECONDS,
        priority_multiplier: Decimal = settings.GAS_PRIORITY_MULTIPLIER,
    ):
        self.w3 = w3
        self.update_threshold = update_threshold
        self.default_fast_price = default_fast_price_gwei * GWEI
        self.query_timeout = query_timeout
        self.priority_multiplier = priority_multiplier
        # Beyond this age the cached price is no better than the fallback
        self.max_staleness = update_threshold * 10
        self.last_fast_price: Optional[int] = None
        self.last_update_timestamp: Optional[float] = None
        log.info("GAS_ESTIMATOR_INITIALIZED", default_fast_price_gwei=default_fast_price_gwei)

    @retriable_network_call
    async def get_base_fee(self) -> int:
        """Fetches the latest block's base fee."""
        latest_block = await self.w3.eth.get_block('latest')
        return latest_block['baseFeePerGas']

    async def get_priority_fee(self) -> int:
        try:
            return await self.w3.eth.max_priority_fee
        except Exception:
            # Fallback for nodes that don't support eth_maxPriorityFeePerGas
            log.warning("MAX_PRIORITY_FEE_RPC_UNSUPPORTED_FALLING_BACK")
            return int(Decimal("1.5") * GWEI)

    async def estimate_eip1559_fees(self) -> dict:
        base_fee = await self.get_base_fee()
        priority_fee = int(Decimal(await self.get_priority_fee()) * self.priority_multiplier)
        return {
            "maxPriorityFeePerGas": priority_fee,
            "maxFeePerGas": base_fee * 2 + priority_fee,
        }

    def is_stale(self) -> bool:
        if self.last_update_timestamp is None:
            return True
        return time.time() - self.last_update_timestamp >= self.update_threshold

    async def update(self):
        """Refreshes the cached price if it is older than the threshold. Never raises."""
        if self.w3 is None or not self.is_stale():
            return
        try:
            fees = await asyncio.wait_for(self.estimate_eip1559_fees(), timeout=self.query_timeout)
        except Exception as e:
            log.warning("GAS_ESTIMATE_FAILED_USING_LAST_GOOD", error=str(e), last_fast_price=self.last_fast_price)
            return
        self.last_fast_price = fees["maxFeePerGas"]
        self.last_update_timestamp = time.time()
        log.debug("GAS_ESTIMATE_UPDATED", fast_price=self.last_fast_price)

    def get_current_fast_price(self) -> int:
        if self.last_fast_price is None:
            return self.default_fast_price
        if time.time() - self.last_update_timestamp > self.max_staleness:
            return self.default_fast_price
        return self.last_fast_price
