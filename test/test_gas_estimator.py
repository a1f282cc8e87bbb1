# /test/test_gas_estimator.py
import asyncio
import time

import pytest

from oo_keeper.core.gas_estimator import GWEI, GasEstimator


class DummyEth:
    def __init__(self, base_fee=10 * GWEI, priority_fee=2 * GWEI, delay=0.0):
        self.base_fee = base_fee
        self.priority_fee = priority_fee
        self.delay = delay
        self.block_calls = 0

    async def get_block(self, _):
        self.block_calls += 1
        await asyncio.sleep(self.delay)
        return {"baseFeePerGas": self.base_fee}

    @property
    def max_priority_fee(self):
        async def fee():
            return self.priority_fee
        return fee()


class DummyW3:
    def __init__(self, eth):
        self.eth = eth


def test_defaults_without_a_node():
    estimator = GasEstimator(default_fast_price_gwei=40)
    assert estimator.get_current_fast_price() == 40 * GWEI
    assert estimator.is_stale()


@pytest.mark.asyncio
async def test_update_without_a_node_is_a_noop():
    estimator = GasEstimator(default_fast_price_gwei=40)
    await estimator.update()
    assert estimator.last_fast_price is None


@pytest.mark.asyncio
async def test_update_caches_eip1559_fee():
    eth = DummyEth()
    estimator = GasEstimator(DummyW3(eth), update_threshold=60, priority_multiplier=1)
    await estimator.update()

    assert estimator.get_current_fast_price() == 2 * 10 * GWEI + 2 * GWEI
    assert not estimator.is_stale()

    # Fresh values are not refetched.
    await estimator.update()
    assert eth.block_calls == 1


@pytest.mark.asyncio
async def test_failed_update_keeps_last_good_price():
    eth = DummyEth()
    estimator = GasEstimator(DummyW3(eth), update_threshold=60, priority_multiplier=1, query_timeout=0.05)
    await estimator.update()
    good = estimator.get_current_fast_price()

    eth.delay = 1
    estimator.last_update_timestamp = time.time() - 61
    await estimator.update()
    assert estimator.get_current_fast_price() == good


@pytest.mark.asyncio
async def test_very_stale_price_falls_back_to_default():
    estimator = GasEstimator(DummyW3(DummyEth()), update_threshold=60, default_fast_price_gwei=40, priority_multiplier=1)
    await estimator.update()
    estimator.last_update_timestamp = time.time() - estimator.max_staleness - 1
    assert estimator.get_current_fast_price() == 40 * GWEI


@pytest.mark.asyncio
async def test_priority_fee_fallback():
    class NoPriorityFee(DummyEth):
        @property
        def max_priority_fee(self):
            async def fee():
                raise ValueError("method not found")
            return fee()

    estimator = GasEstimator(DummyW3(NoPriorityFee()), priority_multiplier=1)
    assert await estimator.get_priority_fee() == int(1.5 * GWEI)
