# /test/conftest.py
# Shared mock environment: an in-memory optimistic oracle with one pending
# request per test identifier, a client over it, and a keeper running as
# BOT_RUNNER.

import pytest

from oo_keeper.adapters.mock import MockFallbackOracle, MockOptimisticOracle
from oo_keeper.core.client import OptimisticOracleClient
from oo_keeper.core.config import KeeperConfig
from oo_keeper.core.gas_estimator import GasEstimator
from oo_keeper.core.keeper import OptimisticOracleKeeper
from oo_keeper.core.price_feed_resolver import PriceFeedResolver

REQUESTER = "0x00000000000000000000000000000000000000a1"
PROPOSER = "0x00000000000000000000000000000000000000a2"
DISPUTER = "0x00000000000000000000000000000000000000a3"
RANDO = "0x00000000000000000000000000000000000000a4"
BOT_RUNNER = "0x00000000000000000000000000000000000000a5"
COLLATERAL = "0x00000000000000000000000000000000000000c0"

LIVENESS = 7200  # 2 hours
FINAL_FEE = 10**18
START_TIME = 1_600_000_000
REQUEST_TIME = START_TIME - 10
CORRECT_PRICE = -17 * 10**18

# Each test identifier is registered at a different precision.
IDENTIFIERS_TO_TEST = ["TEST8DECIMALS", "TEST6DECIMALS", "TEST18DECIMALS"]
IDENTIFIER = "TEST8DECIMALS"

DEFAULT_PRICE_FEED_CONFIG = {
    "lookback": 100,  # Request time is 10 secs behind now, so 100 lookback covers it.
    "currentPrice": "1",  # Scaled to the identifier's precision by the feed.
    "historicalPrice": "2",
}


@pytest.fixture
def fallback_oracle():
    return MockFallbackOracle()


@pytest.fixture
def oracle(fallback_oracle):
    oracle = MockOptimisticOracle(fallback_oracle, liveness=LIVENESS, current_time=START_TIME, from_address=BOT_RUNNER)
    oracle.set_final_fee(COLLATERAL, FINAL_FEE)
    for identifier in IDENTIFIERS_TO_TEST:
        oracle.request_price(REQUESTER, identifier, REQUEST_TIME, b"", COLLATERAL, 0)
    return oracle


@pytest.fixture
def client(oracle, fallback_oracle):
    return OptimisticOracleClient(oracle, fallback_oracle)


@pytest.fixture
def keeper_config():
    return KeeperConfig(
        account=BOT_RUNNER,
        default_price_feed_config=DEFAULT_PRICE_FEED_CONFIG,
        polling_interval_seconds=1,
        submission_timeout_seconds=5,
    )


@pytest.fixture
def keeper(client, oracle, keeper_config):
    return OptimisticOracleKeeper(
        client=client,
        oracle=oracle,
        price_feed_resolver=PriceFeedResolver(),
        gas_estimator=GasEstimator(),
        config=keeper_config,
    )
