# /oo_keeper/core/config.py
from decimal import Decimal
from typing import Any, Dict, List

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings


# An item may wait on two receipts (bond approval, then the action), each
# waited on at most twice. The per-item bound must cover all of them.
RECEIPT_WAITS_PER_ITEM = 4


class Settings(BaseSettings):
    # Operator account
    EXECUTOR_PRIVATE_KEY: SecretStr | None = None

    # RPC endpoints, tried in order
    ETH_RPC_URL_1: SecretStr | None = None
    ETH_RPC_URL_2: SecretStr | None = None
    ETH_RPC_URL_3: SecretStr | None = None
    rpc_urls: List[str] = []
    chain_id: int = 1

    # Contracts
    OPTIMISTIC_ORACLE_ADDRESS: str | None = None
    FALLBACK_ORACLE_ADDRESS: str | None = None
    START_BLOCK: int = 0
    MAX_BLOCK_RANGE: int = 10_000

    # Keeper behaviour
    POLLING_INTERVAL_SECONDS: int = 60
    DISPUTE_TOLERANCE: Decimal = Decimal("0.05")
    DEFAULT_PRICE_FEED_CONFIG: Dict[str, Any] = {"lookback": 7200}
    SUBMISSION_TIMEOUT_SECONDS: float = 120.0
    RECEIPT_TIMEOUT_SECONDS: float = 25.0
    COINGECKO_BASE_URL: str = "https://api.coingecko.com/api/v3"

    # Gas
    GAS_UPDATE_THRESHOLD_SECONDS: int = 60
    GAS_QUERY_TIMEOUT_SECONDS: float = 5.0
    GAS_FALLBACK_PRICE_GWEI: int = 50
    GAS_PRIORITY_MULTIPLIER: Decimal = Decimal("1.2")

    # Operational Settings
    LOG_LEVEL: str = "INFO"
    LOG_SIGNING_KEY: SecretStr | None = None
    SENTRY_DSN: SecretStr | None = None
    HEALTH_PORT: int = 8080
    SESSION_DIR: str = "/tmp/oo_keeper_session"
    REDIS_URL: str = "redis://localhost:6379/0"
    CONTROL_API_TOKEN: str | None = None

    # GCP (optional, kill switch backend)
    GCP_PROJECT_ID: str | None = None
    GCP_REGION: str | None = None

    @property
    def ETH_RPC_URL(self) -> str | None:  # noqa: N802
        """Primary RPC URL: *ETH_RPC_URL_1* first, then the first *rpc_urls* entry."""
        if self.ETH_RPC_URL_1 is not None:
            return self.ETH_RPC_URL_1.get_secret_value()
        if self.rpc_urls:
            return self.rpc_urls[0]
        return None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


class KeeperConfig(BaseModel):
    """Static configuration handed to the keeper at construction time."""
    account: str
    default_price_feed_config: Dict[str, Any] = Field(default_factory=dict)
    dispute_tolerance: Decimal = Decimal("0.05")
    polling_interval_seconds: int = 60
    submission_timeout_seconds: float = 120.0

    class Config:
        frozen = True

    @classmethod
    def from_settings(cls, account: str, settings: "Settings") -> "KeeperConfig":
        return cls(
            account=account,
            default_price_feed_config=dict(settings.DEFAULT_PRICE_FEED_CONFIG),
            dispute_tolerance=settings.DISPUTE_TOLERANCE,
            polling_interval_seconds=settings.POLLING_INTERVAL_SECONDS,
            submission_timeout_seconds=settings.SUBMISSION_TIMEOUT_SECONDS,
        )


try:
    settings = Settings()
except Exception as e:
    # Late import to avoid circular dependency only for logging the failure
    try:
        from oo_keeper.core.logger import get_logger, configure_logging
        configure_logging()
        log = get_logger("OOKeeper.Config")
        log.critical("FAILED_TO_LOAD_SETTINGS", error=str(e))
    except Exception:
        print("FAILED_TO_LOAD_SETTINGS", e)
    raise SystemExit(1)
