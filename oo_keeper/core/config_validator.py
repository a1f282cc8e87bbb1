# /oo_keeper/core/config_validator.py
# Startup checks for the keeper's configuration. Anything reported here would
# otherwise surface as a failed cycle much later.
from web3 import AsyncWeb3

from oo_keeper.core.config import RECEIPT_WAITS_PER_ITEM, settings
from oo_keeper.core.logger import log


def find_problems(cfg=settings) -> list[str]:
    problems = []

    if not cfg.EXECUTOR_PRIVATE_KEY:
        problems.append("Missing required configuration: EXECUTOR_PRIVATE_KEY")
    if not cfg.ETH_RPC_URL:
        problems.append("Missing required configuration: ETH_RPC_URL_1 (or rpc_urls)")

    for var in ("OPTIMISTIC_ORACLE_ADDRESS", "FALLBACK_ORACLE_ADDRESS"):
        value = getattr(cfg, var)
        if not value:
            problems.append(f"Missing required configuration: {var}")
        elif not AsyncWeb3.is_address(value):
            problems.append(f"{var} is not a valid address: {value}")

    if not 0 <= cfg.DISPUTE_TOLERANCE < 1:
        problems.append(f"DISPUTE_TOLERANCE must be in [0, 1), got {cfg.DISPUTE_TOLERANCE}")
    if cfg.POLLING_INTERVAL_SECONDS <= 0:
        problems.append("POLLING_INTERVAL_SECONDS must be positive")
    if cfg.SUBMISSION_TIMEOUT_SECONDS <= 0:
        problems.append("SUBMISSION_TIMEOUT_SECONDS must be positive")
    elif cfg.SUBMISSION_TIMEOUT_SECONDS <= RECEIPT_WAITS_PER_ITEM * cfg.RECEIPT_TIMEOUT_SECONDS:
        problems.append(
            f"SUBMISSION_TIMEOUT_SECONDS must exceed {RECEIPT_WAITS_PER_ITEM} x RECEIPT_TIMEOUT_SECONDS "
            f"({cfg.SUBMISSION_TIMEOUT_SECONDS} <= {RECEIPT_WAITS_PER_ITEM * cfg.RECEIPT_TIMEOUT_SECONDS})"
        )
    if cfg.MAX_BLOCK_RANGE <= 0:
        problems.append("MAX_BLOCK_RANGE must be positive")
    if int(cfg.DEFAULT_PRICE_FEED_CONFIG.get("lookback", 1)) <= 0:
        problems.append("DEFAULT_PRICE_FEED_CONFIG.lookback must be positive")

    return problems


def validate(cfg=settings):
    log.info("CONFIG_VALIDATION_START")
    problems = find_problems(cfg)
    if problems:
        for problem in problems:
            log.critical("CONFIG_INVALID", problem=problem)
        raise ValueError("Keeper configuration is incomplete. Halting.")
    log.info("CONFIG_VALIDATION_PASSED")


if __name__ == "__main__":
    validate()
