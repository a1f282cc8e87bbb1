# /oo_keeper/core/decorators.py
# Reusable decorators for operational resilience.
import asyncio
import logging

import aiohttp
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential, before_sleep_log

from oo_keeper.core.errors import TransportTimeout
from oo_keeper.core.logger import get_logger

log = get_logger(__name__)

TRANSPORT_ERRORS = (aiohttp.ClientError, ConnectionError, asyncio.TimeoutError)

# Generic retry for read-side network calls
retriable_network_call = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    before_sleep=before_sleep_log(log, logging.WARNING),
    reraise=True
)

# Dry run and transaction build, before anything is broadcast. Reverts are not
# transport errors and are never retried.
retry_before_broadcast = retry(
    retry=retry_if_exception_type(TRANSPORT_ERRORS),
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=1, min=1, max=4),
    before_sleep=before_sleep_log(log, logging.WARNING),
    reraise=True
)

# Waiting on an already broadcast transaction: one more wait for the same
# hash. Never re-sends.
retry_once_on_timeout = retry(
    retry=retry_if_exception_type(TransportTimeout),
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=1, min=1, max=4),
    before_sleep=before_sleep_log(log, logging.WARNING),
    reraise=True
)
