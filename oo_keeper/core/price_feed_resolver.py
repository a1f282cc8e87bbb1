# /oo_keeper/core/price_feed_resolver.py
import asyncio
from typing import Any, Dict, Optional

from oo_keeper.adapters.price_feed import CoinGeckoPriceFeed, FixedPriceFeed, PriceFeed
from oo_keeper.core.errors import UnresolvableIdentifier
from oo_keeper.core.identifiers import IdentifierInfo, get_identifier_info
from oo_keeper.core.logger import get_logger

log = get_logger(__name__)

DEFAULT_LOOKBACK = 7200


class PriceFeedResolver:
    """
    Hands out one price feed per identifier for the life of the process.
    The feed's scale always comes from the identifier registry, never from
    the config. Concurrent callers asking for the same new identifier share a
    single in-flight resolution.
    """
    def __init__(self, registry: Optional[Dict[str, IdentifierInfo]] = None):
        self.registry = registry
        self._feeds: Dict[str, PriceFeed] = {}
        self._inflight: Dict[str, asyncio.Task] = {}

    async def resolve(self, identifier: str, config: Dict[str, Any]) -> PriceFeed:
        feed = self._feeds.get(identifier)
        if feed is not None:
            return feed
        task = self._inflight.get(identifier)
        if task is None:
            task = asyncio.ensure_future(self._resolve_once(identifier, dict(config or {})))
            self._inflight[identifier] = task
        return await task

    async def _resolve_once(self, identifier: str, config: Dict[str, Any]) -> PriceFeed:
        try:
            info = get_identifier_info(identifier, self.registry)
            feed = await self._create_feed(identifier, info, config)
            self._feeds[identifier] = feed
            log.info("PRICE_FEED_RESOLVED", identifier=identifier, decimals=feed.decimals, feed=type(feed).__name__)
            return feed
        finally:
            self._inflight.pop(identifier, None)

    async def _create_feed(self, identifier: str, info: IdentifierInfo, config: Dict[str, Any]) -> PriceFeed:
        lookback = int(config.get("lookback", DEFAULT_LOOKBACK))
        if "currentPrice" in config or "historicalPrice" in config:
            return FixedPriceFeed(
                identifier,
                info.decimals,
                lookback,
                current_price=config.get("currentPrice"),
                historical_price=config.get("historicalPrice"),
            )
        if info.coingecko_id:
            return CoinGeckoPriceFeed(
                identifier,
                info.decimals,
                lookback,
                coin_id=info.coingecko_id,
                vs_currency=info.vs_currency,
                invert=info.invert,
            )
        log.error("PRICE_FEED_NO_SOURCE", identifier=identifier)
        raise UnresolvableIdentifier(identifier)

    def cached_identifiers(self):
        return sorted(self._feeds)
