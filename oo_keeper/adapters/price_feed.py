# /oo_keeper/adapters/price_feed.py
# Price feeds report integers already scaled to the identifier's decimals,
# so they can be compared byte-for-byte with on-chain fixed-point prices.
import time
from bisect import bisect_right
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple

import aiohttp

from oo_keeper.core.config import settings
from oo_keeper.core.decorators import retriable_network_call
from oo_keeper.core.logger import get_logger

log = get_logger(__name__)


def scale_price(value, decimals: int) -> int:
    """Decimal-ish human price -> signed fixed-point integer at `decimals`."""
    scaled = Decimal(str(value)) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_HALF_UP))


class PriceFeed:
    """Interface for every price feed handed out by the resolver."""
    def __init__(self, identifier: str, decimals: int, lookback: int):
        self.identifier = identifier
        self.decimals = decimals
        self.lookback = lookback

    async def update(self):
        raise NotImplementedError

    def get_current_price(self) -> Optional[int]:
        raise NotImplementedError

    def get_historical_price(self, timestamp: int) -> Optional[int]:
        raise NotImplementedError

    def get_lookback(self) -> int:
        return self.lookback

    def get_price_feed_decimals(self) -> int:
        return self.decimals


class FixedPriceFeed(PriceFeed):
    """Returns configured prices. Used for test identifiers and dry runs."""
    def __init__(self, identifier: str, decimals: int, lookback: int, current_price=None, historical_price=None):
        super().__init__(identifier, decimals, lookback)
        self.current_price = None if current_price is None else scale_price(current_price, decimals)
        self.historical_price = None if historical_price is None else scale_price(historical_price, decimals)

    async def update(self):
        pass

    def get_current_price(self) -> Optional[int]:
        return self.current_price

    def get_historical_price(self, timestamp: int) -> Optional[int]:
        if self.historical_price is not None:
            return self.historical_price
        return self.current_price


class CoinGeckoPriceFeed(PriceFeed):
    """
    Pulls the price history covering the lookback window from CoinGecko and
    answers historical queries with the last sample at or before the timestamp.
    """
    def __init__(
        self,
        identifier: str,
        decimals: int,
        lookback: int,
        coin_id: str,
        vs_currency: str = "usd",
        invert: bool = False,
        base_url: Optional[str] = None,
    ):
        super().__init__(identifier, decimals, lookback)
        self.coin_id = coin_id
        self.vs_currency = vs_currency
        self.invert = invert
        self.base_url = base_url or settings.COINGECKO_BASE_URL
        self._samples: List[Tuple[int, Decimal]] = []
        self._last_update: Optional[int] = None

    @retriable_network_call
    async def _fetch_range(self, start: int, end: int) -> list:
        url = f"{self.base_url}/coins/{self.coin_id}/market_chart/range"
        params = {"vs_currency": self.vs_currency, "from": str(start), "to": str(end)}
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=30)) as session:
            async with session.get(url, params=params) as resp:
                resp.raise_for_status()
                data = await resp.json()
                return data["prices"]

    async def update(self):
        now = int(time.time())
        raw = await self._fetch_range(now - self.lookback, now)
        samples = []
        for ms, price in raw:
            value = Decimal(str(price))
            if self.invert:
                if value == 0:
                    continue
                value = Decimal(1) / value
            samples.append((int(ms) // 1000, value))
        samples.sort(key=lambda s: s[0])
        self._samples = samples
        self._last_update = now
        log.debug("COINGECKO_FEED_UPDATED", identifier=self.identifier, samples=len(samples))

    def get_current_price(self) -> Optional[int]:
        if not self._samples:
            return None
        return scale_price(self._samples[-1][1], self.decimals)

    def get_historical_price(self, timestamp: int) -> Optional[int]:
        if not self._samples or self._last_update is None:
            return None
        if timestamp < self._last_update - self.lookback:
            return None
        idx = bisect_right([t for t, _ in self._samples], timestamp)
        if idx == 0:
            return None
        return scale_price(self._samples[idx - 1][1], self.decimals)
