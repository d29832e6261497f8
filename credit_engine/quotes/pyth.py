"""Pyth Network quote provider."""
import logging
import ssl

import aiohttp
import certifi

from ..config import PythConfig
from ..errors import ProviderError

logger = logging.getLogger(__name__)


class PythQuoteProvider:
    """Fetch USD prices from the Pyth Hermes API."""

    name = "pyth"

    def __init__(self, config: PythConfig, timeout: float = 5.0) -> None:
        self.hermes_url = config.hermes_url
        self.price_feeds = {k.upper(): v for k, v in config.feeds.items()}
        self.timeout = timeout

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, float]:
        """Fetch current prices from Pyth Network.

        Args:
            symbols: Optional list of symbols to fetch. If None, fetches all
                     configured feeds.

        Raises:
            ProviderError: on a non-200 response or a transport failure.
        """
        prices: dict[str, float] = {}

        feeds = self.price_feeds
        if symbols is not None:
            wanted = {s.upper() for s in symbols}
            feeds = {k: v for k, v in self.price_feeds.items() if k in wanted}

        feed_ids = list(set(feeds.values()))
        if not feed_ids:
            return prices

        query_params = "&".join([f"ids[]={fid}" for fid in feed_ids])
        url = f"{self.hermes_url}?{query_params}"

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(
                    url, timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status != 200:
                        raise ProviderError(
                            f"Pyth returned HTTP {response.status}", provider=self.name
                        )
                    data = await response.json()
        except (aiohttp.ClientError, OSError) as e:
            raise ProviderError(f"Pyth request failed: {e}", provider=self.name) from e

        # Reverse mapping from feed ID to asset names
        id_to_assets: dict[str, list[str]] = {}
        for asset, feed_id in feeds.items():
            id_to_assets.setdefault(feed_id, []).append(asset)

        for item in data.get("parsed", []):
            feed_id = item.get("id")
            price_data = item.get("price", {})
            price_raw = int(price_data.get("price", 0))
            expo = int(price_data.get("expo", 0))

            price = price_raw * (10**expo)

            for asset in id_to_assets.get(feed_id, []):
                prices[asset] = price

        logger.debug("Fetched %d prices from Pyth Network", len(prices))
        return prices
