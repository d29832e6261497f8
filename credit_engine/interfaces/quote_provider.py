"""Quote provider protocol — USD price feed abstraction."""
from typing import Protocol


class QuoteProvider(Protocol):
    """Abstract interface for fetching current USD prices."""

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, float]: ...
