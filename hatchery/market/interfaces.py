"""Interfaces for market data sources."""

from abc import ABC, abstractmethod
from typing import Dict, List

from ..models import PriceData


class BasePriceSource(ABC):
    """Abstract base class for live price sources.

    Implementations fetch ticker snapshots from an exchange or API. A symbol
    the source does not know is simply absent from the result.
    """

    name: str = "unknown"

    @abstractmethod
    async def fetch_prices(self, symbols: List[str]) -> Dict[str, PriceData]:
        """Fetch latest ticker data for the given symbols.

        Args:
            symbols: List of trading symbols (e.g., ["BTC/USDT", "ETH/USDT"])

        Returns:
            Dict mapping symbol to PriceData
        """
        ...
