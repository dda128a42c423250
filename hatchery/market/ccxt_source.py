"""Price source implementation using CCXT."""

from typing import Any, Dict, List, Optional

import ccxt.async_support as ccxt
from loguru import logger

from ..errors import StepError
from ..models import PriceData, get_current_timestamp_ms
from .interfaces import BasePriceSource


def get_exchange_cls(exchange_id: str):
    """Get CCXT async exchange class by exchange ID."""
    exchange_cls = getattr(ccxt, exchange_id, None)
    if exchange_cls is None:
        raise StepError(f"Exchange '{exchange_id}' not found in ccxt", retryable=False)
    return exchange_cls


def _as_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def ticker_to_price(ticker: Dict[str, Any], source: str) -> Optional[PriceData]:
    """Map a unified CCXT ticker to PriceData; None when there is no last price."""
    price = _as_float(ticker.get("last")) or _as_float(ticker.get("close"))
    if not price:
        return None

    return PriceData(
        price=price,
        timestamp=int(ticker.get("timestamp") or get_current_timestamp_ms()),
        source=source,
        price_change=_as_float(ticker.get("change")),
        price_change_percent=_as_float(ticker.get("percentage")),
        high_24h=_as_float(ticker.get("high")),
        low_24h=_as_float(ticker.get("low")),
        volume_24h=_as_float(ticker.get("baseVolume")),
        quote_volume_24h=_as_float(ticker.get("quoteVolume")),
    )


class CcxtPriceSource(BasePriceSource):
    """Fetches ticker snapshots via ccxt.async_support.

    One ``fetch_tickers`` call per invocation; the exchange instance is
    created per call and always closed.
    """

    def __init__(self, exchange_id: str = "binance", exchange_options: Optional[Dict[str, Any]] = None) -> None:
        self.exchange_id = exchange_id
        self.name = exchange_id
        self._exchange_options = {"enableRateLimit": True, **(exchange_options or {})}

    def _create_exchange(self):
        return get_exchange_cls(self.exchange_id)(self._exchange_options)

    async def fetch_prices(self, symbols: List[str]) -> Dict[str, PriceData]:
        exchange = self._create_exchange()
        try:
            markets = await exchange.load_markets()
            # 未上市的交易对会让整个 fetch_tickers 失败，先过滤
            known = [s for s in symbols if s in markets]
            tickers = await exchange.fetch_tickers(known) if known else {}
        except ccxt.BaseError as e:
            raise StepError(f"Failed to fetch {self.exchange_id} prices: {e}") from e
        finally:
            try:
                await exchange.close()
            except Exception as e:
                logger.debug(f"Error closing {self.exchange_id} exchange: {e}")

        prices: Dict[str, PriceData] = {}
        for symbol in symbols:
            ticker = tickers.get(symbol)
            if not ticker:
                continue
            price = ticker_to_price(ticker, self.exchange_id)
            if price is not None:
                prices[symbol] = price

        logger.debug(f"Fetched {len(prices)}/{len(symbols)} tickers from {self.exchange_id}")
        return prices
