"""Market data sources."""

from .ccxt_source import CcxtPriceSource, ticker_to_price
from .interfaces import BasePriceSource

__all__ = ["BasePriceSource", "CcxtPriceSource", "ticker_to_price"]
