"""Shared fixtures and fakes for the hatchery test suite."""

import json
from typing import Any, Dict, List, Optional

import pytest

from hatchery.market import BasePriceSource
from hatchery.models import PriceData, Trade, TradeType

ANTHROPIC_KEY = "sk-ant-REDACTED"


class FakeResponse:
    """Stands in for an aiohttp response used as ``async with session.post(...)``."""

    def __init__(self, status: int = 200, body: Any = None, text: Optional[str] = None):
        self.status = status
        self._text = text if text is not None else json.dumps(body if body is not None else {})

    async def text(self) -> str:
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Records POST calls and replays queued responses (the last one repeats)."""

    def __init__(self, *responses: FakeResponse):
        self._responses = list(responses) or [FakeResponse()]
        self.calls: List[Dict[str, Any]] = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers or {}})
        if len(self._responses) > 1:
            return self._responses.pop(0)
        return self._responses[0]


class FakePriceSource(BasePriceSource):
    name = "fake"

    def __init__(self, prices: Optional[Dict[str, PriceData]] = None, error: Optional[Exception] = None):
        self.prices = prices if prices is not None else sample_prices()
        self.error = error
        self.calls: List[List[str]] = []

    async def fetch_prices(self, symbols):
        self.calls.append(list(symbols))
        if self.error is not None:
            raise self.error
        return {s: p for s, p in self.prices.items() if s in symbols}


def sample_prices() -> Dict[str, PriceData]:
    return {
        "BTC/USDT": PriceData(
            price=95500.0, price_change_percent=2.5, high_24h=96000.0, low_24h=92000.0,
            volume_24h=25000.0, quote_volume_24h=2.4e9,
        ),
        "ETH/USDT": PriceData(
            price=3480.0, price_change_percent=-1.2, high_24h=3600.0, low_24h=3460.0,
            volume_24h=400000.0, quote_volume_24h=1.4e9,
        ),
        "SOL/USDT": PriceData(
            price=180.0, price_change_percent=4.1, high_24h=182.0, low_24h=170.0,
            volume_24h=2e6, quote_volume_24h=3.6e8,
        ),
    }


def ai_trades_payload() -> List[Dict[str, Any]]:
    factors = [
        {"factor": "Technical Signal Strength", "weight": 40, "score": 85},
        {"factor": "Risk Management Quality", "weight": 30, "score": 80},
        {"factor": "Market Context", "weight": 20, "score": 75},
        {"factor": "Volume Confirmation", "weight": 10, "score": 90},
    ]
    criteria = [
        {"criterion": "RSI oversold", "value": 28, "threshold": "<30", "passed": True},
        {"criterion": "Volume spike", "value": "+45%", "threshold": ">20%", "passed": True},
        {"criterion": "Near support", "value": "2.1%", "threshold": "<5%", "passed": True},
    ]
    return [
        {
            "asset": "BTC/USDT",
            "strategy": "LONG",
            "entry": 95000,
            "takeProfit": 101000,
            "stopLoss": 92000,
            "ipe": 85,
            "summary": "Breakout continuation",
            "reasoning": {
                "whyAsset": "Highest liquidity",
                "whyDirection": "Higher lows",
                "whyEntry": "Retest of breakout level",
                "whyLevels": "2:1 to prior high",
            },
            "criteriaMatched": criteria,
            "confidenceFactors": factors,
        },
        {
            "asset": "ETH/USDT",
            "strategy": "short",
            "entry": "3,500",
            "takeProfit": 3200,
            "stopLoss": 3650,
            "ipe": 80,
            "summary": "Rejection at resistance",
            "criteriaMatched": criteria,
            "confidenceFactors": factors,
        },
    ]


def anthropic_body(text: str) -> Dict[str, Any]:
    return {
        "id": "msg_1",
        "model": "claude-test",
        "content": [{"type": "text", "text": text}],
        "usage": {"input_tokens": 1200, "output_tokens": 400},
        "stop_reason": "end_turn",
    }


def make_trade(**overrides) -> Trade:
    values = dict(
        id="trade-1",
        asset="BTC/USDT",
        direction=TradeType.LONG,
        entry=100.0,
        take_profit=110.0,
        stop_loss=95.0,
        current_price=100.0,
        risk_reward_ratio=2.0,
        risk_percent=5.0,
        reward_percent=10.0,
        confidence=80,
        leverage=1.0,
        capital=100.0,
    )
    values.update(overrides)
    return Trade(**values)


@pytest.fixture
def price_source():
    return FakePriceSource()


@pytest.fixture
def trade():
    return make_trade()


@pytest.fixture
def pipeline_input():
    return {
        "strategy": {"id": "p-1", "name": "Momentum", "content": "Buy strength"},
        "config": {"api_key": ANTHROPIC_KEY, "num_results": 2, "assets": ["BTC/USDT", "ETH/USDT"]},
    }
