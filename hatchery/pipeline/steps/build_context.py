"""
Step 2: 构建交易上下文

由价格数据和配置得出：
- 市场分析（平均涨跌幅、涨幅/跌幅榜、高成交量、接近支撑/阻力）
- 仓位计算（每笔交易资金、2% 单笔风险）
- 按执行周期的参数（最小风险回报比、建议杠杆、K 线周期）

价格结果缺失（可选的价格步骤失败）时，以空价格表继续。
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ...constants import EXECUTION_LIMITS, LEVERAGE_LIMITS, MAX_RISK_PER_TRADE_PCT
from ...models import PriceData, TradeConfig, get_current_timestamp_ms
from ..context import ExecutionContext, StepDefinition
from ..names import StepName
from .fetch_prices import PriceFetchMetadata, PriceFetchResult

HIGH_VOLUME_THRESHOLD = 1_000_000_000  # $1B 24h quote volume
NEAR_SUPPORT_POSITION = 0.2
NEAR_RESISTANCE_POSITION = 0.8
TOP_MOVERS = 3


# ============================================================================
# Models
# ============================================================================


class AssetChange(BaseModel):
    symbol: str
    change: float


class AssetVolume(BaseModel):
    symbol: str
    volume: float


class RangeProximity(BaseModel):
    symbol: str
    distance_percent: float


class MarketAnalysis(BaseModel):
    average_change: float = 0.0
    top_gainers: List[AssetChange] = Field(default_factory=list)
    top_losers: List[AssetChange] = Field(default_factory=list)
    high_volume: List[AssetVolume] = Field(default_factory=list)
    near_support: List[RangeProximity] = Field(default_factory=list)
    near_resistance: List[RangeProximity] = Field(default_factory=list)


class PositionSizing(BaseModel):
    total_capital: float
    capital_per_trade: float
    effective_capital: float
    leverage: float
    max_risk_per_trade: float
    max_risk_percent: float = MAX_RISK_PER_TRADE_PCT
    num_trades: int


class ExecutionParameters(BaseModel):
    timeframe: str
    description: str = ""
    max_duration_ms: Optional[int] = None
    target_percent: float
    min_risk_reward: float = 2.0
    suggested_leverage: str = ""
    chart_timeframes: List[str] = Field(default_factory=list)
    max_position_time: Optional[str] = None


class PriceSummary(BaseModel):
    symbol: str
    price: float
    change_24h: Optional[float] = None
    high_24h: Optional[float] = None
    low_24h: Optional[float] = None
    volume_24h: Optional[float] = None


class TradingContext(BaseModel):
    """Output of the context step, consumed by prompt/validation/glass box."""

    market_analysis: MarketAnalysis
    position_sizing: PositionSizing
    execution_params: ExecutionParameters
    prices_summary: List[PriceSummary] = Field(default_factory=list)
    prices: Dict[str, PriceData] = Field(default_factory=dict)
    config: TradeConfig
    price_metadata: Optional[PriceFetchMetadata] = None
    timestamp: int = Field(default_factory=get_current_timestamp_ms)


# ============================================================================
# Helpers
# ============================================================================

_TIMEFRAME_PROFILES = {
    "target": {
        "description": "Target-based: No time limit, closes on TP or SL only",
        "min_risk_reward": 2.0,
        "chart_timeframes": ["4h", "1d"],
    },
    "scalping": {
        "description": "Scalping: Quick trades within 1 hour",
        "min_risk_reward": 1.5,
        "chart_timeframes": ["1m", "5m", "15m"],
        "max_position_time": "1 hour",
    },
    "intraday": {
        "description": "Intraday: Trades closed within 24 hours",
        "min_risk_reward": 2.0,
        "chart_timeframes": ["15m", "1h", "4h"],
        "max_position_time": "24 hours",
    },
    "swing": {
        "description": "Swing trading: Positions held up to 7 days",
        "min_risk_reward": 2.5,
        "chart_timeframes": ["4h", "1d", "1w"],
        "max_position_time": "7 days",
    },
}


def analyze_market_conditions(prices: Dict[str, PriceData]) -> MarketAnalysis:
    """Derive movers, liquidity leaders and range position from ticker data."""
    with_change = [(s, p) for s, p in prices.items() if p.price_change_percent is not None]
    analysis = MarketAnalysis()

    if with_change:
        changes = [p.price_change_percent for _, p in with_change]
        analysis.average_change = sum(changes) / len(changes)

        ranked = sorted(with_change, key=lambda item: item[1].price_change_percent, reverse=True)
        analysis.top_gainers = [
            AssetChange(symbol=s, change=p.price_change_percent) for s, p in ranked[:TOP_MOVERS]
        ]
        analysis.top_losers = [
            AssetChange(symbol=s, change=p.price_change_percent)
            for s, p in reversed(ranked[-TOP_MOVERS:])
        ]

    analysis.high_volume = [
        AssetVolume(symbol=s, volume=p.quote_volume_24h)
        for s, p in prices.items()
        if p.quote_volume_24h and p.quote_volume_24h > HIGH_VOLUME_THRESHOLD
    ][:5]

    for symbol, p in prices.items():
        if not (p.high_24h and p.low_24h and p.price) or p.high_24h <= p.low_24h:
            continue
        position = (p.price - p.low_24h) / (p.high_24h - p.low_24h)
        if position < NEAR_SUPPORT_POSITION:
            analysis.near_support.append(RangeProximity(
                symbol=symbol,
                distance_percent=(p.price - p.low_24h) / p.low_24h * 100,
            ))
        elif position > NEAR_RESISTANCE_POSITION:
            analysis.near_resistance.append(RangeProximity(
                symbol=symbol,
                distance_percent=(p.high_24h - p.price) / p.price * 100,
            ))

    return analysis


def calculate_position_sizing(config: TradeConfig) -> PositionSizing:
    capital_per_trade = config.capital / config.num_results
    return PositionSizing(
        total_capital=config.capital,
        capital_per_trade=capital_per_trade,
        effective_capital=capital_per_trade * config.leverage,
        leverage=config.leverage,
        max_risk_per_trade=capital_per_trade * MAX_RISK_PER_TRADE_PCT / 100,
        num_trades=config.num_results,
    )


def get_execution_parameters(execution_time: str, target_pct: float) -> ExecutionParameters:
    profile = _TIMEFRAME_PROFILES.get(execution_time, {})
    leverage = LEVERAGE_LIMITS.get(execution_time, {})
    return ExecutionParameters(
        timeframe=execution_time,
        max_duration_ms=EXECUTION_LIMITS.get(execution_time),
        target_percent=target_pct,
        suggested_leverage=leverage.get("recommended", ""),
        **profile,
    )


def summarize_prices(prices: Dict[str, PriceData]) -> List[PriceSummary]:
    """Price rows for the prompt, highest quote volume first."""
    rows = [
        PriceSummary(
            symbol=symbol,
            price=p.price,
            change_24h=p.price_change_percent,
            high_24h=p.high_24h,
            low_24h=p.low_24h,
            volume_24h=p.quote_volume_24h,
        )
        for symbol, p in prices.items()
    ]
    return sorted(rows, key=lambda r: r.volume_24h or 0, reverse=True)


# ============================================================================
# Step
# ============================================================================


async def build_context(ctx: ExecutionContext) -> TradingContext:
    config = ctx.input.config
    fetched = ctx.maybe_result(StepName.FETCH_PRICES.value, PriceFetchResult)
    if fetched is None:
        ctx.record("warn", "No price data available, building context without market data")
    prices = fetched.prices if fetched else {}

    ctx.record("debug", "Building trading context", {
        "prices_count": len(prices),
        "execution_time": config.execution_time.value,
        "capital": config.capital,
        "leverage": config.leverage,
    })

    analysis = analyze_market_conditions(prices)
    ctx.record("info", "Market analysis complete", {
        "top_gainers": len(analysis.top_gainers),
        "top_losers": len(analysis.top_losers),
        "average_change": round(analysis.average_change, 2),
    })

    return TradingContext(
        market_analysis=analysis,
        position_sizing=calculate_position_sizing(config),
        execution_params=get_execution_parameters(config.execution_time.value, config.target_pct),
        prices_summary=summarize_prices(prices),
        prices=prices,
        config=config,
        price_metadata=fetched.metadata if fetched else None,
    )


def create_build_context_step(timeout_ms: int = 5000, max_retries: int = 0, optional: bool = False) -> StepDefinition:
    return StepDefinition(
        name=StepName.BUILD_CONTEXT.value,
        run=build_context,
        description="Builds trading context from prices and configuration",
        optional=optional,
        timeout_ms=timeout_ms,
        max_retries=max_retries,
    )
