"""
Step 3: 生成 AI 提示词

系统提示词固定；用户提示词由策略、行情表、市场分析、交易配置和输出格式拼接而成。
full_prompt 供不支持 system 消息的提供商使用。
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from ...models import StrategyPrompt, get_current_timestamp_ms
from ...providers.google import PROMPT_SEPARATOR
from ..context import ExecutionContext, StepDefinition
from ..names import StepName
from .build_context import ExecutionParameters, MarketAnalysis, PositionSizing, PriceSummary, TradingContext

MAX_PRICE_ROWS = 15
CHARS_PER_TOKEN = 4
DEFAULT_STRATEGY_TEXT = "Generate trades based on technical analysis and current market conditions."

SYSTEM_PROMPT = """You are an expert cryptocurrency trading analyst with deep knowledge of technical analysis, market dynamics, and risk management.

Your role is to analyze trading strategies and current market conditions to generate high-quality trade recommendations.

IMPORTANT GUIDELINES:
1. Always prioritize risk management - never suggest trades with risk/reward ratio below 2:1
2. Be specific with entry, take profit, and stop loss levels
3. Explain your reasoning clearly for transparency
4. Consider current market conditions and volatility
5. Only recommend trades with high conviction (IPE score 70+)

You must respond ONLY with valid JSON - no markdown, no explanations outside the JSON structure."""

OUTPUT_FORMAT = """
## REQUIRED OUTPUT FORMAT

You MUST respond with a JSON array containing exactly {num_results} trade recommendation(s).
Each trade MUST follow this exact structure:

```json
[
  {{
    "asset": "BTC/USDT",
    "strategy": "LONG",
    "entry": 95000.00,
    "takeProfit": 100000.00,
    "stopLoss": 92000.00,
    "ipe": 85,
    "summary": "Brief one-line summary of the trade thesis",
    "reasoning": {{
      "whyAsset": "Why this asset was selected from all candidates",
      "whyDirection": "Why LONG or SHORT based on technical/fundamental factors",
      "whyEntry": "How the entry price was determined",
      "whyLevels": "How TP and SL levels were calculated, including R:R ratio"
    }},
    "criteriaMatched": [
      {{ "criterion": "RSI oversold", "value": "28", "threshold": "<30", "passed": true }}
    ],
    "confidenceFactors": [
      {{ "factor": "Technical Signal Strength", "weight": 40, "score": 85 }},
      {{ "factor": "Risk Management Quality", "weight": 30, "score": 80 }},
      {{ "factor": "Market Context", "weight": 20, "score": 75 }},
      {{ "factor": "Volume Confirmation", "weight": 10, "score": 90 }}
    ]
  }}
]
```

CRITICAL REQUIREMENTS:
1. IPE (Investment Potential Estimate) must be between {min_confidence:g}-95
2. Risk/Reward ratio must be at least {min_risk_reward:g}:1
3. Entry price must be within 5% of current market price
4. Include at least 3 criteria in criteriaMatched
5. Confidence factors weights must sum to 100
6. All prices must be realistic based on current market data
7. DO NOT include any text outside the JSON array
"""


class PromptMetadata(BaseModel):
    prompt_length: int
    estimated_tokens: int
    strategy_name: str
    sections: List[str] = Field(default_factory=list)
    timestamp: int = Field(default_factory=get_current_timestamp_ms)


class GeneratedPrompt(BaseModel):
    system_prompt: str
    user_prompt: str
    full_prompt: str
    metadata: PromptMetadata


# ============================================================================
# Formatting helpers
# ============================================================================


def format_price(price: Optional[float]) -> str:
    if price is None:
        return "N/A"
    if price >= 1000:
        return f"{price:.2f}"
    if price >= 1:
        return f"{price:.4f}"
    return f"{price:.8f}"


def format_volume(volume: Optional[float]) -> str:
    if not volume:
        return "N/A"
    for divisor, suffix in ((1e9, "B"), (1e6, "M"), (1e3, "K")):
        if volume >= divisor:
            return f"${volume / divisor:.2f}{suffix}"
    return f"${volume:.2f}"


def format_change(change: Optional[float]) -> str:
    if change is None:
        return "N/A"
    return f"{change:+.2f}%"


# ============================================================================
# Sections
# ============================================================================


def build_strategy_section(strategy: StrategyPrompt) -> str:
    content = strategy.content.strip() or DEFAULT_STRATEGY_TEXT
    return f"## USER'S TRADING STRATEGY: \"{strategy.name}\"\n\n{content}\n"


def build_market_data_section(prices_summary: List[PriceSummary]) -> str:
    lines = [
        "## CURRENT MARKET PRICES",
        "",
        "| Asset | Price | 24h Change | 24h High | 24h Low | Volume |",
        "|-------|-------|------------|----------|---------|--------|",
    ]
    for row in prices_summary[:MAX_PRICE_ROWS]:
        lines.append(
            f"| {row.symbol} | {format_price(row.price)} | {format_change(row.change_24h)} | "
            f"{format_price(row.high_24h)} | {format_price(row.low_24h)} | {format_volume(row.volume_24h)} |"
        )
    if not prices_summary:
        lines.append("| (no live prices available) | | | | | |")
    return "\n".join(lines) + "\n"


def build_market_analysis_section(analysis: MarketAnalysis) -> str:
    lines = ["## MARKET ANALYSIS", "", f"**Average 24h Change:** {format_change(analysis.average_change)}"]

    groups = (
        ("Top Gainers", [f"- {g.symbol}: {format_change(g.change)}" for g in analysis.top_gainers]),
        ("Top Losers", [f"- {loser.symbol}: {format_change(loser.change)}" for loser in analysis.top_losers]),
        ("Near Support (potential long opportunities)", [
            f"- {s.symbol}: {s.distance_percent:.2f}% from 24h low" for s in analysis.near_support
        ]),
        ("Near Resistance (potential short opportunities)", [
            f"- {r.symbol}: {r.distance_percent:.2f}% from 24h high" for r in analysis.near_resistance
        ]),
    )
    for title, items in groups:
        if items:
            lines.extend(["", f"**{title}:**", *items])
    return "\n".join(lines) + "\n"


def build_config_section(sizing: PositionSizing, params: ExecutionParameters) -> str:
    return "\n".join([
        "## TRADING CONFIGURATION",
        "",
        f"- **Timeframe:** {params.timeframe} ({params.description})",
        f"- **Total Capital:** ${sizing.total_capital:,.2f}",
        f"- **Capital per Trade:** ${sizing.capital_per_trade:,.2f}",
        f"- **Leverage:** {sizing.leverage:g}x (suggested {params.suggested_leverage})",
        f"- **Effective Position Size:** ${sizing.effective_capital:,.2f}",
        f"- **Max Risk per Trade:** ${sizing.max_risk_per_trade:,.2f} ({sizing.max_risk_percent:g}%)",
        f"- **Number of Trades Required:** {sizing.num_trades}",
        f"- **Target Profit:** {params.target_percent:g}%",
        f"- **Minimum Risk/Reward:** {params.min_risk_reward:g}:1",
    ]) + "\n"


def build_output_format_section(num_results: int, min_confidence: float, min_risk_reward: float) -> str:
    return OUTPUT_FORMAT.format(
        num_results=num_results,
        min_confidence=min_confidence,
        min_risk_reward=min_risk_reward,
    )


def build_user_prompt(strategy: StrategyPrompt, trading: TradingContext) -> str:
    config = trading.config
    sections = [
        "# TRADE GENERATION REQUEST\n",
        build_strategy_section(strategy),
        build_market_data_section(trading.prices_summary),
        build_market_analysis_section(trading.market_analysis),
        build_config_section(trading.position_sizing, trading.execution_params),
        build_output_format_section(
            config.num_results,
            config.min_confidence,
            max(config.min_risk_reward, trading.execution_params.min_risk_reward),
        ),
    ]
    return "\n".join(sections)


# ============================================================================
# Step
# ============================================================================


async def generate_prompt(ctx: ExecutionContext) -> GeneratedPrompt:
    trading = ctx.result(StepName.BUILD_CONTEXT.value, TradingContext)
    strategy = ctx.input.strategy

    ctx.record("debug", "Building AI prompt", {
        "strategy_name": strategy.name,
        "num_results": trading.config.num_results,
    })

    user_prompt = build_user_prompt(strategy, trading)
    full_prompt = f"{SYSTEM_PROMPT}{PROMPT_SEPARATOR}{user_prompt}"

    metadata = PromptMetadata(
        prompt_length=len(full_prompt),
        estimated_tokens=-(-len(full_prompt) // CHARS_PER_TOKEN),
        strategy_name=strategy.name,
        sections=["strategy", "market_data", "analysis", "config", "output_format"],
    )
    ctx.record("info", "Prompt generated", {
        "prompt_length": metadata.prompt_length,
        "estimated_tokens": metadata.estimated_tokens,
    })

    return GeneratedPrompt(
        system_prompt=SYSTEM_PROMPT,
        user_prompt=user_prompt,
        full_prompt=full_prompt,
        metadata=metadata,
    )


def create_generate_prompt_step(timeout_ms: int = 5000, max_retries: int = 0, optional: bool = False) -> StepDefinition:
    return StepDefinition(
        name=StepName.GENERATE_PROMPT.value,
        run=generate_prompt,
        description="Generates the AI prompt from trading context",
        optional=optional,
        timeout_ms=timeout_ms,
        max_retries=max_retries,
    )
