"""
默认交易生成步骤

fetch_prices → build_context → generate_prompt → call_ai →
parse_response → validate_trades → enrich_glass_box
"""
from .build_context import (
    MarketAnalysis,
    PositionSizing,
    TradingContext,
    analyze_market_conditions,
    calculate_position_sizing,
    create_build_context_step,
    get_execution_parameters,
)
from .call_ai import AIResponse, create_call_ai_step, friendly_provider_error, resolve_api_key
from .enrich_glass_box import (
    EnrichmentResult,
    GenerationOutcome,
    GenerationSummary,
    build_audit_inputs,
    classify_outcome,
    create_enrich_glass_box_step,
)
from .fetch_prices import PriceFetchResult, create_fetch_prices_step
from .generate_prompt import SYSTEM_PROMPT, GeneratedPrompt, build_user_prompt, create_generate_prompt_step
from .parse_response import (
    ParsedTrades,
    create_parse_response_step,
    extract_json_from_text,
    normalize_trade,
    validate_trade_structure,
)
from .validate_trades import InvalidTrade, ValidationOutcome, create_validate_trades_step

__all__ = [
    "MarketAnalysis",
    "PositionSizing",
    "TradingContext",
    "analyze_market_conditions",
    "calculate_position_sizing",
    "create_build_context_step",
    "get_execution_parameters",
    "AIResponse",
    "create_call_ai_step",
    "friendly_provider_error",
    "resolve_api_key",
    "EnrichmentResult",
    "GenerationOutcome",
    "GenerationSummary",
    "build_audit_inputs",
    "classify_outcome",
    "create_enrich_glass_box_step",
    "PriceFetchResult",
    "create_fetch_prices_step",
    "SYSTEM_PROMPT",
    "GeneratedPrompt",
    "build_user_prompt",
    "create_generate_prompt_step",
    "ParsedTrades",
    "create_parse_response_step",
    "extract_json_from_text",
    "normalize_trade",
    "validate_trade_structure",
    "InvalidTrade",
    "ValidationOutcome",
    "create_validate_trades_step",
]
