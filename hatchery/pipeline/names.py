from enum import Enum


class StepName(str, Enum):
    """Names of the default trade generation steps, in execution order."""
    FETCH_PRICES = "fetch_prices"
    BUILD_CONTEXT = "build_context"
    GENERATE_PROMPT = "generate_prompt"
    CALL_AI = "call_ai"
    PARSE_RESPONSE = "parse_response"
    VALIDATE_TRADES = "validate_trades"
    ENRICH_GLASS_BOX = "enrich_glass_box"

    def __str__(self) -> str:
        return self.value
