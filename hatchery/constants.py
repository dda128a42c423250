"""Default constants for trade generation."""

# Default assets (Binance spot symbols)
DEFAULT_ASSETS = [
    "BTC/USDT", "ETH/USDT", "SOL/USDT", "BNB/USDT", "XRP/USDT",
    "ADA/USDT", "AVAX/USDT", "DOT/USDT", "MATIC/USDT", "LINK/USDT",
    "DOGE/USDT", "ATOM/USDT", "UNI/USDT", "LTC/USDT", "FIL/USDT",
]

# Execution time limits in milliseconds (target = no limit, only SL/TP)
EXECUTION_LIMITS = {
    "target": None,
    "scalping": 60 * 60 * 1000,
    "intraday": 24 * 60 * 60 * 1000,
    "swing": 7 * 24 * 60 * 60 * 1000,
}

# Default trade configuration
DEFAULT_CAPITAL = 1000.0
DEFAULT_LEVERAGE = 1.0
DEFAULT_EXECUTION_TIME = "intraday"
DEFAULT_TARGET_PCT = 10.0
DEFAULT_MIN_CONFIDENCE = 75
DEFAULT_NUM_RESULTS = 3
DEFAULT_AI_PROVIDER = "anthropic"
DEFAULT_MIN_RISK_REWARD = 2.0
DEFAULT_MAX_ENTRY_DEVIATION = 0.05  # 5%
DEFAULT_MIN_VOLUME = 100_000_000.0  # $100M 24h quote volume

# Confidence (IPE) bounds
MAX_CONFIDENCE = 95
MAX_RISK_PER_TRADE_PCT = 2.0

# Recommended leverage ceilings by execution time
LEVERAGE_LIMITS = {
    "target": {"max": 10, "recommended": "1-10x"},
    "scalping": {"max": 50, "recommended": "10-50x"},
    "intraday": {"max": 20, "recommended": "5-20x"},
    "swing": {"max": 5, "recommended": "1-5x"},
}

# Provider request defaults
DEFAULT_MAX_TOKENS = 4000
DEFAULT_TEMPERATURE = 0.7
DEFAULT_REQUEST_TIMEOUT = 60.0  # seconds

# Pipeline defaults
DEFAULT_STEP_TIMEOUT_MS = 30_000
DEFAULT_BACKOFF_BASE_MS = 1000
DEFAULT_MAX_BACKOFF_MS = 30_000

REDACTED = "[REDACTED]"
