import os

# Exchange endpoints (USDT-margined perpetual futures)
BINANCE_FUTURES_WS_URL = "wss://fstream.binance.com"
TICKER_STREAM_URL = f"{BINANCE_FUTURES_WS_URL}/ws/!ticker@arr"
KLINE_STREAM_BASE_URL = f"{BINANCE_FUTURES_WS_URL}/stream?streams="
BINANCE_REST_BASE_URL = "https://fapi.binance.com"

# Credentials are only needed for signed (account) REST calls
BINANCE_API_KEY = os.environ.get("BINANCE_API_KEY", "")
BINANCE_SECRET_KEY = os.environ.get("BINANCE_SECRET_KEY", "")

# Universe
QUOTE_ASSET = "USDT"
CONTRACT_TYPE = "PERPETUAL"

# Timeframes
TIMEFRAME_1M = "1m"
TIMEFRAME_5M = "5m"
TIMEFRAME_15M = "15m"
TIMEFRAME_1H = "1h"
TIMEFRAME_4H = "4h"
TIMEFRAME_1D = "1d"
TIMEFRAMES = [TIMEFRAME_1M, TIMEFRAME_5M, TIMEFRAME_15M, TIMEFRAME_1H, TIMEFRAME_4H, TIMEFRAME_1D]

DEFAULT_TIMEFRAME = os.environ.get("SCANNER_TIMEFRAME", TIMEFRAME_4H)

# Working set (top-N by volume)
WORKING_SET_SIZE = int(os.environ.get("SCANNER_WORKING_SET", "50"))
MAX_KLINE_STREAMS = 50
WORKING_SET_REFRESH_S = 60.0

# Reconnection
RECONNECT_BASE_DELAY_S = 1.0
MAX_RECONNECT_ATTEMPTS = 5
KEEPALIVE_INTERVAL_S = 30.0
KEEPALIVE_MESSAGE = '{"method":"ping"}'

# Subscription hub
THROTTLE_WINDOW_S = 1.0

# Baseline (ADR)
ADR_LOOKBACK_DAYS = 20
ADR_FALLBACK_FACTOR = 0.8
BASELINE_WORKERS = 8

# Blueprint Thresholds
REJECTION_RANGE_ADR_MULTIPLE = 1.25
REJECTION_TAIL_TO_BODY = 2.5
REJECTION_CLOSE_POSITION_BULL = 0.65
REJECTION_CLOSE_POSITION_BEAR = 0.35
REJECTION_MIN_CHANGE_PCT = 2.0

FAILED_EXTREME_CHANGE_PCT = 3.0
FAILED_EXTREME_MIN_MOVE_PCT = 5.0

OUTSIDE_DAY_MIN_CHANGE_PCT = 8.0
OUTSIDE_DAY_MIN_RANGE_TO_PRICE = 0.05

ABSORPTION_MIN_BODY_RATIO = 0.7
ABSORPTION_MIN_CHANGE_PCT = 3.0
ABSORPTION_MIN_VOLUME = 1_000_000

STOP_RUN_MIN_WICK_RATIO = 0.4
STOP_RUN_MAX_CHANGE_PCT = 2.0

# Confidence Grading
CONFIDENCE_HIGH_CHANGE_PCT = 10.0
CONFIDENCE_HIGH_VOLUME = 1_000_000
CONFIDENCE_MEDIUM_CHANGE_PCT = 5.0
CONFIDENCE_MEDIUM_VOLUME = 500_000

# Consumer defaults
DEFAULT_TYPE_FILTER = os.environ.get("SCANNER_TYPE_FILTER", "all")
DEFAULT_CONFIDENCE_FILTER = os.environ.get("SCANNER_CONFIDENCE_FILTER", "all")
DEFAULT_SORT_BY = os.environ.get("SCANNER_SORT_BY", "confidence")

# Logging
LOG_LEVEL = os.environ.get("SCANNER_LOG_LEVEL", "INFO")
LOG_FILE = "utils/scanner.log"

# Console
DISPLAY_TIMEZONE = os.environ.get("SCANNER_TIMEZONE", "UTC")
MAX_TABLE_ROWS = 60
