from enum import Enum
from dataclasses import dataclass, field
from typing import Protocol, Optional, List, Tuple
import numpy as np


class StatusSink(Protocol):
    def feed_connected(self, stream: str):
        ...

    def feed_disconnected(self, stream: str):
        ...

    def feed_unavailable(self, stream: str):
        ...

    def error(self, msg: str):
        ...


class MalformedPayloadError(ValueError):
    """Raised when an exchange frame is missing a field or carries a non-numeric value."""


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    UNAVAILABLE = "UNAVAILABLE"


class Confidence(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_RANK = {Confidence.HIGH: 3, Confidence.MEDIUM: 2, Confidence.LOW: 1}


class BlueprintType(str, Enum):
    LONG_REJECTION_DAY = "Long Rejection Day"
    SHORT_REJECTION_DAY = "Short Rejection Day"
    FAILED_NEW_HIGH = "Failed New High"
    FAILED_NEW_LOW = "Failed New Low"
    BULLISH_OUTSIDE_DAY = "Bullish Outside Day"
    BEARISH_OUTSIDE_DAY = "Bearish Outside Day"
    BULLISH_ABSORPTION_DAY = "Bullish Absorption Day"
    BEARISH_ABSORPTION_DAY = "Bearish Absorption Day"
    STOP_RUN_DAY_HIGH = "Stop Run Day High"
    STOP_RUN_DAY_LOW = "Stop Run Day Low"


class SortKey(str, Enum):
    SYMBOL = "symbol"
    PRICE = "price"
    CHANGE = "change"
    VOLUME = "volume"
    CONFIDENCE = "confidence"


@dataclass(frozen=True, slots=True)
class InstrumentSnapshot:
    symbol: str
    price: float
    change_24h: float  # Percent
    volume: float      # 24h base asset volume
    high_24h: float
    low_24h: float
    open: float
    close: float

    @property
    def range(self) -> float:
        return self.high_24h - self.low_24h


@dataclass(frozen=True, slots=True)
class Candle:
    symbol: str
    timestamp: int        # Open time (ms)
    open: float
    high: float
    low: float
    close: float
    volume: float
    timeframe: str
    close_time: int = 0   # Close time (ms)
    closed: bool = False


@dataclass
class HistoricalBaseline:
    symbol: str
    ranges: List[float] = field(default_factory=list)  # most-recent-last

    @property
    def adr(self) -> Optional[float]:
        """Average daily range, or None when there is no usable history."""
        values = np.asarray(self.ranges, dtype=float)
        if values.size == 0 or not np.any(values):
            return None
        return float(values.mean())


@dataclass(frozen=True, slots=True)
class BlueprintResult:
    symbol: str
    blueprint_type: BlueprintType
    confidence: Confidence
    price: float
    change_24h: float
    volume: float
    details: str

    def __str__(self):
        return f"{self.symbol} | {self.blueprint_type.value} | {self.confidence.value} | {self.details}"


@dataclass(frozen=True)
class FilterConfig:
    blueprint_type: str = "all"
    confidence: str = "all"
    sort_by: SortKey = SortKey.CONFIDENCE

    def __post_init__(self):
        # Accept plain strings from env/config; unknown keys raise ValueError
        object.__setattr__(self, "sort_by", SortKey(self.sort_by))


@dataclass(frozen=True)
class ScanResult:
    findings: Tuple[BlueprintResult, ...]
    total_found: int
    total_scanned: int
    timestamp: str  # ISO-8601, UTC
    connection_status: bool
    feed_unavailable: bool = False


# --- Feed events ---

@dataclass(frozen=True)
class TickerBatch:
    snapshots: Tuple[InstrumentSnapshot, ...]


@dataclass(frozen=True)
class CandleClosed:
    candle: Candle
