"""
Validated decoding of Binance futures payloads.

Every numeric field the exchange sends arrives as a string. All conversion
happens here so that a bad value is rejected as one malformed unit
(``MalformedPayloadError``) instead of leaking NaN or a KeyError into the
store.
"""
import math
from typing import Any, Mapping, Optional, Sequence

from models.types import Candle, InstrumentSnapshot, MalformedPayloadError


def parse_number(value: Any, field: str) -> float:
    """Convert an exchange numeric field (usually a string) to a finite float."""
    if value is None or isinstance(value, bool):
        raise MalformedPayloadError(f"{field}: expected number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise MalformedPayloadError(f"{field}: not numeric ({value!r})") from None
    if not math.isfinite(number):
        raise MalformedPayloadError(f"{field}: not finite ({value!r})")
    return number


def _require(payload: Mapping[str, Any], key: str) -> Any:
    try:
        return payload[key]
    except (KeyError, TypeError):
        raise MalformedPayloadError(f"missing field {key!r}") from None


def parse_stream_ticker(payload: Mapping[str, Any]) -> InstrumentSnapshot:
    """
    Decode one element of the ``!ticker@arr`` stream.

    Keys: s=symbol, c=last price, P=change percent, v=base volume,
    h/l=24h high/low, o=open.
    """
    symbol = _require(payload, "s")
    if not isinstance(symbol, str) or not symbol:
        raise MalformedPayloadError(f"s: invalid symbol {symbol!r}")

    price = parse_number(_require(payload, "c"), "c")
    return InstrumentSnapshot(
        symbol=symbol,
        price=price,
        change_24h=parse_number(_require(payload, "P"), "P"),
        volume=parse_number(_require(payload, "v"), "v"),
        high_24h=parse_number(_require(payload, "h"), "h"),
        low_24h=parse_number(_require(payload, "l"), "l"),
        open=parse_number(_require(payload, "o"), "o"),
        close=price,
    )


def parse_rest_ticker(payload: Mapping[str, Any]) -> InstrumentSnapshot:
    """Decode one element of ``GET /fapi/v1/ticker/24hr``."""
    symbol = _require(payload, "symbol")
    if not isinstance(symbol, str) or not symbol:
        raise MalformedPayloadError(f"symbol: invalid symbol {symbol!r}")

    price = parse_number(_require(payload, "lastPrice"), "lastPrice")
    return InstrumentSnapshot(
        symbol=symbol,
        price=price,
        change_24h=parse_number(_require(payload, "priceChangePercent"), "priceChangePercent"),
        volume=parse_number(_require(payload, "volume"), "volume"),
        high_24h=parse_number(_require(payload, "highPrice"), "highPrice"),
        low_24h=parse_number(_require(payload, "lowPrice"), "lowPrice"),
        open=parse_number(_require(payload, "openPrice"), "openPrice"),
        close=price,
    )


def parse_kline_event(payload: Mapping[str, Any]) -> Optional[Candle]:
    """
    Decode a kline event (the ``data`` member of a combined-stream frame).

    Returns None for a candle that is still forming (``k.x`` false). A missing
    closed flag is malformed, not "open".
    """
    kline = _require(payload, "k")
    if not isinstance(kline, Mapping):
        raise MalformedPayloadError("k: expected object")

    closed = _require(kline, "x")
    if not isinstance(closed, bool):
        raise MalformedPayloadError(f"x: expected boolean, got {closed!r}")
    if not closed:
        return None

    symbol = kline.get("s") or payload.get("s")
    if not isinstance(symbol, str) or not symbol:
        raise MalformedPayloadError(f"s: invalid symbol {symbol!r}")

    return Candle(
        symbol=symbol,
        timestamp=int(parse_number(_require(kline, "t"), "t")),
        open=parse_number(_require(kline, "o"), "o"),
        high=parse_number(_require(kline, "h"), "h"),
        low=parse_number(_require(kline, "l"), "l"),
        close=parse_number(_require(kline, "c"), "c"),
        volume=parse_number(_require(kline, "v"), "v"),
        timeframe=str(_require(kline, "i")),
        close_time=int(parse_number(kline.get("T", 0), "T")),
        closed=True,
    )


def parse_rest_kline(symbol: str, timeframe: str, row: Sequence[Any]) -> Candle:
    """
    Decode one REST kline row.

    0: Open time, 1: Open, 2: High, 3: Low, 4: Close, 5: Volume, 6: Close time, ...
    """
    if not isinstance(row, Sequence) or len(row) < 7:
        raise MalformedPayloadError(f"kline row too short: {row!r}")
    return Candle(
        symbol=symbol,
        timestamp=int(parse_number(row[0], "open_time")),
        open=parse_number(row[1], "open"),
        high=parse_number(row[2], "high"),
        low=parse_number(row[3], "low"),
        close=parse_number(row[4], "close"),
        volume=parse_number(row[5], "volume"),
        timeframe=timeframe,
        close_time=int(parse_number(row[6], "close_time")),
        closed=True,
    )
