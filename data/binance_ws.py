import json
import threading
import websocket
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union

from config.settings import (
    TICKER_STREAM_URL,
    KLINE_STREAM_BASE_URL,
    QUOTE_ASSET,
    TIMEFRAMES,
    DEFAULT_TIMEFRAME,
    MAX_KLINE_STREAMS,
    RECONNECT_BASE_DELAY_S,
    MAX_RECONNECT_ATTEMPTS,
    KEEPALIVE_INTERVAL_S,
    KEEPALIVE_MESSAGE,
)
from data.parsing import parse_stream_ticker, parse_kline_event
from models.types import (
    CandleClosed,
    ConnectionState,
    MalformedPayloadError,
    StatusSink,
    TickerBatch,
)
from utils.logger import setup_logger

logger = setup_logger("FeedConnection")

FeedEvent = Union[TickerBatch, CandleClosed]

TICKER = "ticker"
KLINE = "kline"


@dataclass
class _Stream:
    name: str
    state: ConnectionState = ConnectionState.DISCONNECTED
    attempts: int = 0
    ws: Optional[object] = None
    # Set when we close the socket ourselves to re-subscribe; not a failure
    resubscribe: bool = False
    # Working-set generation the current connection was built for
    generation: int = 0
    keepalive_stop: threading.Event = field(default_factory=threading.Event)
    thread: Optional[threading.Thread] = None


class FeedConnection:
    """
    Owns the two long-lived Binance futures streams:

    - ticker: ``!ticker@arr`` for every instrument, emitted as ``TickerBatch``
    - kline: a combined ``<symbol>@kline_<tf>`` stream for the working set,
      emitted as ``CandleClosed`` (closed candles only)

    Each stream runs ``run_forever`` on its own daemon thread. When the socket
    drops the thread waits ``base_delay * attempt`` and reconnects; after
    ``max_attempts`` consecutive failures the stream goes UNAVAILABLE and stays
    there until an operator restarts the feed.
    """

    def __init__(
        self,
        event_sink: Callable[[FeedEvent], None],
        status_sink: Optional[StatusSink] = None,
        timeframe: str = DEFAULT_TIMEFRAME,
        ws_factory: Callable[..., object] = websocket.WebSocketApp,
        base_delay: float = RECONNECT_BASE_DELAY_S,
        max_attempts: int = MAX_RECONNECT_ATTEMPTS,
        keepalive_interval: float = KEEPALIVE_INTERVAL_S,
    ):
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"Unsupported timeframe: {timeframe}")
        self.event_sink = event_sink
        self.status_sink = status_sink
        self.ws_factory = ws_factory
        self.base_delay = base_delay
        self.max_attempts = max_attempts
        self.keepalive_interval = keepalive_interval
        self.metrics = defaultdict(int)

        self._timeframe = timeframe
        self._working_set: List[str] = []
        self._generation = 0
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._kline_wakeup = threading.Event()
        self._streams = {TICKER: _Stream(TICKER), KLINE: _Stream(KLINE)}

        logger.info(f"FeedConnection created (timeframe={timeframe})")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self):
        """Start ticker and kline connections in separate threads"""
        self._stop_event.clear()
        for stream in self._streams.values():
            if stream.thread and stream.thread.is_alive():
                continue
            stream.attempts = 0
            stream.state = ConnectionState.DISCONNECTED
            builder = self._ticker_url if stream.name == TICKER else self._kline_url
            stream.thread = threading.Thread(
                target=self._run_stream,
                args=(stream, builder),
                daemon=True,
                name=f"{stream.name.capitalize()}Stream",
            )
            stream.thread.start()
        logger.info("Feed started")

    def stop(self, join_timeout: float = 2.0):
        self._stop_event.set()
        self._kline_wakeup.set()
        with self._lock:
            sockets = []
            for stream in self._streams.values():
                stream.keepalive_stop.set()
                if stream.ws is not None:
                    sockets.append(stream.ws)
                if stream.state != ConnectionState.UNAVAILABLE:
                    stream.state = ConnectionState.DISCONNECTED

        for ws in sockets:
            try:
                ws.close()
            except Exception as e:
                logger.warning(f"Error closing websocket: {e}")

        current = threading.current_thread()
        for stream in self._streams.values():
            if stream.thread and stream.thread is not current:
                stream.thread.join(timeout=join_timeout)
        logger.info("Feed stopped")

    # ------------------------------------------------------------------
    # Working set / timeframe
    # ------------------------------------------------------------------
    def set_working_set(self, symbols: List[str], timeframe: Optional[str] = None) -> List[str]:
        """
        Replace the kline subscription. Symbols are filtered to the quote asset
        and capped at MAX_KLINE_STREAMS. The ticker stream is not touched.
        """
        if timeframe is not None and timeframe not in TIMEFRAMES:
            raise ValueError(f"Unsupported timeframe: {timeframe}")

        selected: List[str] = []
        for s in symbols:
            s = s.upper()
            if s.endswith(QUOTE_ASSET) and s not in selected:
                selected.append(s)
        selected = selected[:MAX_KLINE_STREAMS]

        with self._lock:
            new_tf = timeframe or self._timeframe
            changed = selected != self._working_set or new_tf != self._timeframe
            self._working_set = selected
            self._timeframe = new_tf
            if changed:
                self._generation += 1

        if changed:
            logger.info(f"Kline working set -> {len(selected)} symbols @ {new_tf}")
            self._restart_kline()
        return list(selected)

    def set_timeframe(self, timeframe: str):
        with self._lock:
            symbols = list(self._working_set)
        self.set_working_set(symbols, timeframe)

    @property
    def timeframe(self) -> str:
        return self._timeframe

    @property
    def working_set(self) -> List[str]:
        with self._lock:
            return list(self._working_set)

    def _restart_kline(self):
        with self._lock:
            stream = self._streams[KLINE]
            ws = stream.ws
            if ws is not None:
                stream.resubscribe = True
        if ws is not None:
            ws.close()
        self._kline_wakeup.set()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    def state(self, stream_name: str) -> ConnectionState:
        return self._streams[stream_name].state

    def is_connected(self) -> bool:
        return self._streams[TICKER].state == ConnectionState.CONNECTED

    def is_kline_connected(self) -> bool:
        return self._streams[KLINE].state == ConnectionState.CONNECTED

    @property
    def feed_unavailable(self) -> bool:
        return any(s.state == ConnectionState.UNAVAILABLE for s in self._streams.values())

    def get_ws_metrics(self):
        total = self.metrics["ws_messages_total"]
        dropped = self.metrics["ws_messages_dropped"]
        drop_pct = (dropped / total * 100) if total else 0.0

        return {
            "total": total,
            "dropped": dropped,
            "drop_pct": drop_pct,
        }

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------
    def _ticker_url(self) -> str:
        return TICKER_STREAM_URL

    def _kline_url(self) -> Optional[str]:
        with self._lock:
            symbols = list(self._working_set)
            timeframe = self._timeframe
        if not symbols:
            return None
        # Binance requires lowercase stream names (e.g. btcusdt@kline_4h)
        streams = [f"{s.lower()}@kline_{timeframe}" for s in symbols]
        return KLINE_STREAM_BASE_URL + "/".join(streams)

    # ------------------------------------------------------------------
    # Connection loop
    # ------------------------------------------------------------------
    def _run_stream(self, stream: _Stream, url_builder: Callable[[], Optional[str]]):
        while not self._stop_event.is_set():
            if stream.name == KLINE:
                self._kline_wakeup.clear()
            with self._lock:
                stream.generation = self._generation
            url = url_builder()
            if url is None:
                logger.info(f"{stream.name} stream idle: empty working set")
                self._kline_wakeup.wait()
                continue

            ws_app = self.ws_factory(
                url,
                on_open=lambda ws: self._on_open(stream, ws),
                on_message=lambda ws, msg: self._on_message(stream, ws, msg),
                on_error=lambda ws, err: self._on_error(stream, ws, err),
                on_close=lambda ws, code, msg: self._on_close(stream, ws, code, msg),
            )
            with self._lock:
                stream.ws = ws_app
                stream.state = ConnectionState.CONNECTING

            logger.info(f"Connecting {stream.name} stream: {url[:120]}")
            try:
                # run_forever blocks until disconnection
                ws_app.run_forever()
            except Exception as e:
                logger.error(f"Critical error in {stream.name} run loop: {e}")

            with self._lock:
                stream.ws = None
                stream.keepalive_stop.set()
                resubscribe = stream.resubscribe
                stream.resubscribe = False
                if stream.state != ConnectionState.UNAVAILABLE:
                    stream.state = ConnectionState.DISCONNECTED

            if self._stop_event.is_set():
                break
            if resubscribe:
                continue

            if stream.attempts >= self.max_attempts:
                stream.state = ConnectionState.UNAVAILABLE
                logger.error(
                    f"{stream.name} stream: max reconnection attempts ({self.max_attempts}) reached; feed unavailable"
                )
                if self.status_sink:
                    self.status_sink.feed_unavailable(stream.name)
                break

            stream.attempts += 1
            delay = self.base_delay * stream.attempts
            logger.warning(
                f"{stream.name} stream disconnected. Reconnecting in {delay:.1f}s "
                f"({stream.attempts}/{self.max_attempts})"
            )
            # Interruptible by stop()
            if self._stop_event.wait(delay):
                break

    # ------------------------------------------------------------------
    # Websocket callbacks
    # ------------------------------------------------------------------
    def _on_open(self, stream: _Stream, ws):
        with self._lock:
            stream.attempts = 0
            # A close sent before the socket opened is dropped by run_forever;
            # a leftover flag must not hide the next real disconnect.
            stale = stream.name == KLINE and stream.generation != self._generation
            stream.resubscribe = stale
        if stale:
            logger.info(f"{stream.name} working set changed while connecting; resubscribing")
            ws.close()
            return

        with self._lock:
            stream.state = ConnectionState.CONNECTED
            stream.keepalive_stop = threading.Event()
            keepalive_stop = stream.keepalive_stop
        logger.info(f"{stream.name} websocket opened")
        if self.status_sink:
            self.status_sink.feed_connected(stream.name)

        threading.Thread(
            target=self._keepalive,
            args=(stream.name, ws, keepalive_stop),
            daemon=True,
            name=f"{stream.name.capitalize()}Keepalive",
        ).start()

    def _keepalive(self, name: str, ws, stop_event: threading.Event):
        while not stop_event.wait(self.keepalive_interval):
            try:
                ws.send(KEEPALIVE_MESSAGE)
            except Exception as e:
                # The socket's own close path handles reconnection
                logger.warning(f"{name} keepalive failed: {e}")
                return

    def _on_error(self, stream: _Stream, ws, error):
        logger.error(f"{stream.name} websocket error: {error}")
        if self.status_sink:
            self.status_sink.error(f"{stream.name}: {error}")

    def _on_close(self, stream: _Stream, ws, close_status_code, close_msg):
        logger.info(f"{stream.name} websocket closed ({close_status_code}: {close_msg})")
        with self._lock:
            stream.keepalive_stop.set()
            if stream.state == ConnectionState.CONNECTED:
                stream.state = ConnectionState.DISCONNECTED
        if self.status_sink:
            self.status_sink.feed_disconnected(stream.name)

    def _on_message(self, stream: _Stream, ws, message):
        self.metrics["ws_messages_total"] += 1

        try:
            data = json.loads(message)
        except (json.JSONDecodeError, TypeError):
            self.metrics["ws_messages_dropped"] += 1
            return

        if stream.name == TICKER:
            event = self._decode_ticker_frame(data)
        else:
            event = self._decode_kline_frame(data)

        if event is None:
            return

        try:
            self.event_sink(event)
        except Exception:
            logger.exception(f"Error in {stream.name} event sink")
            self.metrics["ws_messages_dropped"] += 1

    def _decode_ticker_frame(self, data) -> Optional[TickerBatch]:
        if not isinstance(data, list):
            # Subscription acks / ping replies
            self.metrics["ws_messages_ignored"] += 1
            return None

        snapshots = []
        for item in data:
            try:
                snapshots.append(parse_stream_ticker(item))
            except MalformedPayloadError as e:
                self.metrics["ws_items_dropped"] += 1
                logger.debug(f"Dropped malformed ticker: {e}")

        if not snapshots:
            self.metrics["ws_messages_dropped"] += 1
            return None
        return TickerBatch(snapshots=tuple(snapshots))

    def _decode_kline_frame(self, data) -> Optional[CandleClosed]:
        # Combined streams wrap the event: {"stream": ..., "data": {...}}
        payload = data.get("data", data) if isinstance(data, dict) else None
        if not isinstance(payload, dict) or "k" not in payload:
            self.metrics["ws_messages_ignored"] += 1
            return None

        try:
            candle = parse_kline_event(payload)
        except MalformedPayloadError as e:
            self.metrics["ws_messages_dropped"] += 1
            logger.debug(f"Dropped malformed kline: {e}")
            return None

        if candle is None:
            # Candle still forming
            self.metrics["klines_open_ignored"] += 1
            return None
        return CandleClosed(candle=candle)
