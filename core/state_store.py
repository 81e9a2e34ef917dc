import threading
from typing import Dict, Iterable, List, Optional, Tuple

from config.settings import QUOTE_ASSET
from models.types import Candle, InstrumentSnapshot
from utils.logger import setup_logger

logger = setup_logger("SymbolStateStore")


class SymbolStateStore:
    """
    Latest snapshot per symbol and latest closed candle per (symbol, timeframe).

    Ticker and kline threads write concurrently while hub timers read, so every
    access goes through one lock and every read returns a copy. Values are
    frozen dataclasses, so shallow copies of the maps are tear-free.
    """

    def __init__(self, quote_asset: str = QUOTE_ASSET):
        self.quote_asset = quote_asset
        self._lock = threading.Lock()
        # dict keeps first-insertion order, which is the tie-break for top_by_volume
        self._snapshots: Dict[str, InstrumentSnapshot] = {}
        self._candles: Dict[Tuple[str, str], Candle] = {}
        self._version = 0

    @property
    def version(self) -> int:
        """Incremented on every mutation."""
        with self._lock:
            return self._version

    def apply_ticker_batch(self, updates: Iterable[InstrumentSnapshot]) -> Dict[str, InstrumentSnapshot]:
        with self._lock:
            applied = 0
            for snap in updates:
                if not snap.symbol.endswith(self.quote_asset):
                    continue
                self._snapshots[snap.symbol] = snap
                applied += 1
            if applied:
                self._version += 1
            return dict(self._snapshots)

    def apply_closed_candle(self, candle: Candle) -> bool:
        if not candle.closed:
            logger.debug(f"Discarding open candle for {candle.symbol} @ {candle.timestamp}")
            return False
        with self._lock:
            self._candles[(candle.symbol, candle.timeframe)] = candle
            self._version += 1
        return True

    def top_snapshots(self, n: int) -> List[InstrumentSnapshot]:
        """The n highest-volume snapshots, read under one lock acquisition."""
        if n <= 0:
            return []
        with self._lock:
            snapshots = list(self._snapshots.values())
        # sorted() is stable: equal volumes keep insertion order
        ranked = sorted(snapshots, key=lambda s: s.volume, reverse=True)
        return ranked[:n]

    def top_by_volume(self, n: int) -> List[str]:
        return [s.symbol for s in self.top_snapshots(n)]

    def current_snapshots(self) -> Dict[str, InstrumentSnapshot]:
        with self._lock:
            return dict(self._snapshots)

    def get_snapshot(self, symbol: str) -> Optional[InstrumentSnapshot]:
        with self._lock:
            return self._snapshots.get(symbol)

    def current_candles(self, timeframe: str) -> Dict[str, Candle]:
        with self._lock:
            return {sym: c for (sym, tf), c in self._candles.items() if tf == timeframe}

    def __len__(self):
        with self._lock:
            return len(self._snapshots)

    def reset(self):
        with self._lock:
            self._snapshots.clear()
            self._candles.clear()
            self._version += 1
        logger.info("State store reset")
