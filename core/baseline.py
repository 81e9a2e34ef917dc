import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Deque, Dict, Iterable, Optional, Sequence

from config.settings import ADR_LOOKBACK_DAYS, ADR_FALLBACK_FACTOR, BASELINE_WORKERS
from models.types import HistoricalBaseline
from utils.logger import setup_logger

logger = setup_logger("BaselineProvider")


class BaselineProvider:
    """
    Average daily range (ADR) per symbol from a trailing window of daily ranges.

    The ADR only scales the Rejection Day threshold, so missing history is not
    an error: the provider falls back to a fraction of the current session range.
    """

    def __init__(self, rest_client=None, window: int = ADR_LOOKBACK_DAYS, fallback_factor: float = ADR_FALLBACK_FACTOR):
        self.rest_client = rest_client
        self.window = window
        self.fallback_factor = fallback_factor
        self._lock = threading.Lock()
        self._ranges: Dict[str, Deque[float]] = {}

    def set_history(self, symbol: str, ranges: Sequence[float]):
        with self._lock:
            self._ranges[symbol] = deque(ranges, maxlen=self.window)

    def get_baseline(self, symbol: str) -> Optional[HistoricalBaseline]:
        with self._lock:
            ranges = self._ranges.get(symbol)
            if ranges is None:
                return None
            return HistoricalBaseline(symbol=symbol, ranges=list(ranges))

    def compute_adr(self, symbol: str, current_range: float) -> float:
        baseline = self.get_baseline(symbol)
        adr = baseline.adr if baseline else None
        if adr is None:
            return current_range * self.fallback_factor
        return adr

    def refresh(self, symbols: Iterable[str], max_workers: int = BASELINE_WORKERS) -> int:
        """Fetch daily ranges for each symbol. Returns the number of symbols with history."""
        if self.rest_client is None:
            logger.warning("No REST client configured; ADR will use the fallback estimate")
            return 0

        symbols = list(symbols)
        logger.info(f"Refreshing ADR baselines for {len(symbols)} symbols...")

        def _fetch(symbol: str) -> bool:
            try:
                ranges = self.rest_client.get_historical_ranges(symbol, self.window)
            except Exception as e:
                logger.error(f"Failed to load ADR history for {symbol}: {e}")
                return False
            if not ranges:
                return False
            self.set_history(symbol, ranges)
            return True

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="BaselineWorker") as pool:
            loaded = sum(1 for ok in pool.map(_fetch, symbols) if ok)

        logger.info(f"ADR baselines loaded for {loaded}/{len(symbols)} symbols")
        return loaded
