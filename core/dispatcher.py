from collections import defaultdict

from core.hub import SubscriptionHub
from core.state_store import SymbolStateStore
from models.types import CandleClosed, TickerBatch
from utils.logger import setup_logger

logger = setup_logger("EventDispatcher")


class EventDispatcher:
    """
    Event sink handed to the FeedConnection. Runs on the socket threads:
    writes the store, then pokes the hub (which only schedules timers, so
    ingestion never waits on consumers).
    """

    def __init__(self, store: SymbolStateStore, hub: SubscriptionHub):
        self.store = store
        self.hub = hub
        self.counts = defaultdict(int)

    def __call__(self, event):
        try:
            changed = self._apply(event)
        except Exception:
            logger.exception(f"Failed to apply {type(event).__name__}")
            self.counts["failed"] += 1
            return

        if changed:
            self.hub.notify_changed()

    def _apply(self, event) -> bool:
        if isinstance(event, TickerBatch):
            before = self.store.version
            self.store.apply_ticker_batch(event.snapshots)
            self.counts["ticker_batches"] += 1
            return self.store.version != before
        if isinstance(event, CandleClosed):
            stored = self.store.apply_closed_candle(event.candle)
            if stored:
                self.counts["closed_candles"] += 1
            return stored

        logger.warning(f"Unknown feed event: {event!r}")
        self.counts["unknown"] += 1
        return False
