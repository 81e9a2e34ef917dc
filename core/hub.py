import queue
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from config.settings import THROTTLE_WINDOW_S, WORKING_SET_SIZE
from core.baseline import BaselineProvider
from core.classifier import classify_all
from core.state_store import SymbolStateStore
from models.types import BlueprintResult, FilterConfig, ScanResult, SortKey
from utils.logger import setup_logger

logger = setup_logger("SubscriptionHub")


def apply_filter(findings: List[BlueprintResult], config: FilterConfig) -> List[BlueprintResult]:
    results = findings
    if config.blueprint_type.lower() != "all":
        needle = config.blueprint_type.lower()
        results = [r for r in results if needle in r.blueprint_type.value.lower()]
    if config.confidence.lower() != "all":
        wanted = config.confidence.lower()
        results = [r for r in results if r.confidence.value.lower() == wanted]
    return results


def sort_findings(findings: List[BlueprintResult], sort_by: SortKey) -> List[BlueprintResult]:
    if sort_by == SortKey.SYMBOL:
        return sorted(findings, key=lambda r: r.symbol)
    if sort_by == SortKey.PRICE:
        return sorted(findings, key=lambda r: r.price, reverse=True)
    if sort_by == SortKey.CHANGE:
        return sorted(findings, key=lambda r: r.change_24h, reverse=True)
    if sort_by == SortKey.VOLUME:
        return sorted(findings, key=lambda r: r.volume, reverse=True)
    # High > Medium > Low, ties keep classification order
    return sorted(findings, key=lambda r: r.confidence.rank, reverse=True)


@dataclass
class Subscriber:
    id: str
    config: FilterConfig
    deliver: Callable[[ScanResult], None]
    pending: Optional[object] = None  # scheduled throttle timer


class SubscriptionHub:
    """
    Fans classified findings out to independent consumers.

    One classification pass per store version is shared by every subscriber;
    only filtering and sorting are per subscriber. Deliveries are throttled
    per subscriber on the trailing edge: the first change in a quiet period
    schedules one delivery ``throttle_window`` later, later changes are
    absorbed by it, and the delivery reads the store when it fires.
    """

    def __init__(
        self,
        store: SymbolStateStore,
        baselines: Optional[BaselineProvider] = None,
        feed=None,
        working_set_size: int = WORKING_SET_SIZE,
        throttle_window: float = THROTTLE_WINDOW_S,
        timer_factory: Callable[..., object] = threading.Timer,
    ):
        self.store = store
        self.baselines = baselines or BaselineProvider()
        self.feed = feed
        self.working_set_size = working_set_size
        self.throttle_window = throttle_window
        self.timer_factory = timer_factory

        self._lock = threading.Lock()
        self._subscribers: Dict[str, Subscriber] = {}
        self._cache_lock = threading.Lock()
        self._cache: Optional[Tuple[int, List[BlueprintResult], int]] = None
        self.recompute_count = 0

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def subscribe(self, config: FilterConfig, callback: Callable[[ScanResult], None]) -> str:
        sub = Subscriber(id=uuid.uuid4().hex[:9], config=config, deliver=callback)
        with self._lock:
            self._subscribers[sub.id] = sub
        logger.info(f"Subscriber {sub.id} added ({config})")

        # Late joiners get the current picture right away
        if len(self.store) > 0:
            self._deliver(sub)
        return sub.id

    def subscribe_queue(self, config: Optional[FilterConfig] = None) -> Tuple[str, "queue.Queue[ScanResult]"]:
        """Subscribe with a queue as the delivery channel instead of a callback."""
        channel: "queue.Queue[ScanResult]" = queue.Queue()
        sub_id = self.subscribe(config or FilterConfig(), channel.put)
        return sub_id, channel

    def unsubscribe(self, sub_id: str):
        with self._lock:
            sub = self._subscribers.pop(sub_id, None)
            timer = sub.pending if sub else None
            if sub:
                sub.pending = None
        if timer is not None:
            timer.cancel()
        if sub:
            logger.info(f"Subscriber {sub_id} removed")

    def update_config(self, sub_id: str, config: FilterConfig):
        with self._lock:
            sub = self._subscribers.get(sub_id)
            if sub is None:
                raise KeyError(sub_id)
            sub.config = config
        self._schedule(sub_id)

    def refresh(self, sub_id: str):
        self._schedule(sub_id)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def close(self):
        with self._lock:
            subs = list(self._subscribers.values())
            self._subscribers.clear()
        for sub in subs:
            if sub.pending is not None:
                sub.pending.cancel()
                sub.pending = None

    # ------------------------------------------------------------------
    # Change notification / throttle
    # ------------------------------------------------------------------
    def notify_changed(self):
        with self._lock:
            ids = list(self._subscribers)
        for sub_id in ids:
            self._schedule(sub_id)

    def invalidate(self):
        """Drop the cached classification (e.g. after baselines change)."""
        with self._cache_lock:
            self._cache = None

    def _schedule(self, sub_id: str):
        with self._lock:
            sub = self._subscribers.get(sub_id)
            if sub is None or sub.pending is not None:
                return
            timer = self.timer_factory(self.throttle_window, self._fire, args=(sub_id,))
            timer.daemon = True
            sub.pending = timer
        timer.start()

    def _fire(self, sub_id: str):
        with self._lock:
            sub = self._subscribers.get(sub_id)
            if sub is None:
                return
            sub.pending = None
        self._deliver(sub)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------
    def _classified(self) -> Tuple[List[BlueprintResult], int]:
        # Held across the recompute so concurrent timers share one pass
        with self._cache_lock:
            version = self.store.version
            if self._cache is not None and self._cache[0] == version:
                return self._cache[1], self._cache[2]

            snapshots = self.store.top_snapshots(self.working_set_size)
            findings = classify_all(snapshots, self.baselines)
            self._cache = (version, findings, len(snapshots))
            self.recompute_count += 1
            return findings, len(snapshots)

    def build_result(self, config: FilterConfig) -> ScanResult:
        findings, scanned = self._classified()
        selected = sort_findings(apply_filter(findings, config), config.sort_by)
        return ScanResult(
            findings=tuple(selected),
            total_found=len(selected),
            total_scanned=scanned,
            timestamp=datetime.now(timezone.utc).isoformat(),
            connection_status=bool(self.feed and self.feed.is_connected()),
            feed_unavailable=bool(self.feed and self.feed.feed_unavailable),
        )

    def _deliver(self, sub: Subscriber):
        try:
            result = self.build_result(sub.config)
        except Exception:
            logger.exception("Failed to build scan result")
            return
        with self._lock:
            if sub.id not in self._subscribers:
                # Unsubscribed while the result was being built
                return
        try:
            sub.deliver(result)
        except Exception:
            # One broken consumer must not starve the others
            logger.exception(f"Subscriber {sub.id} callback failed")
