import os
import sys
import time
import signal
from concurrent.futures import ThreadPoolExecutor

from rich.console import Console
from rich.live import Live

# Keep a real stdout for Rich to use
REAL_STDOUT = sys.__stdout__

# Create Rich console bound to REAL terminal output
console = Console(file=REAL_STDOUT)

from ui.console import ConsoleUI  # import AFTER console exists

from config.settings import (
    DEFAULT_TIMEFRAME,
    WORKING_SET_SIZE,
    WORKING_SET_REFRESH_S,
    DEFAULT_TYPE_FILTER,
    DEFAULT_CONFIDENCE_FILTER,
    DEFAULT_SORT_BY,
)
from core.baseline import BaselineProvider
from core.dispatcher import EventDispatcher
from core.hub import SubscriptionHub
from core.state_store import SymbolStateStore
from data.binance_rest import BinanceRestClient
from data.binance_ws import FeedConnection
from models.types import FilterConfig
from utils.logger import setup_logger

INSTANCE_ID = os.environ.get("SCANNER_INSTANCE", os.getpid())

LOG_FILE = f"utils/scanner_{INSTANCE_ID}.log"

logger = setup_logger(
    "scanner",
    log_file=LOG_FILE,
)


def main():
    logger.info("Starting Blueprint Scanner...")
    logger.info(f"Active Timeframe: {DEFAULT_TIMEFRAME}, working set: top {WORKING_SET_SIZE} by volume")

    # Components
    ui = ConsoleUI(console=console)
    rest_client = BinanceRestClient()
    store = SymbolStateStore()
    baselines = BaselineProvider(rest_client=rest_client)
    hub = SubscriptionHub(store, baselines=baselines, working_set_size=WORKING_SET_SIZE)
    dispatcher = EventDispatcher(store, hub)
    feed = FeedConnection(event_sink=dispatcher, status_sink=ui, timeframe=DEFAULT_TIMEFRAME)
    hub.feed = feed
    ui.status.feed = feed

    background = ThreadPoolExecutor(max_workers=1, thread_name_prefix="BaselineRefresh")

    # Seed the store over REST so the first scan does not wait for the stream
    try:
        symbols = rest_client.get_symbols()
        seeded = store.apply_ticker_batch(rest_client.get_market_snapshots(symbols))
        logger.info(f"Seeded {len(seeded)} snapshots from REST")
    except Exception as e:
        logger.error(f"Failed to seed snapshots: {e}")

    working_set = feed.set_working_set(store.top_by_volume(WORKING_SET_SIZE))

    def refresh_baselines(symbols):
        baselines.refresh(symbols)
        hub.invalidate()
        hub.notify_changed()

    if working_set:
        background.submit(refresh_baselines, working_set)

    hub.subscribe(
        FilterConfig(
            blueprint_type=DEFAULT_TYPE_FILTER,
            confidence=DEFAULT_CONFIDENCE_FILTER,
            sort_by=DEFAULT_SORT_BY,
        ),
        ui.on_scan_result,
    )

    feed.start()

    # Graceful Shutdown
    def signal_handler(sig, frame):
        logger.info("Shutting down (Signal)...")
        # Let the finally block handle cleanup by raising SystemExit
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)

    last_working_set_refresh = time.time()

    # UI Loop
    try:
        with Live(
            ui.generate_layout(),
            console=console,
            auto_refresh=False,
            screen=False
        ) as live:
            while True:
                now = time.time()
                if now - last_working_set_refresh >= WORKING_SET_REFRESH_S:
                    last_working_set_refresh = now
                    previous = set(feed.working_set)
                    current = feed.set_working_set(store.top_by_volume(WORKING_SET_SIZE))
                    added = [s for s in current if s not in previous]
                    if added:
                        background.submit(refresh_baselines, added)

                if ui.dirty:
                    ui.dirty = False
                    live.update(ui.generate_layout(), refresh=True)
                time.sleep(0.1)
    except KeyboardInterrupt:
        logger.info("Keyboard Interrupt")
    finally:
        logger.info("Performing cleanup...")
        hub.close()
        feed.stop()
        background.shutdown(wait=False, cancel_futures=True)
        rest_client.close()
        logger.info(f"Cleanup complete. Dispatcher counts: {dict(dispatcher.counts)}")


if __name__ == "__main__":
    main()
