import threading
from dataclasses import dataclass, field
from datetime import datetime
from time import time
from typing import Dict, Optional

import pandas as pd
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from config.settings import DISPLAY_TIMEZONE, MAX_TABLE_ROWS
from models.types import Confidence, ConnectionState, ScanResult
from utils.logger import setup_logger

logger = setup_logger("ui")

CONFIDENCE_STYLES = {
    Confidence.HIGH: "bold green",
    Confidence.MEDIUM: "yellow",
    Confidence.LOW: "dim white",
}


@dataclass
class UIStatus:
    streams: Dict[str, ConnectionState] = field(default_factory=dict)
    last_update_ts: float | None = None
    deliveries: int = 0
    last_error: str | None = None
    feed: "FeedConnection | None" = None


class ConsoleUI():
    """Terminal consumer: one hub subscriber plus the feed's StatusSink."""

    def __init__(self, console):
        logger.info("ConsoleUI initialized")
        self.console = console
        self.result: Optional[ScanResult] = None
        self.dirty = False
        self.status = UIStatus()
        self.lock = threading.Lock()
        self.layout = self._init_layout()

    def _init_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="table", ratio=4),
            Layout(name="status", size=3),
        )
        return layout

    # --- StatusSink ---
    def feed_connected(self, stream: str):
        self.status.streams[stream] = ConnectionState.CONNECTED
        self.status.last_error = None
        self.dirty = True

    def feed_disconnected(self, stream: str):
        if self.status.streams.get(stream) != ConnectionState.UNAVAILABLE:
            self.status.streams[stream] = ConnectionState.DISCONNECTED
        self.dirty = True

    def feed_unavailable(self, stream: str):
        self.status.streams[stream] = ConnectionState.UNAVAILABLE
        self.status.last_error = f"{stream} feed unavailable - restart required"
        self.dirty = True

    def error(self, msg: str):
        self.status.last_error = msg
        self.dirty = True

    # --- Hub subscriber ---
    def on_scan_result(self, result: ScanResult):
        with self.lock:
            self.result = result
        self.status.last_update_ts = time()
        self.status.deliveries += 1
        self.dirty = True

    # --- Rendering ---
    def generate_status_panel(self) -> Panel:
        items = []

        # Feed
        states = self.status.streams
        if ConnectionState.UNAVAILABLE in states.values():
            items.append("[bold red]Feed: UNAVAILABLE[/]")
        elif states.get("ticker") == ConnectionState.CONNECTED:
            items.append("[green]Feed: OK[/]")
        else:
            items.append("[red]Feed: DISCONNECTED[/]")

        kline_state = states.get("kline")
        if kline_state:
            color = "green" if kline_state == ConnectionState.CONNECTED else "yellow"
            items.append(f"[{color}]Klines: {kline_state.value}[/]")

        # Last update
        if self.status.last_update_ts is None:
            items.append("[yellow]Waiting for data[/]")
        else:
            age = time() - self.status.last_update_ts
            ts_str = datetime.fromtimestamp(self.status.last_update_ts).strftime("%H:%M:%S")
            if age > 30:
                items.append("[red]Results stale[/]")
            else:
                items.append(f"[cyan]Updated:[/] {ts_str}")

        with self.lock:
            result = self.result
        if result:
            items.append(f"[magenta]Found:[/] {result.total_found} / {result.total_scanned} scanned")

        # WS Metrics
        if self.status.feed:
            ws_metrics = self.status.feed.get_ws_metrics()
            items.append(
                f"[blue]WS Messages:[/] {ws_metrics.get('total', 0)} "
                f"(dropped {ws_metrics.get('dropped', 0)} {ws_metrics.get('drop_pct', 0.0):.2f}%)"
            )

        if self.status.last_error:
            items.append(f"[red]Error:[/] {self.status.last_error}")

        content = "  |  ".join(items)
        return Panel(Text.from_markup(content), title="Status", border_style="blue")

    def generate_table(self) -> Table:
        table = Table(title="Blueprint Scanner")
        table.add_column("Time", style="cyan", no_wrap=True)
        table.add_column("Symbol", style="magenta")
        table.add_column("Blueprint", style="green")
        table.add_column("Confidence", justify="center")
        table.add_column("Price", justify="right")
        table.add_column("24h %", justify="right")
        table.add_column("Volume", justify="right")
        table.add_column("Details", style="dim")

        with self.lock:
            result = self.result
        if result is None:
            return table

        ts = pd.Timestamp(result.timestamp).tz_convert(DISPLAY_TIMEZONE)
        time_str = ts.strftime("%H:%M:%S")

        for finding in result.findings[:MAX_TABLE_ROWS]:
            change_color = "green" if finding.change_24h > 0 else "red"
            tv_link = (
                f"[link=https://www.tradingview.com/chart/?symbol=BINANCE:{finding.symbol}.P]"
                f"{finding.symbol}[/link]"
            )
            table.add_row(
                time_str,
                tv_link,
                finding.blueprint_type.value,
                f"[{CONFIDENCE_STYLES[finding.confidence]}]{finding.confidence.value}[/]",
                f"{finding.price:.4f}",
                f"[{change_color}]{finding.change_24h:+.2f}[/]",
                f"{finding.volume:,.0f}",
                finding.details,
            )
        return table

    def generate_layout(self) -> Layout:
        self.layout["table"].update(self.generate_table())
        self.layout["status"].update(self.generate_status_panel())
        return self.layout
