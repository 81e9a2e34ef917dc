import io
import time
from unittest.mock import MagicMock

from rich.console import Console

from ui.console import ConsoleUI
from models.types import BlueprintResult, BlueprintType, Confidence, ConnectionState, ScanResult


def make_result():
    findings = (
        BlueprintResult(
            symbol="BTCUSDT",
            blueprint_type=BlueprintType.LONG_REJECTION_DAY,
            confidence=Confidence.HIGH,
            price=50123.45,
            change_24h=11.2,
            volume=2_500_000,
            details="Bullish rejection: range 140.0% of ADR",
        ),
        BlueprintResult(
            symbol="ETHUSDT",
            blueprint_type=BlueprintType.STOP_RUN_DAY_HIGH,
            confidence=Confidence.LOW,
            price=1234.56,
            change_24h=-0.8,
            volume=1000,
            details="Stop run detected with 55.0% wick",
        ),
    )
    return ScanResult(
        findings=findings,
        total_found=2,
        total_scanned=50,
        # 2023-01-01 12:00:00 UTC, Denver (MST) is UTC-7: 05:00:00
        timestamp="2023-01-01T12:00:00+00:00",
        connection_status=True,
    )


def render(console, renderable):
    console.file.seek(0)
    console.file.truncate(0)
    console.print(renderable)
    return console.file.getvalue()


def test_table_render(monkeypatch):
    monkeypatch.setattr("ui.console.DISPLAY_TIMEZONE", "America/Denver")
    capture_console = Console(file=io.StringIO(), width=200)
    ui = ConsoleUI(console=capture_console)

    assert "Blueprint Scanner" in render(capture_console, ui.generate_table())

    ui.on_scan_result(make_result())
    output = render(capture_console, ui.generate_table())

    assert "BTCUSDT" in output
    assert "Long Rejection Day" in output
    assert "Stop Run Day High" in output
    assert "High" in output
    # 4 decimal places
    assert "50123.4500" in output
    assert "+11.20" in output
    assert "-0.80" in output
    assert "2,500,000" in output
    assert "05:00:00" in output, f"Time conversion incorrect. Output contained: {output}"


def test_table_row_cap(monkeypatch):
    monkeypatch.setattr("ui.console.MAX_TABLE_ROWS", 1)
    capture_console = Console(file=io.StringIO(), width=200)
    ui = ConsoleUI(console=capture_console)
    ui.on_scan_result(make_result())

    output = render(capture_console, ui.generate_table())
    assert "BTCUSDT" in output
    assert "ETHUSDT" not in output


def test_status_panel_states():
    capture_console = Console(file=io.StringIO(), width=200)
    ui = ConsoleUI(console=capture_console)

    output = render(capture_console, ui.generate_status_panel())
    assert "Feed: DISCONNECTED" in output
    assert "Waiting for data" in output

    ui.feed_connected("ticker")
    ui.feed_connected("kline")
    ui.on_scan_result(make_result())
    output = render(capture_console, ui.generate_status_panel())
    assert "Feed: OK" in output
    assert "Klines: CONNECTED" in output
    assert "Found: 2 / 50 scanned" in output
    assert "Updated:" in output

    ui.feed_unavailable("kline")
    # A later close callback must not mask the terminal state
    ui.feed_disconnected("kline")
    output = render(capture_console, ui.generate_status_panel())
    assert ui.status.streams["kline"] == ConnectionState.UNAVAILABLE
    assert "Feed: UNAVAILABLE" in output
    assert "restart required" in output


def test_status_panel_stale_and_metrics():
    capture_console = Console(file=io.StringIO(), width=200)
    ui = ConsoleUI(console=capture_console)
    ui.status.feed = MagicMock()
    ui.status.feed.get_ws_metrics.return_value = {"total": 200, "dropped": 3, "drop_pct": 1.5}
    ui.status.last_update_ts = time.time() - 120
    ui.error("ticker: connection reset")

    output = render(capture_console, ui.generate_status_panel())
    assert "Results stale" in output
    assert "WS Messages: 200 (dropped 3 1.50%)" in output
    assert "connection reset" in output


def test_layout_marks_deliveries():
    ui = ConsoleUI(console=Console(file=io.StringIO(), width=200))
    assert not ui.dirty
    ui.on_scan_result(make_result())
    assert ui.dirty
    assert ui.status.deliveries == 1
    assert ui.generate_layout() is ui.layout
