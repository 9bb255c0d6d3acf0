from __future__ import annotations

import argparse
import asyncio
import contextlib
import sys
from datetime import datetime
from typing import Any, Dict, List

from rheinpegel.alerts import classify
from rheinpegel.app import MonitorApp, Phase
from rheinpegel.chart import GaugeChart
from rheinpegel.client import GaugeClient
from rheinpegel.config import Settings, load_settings
from rheinpegel.constants import TUI_LOG_FILE_DEFAULT, UI_TICK_SEC
from rheinpegel.history import HOUR_MS, HistoryStore
from rheinpegel.kvstore import StateLockError, StorageError, open_store, state_lock
from rheinpegel.logging_config import configure_logging
from rheinpegel.utils import fmt_clock, fmt_rel, ms_to_datetime

TITLE = "RHEINPEGEL // KÖLN"

# Row where the chart starts; everything above is the reading panel.
TUI_CHART_START = 7


def build_app(settings: Settings, storage: str = "file", use_fallback: bool = False) -> MonitorApp:
    """Wire client, history store and chart into a MonitorApp for `settings`."""
    backend = open_store(storage, settings.state_file, settings.quota_bytes)
    store = HistoryStore(
        backend,
        storage_key=settings.storage_key,
        max_entries=settings.max_entries,
        max_age_ms=int(settings.max_age_hours * HOUR_MS),
    )
    client = GaugeClient(
        api_url=settings.api_url,
        fallback_url=settings.fallback_url,
        timeout_sec=settings.timeout_sec,
        max_retries=settings.max_retries,
        retry_delay_sec=settings.retry_delay_sec,
    )
    if use_fallback:
        client.enable_fallback()
    chart = GaugeChart(max_points=settings.chart_max_points)
    return MonitorApp(
        client,
        store,
        chart,
        refresh_interval_sec=settings.refresh_interval_sec,
        auto_refresh=settings.auto_refresh,
        history_hours=settings.max_age_hours,
    )


def render_status(app: MonitorApp) -> List[str]:
    """Plain-text summary of the displayed reading and the app state."""
    state = app.state
    lines = [TITLE]
    reading = state.displayed
    if reading is None:
        lines.append("Water level: --")
    else:
        tier = state.current_tier or classify(reading.water_level_cm)
        cached = "  [cached]" if state.showing_cached else ""
        lines.append(f"Water level: {reading.water_level_cm} cm  {tier.icon} {tier.label_de}{cached}")
        approx = " (approximate)" if reading.approximate_timestamp else ""
        lines.append(f"Measured:    {reading.date} {reading.time}{approx}")
        lines.append(f"             {tier.description}")

    if state.phase is Phase.LOADING:
        lines.append("Status:      Loading...")
    elif state.has_error:
        lines.append(f"Status:      Error: {state.error_message}")
    else:
        updated = fmt_clock(ms_to_datetime(state.last_update_ms), with_date=True)
        lines.append(f"Status:      OK, last update {updated}")
    return lines


def render_statistics(app: MonitorApp) -> List[str]:
    stats = app.store.get_statistics()
    if stats is None:
        return ["Statistics unavailable (storage error)."]
    return [
        f"Total readings: {stats.total_readings}",
        f"Oldest reading: {fmt_clock(stats.oldest_reading, with_date=True)}",
        f"Newest reading: {fmt_clock(stats.newest_reading, with_date=True)}",
        f"Last updated:   {fmt_clock(stats.last_updated, with_date=True)}",
        f"Storage size:   {stats.storage_size_kb} KB",
    ]


async def run_once(app: MonitorApp, chart_width: int, chart_height: int) -> int:
    app.chart.initialize(app.store.get_historical_data(app.history_hours))
    ok = await app.fetch_and_update()
    for line in render_status(app):
        print(line)
    print()
    for line in app.chart.render(width=chart_width, height=chart_height):
        print(line)
    if not ok:
        print(app.state.error_message or "Fetch failed.", file=sys.stderr)
        return 1
    return 0


async def run_watch(app: MonitorApp, chart_width: int) -> int:
    """Print a status block after every refresh cycle until interrupted."""
    printed = 0

    def on_change(changed: MonitorApp) -> None:
        nonlocal printed
        if changed.state.cycles == printed:
            return
        printed = changed.state.cycles
        stamp = fmt_clock(datetime.now().astimezone())
        print(f"--- {stamp} ---")
        for line in render_status(changed):
            print(line)
        print(changed.chart.sparkline(chart_width))
        sys.stdout.flush()

    app.add_listener(on_change)
    if not app.state.auto_refresh_enabled:
        await app.initialize()
        return 0 if not app.state.has_error else 1

    try:
        await app.initialize()
        await asyncio.Event().wait()
    finally:
        await app.shutdown()
    return 0


def _init_palette(curses_mod: Any) -> Dict[str, int]:
    palette: Dict[str, int] = {"normal": 0, "warning": 0, "danger": 0, "title": 0, "dim": 0, "chart": 0}
    if not curses_mod.has_colors():
        return palette
    curses_mod.start_color()
    curses_mod.use_default_colors()
    curses_mod.init_pair(1, curses_mod.COLOR_GREEN, -1)
    curses_mod.init_pair(2, curses_mod.COLOR_YELLOW, -1)
    curses_mod.init_pair(3, curses_mod.COLOR_RED, -1)
    curses_mod.init_pair(4, curses_mod.COLOR_CYAN, -1)
    palette.update(
        {
            "normal": curses_mod.color_pair(1),
            "warning": curses_mod.color_pair(2),
            "danger": curses_mod.color_pair(3) | curses_mod.A_BOLD,
            "error": curses_mod.color_pair(3),
            "title": curses_mod.color_pair(1) | curses_mod.A_BOLD,
            "dim": curses_mod.color_pair(4),
            "chart": curses_mod.color_pair(4),
        }
    )
    return palette


def _put(stdscr: Any, y: int, text: str, attr: int = 0) -> None:
    max_y, max_x = stdscr.getmaxyx()
    if 0 <= y < max_y and max_x > 1:
        stdscr.addstr(y, 0, text[: max_x - 1], attr)


def draw_screen(stdscr: Any, curses_mod: Any, app: MonitorApp, palette: Dict[str, int]) -> None:
    stdscr.erase()
    max_y, max_x = stdscr.getmaxyx()
    state = app.state
    now = datetime.now().astimezone()

    _put(stdscr, 0, TITLE, curses_mod.A_BOLD | palette.get("title", 0))
    _put(stdscr, 1, f"Now {now.strftime('%d.%m.%Y %H:%M:%S %Z')}", palette.get("dim", 0))

    reading = state.displayed
    if reading is None:
        _put(stdscr, 3, "Pegel: --", curses_mod.A_BOLD)
    else:
        tier = state.current_tier or classify(reading.water_level_cm)
        tier_attr = palette.get(tier.palette_key, 0)
        cached = "  [cached]" if state.showing_cached else ""
        _put(
            stdscr,
            3,
            f"Pegel: {reading.water_level_cm} cm  {tier.icon} {tier.label_de}{cached}",
            curses_mod.A_BOLD | tier_attr,
        )
        approx = " ~" if reading.approximate_timestamp else ""
        _put(stdscr, 4, f"Measured {reading.date} {reading.time}{approx}", palette.get("normal", 0))
        _put(stdscr, 5, tier.description, tier_attr)

    chart_rows = max(3, max_y - TUI_CHART_START - 4)
    chart_attr = palette.get(app.chart.tier.palette_key, palette.get("chart", 0))
    for offset, line in enumerate(app.chart.render(width=max_x - 1, height=chart_rows)):
        _put(stdscr, TUI_CHART_START + offset, line, chart_attr)

    notices = app.active_notices()
    notice_y = max_y - 3
    if notices:
        latest = notices[-1]
        attr = palette.get("error", 0) if latest.level == "error" else palette.get("normal", 0)
        _put(stdscr, notice_y, latest.message, attr)

    if state.is_loading:
        status = "Loading..."
    elif state.has_error:
        status = f"Error: {state.error_message}"
    else:
        updated = ms_to_datetime(state.last_update_ms)
        status = f"Updated {fmt_clock(updated)} ({fmt_rel(now, updated)})"
    _put(stdscr, max_y - 2, status, palette.get("error", 0) if state.has_error else palette.get("dim", 0))

    auto = "on" if state.auto_refresh_enabled else "off"
    footer = f"r refresh | a auto-refresh: {auto} ({state.refresh_interval_sec:.0f}s) | q quit"
    _put(stdscr, max_y - 1, footer, palette.get("dim", 0))
    stdscr.refresh()


async def tui_loop(app: MonitorApp, ui_tick_sec: float = UI_TICK_SEC) -> int:
    try:
        import curses
    except ImportError:
        print("Curses is required for TUI mode and is unavailable on this platform.", file=sys.stderr)
        return 1

    if not isinstance(ui_tick_sec, (int, float)) or ui_tick_sec <= 0:
        ui_tick_sec = UI_TICK_SEC

    stdscr = curses.initscr()
    pending: set[asyncio.Task] = set()
    try:
        curses.noecho()
        curses.cbreak()
        stdscr.keypad(True)
        stdscr.nodelay(True)
        with contextlib.suppress(curses.error):
            curses.curs_set(0)
        palette = _init_palette(curses)

        # Initialize in the background so the first frame draws immediately.
        pending.add(asyncio.create_task(app.initialize()))

        while True:
            pending = {task for task in pending if not task.done()}
            draw_screen(stdscr, curses, app, palette)

            key = stdscr.getch()
            if key in (ord("q"), ord("Q")):
                return 0
            if key in (ord("r"), ord("R")):
                pending.add(asyncio.create_task(app.handle_manual_refresh()))
            elif key in (ord("a"), ord("A")):
                app.toggle_auto_refresh()

            await asyncio.sleep(ui_tick_sec)
    finally:
        for task in pending:
            task.cancel()
        await app.shutdown()
        stdscr.keypad(False)
        curses.nocbreak()
        curses.echo()
        curses.endwin()


def parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rhine river water level monitor for the Cologne gauge.")
    parser.add_argument(
        "--mode",
        choices=["once", "watch", "tui", "stats", "export", "clear"],
        default="once",
        help=(
            "Fetch once and print, keep printing on every refresh, launch the TUI, "
            "or show / export / clear the stored history."
        ),
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.toml (default: $RHEINPEGEL_CONFIG or the bundled config.toml).",
    )
    parser.add_argument(
        "--state-file",
        default=None,
        help="Path of the history file used by --storage file.",
    )
    parser.add_argument(
        "--storage",
        choices=["file", "memory", "browser"],
        default="file",
        help="History backend: a JSON file, process memory, or browser localStorage (Pyodide).",
    )
    parser.add_argument("--api-url", default=None, help="Gauge XML endpoint.")
    parser.add_argument(
        "--fallback-url",
        default=None,
        help="Relay used when the direct request is unreachable; a trailing '/' marks a prefix relay.",
    )
    parser.add_argument(
        "--use-fallback",
        action="store_true",
        help="Start on the fallback relay instead of the direct endpoint.",
    )
    parser.add_argument(
        "--refresh-interval",
        type=float,
        default=None,
        help="Seconds between automatic refreshes.",
    )
    parser.add_argument(
        "--no-auto-refresh",
        dest="auto_refresh",
        action="store_false",
        help="Start with automatic refresh disabled.",
    )
    parser.add_argument("--timeout", type=float, default=None, help="Per-attempt timeout (seconds).")
    parser.add_argument("--max-retries", type=int, default=None, help="Attempts per fetch.")
    parser.add_argument(
        "--retry-delay",
        type=float,
        default=None,
        help="Backoff unit between attempts (seconds); attempt n waits n times this.",
    )
    parser.add_argument(
        "--hours",
        type=float,
        default=None,
        help="Hours of history to load into the chart.",
    )
    parser.add_argument("--chart-width", type=int, default=None, help="Chart width in columns for text output.")
    parser.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, WARNING, ...).")
    parser.add_argument(
        "--log-file",
        default=None,
        help=f"Write logs to this file (TUI mode defaults to {TUI_LOG_FILE_DEFAULT}).",
    )
    parser.add_argument(
        "--ui-tick-sec",
        type=float,
        default=UI_TICK_SEC,
        help="UI refresh tick in TUI mode (seconds).",
    )
    parser.set_defaults(auto_refresh=None)
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    settings = load_settings(args.config)
    return settings.with_overrides(
        api_url=args.api_url,
        fallback_url=args.fallback_url,
        timeout_sec=args.timeout,
        max_retries=args.max_retries,
        retry_delay_sec=args.retry_delay,
        state_file=args.state_file,
        refresh_interval_sec=args.refresh_interval,
        auto_refresh=args.auto_refresh,
        chart_width=args.chart_width,
        log_level=args.log_level,
        log_file=args.log_file,
    )


async def main_async(argv: list[str] | None = None) -> int:
    """Run the selected mode inside an already running event loop."""
    args = parse_args(argv)
    settings = settings_from_args(args)

    log_file = settings.log_file
    if args.mode == "tui" and log_file is None:
        log_file = str(TUI_LOG_FILE_DEFAULT)
    configure_logging(settings.log_level, log_file)

    lock_path = settings.state_file if args.storage == "file" else None
    try:
        with state_lock(lock_path):
            try:
                app = build_app(settings, args.storage, args.use_fallback)
            except StorageError as exc:
                print(f"Storage unavailable: {exc}", file=sys.stderr)
                return 1
            if args.hours is not None and args.hours > 0:
                app.history_hours = args.hours
            return await _run_mode(app, args, settings)
    except StateLockError as exc:
        print(str(exc), file=sys.stderr)
        return 1


async def _run_mode(app: MonitorApp, args: argparse.Namespace, settings: Settings) -> int:
    if args.mode == "tui":
        return await tui_loop(app, args.ui_tick_sec)
    if args.mode == "watch":
        return await run_watch(app, settings.chart_width)
    if args.mode == "stats":
        for line in render_statistics(app):
            print(line)
        return 0
    if args.mode == "export":
        exported = app.store.export_data()
        if exported is None:
            print("Export failed (storage error).", file=sys.stderr)
            return 1
        print(exported)
        return 0
    if args.mode == "clear":
        if not app.store.clear_all():
            print("Clearing history failed (storage error).", file=sys.stderr)
            return 1
        print("History cleared.")
        return 0
    return await run_once(app, settings.chart_width, settings.chart_height)


def main(argv: list[str] | None = None) -> int:
    try:
        return asyncio.run(main_async(argv))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
