#!/usr/bin/env python3
"""Bot Dashboard: terminal view of bot status, logs, alerts and maintenance scripts."""

from __future__ import annotations

import argparse
import curses
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any, Sequence

from bot_status import (
    PROCESS_COMMAND,
    TAIL_LINES,
    BotStatus,
    DashboardPaths,
    Snapshot,
    build_snapshot,
)
from dashboard_actions import (
    RISK_CONFIRM,
    RISK_DANGER,
    ActionError,
    DashboardAction,
    dashboard_actions,
    find_action,
)
from dashboard_state import (
    AUTO_REFRESH_SEC,
    DANGER_CONFIRM_TOKEN,
    PENDING_CONFIRM,
    TAB_TITLES,
    TABS,
    DashboardState,
)

log = logging.getLogger(__name__)

BRAND_NAME = "Bot Dashboard"
PRIMARY_CLI = "bot-dashboard"

SETTINGS_RELPATH = Path("profiles") / "dashboard.json"
UI_LOG_RELPATH = Path(".state") / "bot-dashboard.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

INPUT_TIMEOUT_MS = 200
OUTPUT_PANE_HEIGHT = 10
MIN_WIDTH = 80
MIN_HEIGHT = 20
KEYS_HELP = "Keys: q quit | r refresh | j/k move | tab switch tab | x run action"


def short_text(text: str, width: int) -> str:
    if width <= 3:
        return text[:width]
    if len(text) <= width:
        return text
    return text[: width - 3] + "..."


# ---------------------------------------------------------------------------
# Configuration + logging
# ---------------------------------------------------------------------------


def default_settings() -> dict[str, Any]:
    return {
        "refresh_interval_sec": AUTO_REFRESH_SEC,
        "tail_lines": TAIL_LINES,
        "process_command": list(PROCESS_COMMAND),
    }


def load_settings(path: Path) -> dict[str, Any]:
    settings = default_settings()
    if not path.exists():
        return settings

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        log.warning("ignoring unreadable settings %s: %s", path, exc)
        return settings
    if not isinstance(data, dict):
        log.warning("ignoring settings %s: expected a JSON object", path)
        return settings

    interval = data.get("refresh_interval_sec")
    if isinstance(interval, (int, float)) and not isinstance(interval, bool) and interval > 0:
        settings["refresh_interval_sec"] = float(interval)

    tail = data.get("tail_lines")
    if isinstance(tail, int) and not isinstance(tail, bool) and tail >= 0:
        settings["tail_lines"] = tail

    command = data.get("process_command")
    if isinstance(command, list) and command and all(isinstance(part, str) and part for part in command):
        settings["process_command"] = list(command)

    return settings


def configure_logging(level: str, log_file: Path | None) -> None:
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.basicConfig(level=getattr(logging, level.upper()), handlers=[handler], force=True)


def resolve_settings(args: argparse.Namespace) -> tuple[DashboardPaths, dict[str, Any]]:
    paths = DashboardPaths.for_root(args.root)
    settings_path = Path(args.settings) if args.settings else paths.root / SETTINGS_RELPATH
    settings = load_settings(settings_path)
    if getattr(args, "interval", None) is not None:
        if args.interval <= 0:
            raise ValueError("--interval must be positive")
        settings["refresh_interval_sec"] = float(args.interval)
    if args.tail_lines is not None:
        if args.tail_lines < 0:
            raise ValueError("--tail-lines must not be negative")
        settings["tail_lines"] = args.tail_lines
    return paths, settings


def snapshot_for(paths: DashboardPaths, settings: dict[str, Any]) -> Snapshot:
    return build_snapshot(
        paths=paths,
        process_command=settings["process_command"],
        tail_limit=settings["tail_lines"],
    )


# ---------------------------------------------------------------------------
# Text builders
# ---------------------------------------------------------------------------


def header_line(state: DashboardState) -> str:
    snapshot = state.snapshot
    if snapshot.process_source_online:
        status = f"PM2 online | processes: {snapshot.process_count} | alerts: {len(snapshot.alerts)}"
    else:
        status = f"PM2 offline | alerts: {len(snapshot.alerts)}"
    tabs = "  ".join(
        f"[{TAB_TITLES[tab]}]" if tab == state.tab else f" {TAB_TITLES[tab]} " for tab in TABS
    )
    return f"{BRAND_NAME} | {status}  {tabs}"


def bot_list_lines(snapshot: Snapshot, selected: int | None) -> list[str]:
    if not snapshot.bots:
        return ["No bots configured."]
    lines: list[str] = []
    for idx, bot in enumerate(snapshot.bots):
        marker = "->" if idx == selected else "  "
        cfg = "active" if bot.config_active else "inactive"
        lines.append(f"{marker} {bot.name} [{bot.runtime_status}|{cfg}] {bot.pair}")
    return lines


def bot_detail_lines(snapshot: Snapshot, bot: BotStatus | None, registry: Path | None = None) -> list[str]:
    if bot is None:
        source = str(registry) if registry is not None else "the registry"
        return [f"No bot entries found in {source}"]

    latest = snapshot.alerts[0] if snapshot.alerts else "No active alerts"
    return [
        f"Selected: {bot.name}",
        f"Pair: {bot.pair}",
        f"Config active: {'true' if bot.config_active else 'false'}",
        f"Runtime: {bot.runtime_status}",
        f"Warnings: {snapshot.warnings}",
        f"Log: {bot.log_path or '(no log file)'}",
        "",
        "Live ingestion:",
        f"- PM2 status: {'yes' if snapshot.process_source_online else 'no'}",
        f"- Tail lines loaded: {len(bot.log_tail)}",
        f"- Alerts: {len(snapshot.alerts)}",
        f"- Latest alert: {latest}",
    ]


def action_list_lines(actions: Sequence[DashboardAction], selected: int | None) -> list[str]:
    if not actions:
        return ["No actions configured."]
    return [
        f"{'->' if idx == selected else '  '} {action.name} ({action.risk})"
        for idx, action in enumerate(actions)
    ]


def alert_lines(snapshot: Snapshot) -> list[str]:
    if not snapshot.alerts:
        return ["No active alerts."]
    lines = [f"Warnings: {snapshot.warnings}", ""]
    lines.extend(f"- {alert}" for alert in snapshot.alerts)
    return lines


def log_tail_lines(bot: BotStatus | None) -> list[str]:
    if bot is None:
        return ["(no bot selected)"]
    if not bot.log_tail:
        return ["(no log lines loaded)"]
    return list(bot.log_tail)


def output_lines(last_output: str) -> list[str]:
    return [*last_output.splitlines(), "", KEYS_HELP]


def modal_lines(state: DashboardState) -> list[str]:
    pending = state.pending
    action = state.pending_action()
    if pending is None or action is None:
        return []
    if pending.kind == PENDING_CONFIRM:
        return [
            f"Action: {action.name}",
            "Risk: confirm",
            "",
            "Press y to execute or n/esc to cancel.",
        ]
    return [
        f"Action: {action.name}",
        "Risk: danger",
        "",
        f"Type {DANGER_CONFIRM_TOKEN} and press Enter to continue.",
        f"Current input: {pending.typed}",
        "Esc cancels.",
    ]


def print_snapshot(snapshot: Snapshot) -> None:
    print(f"[{snapshot.generated_at}] {BRAND_NAME}")
    for alert in snapshot.alerts:
        print(f"WARN: {alert}")

    pm2 = f"online processes={snapshot.process_count}" if snapshot.process_source_online else "offline"
    print(f"Summary: bots={len(snapshot.bots)} warnings={snapshot.warnings} pm2={pm2}")
    if not snapshot.bots:
        print("No bots configured.")
        return

    print("NAME                 PAIR           CONFIG    RUNTIME       LOG")
    for bot in snapshot.bots:
        cfg = "active" if bot.config_active else "inactive"
        print(
            f"{short_text(bot.name, 20):<20} {short_text(bot.pair, 14):<14} {cfg:<9} "
            f"{short_text(bot.runtime_status, 13):<13} {bot.log_path or '-'}"
        )


# ---------------------------------------------------------------------------
# Curses presentation
# ---------------------------------------------------------------------------


def key_name(ch: int) -> str | None:
    special = {
        curses.KEY_UP: "up",
        curses.KEY_DOWN: "down",
        curses.KEY_LEFT: "left",
        curses.KEY_RIGHT: "right",
        curses.KEY_ENTER: "enter",
        curses.KEY_BACKSPACE: "backspace",
        9: "tab",
        10: "enter",
        13: "enter",
        27: "esc",
        8: "backspace",
        127: "backspace",
    }
    if ch in special:
        return special[ch]
    if 32 <= ch < 127:
        return chr(ch)
    return None


def draw_panel(
    stdscr: Any,
    y: int,
    x: int,
    h: int,
    w: int,
    title: str,
    lines: list[str],
    color_pair: int = 0,
    highlight: int | None = None,
    clear: bool = False,
) -> None:
    if h < 3 or w < 10:
        return

    attr = curses.color_pair(color_pair) if color_pair > 0 else curses.A_NORMAL
    content_width = w - 2

    try:
        stdscr.addstr(y, x, "+" + "-" * (w - 2) + "+", attr)
        stdscr.addstr(y + h - 1, x, "+" + "-" * (w - 2) + "+", attr)
        for row in range(y + 1, y + h - 1):
            stdscr.addstr(row, x, "|", attr)
            stdscr.addstr(row, x + w - 1, "|", attr)
            if clear:
                stdscr.addstr(row, x + 1, " " * content_width)
        stdscr.addstr(y, x + 2, short_text(f"[{title}]", max(4, w - 4)), attr | curses.A_BOLD)
    except curses.error:
        return

    max_lines = h - 2
    offset = 0
    if highlight is not None and highlight >= max_lines:
        offset = highlight - max_lines + 1
    for idx, line in enumerate(lines[offset : offset + max_lines]):
        line_attr = curses.A_BOLD | attr if offset + idx == highlight else curses.A_NORMAL
        try:
            stdscr.addstr(y + 1 + idx, x + 1, short_text(line, content_width).ljust(content_width), line_attr)
        except curses.error:
            pass


def render_frame(stdscr: Any, state: DashboardState, registry: Path | None = None) -> None:
    h, w = stdscr.getmaxyx()
    stdscr.erase()

    if h < MIN_HEIGHT or w < MIN_WIDTH:
        try:
            stdscr.addstr(0, 0, f"Terminal too small ({w}x{h}). Resize to at least {MIN_WIDTH}x{MIN_HEIGHT}.")
            stdscr.addstr(2, 0, "Press q to quit.")
        except curses.error:
            pass
        stdscr.refresh()
        return

    try:
        stdscr.addstr(0, 0, short_text(header_line(state), w - 1), curses.color_pair(1) | curses.A_BOLD)
    except curses.error:
        pass

    snapshot = state.snapshot
    bot = state.selected_bot_status()
    body_top = 1
    body_h = h - body_top - OUTPUT_PANE_HEIGHT
    left_w = int(w * 0.30)
    middle_w = int(w * 0.40)
    right_w = w - left_w - middle_w

    draw_panel(
        stdscr, body_top, 0, body_h, left_w, "Bots",
        bot_list_lines(snapshot, state.selected_bot), color_pair=2, highlight=state.selected_bot,
    )
    if state.tab == "alerts":
        draw_panel(stdscr, body_top, left_w, body_h, middle_w, "Alerts", alert_lines(snapshot), color_pair=4)
    else:
        draw_panel(
            stdscr, body_top, left_w, body_h, middle_w, "Bot Detail",
            bot_detail_lines(snapshot, bot, registry), color_pair=4,
        )
    draw_panel(
        stdscr, body_top, left_w + middle_w, body_h, right_w, "Scripts",
        action_list_lines(state.actions, state.selected_action), color_pair=3,
        highlight=state.selected_action if state.tab == "scripts" else None,
    )

    bottom_y = body_top + body_h
    half = w // 2
    draw_panel(stdscr, bottom_y, 0, OUTPUT_PANE_HEIGHT, half, "Output", output_lines(state.last_output), color_pair=5)
    draw_panel(stdscr, bottom_y, half, OUTPUT_PANE_HEIGHT, w - half, "Live Log Tail", log_tail_lines(bot))

    if state.pending is not None:
        modal_w = int(w * 0.70)
        modal_h = max(8, int(h * 0.35))
        draw_panel(
            stdscr, (h - modal_h) // 2, (w - modal_w) // 2, modal_h, modal_w,
            "Confirmation Required", modal_lines(state), color_pair=3, clear=True,
        )

    stdscr.refresh()


def run_ui(args: argparse.Namespace) -> int:
    paths, settings = resolve_settings(args)

    def _loop(stdscr: Any) -> int:
        try:
            curses.curs_set(0)
        except curses.error:
            pass
        stdscr.timeout(INPUT_TIMEOUT_MS)
        stdscr.keypad(True)

        if curses.has_colors():
            try:
                curses.start_color()
                curses.use_default_colors()
                curses.init_pair(1, curses.COLOR_CYAN, -1)
                curses.init_pair(2, curses.COLOR_GREEN, -1)
                curses.init_pair(3, curses.COLOR_YELLOW, -1)
                curses.init_pair(4, curses.COLOR_BLUE, -1)
                curses.init_pair(5, curses.COLOR_MAGENTA, -1)
            except curses.error:
                pass

        state = DashboardState(
            build=lambda: snapshot_for(paths, settings),
            refresh_interval=settings["refresh_interval_sec"],
        )
        log.info("dashboard started (root=%s)", paths.root)

        while True:
            state.tick()
            render_frame(stdscr, state, paths.registry)

            try:
                ch = stdscr.getch()
            except curses.error:
                ch = -1
            if ch < 0:
                continue

            key = key_name(ch)
            if key is None:
                continue
            if state.handle_key(key):
                break

        log.info("dashboard stopped")
        return 0

    # Short escape delay so Esc cancels a confirmation promptly.
    os.environ.setdefault("ESCDELAY", "25")
    return int(curses.wrapper(_loop))


# ---------------------------------------------------------------------------
# One-shot commands
# ---------------------------------------------------------------------------


def run_status(args: argparse.Namespace) -> int:
    paths, settings = resolve_settings(args)
    snapshot = snapshot_for(paths, settings)
    if args.json:
        print(json.dumps(snapshot.to_dict(), indent=2))
    else:
        print_snapshot(snapshot)
    return 0


def run_actions_list(_: argparse.Namespace) -> int:
    print("IDX RISK     NAME                   COMMAND")
    for idx, action in enumerate(dashboard_actions(), start=1):
        print(f"{idx:<3} {action.risk:<8} {action.name:<22} {' '.join(action.argv)}")
    return 0


def run_action(args: argparse.Namespace) -> int:
    action = find_action(dashboard_actions(), args.name)
    if action.risk == RISK_CONFIRM and not args.yes:
        print(f"Refusing to run '{action.name}' (confirm): pass --yes.", file=sys.stderr)
        return 1
    if action.risk == RISK_DANGER and (args.token or "").upper() != DANGER_CONFIRM_TOKEN:
        print(f"Refusing to run '{action.name}' (danger): pass --token {DANGER_CONFIRM_TOKEN}.", file=sys.stderr)
        return 1

    try:
        print(action.execute())
    except ActionError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--root", default=".", help="Directory holding profiles/bots.json and profiles/logs")
    common.add_argument("--settings", default=None, help="Settings JSON (default: <root>/profiles/dashboard.json)")
    common.add_argument("--tail-lines", type=int, default=None, help="Log lines kept per bot")
    common.add_argument("--log-level", default="WARNING", choices=LOG_LEVELS)
    common.add_argument("--log-file", default=None, help="Write diagnostics to this file")

    parser = argparse.ArgumentParser(prog=PRIMARY_CLI, description=BRAND_NAME)
    sub = parser.add_subparsers(dest="command")

    ui = sub.add_parser("ui", parents=[common], help=f"Fullscreen TUI {BRAND_NAME} (default)")
    ui.add_argument("--interval", type=float, default=None, help="Auto-refresh interval seconds")
    ui.set_defaults(handler=run_ui)

    status = sub.add_parser("status", parents=[common], help="One-shot bot status")
    status.add_argument("--json", action="store_true")
    status.set_defaults(handler=run_status)

    actions = sub.add_parser("actions", parents=[common], help="List maintenance scripts")
    actions.set_defaults(handler=run_actions_list)

    run = sub.add_parser("run", parents=[common], help="Run one maintenance script")
    run.add_argument("name", help="Action name, e.g. 'Validate Bots Config'")
    run.add_argument("--yes", action="store_true", help="Confirm a confirm-tier action")
    run.add_argument("--token", default=None, help=f"Type {DANGER_CONFIRM_TOKEN} for a danger-tier action")
    run.set_defaults(handler=run_action)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    raw = list(sys.argv[1:] if argv is None else argv)
    if not raw or (raw[0].startswith("-") and raw[0] not in ("-h", "--help")):
        raw = ["ui", *raw]
    args = parser.parse_args(raw)

    handler = getattr(args, "handler", None)
    if not handler:
        parser.print_help()
        return 1

    log_file = Path(args.log_file) if args.log_file else None
    if log_file is None and args.command == "ui":
        log_file = Path(args.root) / UI_LOG_RELPATH
    configure_logging(args.log_level, log_file)

    try:
        return int(handler(args))
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    signal.signal(signal.SIGTERM, lambda *_: sys.exit(0))
    sys.exit(main())
