#!/usr/bin/env python3
"""Dashboard state machine: navigation, periodic refresh and risk-tiered confirmation.

Input arrives as normalized key names (``"up"``, ``"enter"``, ``"esc"``,
``"backspace"`` or a single printable character) so this module stays free of
terminal concerns. While a confirmation is pending every key is routed to the
confirmation handler.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from bot_status import BotStatus, Snapshot, build_snapshot
from dashboard_actions import (
    RISK_CONFIRM,
    RISK_DANGER,
    ActionError,
    DashboardAction,
    dashboard_actions,
)

log = logging.getLogger(__name__)

DANGER_CONFIRM_TOKEN = "DELETE"
AUTO_REFRESH_SEC = 1.0

TABS = ("overview", "bot-detail", "scripts", "alerts")
TAB_TITLES = {
    "overview": "Overview",
    "bot-detail": "Bot Detail",
    "scripts": "Scripts",
    "alerts": "Alerts",
}

PENDING_CONFIRM = "confirm"
PENDING_DANGER = "danger"

NEXT_KEYS = ("down", "j")
PREV_KEYS = ("up", "k")


@dataclass
class PendingConfirmation:
    kind: str
    action_index: int
    typed: str = ""


def step_index(current: int | None, total: int, delta: int) -> int | None:
    """Move a selection by ``delta`` with wrap-around; ``None`` for empty lists."""
    if total <= 0:
        return None
    if current is None:
        return 0
    return (current + delta) % total


def clamp_index(current: int | None, total: int) -> int | None:
    if total <= 0:
        return None
    if current is None:
        return 0
    return max(0, min(current, total - 1))


class DashboardState:
    def __init__(
        self,
        build: Callable[[], Snapshot] = build_snapshot,
        actions: Sequence[DashboardAction] | None = None,
        refresh_interval: float = AUTO_REFRESH_SEC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._build = build
        self._clock = clock
        self.refresh_interval = refresh_interval
        self.snapshot: Snapshot = build()
        self.actions: tuple[DashboardAction, ...] = (
            dashboard_actions() if actions is None else tuple(actions)
        )
        self.selected_bot: int | None = 0 if self.snapshot.bots else None
        self.selected_action: int | None = 0 if self.actions else None
        self.tab = TABS[0]
        self.last_output = "Ready."
        self.pending: PendingConfirmation | None = None
        self.last_auto_refresh = clock()

    # -- snapshot -----------------------------------------------------------

    def tick(self, now: float | None = None) -> None:
        current = self._clock() if now is None else now
        if current - self.last_auto_refresh < self.refresh_interval:
            return
        try:
            self._reload(announce=False)
        except Exception as exc:
            log.warning("auto-refresh failed: %s", exc)
            self.last_output = f"Auto-refresh failed: {exc}"
        self.last_auto_refresh = self._clock() if now is None else now

    def refresh(self) -> None:
        try:
            self._reload(announce=True)
        except Exception as exc:
            log.warning("refresh failed: %s", exc)
            self.last_output = f"Refresh failed: {exc}"

    def _reload(self, announce: bool) -> None:
        snapshot = self._build()
        self.snapshot = snapshot
        self.selected_bot = clamp_index(self.selected_bot, len(snapshot.bots))

        if announce:
            self.last_output = "Refreshed status data."

    # -- navigation ---------------------------------------------------------

    def next_bot(self) -> None:
        self.selected_bot = step_index(self.selected_bot, len(self.snapshot.bots), 1)

    def prev_bot(self) -> None:
        self.selected_bot = step_index(self.selected_bot, len(self.snapshot.bots), -1)

    def next_action(self) -> None:
        self.selected_action = step_index(self.selected_action, len(self.actions), 1)

    def prev_action(self) -> None:
        self.selected_action = step_index(self.selected_action, len(self.actions), -1)

    def next_tab(self) -> None:
        self.tab = TABS[(TABS.index(self.tab) + 1) % len(TABS)]

    def prev_tab(self) -> None:
        self.tab = TABS[(TABS.index(self.tab) - 1) % len(TABS)]

    def selected_bot_status(self) -> BotStatus | None:
        if self.selected_bot is None or self.selected_bot >= len(self.snapshot.bots):
            return None
        return self.snapshot.bots[self.selected_bot]

    def selected_action_entry(self) -> DashboardAction | None:
        if self.selected_action is None or self.selected_action >= len(self.actions):
            return None
        return self.actions[self.selected_action]

    def pending_action(self) -> DashboardAction | None:
        if self.pending is None:
            return None
        return self.actions[self.pending.action_index]

    # -- input --------------------------------------------------------------

    def handle_key(self, key: str) -> bool:
        """Apply one key. Returns True when the dashboard should quit."""
        if self.pending is not None:
            self._handle_pending_key(key)
            return False

        if key == "q":
            return True
        if key == "r":
            self.refresh()
        elif key in NEXT_KEYS:
            if self.tab == "scripts":
                self.next_action()
            else:
                self.next_bot()
        elif key in PREV_KEYS:
            if self.tab == "scripts":
                self.prev_action()
            else:
                self.prev_bot()
        elif key in ("right", "tab"):
            self.next_tab()
        elif key == "left":
            self.prev_tab()
        elif key == "x":
            self.run_selected_action()
        return False

    def run_selected_action(self) -> None:
        if not self.actions:
            self.last_output = "No actions configured."
            return

        index = clamp_index(self.selected_action, len(self.actions))
        self.selected_action = index
        action = self.actions[index]
        if action.risk == RISK_CONFIRM:
            self.pending = PendingConfirmation(kind=PENDING_CONFIRM, action_index=index)
        elif action.risk == RISK_DANGER:
            self.pending = PendingConfirmation(kind=PENDING_DANGER, action_index=index)
        else:
            self.execute_action(index)

    def _handle_pending_key(self, key: str) -> None:
        pending = self.pending
        if pending is None:
            return

        if pending.kind == PENDING_CONFIRM:
            if key in ("y", "Y"):
                self.pending = None
                self.execute_action(pending.action_index)
            elif key in ("n", "N", "esc"):
                self.pending = None
                self.last_output = "Action cancelled."
            return

        if key == "esc":
            self.pending = None
            self.last_output = "Danger action cancelled."
        elif key == "backspace":
            pending.typed = pending.typed[:-1]
        elif key == "enter":
            if pending.typed == DANGER_CONFIRM_TOKEN:
                self.pending = None
                self.execute_action(pending.action_index)
            else:
                self.last_output = (
                    f"Confirmation token mismatch. Type {DANGER_CONFIRM_TOKEN} and press Enter."
                )
        elif len(key) == 1 and key.isascii() and key.isalnum():
            if len(pending.typed) < len(DANGER_CONFIRM_TOKEN):
                pending.typed += key.upper()

    def execute_action(self, index: int) -> None:
        if not self.actions:
            return
        action = self.actions[index]
        try:
            output = action.execute()
        except ActionError as exc:
            self.last_output = str(exc)
            return

        self.last_output = output
        try:
            self._reload(announce=False)
        except Exception as exc:
            # Keep the action result visible; the next tick retries.
            log.debug("post-action refresh failed: %s", exc)
