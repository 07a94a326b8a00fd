#!/usr/bin/env python3
"""Fixed catalogue of maintenance scripts the dashboard can run."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass

log = logging.getLogger(__name__)

RISK_SAFE = "safe"
RISK_CONFIRM = "confirm"
RISK_DANGER = "danger"
RISK_LEVELS = (RISK_SAFE, RISK_CONFIRM, RISK_DANGER)


class ActionError(Exception):
    def __init__(self, risk: str, action: str, code: int | None, stderr: str) -> None:
        self.risk = risk
        self.action = action
        self.code = code
        self.stderr = stderr
        code_text = "unknown" if code is None else str(code)
        super().__init__(f"[{risk}] {action} failed (code {code_text})\n{stderr}")


@dataclass(frozen=True)
class DashboardAction:
    name: str
    command: str
    args: tuple[str, ...]
    risk: str

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]

    def execute(self) -> str:
        """Run the command to completion and return its labelled output.

        Blocks until the child exits; no timeout is applied. Raises
        ``ActionError`` on spawn failure or a non-zero / signal exit.
        """
        log.info("running action %r: %s", self.name, " ".join(self.argv))
        try:
            proc = subprocess.run(
                self.argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                check=False,
            )
        except OSError as exc:
            log.warning("action %r could not start: %s", self.name, exc)
            raise ActionError(self.risk, self.name, None, str(exc)) from exc

        stdout = proc.stdout.strip()
        stderr = proc.stderr.strip()
        if proc.returncode != 0:
            # Negative return codes mean the child was killed by a signal.
            code = proc.returncode if proc.returncode > 0 else None
            log.warning("action %r exited with %s", self.name, proc.returncode)
            raise ActionError(self.risk, self.name, code, stderr)

        log.info("action %r finished", self.name)
        body = stdout or stderr
        return f"[{self.risk}] {self.name}\n{body}"


def dashboard_actions() -> tuple[DashboardAction, ...]:
    return (
        DashboardAction("Check Update Status", "bash", ("scripts/check-update.sh",), RISK_SAFE),
        DashboardAction("Validate Bots Config", "node", ("scripts/validate_bots.js",), RISK_SAFE),
        DashboardAction("Analyze Orders", "node", ("scripts/analyze-orders.js",), RISK_SAFE),
        DashboardAction("Analyze Repo", "node", ("scripts/analyze-git.js",), RISK_SAFE),
        DashboardAction("Create Bot Symlinks", "bash", ("scripts/create-bot-symlinks.sh",), RISK_CONFIRM),
        DashboardAction("Clear Logs", "bash", ("scripts/clear-logs.sh",), RISK_DANGER),
        DashboardAction("Clear Orders", "bash", ("scripts/clear-orders.sh",), RISK_DANGER),
        DashboardAction("Clear All", "bash", ("scripts/clear-all.sh",), RISK_DANGER),
    )


def find_action(actions: tuple[DashboardAction, ...], name: str) -> DashboardAction:
    wanted = name.strip().lower()
    for action in actions:
        if action.name.lower() == wanted:
            return action
    known = ", ".join(action.name for action in actions)
    raise ValueError(f"Unknown action '{name}'. Known actions: {known}")
