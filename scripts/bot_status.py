#!/usr/bin/env python3
"""Bot status aggregation: registry + PM2 process list + log tails in one snapshot."""

from __future__ import annotations

import json
import logging
import string
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Sequence

log = logging.getLogger(__name__)

REGISTRY_RELPATH = Path("profiles") / "bots.json"
LOGS_RELPATH = Path("profiles") / "logs"

PROCESS_COMMAND: tuple[str, ...] = ("pm2", "jlist")
PROCESS_TIMEOUT_SEC = 10
TAIL_LINES = 10

ERROR_MARKERS = ("ERROR", "WARN", "FATAL")
ASCII_UPPER = str.maketrans(string.ascii_lowercase, string.ascii_uppercase)
UNKNOWN_PAIR = "?/ ?"
PROCESS_OFFLINE_ALERT = "PM2 unavailable (pm2 jlist failed or not installed)."

StatusLoader = Callable[[], tuple[dict[str, str], bool]]


@dataclass(frozen=True)
class DashboardPaths:
    root: Path
    registry: Path
    logs_dir: Path

    @classmethod
    def for_root(cls, root: str | Path = ".") -> "DashboardPaths":
        base = Path(root)
        return cls(root=base, registry=base / REGISTRY_RELPATH, logs_dir=base / LOGS_RELPATH)


@dataclass(frozen=True)
class RegistryEntry:
    name: str | None = None
    asset_a: str = ""
    asset_b: str = ""
    active: bool | None = None


@dataclass(frozen=True)
class BotStatus:
    name: str
    pair: str
    config_active: bool
    runtime_status: str
    log_path: str | None = None
    log_tail: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "pair": self.pair,
            "config_active": self.config_active,
            "runtime_status": self.runtime_status,
            "log_path": self.log_path,
            "log_tail": list(self.log_tail),
        }


@dataclass(frozen=True)
class Snapshot:
    """One aggregation pass. Replaced wholesale on refresh, never mutated."""

    bots: tuple[BotStatus, ...] = ()
    warnings: int = 0
    process_source_online: bool = False
    process_count: int = 0
    alerts: tuple[str, ...] = ()
    generated_at: str = field(default="", compare=False)

    def bot_named(self, name: str) -> BotStatus | None:
        for bot in self.bots:
            if bot.name == name:
                return bot
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": self.generated_at,
            "warnings": self.warnings,
            "process_source_online": self.process_source_online,
            "process_count": self.process_count,
            "alerts": list(self.alerts),
            "bots": [bot.to_dict() for bot in self.bots],
        }


def now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def run_cmd(cmd: Sequence[str], timeout: int | None = PROCESS_TIMEOUT_SEC) -> tuple[int, str, str]:
    try:
        proc = subprocess.run(
            list(cmd),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            timeout=timeout,
            check=False,
        )
    except (subprocess.TimeoutExpired, OSError) as exc:
        return 1, "", str(exc)
    return proc.returncode, proc.stdout, proc.stderr


# ---------------------------------------------------------------------------
# Process-status source
# ---------------------------------------------------------------------------


def parse_process_list(text: str) -> tuple[dict[str, str], bool]:
    """Parse ``pm2 jlist`` output into ``{name: status}``.

    PM2 may print banner lines before the JSON array, so parsing starts at the
    first ``[``. No array marker, invalid JSON or a non-array payload all mean
    the source is offline.
    """
    start = text.find("[")
    if start < 0:
        return {}, False
    try:
        payload = json.loads(text[start:])
    except json.JSONDecodeError:
        return {}, False
    if not isinstance(payload, list):
        return {}, False

    statuses: dict[str, str] = {}
    for item in payload:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        if not isinstance(name, str) or not name:
            continue
        env = item.get("pm2_env")
        status = env.get("status") if isinstance(env, dict) else None
        statuses[name] = status if isinstance(status, str) else "unknown"
    return statuses, True


def load_process_status(command: Sequence[str] = PROCESS_COMMAND) -> tuple[dict[str, str], bool]:
    code, out, err = run_cmd(command)
    if code != 0:
        log.debug("process status query %s failed (code %s): %s", " ".join(command), code, err.strip())
        return {}, False
    statuses, online = parse_process_list(out)
    if not online:
        log.debug("process status query %s returned an unparseable payload", " ".join(command))
    return statuses, online


# ---------------------------------------------------------------------------
# Registry loader
# ---------------------------------------------------------------------------


def _optional_str(item: dict[str, Any], key: str) -> str | None:
    value = item.get(key)
    if value is None or isinstance(value, str):
        return value
    raise ValueError(f"field '{key}' must be a string")


def registry_entry_from_json(item: Any) -> RegistryEntry:
    if not isinstance(item, dict):
        raise ValueError("registry entry must be an object")
    active = item.get("active")
    if active is not None and not isinstance(active, bool):
        raise ValueError("field 'active' must be a boolean")
    return RegistryEntry(
        name=_optional_str(item, "name"),
        asset_a=_optional_str(item, "assetA") or "",
        asset_b=_optional_str(item, "assetB") or "",
        active=active,
    )


def parse_registry(raw: str) -> list[RegistryEntry]:
    """Parse registry JSON: a bare array, or an object holding a ``bots`` array.

    Raises ``ValueError`` if any part of the document is malformed.
    """
    data = json.loads(raw)
    if isinstance(data, dict):
        data = data.get("bots", [])
    if not isinstance(data, list):
        raise ValueError("registry must be a JSON array of bot entries")
    return [registry_entry_from_json(item) for item in data]


def load_registry(path: Path) -> tuple[list[RegistryEntry], bool]:
    """Return ``(entries, found)``. A present but unusable file yields no entries."""
    if not path.exists():
        return [], False
    try:
        return parse_registry(path.read_text(encoding="utf-8")), True
    except (OSError, UnicodeDecodeError, ValueError) as exc:
        log.warning("ignoring malformed registry %s: %s", path, exc)
        return [], True


def resolve_bot_name(entry: RegistryEntry, index: int) -> str:
    name = (entry.name or "").strip()
    return name or f"bot-{index + 1}"


def format_pair(entry: RegistryEntry) -> str | None:
    if not entry.asset_a or not entry.asset_b:
        return None
    return f"{entry.asset_a}/{entry.asset_b}"


def resolve_runtime_status(name: str, active: bool, statuses: dict[str, str]) -> str:
    if name in statuses:
        return statuses[name]
    return "not-running" if active else "disabled"


# ---------------------------------------------------------------------------
# Log tail reader
# ---------------------------------------------------------------------------


def resolve_log_path(bot_name: str, logs_dir: Path) -> str | None:
    direct = logs_dir / f"{bot_name}.log"
    if direct.is_file():
        return str(direct)
    if not logs_dir.is_dir():
        return None

    candidates: list[tuple[float, str, Path]] = []
    try:
        for entry in logs_dir.iterdir():
            if entry.suffix != ".log":
                continue
            try:
                mtime = entry.stat().st_mtime
            except OSError:
                mtime = float("-inf")
            candidates.append((mtime, entry.name, entry))
    except OSError as exc:
        log.debug("cannot scan logs directory %s: %s", logs_dir, exc)
        return None

    candidates.sort(key=lambda item: (item[0], item[1]))
    needle = bot_name.lower()
    for _, filename, entry in reversed(candidates):
        if needle in filename.lower():
            return str(entry)
    return None


def tail_lines(path: Path, max_lines: int = TAIL_LINES) -> list[str]:
    if max_lines <= 0:
        return []
    try:
        with path.open(encoding="utf-8", errors="replace", newline="") as handle:
            raw = handle.read()
    except OSError as exc:
        log.debug("cannot read log %s: %s", path, exc)
        return []
    # Only \n ends an entry; form feeds and other separators stay in the line.
    lines = raw.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines][-max_lines:]


def has_error_marker(line: str) -> bool:
    upper = line.translate(ASCII_UPPER)
    return any(marker in upper for marker in ERROR_MARKERS)


# ---------------------------------------------------------------------------
# Snapshot builder
# ---------------------------------------------------------------------------


def build_snapshot(
    paths: DashboardPaths | None = None,
    process_command: Sequence[str] = PROCESS_COMMAND,
    tail_limit: int = TAIL_LINES,
    status_loader: StatusLoader | None = None,
) -> Snapshot:
    """Aggregate registry, process status and logs. Never raises for source failures."""
    paths = paths or DashboardPaths.for_root()
    warnings = 0
    alerts: list[str] = []

    if status_loader is None:
        statuses, online = load_process_status(process_command)
    else:
        statuses, online = status_loader()
    if not online:
        warnings += 1
        alerts.append(PROCESS_OFFLINE_ALERT)

    entries, found = load_registry(paths.registry)
    if not found:
        warnings += 1
        alerts.append(f"{paths.registry} not found.")

    bots: list[BotStatus] = []
    seen: set[str] = set()
    for index, entry in enumerate(entries):
        name = resolve_bot_name(entry, index)
        if name in seen:
            warnings += 1
            log.debug("duplicate bot name in registry: %s", name)
        seen.add(name)

        pair = format_pair(entry)
        if pair is None:
            warnings += 1
            pair = UNKNOWN_PAIR

        active = True if entry.active is None else entry.active
        log_path = resolve_log_path(name, paths.logs_dir)
        log_tail = tail_lines(Path(log_path), tail_limit) if log_path else []

        if any(has_error_marker(line) for line in log_tail):
            warnings += 1
            alerts.append(f"{name}: error/warn marker found in recent log lines.")

        bots.append(
            BotStatus(
                name=name,
                pair=pair,
                config_active=active,
                runtime_status=resolve_runtime_status(name, active, statuses),
                log_path=log_path,
                log_tail=tuple(log_tail),
            )
        )

    return Snapshot(
        bots=tuple(bots),
        warnings=warnings,
        process_source_online=online,
        process_count=len(statuses),
        alerts=tuple(alerts),
        generated_at=now_iso(),
    )
