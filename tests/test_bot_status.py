from __future__ import annotations

import os

import bot_status
from bot_status import (
    PROCESS_OFFLINE_ALERT,
    UNKNOWN_PAIR,
    BotStatus,
    build_snapshot,
    has_error_marker,
    load_process_status,
    load_registry,
    parse_process_list,
    resolve_log_path,
    run_cmd,
    tail_lines,
)


def _offline():
    return {}, False


def _set_mtime(path, value):
    os.utime(path, (value, value))


def test_well_formed_registry_without_supervisor(paths, write_registry):
    write_registry(
        [
            {"name": "alpha", "assetA": "BTC", "assetB": "USDT"},
            {"name": "beta", "assetA": "ETH", "assetB": ""},
            {"name": "gamma", "assetA": "SOL", "assetB": "USDC", "active": False},
        ]
    )

    snapshot = build_snapshot(paths, status_loader=_offline)

    assert [bot.name for bot in snapshot.bots] == ["alpha", "beta", "gamma"]
    assert snapshot.process_source_online is False
    assert snapshot.process_count == 0
    assert snapshot.warnings == 2
    assert snapshot.alerts == (PROCESS_OFFLINE_ALERT,)
    assert snapshot.bots[1].pair == UNKNOWN_PAIR


def test_single_bot_example(paths, write_registry):
    write_registry([{"name": "alpha", "assetA": "BTC", "assetB": "USDT", "active": True}])

    snapshot = build_snapshot(paths, status_loader=_offline)

    assert snapshot.bots == (
        BotStatus(
            name="alpha",
            pair="BTC/USDT",
            config_active=True,
            runtime_status="not-running",
            log_path=None,
            log_tail=(),
        ),
    )
    # Only the offline process source counts.
    assert snapshot.warnings == 1


def test_missing_registry_is_reported(paths):
    snapshot = build_snapshot(paths, status_loader=_offline)

    assert snapshot.bots == ()
    assert snapshot.warnings == 2
    assert snapshot.alerts[0] == PROCESS_OFFLINE_ALERT
    assert snapshot.alerts[1] == f"{paths.registry} not found."


def test_empty_registry_array(paths, write_registry):
    write_registry([])

    snapshot = build_snapshot(paths, status_loader=lambda: ({}, True))

    assert snapshot.bots == ()
    assert snapshot.warnings == 0
    assert snapshot.alerts == ()


def test_malformed_registry_degrades_to_no_bots(paths, write_registry):
    write_registry("{not json")

    snapshot = build_snapshot(paths, status_loader=_offline)

    assert snapshot.bots == ()
    assert snapshot.warnings == 1


def test_registry_entry_of_wrong_type_rejects_document(write_registry):
    path = write_registry([{"name": "alpha", "assetA": "BTC", "assetB": "USDT"}, 42])

    entries, found = load_registry(path)

    assert found is True
    assert entries == []


def test_registry_accepts_bots_object(paths, write_registry):
    write_registry({"bots": [{"name": "alpha", "assetA": "BTC", "assetB": "USDT"}]})

    snapshot = build_snapshot(paths, status_loader=_offline)

    assert [bot.name for bot in snapshot.bots] == ["alpha"]


def test_defaults_and_runtime_precedence(paths, write_registry):
    write_registry(
        [
            {"assetA": "BTC", "assetB": "USDT"},
            {"name": "  ", "assetA": "ETH", "assetB": "USDT", "active": False},
            {"name": "live", "assetA": "XRP", "assetB": "USDT", "active": False},
        ]
    )

    snapshot = build_snapshot(paths, status_loader=lambda: ({"live": "online", "other": "stopped"}, True))

    assert [bot.name for bot in snapshot.bots] == ["bot-1", "bot-2", "live"]
    assert [bot.runtime_status for bot in snapshot.bots] == ["not-running", "disabled", "online"]
    assert snapshot.bots[0].config_active is True
    assert snapshot.process_source_online is True
    assert snapshot.process_count == 2


def test_duplicate_names_add_warning(paths, write_registry):
    write_registry(
        [
            {"name": "alpha", "assetA": "BTC", "assetB": "USDT"},
            {"name": "alpha", "assetA": "ETH", "assetB": "USDT"},
        ]
    )

    snapshot = build_snapshot(paths, status_loader=lambda: ({}, True))

    assert len(snapshot.bots) == 2
    assert snapshot.warnings == 1
    assert snapshot.alerts == ()


def test_log_markers_raise_alert(paths, write_registry, write_log):
    write_registry(
        [
            {"name": "alpha", "assetA": "BTC", "assetB": "USDT"},
            {"name": "beta", "assetA": "ETH", "assetB": "USDT"},
        ]
    )
    write_log("alpha.log", ["started", "warning: low balance"])
    write_log("beta.log", ["started", "order placed"])

    snapshot = build_snapshot(paths, status_loader=lambda: ({}, True))

    assert snapshot.warnings == 1
    assert snapshot.alerts == ("alpha: error/warn marker found in recent log lines.",)
    assert snapshot.bots[0].log_tail == ("started", "warning: low balance")


def test_markers_outside_tail_are_ignored(paths, write_registry, write_log):
    write_registry([{"name": "alpha", "assetA": "BTC", "assetB": "USDT"}])
    write_log("alpha.log", ["FATAL boot failure"] + [f"tick {i}" for i in range(12)])

    snapshot = build_snapshot(paths, status_loader=lambda: ({}, True))

    assert snapshot.warnings == 0
    assert snapshot.bots[0].log_tail[0] == "tick 2"
    assert len(snapshot.bots[0].log_tail) == 10


def test_build_snapshot_is_idempotent(paths, write_registry, write_log):
    write_registry([{"name": "alpha", "assetA": "BTC", "assetB": "USDT"}])
    write_log("alpha.log", ["ERROR once"])

    first = build_snapshot(paths, status_loader=_offline)
    second = build_snapshot(paths, status_loader=_offline)

    assert first == second


def test_exact_log_name_wins_over_newer_match(paths, write_log):
    exact = write_log("alpha.log", ["a"])
    newer = write_log("alpha-old.log", ["b"])
    _set_mtime(exact, 1_000_000)
    _set_mtime(newer, 2_000_000)

    assert resolve_log_path("alpha", paths.logs_dir) == str(exact)


def test_substring_scan_prefers_most_recent(paths, write_log):
    older = write_log("ALPHA-1.log", ["a"])
    newer = write_log("x-alpha-2.log", ["b"])
    other = write_log("beta.log", ["c"])
    write_log("alpha.txt", ["d"])
    _set_mtime(older, 1_000_000)
    _set_mtime(newer, 2_000_000)
    _set_mtime(other, 3_000_000)

    assert resolve_log_path("alpha", paths.logs_dir) == str(newer)
    assert resolve_log_path("Beta", paths.logs_dir) == str(other)
    assert resolve_log_path("gamma", paths.logs_dir) is None


def test_missing_logs_dir(paths):
    assert resolve_log_path("alpha", paths.logs_dir) is None


def test_tail_lines_keeps_order(tmp_path):
    path = tmp_path / "bot.log"
    path.write_text("\n".join(f"line {i}" for i in range(1, 16)), encoding="utf-8")

    assert tail_lines(path, 3) == ["line 13", "line 14", "line 15"]
    assert tail_lines(path, 0) == []
    assert tail_lines(tmp_path / "missing.log") == []


def test_tail_lines_splits_on_newlines_only(tmp_path):
    path = tmp_path / "bot.log"
    path.write_bytes(b"ERROR boom\r\n" + b"x\x0cy z\n" * 5)

    lines = tail_lines(path, 10)

    assert lines == ["ERROR boom"] + ["x\x0cy z"] * 5


def test_form_feed_does_not_push_error_out_of_tail(paths, write_registry):
    write_registry([{"name": "alpha", "assetA": "BTC", "assetB": "USDT"}])
    paths.logs_dir.mkdir(parents=True, exist_ok=True)
    (paths.logs_dir / "alpha.log").write_text("ERROR boom\n" + "x\x0cy z\n" * 5, encoding="utf-8")

    snapshot = build_snapshot(paths, status_loader=lambda: ({}, True))

    assert snapshot.warnings == 1
    assert len(snapshot.bots[0].log_tail) == 6


def test_has_error_marker_is_case_insensitive():
    assert has_error_marker("an Error happened")
    assert has_error_marker("warn: slow")
    assert has_error_marker("fatal")
    assert not has_error_marker("all good")


def test_has_error_marker_folds_ascii_only():
    # U+FB00 upper-cases to "FF" under full Unicode folding, which would spell FATAL.
    assert not has_error_marker("ﬀatal")
    assert has_error_marker("ffatal")


def test_parse_process_list_skips_banner():
    text = 'PM2 update available\n[{"name": "alpha", "pm2_env": {"status": "online"}}, {"name": "beta"}, {"pm2_env": {}}]'

    statuses, online = parse_process_list(text)

    assert online is True
    assert statuses == {"alpha": "online", "beta": "unknown"}


def test_parse_process_list_offline_payloads():
    assert parse_process_list("") == ({}, False)
    assert parse_process_list('{"name": "alpha"}') == ({}, False)
    assert parse_process_list("[not json") == ({}, False)
    assert parse_process_list('x [1, 2] {"a": [3]}') == ({}, False)


def test_load_process_status_nonzero_exit(monkeypatch):
    monkeypatch.setattr(bot_status, "run_cmd", lambda cmd, timeout=10: (1, '[{"name": "alpha"}]', "boom"))

    assert load_process_status() == ({}, False)


def test_load_process_status_success(monkeypatch):
    payload = '[{"name": "alpha", "pm2_env": {"status": "stopped"}}]'
    monkeypatch.setattr(bot_status, "run_cmd", lambda cmd, timeout=10: (0, payload, ""))

    assert load_process_status(("pm2", "jlist")) == ({"alpha": "stopped"}, True)


def test_run_cmd_missing_binary():
    code, out, err = run_cmd(["definitely-not-a-real-binary-xyz"])

    assert code == 1
    assert out == ""
    assert err


def test_snapshot_to_dict(paths, write_registry):
    write_registry([{"name": "alpha", "assetA": "BTC", "assetB": "USDT"}])

    payload = build_snapshot(paths, status_loader=_offline).to_dict()

    assert payload["process_source_online"] is False
    assert payload["bots"][0]["name"] == "alpha"
    assert payload["bots"][0]["log_tail"] == []
