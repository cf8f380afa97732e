from __future__ import annotations

import sqlite3

import pytest

from amplifi_ledger.analytics import rankings
from amplifi_ledger.db import store
from amplifi_ledger.db.reward_source import detect_reward_source

NOW = 1_760_000_000
DAY = 24 * 60 * 60


def _setup_conn(legacy_rewards: bool = False) -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    store.init_db(conn, legacy_rewards=legacy_rewards)
    return conn


def _seed_campaigns(conn: sqlite3.Connection) -> None:
    store.upsert_campaigns(
        conn,
        [
            {"id": "c1", "token_mint": "mintA", "name": "A one", "created_at_unix": NOW - 30 * DAY},
            {"id": "c2", "token_mint": "mintA", "name": "A two", "created_at_unix": NOW - 10 * DAY},
            {"id": "c3", "token_mint": "mintB", "name": "B", "created_at_unix": NOW - 20 * DAY},
            {"id": "c4", "token_mint": "", "name": "No mint", "created_at_unix": NOW - 20 * DAY},
        ],
    )


def _event(campaign_id: str, wallet: str, score, age_s: int, **flags) -> dict:
    return {
        "campaign_id": campaign_id,
        "wallet_pubkey": wallet,
        "final_score": score,
        "created_at_unix": NOW - age_s,
        "is_duplicate": flags.get("is_duplicate", False),
        "is_spam": flags.get("is_spam", False),
    }


def test_exposure_excludes_duplicates_and_spam() -> None:
    conn = _setup_conn()
    _seed_campaigns(conn)
    store.insert_engagement_events(
        conn,
        [
            _event("c1", "w1", 10.0, 3600),
            _event("c2", "w2", 5.0, 3600),
            _event("c2", "w1", 2.5, 7200),
            _event("c1", "w3", 100.0, 3600, is_duplicate=True),
            _event("c2", "w4", 100.0, 3600, is_spam=True),
            _event("c3", "w5", 4.0, 3600),
            _event("c4", "w6", 50.0, 3600),
        ],
    )

    entries = rankings.compute_rankings(conn, "all", 50, now=NOW)
    by_mint = {entry["token_mint"]: entry for entry in entries}

    assert set(by_mint) == {"mintA", "mintB"}
    assert by_mint["mintA"]["exposure_score"] == pytest.approx(17.5)
    assert by_mint["mintA"]["unique_engagers"] == 2
    assert by_mint["mintA"]["campaign_id"] == "c2"
    assert by_mint["mintB"]["exposure_score"] == pytest.approx(4.0)
    assert [entry["rank"] for entry in entries] == [1, 2]
    assert entries[0]["token_mint"] == "mintA"


def test_window_filters_events_and_limit_truncates() -> None:
    conn = _setup_conn()
    _seed_campaigns(conn)
    store.insert_engagement_events(
        conn,
        [
            _event("c1", "w1", 50.0, 3 * DAY),
            _event("c1", "w2", 1.0, 3600),
            _event("c3", "w3", 8.0, 3600),
        ],
    )

    day = rankings.compute_rankings(conn, "24h", 50, now=NOW)
    assert [(entry["token_mint"], entry["exposure_score"]) for entry in day] == [("mintB", 8.0), ("mintA", 1.0)]

    week = rankings.compute_rankings(conn, "week", 1, now=NOW)
    assert len(week) == 1
    assert week[0]["token_mint"] == "mintA"
    assert week[0]["exposure_score"] == pytest.approx(51.0)
    assert week[0]["rank"] == 1


def test_trend_uses_fixed_seven_day_windows() -> None:
    conn = _setup_conn()
    _seed_campaigns(conn)
    store.insert_engagement_events(
        conn,
        [
            _event("c1", "w1", 150.0, 2 * DAY),
            _event("c1", "w1", 100.0, 9 * DAY),
            _event("c3", "w2", 50.0, 1 * DAY),
            _event("c3", "w2", 100.0, 10 * DAY),
            _event("c3", "w2", 999.0, 30 * DAY),
        ],
    )

    entries = rankings.compute_rankings(conn, "24h", 50, now=NOW)
    by_mint = {entry["token_mint"]: entry for entry in entries}
    assert by_mint["mintB"]["trend_pct"] == pytest.approx(-50.0)
    assert "mintA" not in by_mint

    entries = rankings.compute_rankings(conn, "all", 50, now=NOW)
    by_mint = {entry["token_mint"]: entry for entry in entries}
    assert by_mint["mintA"]["trend_pct"] == pytest.approx(50.0)
    assert by_mint["mintB"]["trend_pct"] == pytest.approx(-50.0)


def test_windowed_period_only_scans_recent_events() -> None:
    conn = _setup_conn()
    _seed_campaigns(conn)
    store.insert_engagement_events(
        conn,
        [
            _event("c3", "w1", 50.0, 1 * DAY),
            _event("c3", "w1", 100.0, 10 * DAY),
            _event("c3", "w2", 999.0, 30 * DAY),
        ],
    )
    statements: list[str] = []
    conn.set_trace_callback(statements.append)

    entries = rankings.compute_rankings(conn, "24h", 50, now=NOW)
    event_queries = [sql for sql in statements if "FROM engagement_events" in sql]
    assert len(event_queries) == 1
    assert "created_at_unix >=" in event_queries[0]
    assert entries[0]["unique_engagers"] == 1
    assert entries[0]["trend_pct"] == pytest.approx(-50.0)

    statements.clear()
    entries = rankings.compute_rankings(conn, "all", 50, now=NOW)
    event_queries = [sql for sql in statements if "FROM engagement_events" in sql]
    assert "created_at_unix >=" not in event_queries[0]
    assert entries[0]["exposure_score"] == pytest.approx(1149.0)


def test_trend_new_activity_and_no_activity() -> None:
    conn = _setup_conn()
    _seed_campaigns(conn)
    store.insert_engagement_events(
        conn,
        [
            _event("c1", "w1", 50.0, DAY),
            _event("c3", "w2", 10.0, 40 * DAY),
        ],
    )
    by_mint = {entry["token_mint"]: entry for entry in rankings.compute_rankings(conn, "all", 50, now=NOW)}
    assert by_mint["mintA"]["trend_pct"] == 100.0
    assert by_mint["mintB"]["trend_pct"] == 0.0


def test_missing_scores_collapse_to_zero() -> None:
    conn = _setup_conn()
    _seed_campaigns(conn)
    store.insert_engagement_events(
        conn,
        [
            _event("c1", "w1", None, 3600),
            _event("c1", "w2", "not-a-number", 3600),
            _event("c1", "w3", 3.0, 3600),
        ],
    )
    entries = rankings.compute_rankings(conn, "all", 50, now=NOW)
    assert entries[0]["exposure_score"] == pytest.approx(3.0)
    assert entries[0]["unique_engagers"] == 3


def test_ties_keep_row_order() -> None:
    conn = _setup_conn()
    _seed_campaigns(conn)
    store.insert_engagement_events(
        conn,
        [
            _event("c3", "w1", 5.0, 3600),
            _event("c1", "w2", 5.0, 3600),
        ],
    )
    entries = rankings.compute_rankings(conn, "all", 50, now=NOW)
    assert [entry["token_mint"] for entry in entries] == ["mintB", "mintA"]


def _seed_payouts(conn: sqlite3.Connection) -> None:
    store.upsert_epochs(
        conn,
        [
            {"id": "e1", "campaign_id": "c1", "epoch_number": 1, "status": "settled", "settled_at_unix": NOW - 2 * DAY},
            {"id": "e2", "campaign_id": "c2", "epoch_number": 1, "status": "settled", "settled_at_unix": NOW - 3600},
            {"id": "e3", "campaign_id": "c2", "epoch_number": 2, "status": "active"},
        ],
    )
    detect_reward_source(conn).upsert_rewards(
        conn,
        [
            {"epoch_id": "e1", "wallet_pubkey": "w1", "reward_lamports": 1_000},
            {"epoch_id": "e2", "wallet_pubkey": "w1", "reward_lamports": 250},
            {"epoch_id": "e2", "wallet_pubkey": "w2", "reward_lamports": 0},
            {"epoch_id": "e3", "wallet_pubkey": "w1", "reward_lamports": 5_000},
        ],
    )


@pytest.mark.parametrize("legacy_rewards", [False, True])
def test_payout_totals_from_settled_epochs(legacy_rewards: bool) -> None:
    conn = _setup_conn(legacy_rewards=legacy_rewards)
    _seed_campaigns(conn)
    _seed_payouts(conn)
    store.insert_engagement_events(conn, [_event("c1", "w1", 1.0, 3600)])

    all_time = rankings.compute_rankings(conn, "all", 50, now=NOW)
    assert all_time[0]["total_earned_lamports"] == 1_250

    day = rankings.compute_rankings(conn, "24h", 50, now=NOW)
    assert day[0]["total_earned_lamports"] == 250


def test_profiles_are_optional() -> None:
    conn = _setup_conn()
    _seed_campaigns(conn)
    store.upsert_project_profiles(
        conn,
        [{"token_mint": "mintA", "name": "Alpha", "symbol": "ALP", "image_url": "https://img/alp.png"}],
    )
    store.insert_engagement_events(
        conn,
        [_event("c1", "w1", 2.0, 3600), _event("c3", "w2", 1.0, 3600)],
    )
    by_mint = {entry["token_mint"]: entry for entry in rankings.compute_rankings(conn, "all", 50, now=NOW)}
    assert by_mint["mintA"]["symbol"] == "ALP"
    assert by_mint["mintB"]["name"] is None
    assert by_mint["mintB"]["symbol"] is None
    assert by_mint["mintB"]["image_url"] is None


def test_missing_reward_table_degrades_to_zero_payouts() -> None:
    conn = _setup_conn()
    _seed_campaigns(conn)
    conn.execute("DROP TABLE epoch_rewards")
    store.insert_engagement_events(conn, [_event("c1", "w1", 2.0, 3600)])
    entries = rankings.compute_rankings(conn, "all", 50, now=NOW)
    assert entries[0]["total_earned_lamports"] == 0


def test_period_normalization() -> None:
    assert rankings.normalize_period("DAY") == "24h"
    assert rankings.normalize_period(" 24h ") == "24h"
    assert rankings.normalize_period("Week") == "7d"
    assert rankings.normalize_period("month") == "all"
    assert rankings.normalize_period(None) == "all"
    assert rankings.period_window_seconds("7d") == 7 * DAY
    assert rankings.period_window_seconds("all") is None
