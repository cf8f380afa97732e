from __future__ import annotations

import logging
import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator

from amplifi_ledger.db.schema import EPOCH_REWARDS_SQL, LEGACY_EPOCH_SCORES_SQL, SCHEMA_SQL
from amplifi_ledger.scoring.features import require_lamports, to_lamports
from amplifi_ledger.utils.time import now_unix

logger = logging.getLogger(__name__)

EPOCH_ACTIVE = "active"
EPOCH_SETTLING = "settling"
EPOCH_SETTLED = "settled"


def get_connection(db_path: str | Path, timeout_s: float = 5.0) -> sqlite3.Connection:
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=timeout_s)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def open_connection(db_path: str | Path, timeout_s: float = 5.0) -> Iterator[sqlite3.Connection]:
    """Connection scoped to a single operation; always closed on exit."""
    conn = get_connection(db_path, timeout_s)
    try:
        yield conn
    finally:
        conn.close()


def init_db(conn: sqlite3.Connection, legacy_rewards: bool = False) -> None:
    conn.executescript(SCHEMA_SQL)
    # Never add a second reward table next to one that already exists.
    if not (table_exists(conn, "epoch_rewards") or table_exists(conn, "epoch_scores")):
        conn.executescript(LEGACY_EPOCH_SCORES_SQL if legacy_rewards else EPOCH_REWARDS_SQL)
    _ensure_column(conn, "engagement_events", "is_spam", "INTEGER NOT NULL DEFAULT 0")
    _ensure_column(conn, "reward_claims", "status", "TEXT")
    conn.commit()


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, definition: str) -> None:
    try:
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
    except sqlite3.OperationalError:
        return


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table,),
    ).fetchone()
    return row is not None


def upsert_campaigns(
    conn: sqlite3.Connection,
    campaigns: Iterable[dict[str, Any]],
    commit: bool = True,
) -> None:
    rows = []
    for campaign in campaigns:
        rows.append(
            (
                campaign.get("id"),
                campaign.get("token_mint"),
                campaign.get("name"),
                campaign.get("created_at_unix") or now_unix(),
            )
        )
    conn.executemany(
        """
        INSERT OR REPLACE INTO campaigns (id, token_mint, name, created_at_unix)
        VALUES (?, ?, ?, ?)
        """,
        rows,
    )
    if commit:
        conn.commit()


def upsert_epochs(
    conn: sqlite3.Connection,
    epochs: Iterable[dict[str, Any]],
    commit: bool = True,
) -> None:
    rows = []
    for epoch in epochs:
        rows.append(
            (
                epoch.get("id"),
                epoch.get("campaign_id"),
                epoch.get("epoch_number", 1),
                epoch.get("status") or EPOCH_ACTIVE,
                epoch.get("start_at_unix"),
                epoch.get("end_at_unix"),
                str(_pool_lamports(epoch)),
                epoch.get("settled_at_unix"),
            )
        )
    conn.executemany(
        """
        INSERT OR REPLACE INTO epochs
        (id, campaign_id, epoch_number, status, start_at_unix, end_at_unix,
         reward_pool_lamports, settled_at_unix)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        rows,
    )
    if commit:
        conn.commit()


def insert_engagement_events(
    conn: sqlite3.Connection,
    events: Iterable[dict[str, Any]],
    commit: bool = True,
) -> None:
    rows = []
    for event in events:
        rows.append(
            (
                event.get("id") or str(uuid.uuid4()),
                event.get("campaign_id"),
                event.get("epoch_id"),
                event.get("wallet_pubkey"),
                event.get("final_score"),
                1 if event.get("is_duplicate") else 0,
                1 if event.get("is_spam") else 0,
                event.get("created_at_unix") or now_unix(),
            )
        )
    conn.executemany(
        """
        INSERT INTO engagement_events
        (id, campaign_id, epoch_id, wallet_pubkey, final_score, is_duplicate, is_spam, created_at_unix)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        rows,
    )
    if commit:
        conn.commit()


def upsert_project_profiles(
    conn: sqlite3.Connection,
    profiles: Iterable[dict[str, Any]],
    commit: bool = True,
) -> None:
    rows = []
    now = now_unix()
    for profile in profiles:
        rows.append(
            (
                profile.get("token_mint"),
                profile.get("name"),
                profile.get("symbol"),
                profile.get("image_url"),
                now,
            )
        )
    conn.executemany(
        """
        INSERT OR REPLACE INTO project_profiles (token_mint, name, symbol, image_url, updated_at_unix)
        VALUES (?, ?, ?, ?, ?)
        """,
        rows,
    )
    if commit:
        conn.commit()


def insert_campaign_participants(
    conn: sqlite3.Connection,
    participants: Iterable[dict[str, Any]],
    commit: bool = True,
) -> None:
    rows = []
    for participant in participants:
        rows.append(
            (
                participant.get("campaign_id"),
                participant.get("wallet_pubkey"),
                participant.get("status") or "active",
                participant.get("joined_at_unix") or now_unix(),
            )
        )
    conn.executemany(
        """
        INSERT OR REPLACE INTO campaign_participants (campaign_id, wallet_pubkey, status, joined_at_unix)
        VALUES (?, ?, ?, ?)
        """,
        rows,
    )
    if commit:
        conn.commit()


def record_reward_claim(
    conn: sqlite3.Connection,
    epoch_id: str,
    wallet_pubkey: str,
    amount_lamports: int,
    tx_sig: str | None = None,
    claimed_at_unix: int | None = None,
    commit: bool = True,
) -> bool:
    """Record a payout for (epoch, wallet). Returns False if one already exists."""
    amount = require_lamports(amount_lamports, "amount_lamports")
    cursor = conn.execute(
        """
        INSERT INTO reward_claims
        (id, epoch_id, wallet_pubkey, amount_lamports, tx_sig, claimed_at_unix, status)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (epoch_id, wallet_pubkey) DO NOTHING
        """,
        (
            str(uuid.uuid4()),
            epoch_id,
            wallet_pubkey,
            str(amount),
            tx_sig,
            claimed_at_unix if claimed_at_unix is not None else now_unix(),
            "completed" if tx_sig else "pending",
        ),
    )
    if commit:
        conn.commit()
    created = cursor.rowcount == 1
    if not created:
        logger.info("Reward claim already recorded epoch=%s wallet=%s", epoch_id, wallet_pubkey)
    return created


def fetch_epoch(conn: sqlite3.Connection, epoch_id: str) -> dict[str, Any] | None:
    row = conn.execute(
        """
        SELECT id, campaign_id, epoch_number, status, start_at_unix, end_at_unix,
               reward_pool_lamports, settled_at_unix
        FROM epochs WHERE id = ?
        """,
        (epoch_id,),
    ).fetchone()
    if row is None:
        return None
    return _epoch_from_row(row)


def fetch_epochs_ready_for_settlement(conn: sqlite3.Connection, now: int) -> list[dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT id, campaign_id, epoch_number, status, start_at_unix, end_at_unix,
               reward_pool_lamports, settled_at_unix
        FROM epochs
        WHERE status = ? AND end_at_unix <= ?
        ORDER BY end_at_unix ASC
        """,
        (EPOCH_ACTIVE, now),
    ).fetchall()
    return [_epoch_from_row(row) for row in rows]


def update_epoch_status(
    conn: sqlite3.Connection,
    epoch_id: str,
    status: str,
    commit: bool = True,
) -> None:
    conn.execute("UPDATE epochs SET status = ? WHERE id = ?", (status, epoch_id))
    if commit:
        conn.commit()


def mark_epoch_settled(
    conn: sqlite3.Connection,
    epoch_id: str,
    settled_at_unix: int,
    distributed_lamports: int,
    total_engagement_points: float,
    participant_count: int,
    commit: bool = True,
) -> None:
    conn.execute(
        """
        UPDATE epochs
        SET status = ?, settled_at_unix = ?, distributed_lamports = ?,
            total_engagement_points = ?, participant_count = ?
        WHERE id = ?
        """,
        (
            EPOCH_SETTLED,
            settled_at_unix,
            str(distributed_lamports),
            total_engagement_points,
            participant_count,
            epoch_id,
        ),
    )
    if commit:
        conn.commit()


def _epoch_from_row(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "campaign_id": row["campaign_id"],
        "epoch_number": row["epoch_number"],
        "status": row["status"],
        "start_at_unix": row["start_at_unix"],
        "end_at_unix": row["end_at_unix"],
        "reward_pool_lamports": to_lamports(row["reward_pool_lamports"]),
        "settled_at_unix": row["settled_at_unix"],
    }


def _pool_lamports(epoch: dict[str, Any]) -> int:
    pool = epoch.get("reward_pool_lamports")
    if pool is None:
        return 0
    return require_lamports(pool, "reward_pool_lamports")
