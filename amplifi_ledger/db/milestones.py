"""Write-once ledger of market-cap milestone unlock confirmations.

The first confirmation stored for a ``(commitment_id, milestone_id)`` key is
permanent. Later attempts for the same key get the stored row back and never
overwrite it.

``SqliteMilestoneStore`` relies on the table's primary key as the only
arbiter between concurrent writers: insert-or-ignore, then read back only when
nothing was inserted. ``LocalMilestoneStore`` gives the same compare-and-set
behaviour inside one process only; separate processes will not see each
other's confirmations.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from amplifi_ledger.config import AppConfig
from amplifi_ledger.db import store
from amplifi_ledger.db.schema import MILESTONE_SCHEMA_SQL
from amplifi_ledger.errors import InvalidRequestError, LedgerInvariantError
from amplifi_ledger.scoring.features import U64_MAX, to_lamports

logger = logging.getLogger(__name__)


class MilestoneConfirmation(BaseModel):
    commitment_id: str
    milestone_id: str
    token_mint: str
    confirmed_at_unix: int
    total_funded_lamports: int = Field(ge=0, le=U64_MAX)
    unlock_lamports: int = Field(ge=0, le=U64_MAX)
    threshold_usd: float
    chain_id: str
    pair_address: str
    dex_id: str
    evidence_json: str


class AcquireResult(BaseModel):
    acquired: bool
    existing: Optional[MilestoneConfirmation] = None


def _normalize_key(commitment_id: object, milestone_id: object) -> tuple[str, str]:
    return str(commitment_id or "").strip(), str(milestone_id or "").strip()


def _keyed(confirmation: MilestoneConfirmation) -> MilestoneConfirmation:
    commitment_id, milestone_id = _normalize_key(confirmation.commitment_id, confirmation.milestone_id)
    if not commitment_id or not milestone_id:
        raise InvalidRequestError("Invalid confirmation key")
    # Re-validate: model_copy and model_construct skip field constraints.
    try:
        return MilestoneConfirmation.model_validate(
            {**confirmation.model_dump(), "commitment_id": commitment_id, "milestone_id": milestone_id}
        )
    except ValidationError as exc:
        raise InvalidRequestError(f"Invalid milestone confirmation: {exc}") from exc


class LocalMilestoneStore:
    def __init__(self) -> None:
        self._confirmations: dict[tuple[str, str], MilestoneConfirmation] = {}
        self._lock = threading.Lock()

    def try_acquire(self, confirmation: MilestoneConfirmation) -> AcquireResult:
        confirmation = _keyed(confirmation)
        key = (confirmation.commitment_id, confirmation.milestone_id)
        with self._lock:
            existing = self._confirmations.get(key)
            if existing is not None:
                return AcquireResult(acquired=False, existing=existing.model_copy())
            self._confirmations[key] = confirmation
        return AcquireResult(acquired=True)

    def get_confirmation(self, commitment_id: str, milestone_id: str) -> MilestoneConfirmation | None:
        key = _normalize_key(commitment_id, milestone_id)
        if not all(key):
            return None
        with self._lock:
            existing = self._confirmations.get(key)
        return existing.model_copy() if existing is not None else None

    def list_confirmations_for_mint(self, token_mint: str) -> list[MilestoneConfirmation]:
        with self._lock:
            matches = [item.model_copy() for item in self._confirmations.values() if item.token_mint == token_mint]
        return sorted(matches, key=lambda item: item.confirmed_at_unix)


class SqliteMilestoneStore:
    def __init__(self, db_path: str | Path, timeout_s: float = 5.0) -> None:
        self.db_path = Path(db_path)
        self.timeout_s = timeout_s
        self._schema_ready = False

    def ensure_schema(self) -> None:
        # Only success is memoized; a failed attempt is retried on the next call.
        if self._schema_ready:
            return
        with store.open_connection(self.db_path, self.timeout_s) as conn:
            conn.executescript(MILESTONE_SCHEMA_SQL)
            conn.commit()
        self._schema_ready = True

    def try_acquire(self, confirmation: MilestoneConfirmation) -> AcquireResult:
        confirmation = _keyed(confirmation)
        self.ensure_schema()
        with store.open_connection(self.db_path, self.timeout_s) as conn:
            cursor = conn.execute(
                """
                INSERT INTO marketcap_milestone_confirmations
                (commitment_id, milestone_id, token_mint, confirmed_at_unix, total_funded_lamports,
                 unlock_lamports, threshold_usd, chain_id, pair_address, dex_id, evidence_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (commitment_id, milestone_id) DO NOTHING
                """,
                (
                    confirmation.commitment_id,
                    confirmation.milestone_id,
                    confirmation.token_mint,
                    confirmation.confirmed_at_unix,
                    str(confirmation.total_funded_lamports),
                    str(confirmation.unlock_lamports),
                    confirmation.threshold_usd,
                    confirmation.chain_id,
                    confirmation.pair_address,
                    confirmation.dex_id,
                    confirmation.evidence_json,
                ),
            )
            conn.commit()
            if cursor.rowcount == 1:
                logger.info(
                    "Milestone confirmation acquired commitment=%s milestone=%s",
                    confirmation.commitment_id,
                    confirmation.milestone_id,
                )
                return AcquireResult(acquired=True)

            existing = self._fetch(conn, confirmation.commitment_id, confirmation.milestone_id)

        if existing is None:
            logger.error(
                "Milestone insert ignored but no row found commitment=%s milestone=%s",
                confirmation.commitment_id,
                confirmation.milestone_id,
            )
            raise LedgerInvariantError("Failed to acquire market cap milestone confirmation")
        return AcquireResult(acquired=False, existing=existing)

    def get_confirmation(self, commitment_id: str, milestone_id: str) -> MilestoneConfirmation | None:
        commitment_id, milestone_id = _normalize_key(commitment_id, milestone_id)
        if not commitment_id or not milestone_id:
            return None
        self.ensure_schema()
        with store.open_connection(self.db_path, self.timeout_s) as conn:
            return self._fetch(conn, commitment_id, milestone_id)

    def list_confirmations_for_mint(self, token_mint: str) -> list[MilestoneConfirmation]:
        self.ensure_schema()
        with store.open_connection(self.db_path, self.timeout_s) as conn:
            rows = conn.execute(
                """
                SELECT * FROM marketcap_milestone_confirmations
                WHERE token_mint = ?
                ORDER BY confirmed_at_unix ASC
                """,
                (token_mint,),
            ).fetchall()
        return [_confirmation_from_row(row) for row in rows]

    @staticmethod
    def _fetch(conn: sqlite3.Connection, commitment_id: str, milestone_id: str) -> MilestoneConfirmation | None:
        row = conn.execute(
            """
            SELECT commitment_id, milestone_id, token_mint, confirmed_at_unix, total_funded_lamports,
                   unlock_lamports, threshold_usd, chain_id, pair_address, dex_id, evidence_json
            FROM marketcap_milestone_confirmations
            WHERE commitment_id = ? AND milestone_id = ?
            """,
            (commitment_id, milestone_id),
        ).fetchone()
        if row is None:
            return None
        return _confirmation_from_row(row)


def _confirmation_from_row(row: sqlite3.Row) -> MilestoneConfirmation:
    return MilestoneConfirmation(
        commitment_id=str(row["commitment_id"]),
        milestone_id=str(row["milestone_id"]),
        token_mint=str(row["token_mint"]),
        confirmed_at_unix=int(row["confirmed_at_unix"]),
        total_funded_lamports=to_lamports(row["total_funded_lamports"]),
        unlock_lamports=to_lamports(row["unlock_lamports"]),
        threshold_usd=float(row["threshold_usd"]),
        chain_id=str(row["chain_id"]),
        pair_address=str(row["pair_address"]),
        dex_id=str(row["dex_id"]),
        evidence_json=str(row["evidence_json"]),
    )


def build_milestone_store(config: AppConfig) -> LocalMilestoneStore | SqliteMilestoneStore:
    if config.has_database:
        return SqliteMilestoneStore(config.database.path, config.database.timeout_s)
    logger.warning("No database configured; milestone confirmations are process-local")
    return LocalMilestoneStore()
