"""
Repository pattern for data access.

Handles persistence of the response cache, the daily budget ledger and
the append-only log of paid model calls.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from ..core.pricing import ModelTier
from .db import DEFAULT_DB_PATH, get_connection
from .models import (
    CacheEntry,
    LedgerSnapshot,
    ModelCallEvent,
    decode_interpretation,
    decode_split_result,
    encode_interpretation,
    encode_split_result,
)

# Ledger amounts are stored as integers of 1/10000 BRL so the spend check
# can run as plain SQL arithmetic.
LEDGER_UNIT = Decimal("0.0001")


def _to_units(amount: Decimal) -> int:
    return int((Decimal(amount) / LEDGER_UNIT).to_integral_value())


def _from_units(units: int) -> Decimal:
    return (Decimal(units) * LEDGER_UNIT).quantize(LEDGER_UNIT)


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the cache, ledger and call-event tables if they don't exist.

    ``model_call_event`` is an append-only ledger: no UPDATE or DELETE is
    ever performed on it.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS response_cache (
                fingerprint TEXT PRIMARY KEY,
                interpretation TEXT NOT NULL,
                split_result TEXT,
                created_at TEXT NOT NULL,
                tier TEXT
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS budget_ledger (
                day TEXT PRIMARY KEY,
                spent_units INTEGER NOT NULL DEFAULT 0,
                cap_units INTEGER NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS model_call_event (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                tier TEXT NOT NULL,
                model TEXT NOT NULL,
                prompt_tokens INTEGER NOT NULL,
                completion_tokens INTEGER NOT NULL,
                total_tokens INTEGER NOT NULL,
                cost_brl TEXT NOT NULL,
                retry_count INTEGER NOT NULL DEFAULT 0,
                request_id TEXT
            )
        """)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


class CacheRepository:
    """Durable storage for cached interpretations, keyed by fingerprint."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get(self, fingerprint: str) -> Optional[CacheEntry]:
        """Return the stored entry for ``fingerprint``, expired or not."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT fingerprint, interpretation, split_result, created_at, tier "
                "FROM response_cache WHERE fingerprint = ?",
                (fingerprint,)
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        return CacheEntry(
            fingerprint=row[0],
            interpretation=decode_interpretation(row[1]),
            split_result=decode_split_result(row[2]),
            created_at=datetime.fromisoformat(row[3]),
            tier=ModelTier(row[4]) if row[4] else None,
        )

    def put(self, entry: CacheEntry) -> None:
        """Store ``entry``, superseding any entry with the same fingerprint."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT OR REPLACE INTO response_cache
                (fingerprint, interpretation, split_result, created_at, tier)
                VALUES (?, ?, ?, ?, ?)
            """, (
                entry.fingerprint,
                encode_interpretation(entry.interpretation),
                encode_split_result(entry.split_result),
                entry.created_at.isoformat(),
                entry.tier.value if entry.tier else None,
            ))
        finally:
            conn.close()

    def prune(self, older_than: datetime) -> int:
        """Delete entries created before ``older_than``.

        Returns:
            Number of entries removed
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "DELETE FROM response_cache WHERE created_at < ?",
                (older_than.isoformat(),)
            )
            return cursor.rowcount
        finally:
            conn.close()

    def count(self) -> int:
        conn = get_connection(self.db_path)
        try:
            return conn.execute("SELECT COUNT(*) FROM response_cache").fetchone()[0]
        finally:
            conn.close()


class LedgerRepository:
    """Durable daily spend, shared by every process using the database."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def load(self, day: date) -> Optional[LedgerSnapshot]:
        """Return the ledger row for ``day``, or None if nothing was spent."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT day, spent_units, cap_units FROM budget_ledger WHERE day = ?",
                (day.isoformat(),)
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        return LedgerSnapshot(
            day=date.fromisoformat(row[0]),
            spent_brl=_from_units(row[1]),
            cap_brl=_from_units(row[2]),
        )

    def try_spend(self, day: date, amount: Decimal, cap: Decimal) -> Optional[Decimal]:
        """Atomically add ``amount`` to the day's spend if it stays within ``cap``.

        Runs inside ``BEGIN IMMEDIATE`` so concurrent writers serialize on
        the database lock and the conditional update can never overshoot.

        Args:
            day: Local calendar day of the ledger
            amount: Amount to add, in BRL
            cap: Daily cap in BRL; replaces the stored cap

        Returns:
            The new spend for the day, or None if the cap would be exceeded
        """
        units = _to_units(amount)
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                "INSERT OR IGNORE INTO budget_ledger (day, spent_units, cap_units) VALUES (?, 0, ?)",
                (day.isoformat(), _to_units(cap))
            )
            conn.execute(
                "UPDATE budget_ledger SET cap_units = ? WHERE day = ?",
                (_to_units(cap), day.isoformat())
            )
            cursor = conn.execute(
                "UPDATE budget_ledger SET spent_units = spent_units + ? "
                "WHERE day = ? AND spent_units + ? <= cap_units",
                (units, day.isoformat(), units)
            )
            if cursor.rowcount == 0:
                conn.rollback()
                return None
            spent = conn.execute(
                "SELECT spent_units FROM budget_ledger WHERE day = ?",
                (day.isoformat(),)
            ).fetchone()[0]
            conn.commit()
            return _from_units(spent)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def release(self, day: date, amount: Decimal) -> Decimal:
        """Give back a reservation that was never spent.

        Returns:
            The new spend for the day, never below zero
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                "UPDATE budget_ledger SET spent_units = MAX(spent_units - ?, 0) WHERE day = ?",
                (_to_units(amount), day.isoformat())
            )
            row = conn.execute(
                "SELECT spent_units FROM budget_ledger WHERE day = ?",
                (day.isoformat(),)
            ).fetchone()
            conn.commit()
            return _from_units(row[0]) if row else Decimal("0")
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


def insert_call_event(event: ModelCallEvent, db_path: str = DEFAULT_DB_PATH) -> None:
    """Append a single model call to the call log.

    Args:
        event: The call event to record
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            INSERT INTO model_call_event
            (timestamp, tier, model, prompt_tokens, completion_tokens,
             total_tokens, cost_brl, retry_count, request_id)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            event.timestamp.isoformat(),
            event.tier.value,
            event.model,
            event.prompt_tokens,
            event.completion_tokens,
            event.total_tokens,
            str(event.cost_brl),
            event.retry_count,
            event.request_id
        ))
    finally:
        conn.close()


def fetch_recent_call_events(
    tier: Optional[ModelTier] = None,
    limit: int = 100,
    db_path: str = DEFAULT_DB_PATH
) -> List[ModelCallEvent]:
    """Fetch recent model calls, optionally filtered by tier.

    Args:
        tier: Optional filter for a specific tier
        limit: Maximum number of events to return
        db_path: Path to SQLite database file

    Returns:
        List of call events ordered by timestamp (newest first)
    """
    conn = get_connection(db_path)
    try:
        query = (
            "SELECT timestamp, tier, model, prompt_tokens, completion_tokens, "
            "total_tokens, cost_brl, retry_count, request_id FROM model_call_event"
        )
        params: list = []
        if tier is not None:
            query += " WHERE tier = ?"
            params.append(tier.value)
        query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)

        events = []
        for row in conn.execute(query, params).fetchall():
            events.append(ModelCallEvent(
                timestamp=datetime.fromisoformat(row[0]),
                tier=ModelTier(row[1]),
                model=row[2],
                prompt_tokens=row[3],
                completion_tokens=row[4],
                total_tokens=row[5],
                cost_brl=Decimal(row[6]),
                retry_count=row[7],
                request_id=row[8]
            ))
        return events
    finally:
        conn.close()
