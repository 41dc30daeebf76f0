"""
Repository pattern for data access.

Handles database operations and data persistence logic for usage rows,
identity mappings and sync state.
"""

from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Tuple

from ai_usage_sync.core.token_counter import TokenUsage
from .db import DEFAULT_DB_PATH, get_connection
from .models import IdentityMapping, SyncStateRow, UsageRecord

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

_USAGE_COLUMNS = """
    date, identity, tool, model, provider_record_id, raw_model,
    input_tokens, cache_write_tokens, cache_read_tokens, output_tokens,
    cost, created_at
"""


def format_timestamp(value: datetime) -> str:
    """Serialize a datetime as a sortable UTC string."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def _row_to_record(row: tuple) -> UsageRecord:
    return UsageRecord(
        date=date.fromisoformat(row[0]),
        identity=row[1],
        tool=row[2],
        model=row[3],
        provider_record_id=row[4],
        raw_model=row[5],
        tokens=TokenUsage(
            input_tokens=row[6],
            cache_write_tokens=row[7],
            cache_read_tokens=row[8],
            output_tokens=row[9],
        ),
        cost=row[10],
        created_at=parse_timestamp(row[11]),
    )


class UsageRepository:
    """Repository for usage rows, identity mappings and sync state.

    Every write is a single-row statement in its own transaction. Rows are
    independent, so concurrent jobs writing the same key converge through
    the uniqueness constraint rather than through locking.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    # ------------------------------------------------------------------
    # Usage records
    # ------------------------------------------------------------------

    def insert_usage_record(self, record: UsageRecord) -> None:
        """Insert a usage row, or overwrite token/cost fields on key conflict.

        Last write wins; values are never added to an existing row, so
        re-syncing an overlapping range converges instead of double counting.

        Args:
            record: The aggregated usage row
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute(f"""
                INSERT INTO usage_records ({_USAGE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (date, IFNULL(identity, ''), tool, model, IFNULL(provider_record_id, ''))
                DO UPDATE SET
                    input_tokens = excluded.input_tokens,
                    cache_write_tokens = excluded.cache_write_tokens,
                    cache_read_tokens = excluded.cache_read_tokens,
                    output_tokens = excluded.output_tokens,
                    cost = excluded.cost,
                    raw_model = excluded.raw_model
            """, (
                record.date.isoformat(),
                record.identity,
                record.tool,
                record.model,
                record.provider_record_id,
                record.raw_model,
                record.input_tokens,
                record.cache_write_tokens,
                record.cache_read_tokens,
                record.output_tokens,
                record.cost,
                format_timestamp(record.created_at or datetime.now(timezone.utc)),
            ))
            conn.commit()
        finally:
            conn.close()

    def get_usage_records(
        self,
        tool: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[UsageRecord]:
        """Get usage rows with optional filtering, ordered by date then key.

        Args:
            tool: Optional tool filter
            start: Optional inclusive start date
            end: Optional inclusive end date

        Returns:
            List of usage rows
        """
        conn = get_connection(self.db_path)
        try:
            query = f"SELECT {_USAGE_COLUMNS} FROM usage_records"
            params: list = []
            conditions = []

            if tool:
                conditions.append("tool = ?")
                params.append(tool)
            if start is not None:
                conditions.append("date >= ?")
                params.append(start.isoformat())
            if end is not None:
                conditions.append("date <= ?")
                params.append(end.isoformat())

            if conditions:
                query += " WHERE " + " AND ".join(conditions)
            query += " ORDER BY date, tool, model, identity, provider_record_id"

            return [_row_to_record(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()

    def count_usage_records(self, tool: Optional[str] = None) -> int:
        conn = get_connection(self.db_path)
        try:
            if tool:
                row = conn.execute("SELECT COUNT(*) FROM usage_records WHERE tool = ?", (tool,)).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM usage_records").fetchone()
            return row[0]
        finally:
            conn.close()

    def get_oldest_date(self, tool: str) -> Optional[date]:
        """Oldest stored date for a tool. This is the backfill progress marker."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("SELECT MIN(date) FROM usage_records WHERE tool = ?", (tool,)).fetchone()
            return date.fromisoformat(row[0]) if row[0] else None
        finally:
            conn.close()

    def get_latest_dates(self) -> Dict[str, date]:
        """Newest stored date per tool."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("SELECT tool, MAX(date) FROM usage_records GROUP BY tool")
            return {tool: date.fromisoformat(latest) for tool, latest in cursor.fetchall()}
        finally:
            conn.close()

    def get_daily_totals(self, start: date, end: date) -> List[Tuple[date, str, int, float]]:
        """Sum tokens and cost per (date, tool) over an inclusive date range.

        Returns:
            List of (date, tool, tokens, cost) ordered by date
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT date, tool,
                       SUM(input_tokens + cache_write_tokens + output_tokens),
                       SUM(cost)
                FROM usage_records
                WHERE date >= ? AND date <= ?
                GROUP BY date, tool
                ORDER BY date, tool
            """, (start.isoformat(), end.isoformat()))
            return [
                (date.fromisoformat(row[0]), row[1], int(row[2] or 0), float(row[3] or 0))
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Identity mappings
    # ------------------------------------------------------------------

    def set_identity_mapping(self, tool: str, external_id: str, identity: str) -> int:
        """Upsert a mapping and reattribute matching historical rows.

        Both writes share one transaction. If reattribution collides with an
        already-attributed row for the same key, the reattributed row
        replaces it.

        Args:
            tool: Tool the external id belongs to
            external_id: Provider actor id
            identity: Normalized identity (email)

        Returns:
            Number of usage rows reattributed
        """
        if not external_id or not identity or not identity.strip():
            raise ValueError("external_id and identity are required")

        conn = get_connection(self.db_path)
        try:
            with conn:
                conn.execute("""
                    INSERT INTO identity_mappings (tool, external_id, identity, created_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT (tool, external_id) DO UPDATE SET identity = excluded.identity
                """, (tool, external_id, identity, format_timestamp(datetime.now(timezone.utc))))
                cursor = conn.execute("""
                    UPDATE OR REPLACE usage_records
                    SET identity = ?
                    WHERE tool = ? AND provider_record_id = ? AND identity IS NOT ?
                """, (identity, tool, external_id, identity))
                return cursor.rowcount
        finally:
            conn.close()

    def get_identity_mappings(self, tool: Optional[str] = None) -> List[IdentityMapping]:
        conn = get_connection(self.db_path)
        try:
            query = "SELECT tool, external_id, identity, created_at FROM identity_mappings"
            params: list = []
            if tool:
                query += " WHERE tool = ?"
                params.append(tool)
            query += " ORDER BY tool, external_id"
            return [
                IdentityMapping(tool=row[0], external_id=row[1], identity=row[2],
                                created_at=parse_timestamp(row[3]))
                for row in conn.execute(query, params).fetchall()
            ]
        finally:
            conn.close()

    def delete_identity_mapping(self, tool: str, external_id: str) -> bool:
        """Remove a mapping. Rows already attributed keep their identity."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "DELETE FROM identity_mappings WHERE tool = ? AND external_id = ?",
                (tool, external_id),
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def get_unmapped_external_ids(self, tool: str) -> List[str]:
        """Provider record ids that still have unattributed rows."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT DISTINCT provider_record_id FROM usage_records
                WHERE tool = ? AND identity IS NULL AND provider_record_id IS NOT NULL
                ORDER BY provider_record_id
            """, (tool,))
            return [row[0] for row in cursor.fetchall()]
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Sync state
    # ------------------------------------------------------------------

    def get_sync_state(self, provider: str) -> SyncStateRow:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("""
                SELECT forward_cursor, last_sync_at, backfill_complete
                FROM sync_state WHERE provider = ?
            """, (provider,)).fetchone()
            if row is None:
                return SyncStateRow(provider=provider)
            return SyncStateRow(
                provider=provider,
                forward_cursor=parse_timestamp(row[0]),
                last_sync_at=parse_timestamp(row[1]),
                backfill_complete=bool(row[2]),
            )
        finally:
            conn.close()

    def advance_forward_cursor(self, provider: str, cursor: datetime, synced_at: datetime) -> None:
        """Move the forward cursor to ``cursor`` unless it is already further.

        Timestamps share one fixed-width UTC format, so string comparison
        orders them chronologically.
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO sync_state (provider, forward_cursor, last_sync_at, backfill_complete)
                VALUES (?, ?, ?, 0)
                ON CONFLICT (provider) DO UPDATE SET
                    forward_cursor = CASE
                        WHEN sync_state.forward_cursor IS NULL
                             OR excluded.forward_cursor > sync_state.forward_cursor
                        THEN excluded.forward_cursor
                        ELSE sync_state.forward_cursor
                    END,
                    last_sync_at = excluded.last_sync_at
            """, (provider, format_timestamp(cursor), format_timestamp(synced_at)))
            conn.commit()
        finally:
            conn.close()

    def set_backfill_complete(self, provider: str, complete: bool) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO sync_state (provider, backfill_complete)
                VALUES (?, ?)
                ON CONFLICT (provider) DO UPDATE SET backfill_complete = excluded.backfill_complete
            """, (provider, int(complete)))
            conn.commit()
        finally:
            conn.close()


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create tables and indexes if they don't exist.

    The unique index on usage_records is the idempotency guarantee for every
    sync path. NULL identity and NULL record id are folded to '' inside the
    index only; stored values keep their NULLs.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS usage_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                date TEXT NOT NULL,
                identity TEXT,
                tool TEXT NOT NULL,
                model TEXT NOT NULL,
                provider_record_id TEXT,
                raw_model TEXT,
                input_tokens INTEGER NOT NULL DEFAULT 0,
                cache_write_tokens INTEGER NOT NULL DEFAULT 0,
                cache_read_tokens INTEGER NOT NULL DEFAULT 0,
                output_tokens INTEGER NOT NULL DEFAULT 0,
                cost REAL NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );

            CREATE UNIQUE INDEX IF NOT EXISTS idx_usage_unique ON usage_records (
                date, IFNULL(identity, ''), tool, model, IFNULL(provider_record_id, '')
            );
            CREATE INDEX IF NOT EXISTS idx_usage_tool_date ON usage_records (tool, date);
            CREATE INDEX IF NOT EXISTS idx_usage_record_id ON usage_records (tool, provider_record_id);

            CREATE TABLE IF NOT EXISTS identity_mappings (
                tool TEXT NOT NULL,
                external_id TEXT NOT NULL,
                identity TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (tool, external_id)
            );

            CREATE TABLE IF NOT EXISTS sync_state (
                provider TEXT PRIMARY KEY,
                forward_cursor TEXT,
                last_sync_at TEXT,
                backfill_complete INTEGER NOT NULL DEFAULT 0
            );
        """)
        conn.commit()
    finally:
        conn.close()
