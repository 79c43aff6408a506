"""SQLite persistence layer for schedule entries.

Rows are stored verbatim (id, scheduled_at_ms, asset_ref, created_at_ms) and
loaded back in sort-key order, so a restarted timeline resolves exactly like
the one that wrote them. Also provides JSON file export for human-readable
viewing.
"""
import json
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
from loguru import logger

from ..errors import DuplicateId
from ..models import ScheduleEntry
from ..schedule import instant_to_human

logger = logger.bind(module="scheduler.repository")


class ScheduleRepository:
    """SQLite-based schedule persistence with JSON export support."""

    def __init__(self, db_path: str | Path, json_path: str | Path | None = None):
        """Initialize repository.

        Args:
            db_path: Path to SQLite database
            json_path: Optional path to JSON file for human-readable export
        """
        self.db_path = Path(db_path).expanduser()
        self.json_path = Path(json_path).expanduser() if json_path else self.db_path.with_suffix(".json")
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Initialize database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self.db_path)

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS schedule_entries (
                id TEXT PRIMARY KEY,
                scheduled_at_ms INTEGER NOT NULL,
                asset_ref TEXT NOT NULL,
                created_at_ms INTEGER NOT NULL,
                updated_at_ms INTEGER
            )
        """)

        # Matches the in-memory ordering (scheduled_at_ms, created_at_ms, id)
        await self._connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_entries_order "
            "ON schedule_entries(scheduled_at_ms, created_at_ms, id)"
        )

        await self._connection.commit()
        logger.info(f"Schedule repository initialized at {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    def _require_connection(self) -> aiosqlite.Connection:
        if not self._connection:
            raise RuntimeError("ScheduleRepository not initialized")
        return self._connection

    async def save(self, entry: ScheduleEntry) -> None:
        """Insert or update an entry."""
        await self.save_many([entry])

    async def save_many(self, entries: list[ScheduleEntry]) -> None:
        """Insert or update several entries in one transaction."""
        conn = self._require_connection()
        await conn.executemany(
            """
            INSERT OR REPLACE INTO schedule_entries (
                id, scheduled_at_ms, asset_ref, created_at_ms, updated_at_ms
            ) VALUES (?, ?, ?, ?, ?)
            """,
            [
                (e.id, e.scheduled_at_ms, e.asset_ref, e.created_at_ms, e.updated_at_ms)
                for e in entries
            ],
        )
        await conn.commit()

    async def delete(self, entry_id: str) -> bool:
        """Permanently delete an entry."""
        conn = self._require_connection()
        result = await conn.execute(
            "DELETE FROM schedule_entries WHERE id = ?", (entry_id,)
        )
        await conn.commit()
        return result.rowcount > 0

    async def load_all(self) -> list[ScheduleEntry]:
        """Load every entry in timeline order."""
        conn = self._require_connection()
        query = """
            SELECT * FROM schedule_entries
            ORDER BY scheduled_at_ms ASC, created_at_ms ASC, id ASC
        """
        entries = []
        async with conn.execute(query) as cursor:
            rows = await cursor.fetchall()
            for row in rows:
                entries.append(self._row_to_entry(row, cursor.description))
        return entries

    def _row_to_entry(self, row: Any, description: Any) -> ScheduleEntry:
        """Convert a database row to a ScheduleEntry."""
        columns = [col[0] for col in description]
        return ScheduleEntry.from_dict(dict(zip(columns, row)))

    # ============== JSON Export ==============

    async def export_to_json(self, tz_name: str = "UTC") -> None:
        """Export all entries to JSON file for human-readable viewing."""
        try:
            entries = await self.load_all()

            export_data = {
                "exported_at": datetime.now().isoformat(),
                "total_entries": len(entries),
                "entries": [self._entry_to_export_dict(e, tz_name) for e in entries],
            }

            # Write atomically (write to temp, then rename)
            self.json_path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.json_path.with_suffix(".tmp")
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(export_data, f, ensure_ascii=False, indent=2)
            temp_path.replace(self.json_path)

            logger.debug(f"Exported {len(entries)} entries to {self.json_path}")

        except (OSError, RuntimeError, aiosqlite.Error) as e:
            logger.error(f"Failed to export to JSON: {e}")

    def _entry_to_export_dict(self, entry: ScheduleEntry, tz_name: str) -> dict[str, Any]:
        """Convert entry to human-readable export format."""
        data = entry.to_dict()
        data["scheduled_at_human"] = instant_to_human(entry.scheduled_at_ms, tz_name)
        data["created_at_human"] = instant_to_human(entry.created_at_ms, tz_name)
        return data

    async def import_from_json(self, json_path: str | Path | None = None) -> list[ScheduleEntry]:
        """Read entries from a JSON export.

        Nothing is written here; the caller decides which entries to save.

        Returns:
            The entries found in the file

        Raises:
            DuplicateId: if the file lists the same id twice
        """
        path = Path(json_path) if json_path else self.json_path
        if not path.exists():
            logger.warning(f"JSON file not found: {path}")
            return []

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        imported: dict[str, ScheduleEntry] = {}
        for entry_data in data.get("entries", []):
            for key in ("scheduled_at_human", "created_at_human"):
                entry_data.pop(key, None)
            entry = ScheduleEntry.from_dict(entry_data)
            if entry.id in imported:
                raise DuplicateId(entry.id)
            imported[entry.id] = entry

        logger.info(f"Read {len(imported)} entries from {path}")
        return list(imported.values())
