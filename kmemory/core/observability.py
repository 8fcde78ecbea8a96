"""
ObservabilityLogger - phase-based operation journal.

Records what each store operation did (loads, saves, creations,
deletions, searches, duplicate scans, errors) as structured JSON rows
in a SQLite database, grouped by session.
"""

import json
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass
class LogEntry:
    """A log entry from the observability database."""

    id: int
    ts: str
    session: str
    phase: str
    data: Dict[str, Any] = field(default_factory=dict)


class ObservabilityLogger:
    """Phase-based journal of store operations.

    Phases:
    - load: graph read from disk (or found missing)
    - save: graph flushed to disk
    - create: entities, relations or observations inserted
    - delete: entities, relations or observations removed
    - search: search/open queries and hit counts
    - duplicates: duplicate scan statistics
    - error: failures, logged before being re-raised
    """

    PHASES = [
        "load",
        "save",
        "create",
        "delete",
        "search",
        "duplicates",
        "error",
    ]

    def __init__(self, db_path: Path):
        """Initialize logger with database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        self.session_id = self._new_session()

    def _init_db(self) -> None:
        """Create tables if they don't exist."""
        with sqlite3.connect(self.db_path) as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    ts TEXT NOT NULL DEFAULT (datetime('now')),
                    session TEXT NOT NULL,
                    phase TEXT NOT NULL,
                    data JSON NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_session ON logs(session);
                CREATE INDEX IF NOT EXISTS idx_phase ON logs(phase);

                CREATE VIEW IF NOT EXISTS errors AS
                SELECT id, ts, session,
                       json_extract(data, '$.error_type') as error_type,
                       json_extract(data, '$.operation') as operation,
                       data
                FROM logs WHERE phase = 'error';
            """)

    def _new_session(self) -> str:
        """Generate a new session ID."""
        return f"session_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"

    def new_session(self) -> str:
        """Start a new session and return its ID."""
        self.session_id = self._new_session()
        return self.session_id

    def log(self, phase: str, data: Dict[str, Any]) -> None:
        """Log a phase with structured data.

        Raises:
            ValueError: If phase is not one of PHASES
        """
        if phase not in self.PHASES:
            raise ValueError(f"Invalid phase: {phase}. Must be one of {self.PHASES}")

        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT INTO logs (session, phase, data) VALUES (?, ?, ?)",
                (self.session_id, phase, json.dumps(data, default=str)),
            )

    # Convenience methods

    def log_load(self, path: str, entity_count: int, relation_count: int, missing: bool = False) -> None:
        self.log(
            "load",
            {
                "path": path,
                "entity_count": entity_count,
                "relation_count": relation_count,
                "missing": missing,
            },
        )

    def log_save(self, path: str, entity_count: int, relation_count: int) -> None:
        self.log(
            "save",
            {
                "path": path,
                "entity_count": entity_count,
                "relation_count": relation_count,
            },
        )

    def log_create(self, kind: str, items: List[str], requested: Optional[int] = None) -> None:
        """Log inserted records.

        Args:
            kind: "entity", "relation" or "observation"
            items: Identifiers of what was actually inserted
            requested: How many were asked for (duplicates are dropped)
        """
        data: Dict[str, Any] = {"kind": kind, "items": items, "count": len(items)}
        if requested is not None:
            data["requested"] = requested
        self.log("create", data)

    def log_delete(self, kind: str, items: List[str]) -> None:
        self.log("delete", {"kind": kind, "items": items, "count": len(items)})

    def log_search(self, operation: str, query: Any, match_count: int) -> None:
        self.log(
            "search",
            {"operation": operation, "query": query, "match_count": match_count},
        )

    def log_duplicates(self, statistics: Dict[str, int], options: Optional[Dict[str, Any]] = None) -> None:
        data: Dict[str, Any] = {"statistics": statistics}
        if options:
            data["options"] = options
        self.log("duplicates", data)

    def log_error(
        self,
        error_type: str,
        operation: Optional[str] = None,
        details: Optional[Dict] = None,
    ) -> None:
        """Log an error.

        Args:
            error_type: Exception class name
            operation: Store operation that failed
            details: Optional additional details
        """
        data: Dict[str, Any] = {"error_type": error_type}
        if operation:
            data["operation"] = operation
        if details:
            data["details"] = details
        self.log("error", data)

    # Query methods

    def _rows_to_entries(self, rows) -> List[LogEntry]:
        return [
            LogEntry(
                id=row["id"],
                ts=row["ts"],
                session=row["session"],
                phase=row["phase"],
                data=json.loads(row["data"]),
            )
            for row in rows
        ]

    def get_session(self, session_id: Optional[str] = None) -> List[LogEntry]:
        """Get all logs for a session (defaults to current session)."""
        session_id = session_id or self.session_id

        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                "SELECT * FROM logs WHERE session = ? ORDER BY id",
                (session_id,),
            ).fetchall()
            return self._rows_to_entries(rows)

    def get_errors(self, limit: int = 100) -> List[LogEntry]:
        """Get the most recent error logs across sessions."""
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                "SELECT * FROM logs WHERE phase = 'error' ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
            return self._rows_to_entries(rows)

    def latest_session(self) -> Optional[str]:
        """Session ID of the most recent log row, if any."""
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT session FROM logs ORDER BY id DESC LIMIT 1"
            ).fetchone()
            return row[0] if row else None

    def get_session_summary(self, session_id: Optional[str] = None) -> Dict[str, Any]:
        """Get summary statistics for a session.

        Returns:
            Dictionary with phase counts, error count and total logs
        """
        session_id = session_id or self.session_id

        with sqlite3.connect(self.db_path) as conn:
            phase_counts = {}
            for row in conn.execute(
                """
                SELECT phase, COUNT(*) as count
                FROM logs WHERE session = ?
                GROUP BY phase
                """,
                (session_id,),
            ):
                phase_counts[row[0]] = row[1]

            return {
                "session_id": session_id,
                "phase_counts": phase_counts,
                "error_count": phase_counts.get("error", 0),
                "total_logs": sum(phase_counts.values()),
            }
