"""Persistent error logging for the web API.

Stores failed requests in an SQLite ``error_log`` table so errors survive
restarts and can be inspected after the fact.

Error types captured:
- store_error: document store failures that survived the retry policy
- storage_error: object storage uploads and deletions
- llm_error: OpenAI API errors
- unexpected_error: uncaught exceptions with full stack trace

Each error logged with:
- timestamp, request_id
- error type and message
- full stack trace
- endpoint, HTTP method and request parameters
- recovery suggestion (if applicable)
"""

import json
import logging
import sqlite3
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

__all__ = ["ErrorLogger", "RECOVERY_SUGGESTIONS"]

logger = logging.getLogger(__name__)

RECOVERY_SUGGESTIONS = {
    "store_error": "Document store unavailable - try again",
    "storage_error": "Check the storage bucket and uploaded file",
    "llm_error": "Check OpenAI API status and quota",
    "unexpected_error": "Report this issue to developers with the request ID",
}


class ErrorLogger:
    """Log errors to an SQLite database for persistent storage."""

    def __init__(self, db_path: Union[Path, str]):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_table_exists()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection."""
        conn = sqlite3.connect(str(self.db_path), timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_table_exists(self) -> None:
        """Create the error_log table if it doesn't exist."""
        try:
            conn = self._get_connection()
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS error_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    request_id TEXT,
                    error_type TEXT NOT NULL,
                    error_message TEXT NOT NULL,
                    stack_trace TEXT,
                    endpoint TEXT,
                    method TEXT,
                    params JSON,
                    context JSON,
                    recovery_suggestion TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_error_timestamp
                ON error_log(timestamp)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_error_type
                ON error_log(error_type)
            """)
            conn.commit()
            conn.close()
        except sqlite3.Error as e:
            logger.error(f"Failed to create error_log table: {e}")

    def log_error(
        self,
        error_type: str,
        error_message: str,
        request_id: Optional[str] = None,
        endpoint: Optional[str] = None,
        method: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
        stack_trace: Optional[str] = None,
        recovery_suggestion: Optional[str] = None,
    ) -> None:
        """Log error to database."""
        try:
            if stack_trace is None:
                stack_trace = traceback.format_exc() if sys.exc_info()[0] else None

            conn = self._get_connection()
            conn.execute("""
                INSERT INTO error_log (
                    timestamp, request_id, error_type, error_message,
                    stack_trace, endpoint, method, params, context,
                    recovery_suggestion
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                datetime.now().isoformat(), request_id, error_type, error_message,
                stack_trace, endpoint, method,
                json.dumps(params, default=str) if params else None,
                json.dumps(context, default=str) if context else None,
                recovery_suggestion or RECOVERY_SUGGESTIONS.get(error_type),
            ))
            conn.commit()
            conn.close()

            logger.info(f"Logged {error_type} for request {request_id}")
        except sqlite3.Error as e:
            logger.error(f"Failed to log error to database: {e}")

    def get_errors(
        self,
        request_id: Optional[str] = None,
        error_type: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list:
        """Query errors from database, newest first."""
        try:
            conn = self._get_connection()
            query = "SELECT * FROM error_log WHERE 1=1"
            params: list = []

            if request_id:
                query += " AND request_id = ?"
                params.append(request_id)

            if error_type:
                query += " AND error_type = ?"
                params.append(error_type)

            query += " ORDER BY id DESC LIMIT ? OFFSET ?"
            params.extend([limit, offset])

            rows = conn.execute(query, params).fetchall()
            conn.close()

            errors = []
            for row in rows:
                error = dict(row)
                for field in ("params", "context"):
                    if error.get(field):
                        error[field] = json.loads(error[field])
                errors.append(error)
            return errors
        except sqlite3.Error as e:
            logger.error(f"Failed to query errors: {e}")
            return []

    def get_error_summary(self) -> Dict[str, Any]:
        """Get error summary statistics."""
        try:
            conn = self._get_connection()
            total = conn.execute("SELECT COUNT(*) as count FROM error_log").fetchone()["count"]

            by_type = {
                row["error_type"]: row["count"]
                for row in conn.execute("""
                    SELECT error_type, COUNT(*) as count
                    FROM error_log
                    GROUP BY error_type
                    ORDER BY count DESC
                """)
            }
            by_endpoint = {
                row["endpoint"]: row["count"]
                for row in conn.execute("""
                    SELECT endpoint, COUNT(*) as count
                    FROM error_log
                    WHERE endpoint IS NOT NULL
                    GROUP BY endpoint
                    ORDER BY count DESC
                    LIMIT 10
                """)
            }
            conn.close()

            return {
                "total_errors": total,
                "errors_by_type": by_type,
                "errors_by_endpoint": by_endpoint,
            }
        except sqlite3.Error as e:
            logger.error(f"Failed to get error summary: {e}")
            return {}

    def export_errors_jsonl(self, output_file: Union[Path, str]) -> int:
        """Export all errors to a JSONL file; returns the number written."""
        errors = self.get_errors(limit=-1)
        output_path = Path(output_file)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            for error in errors:
                f.write(json.dumps(error, ensure_ascii=False, default=str) + "\n")
        logger.info(f"Exported {len(errors)} errors to {output_path}")
        return len(errors)
