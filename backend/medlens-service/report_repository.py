"""
MedLens Report Service - Report Persistence Backends

Provides repository implementations for report storage:
- InMemoryReportRepository (session default and tests)
- SqliteReportRepository (offline persistence across restarts)

Saves are full-record replaces. Audit entries are append-only.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional

from errors import ReportNotFound
from models import AuditLogEntry, Report


class ReportRepository:
    def save_report(self, report: Report) -> Report:
        raise NotImplementedError

    def get_report(self, report_id: str) -> Report:
        raise NotImplementedError

    def list_reports(self, *, patient_id: Optional[str] = None, limit: int = 100) -> List[Report]:
        raise NotImplementedError

    def append_audit(self, entry: AuditLogEntry) -> AuditLogEntry:
        raise NotImplementedError

    def list_audit(self, *, limit: int = 100) -> List[AuditLogEntry]:
        raise NotImplementedError

    def close(self) -> None:
        """Ends the session. In-memory state is dropped; durable backends keep their data."""
        raise NotImplementedError


class InMemoryReportRepository(ReportRepository):
    def __init__(self) -> None:
        self._store: Dict[str, Report] = {}
        self._audit: List[AuditLogEntry] = []
        self._lock = Lock()

    def save_report(self, report: Report) -> Report:
        with self._lock:
            self._store[report.id] = report
        return report

    def get_report(self, report_id: str) -> Report:
        report = self._store.get(report_id)
        if report is None:
            raise ReportNotFound(report_id)
        return report

    def list_reports(self, *, patient_id: Optional[str] = None, limit: int = 100) -> List[Report]:
        rows = list(self._store.values())
        if patient_id is not None:
            rows = [r for r in rows if r.patient_id == patient_id]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return rows[: max(1, limit)]

    def append_audit(self, entry: AuditLogEntry) -> AuditLogEntry:
        with self._lock:
            self._audit.append(entry)
        return entry

    def list_audit(self, *, limit: int = 100) -> List[AuditLogEntry]:
        rows = list(reversed(self._audit))
        return rows[: max(1, limit)]

    def close(self) -> None:
        with self._lock:
            self._store.clear()
            self._audit.clear()


class SqliteReportRepository(ReportRepository):
    def __init__(self, db_path: str) -> None:
        if not db_path:
            raise RuntimeError("SQLite repository requires a non-empty db_path.")
        self.db_path = str(Path(db_path).expanduser().resolve())
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS medlens_reports (
                    report_id TEXT PRIMARY KEY,
                    patient_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    payload_json TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_medlens_reports_patient_created
                ON medlens_reports(patient_id, created_at DESC)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS medlens_audit_log (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    entry_id TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    payload_json TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def save_report(self, report: Report) -> Report:
        payload = report.model_dump_json()
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO medlens_reports(report_id, patient_id, created_at, payload_json)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(report_id) DO UPDATE SET payload_json = excluded.payload_json
                """,
                (report.id, report.patient_id, report.created_at.isoformat(), payload),
            )
            conn.commit()
        return report

    def get_report(self, report_id: str) -> Report:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT payload_json FROM medlens_reports WHERE report_id = ?",
                (report_id,),
            ).fetchone()
        if row is None:
            raise ReportNotFound(report_id)
        return Report.model_validate_json(row["payload_json"])

    def list_reports(self, *, patient_id: Optional[str] = None, limit: int = 100) -> List[Report]:
        sql = "SELECT payload_json FROM medlens_reports"
        params: List[object] = []
        if patient_id is not None:
            sql += " WHERE patient_id = ?"
            params.append(patient_id)
        sql += " ORDER BY created_at DESC LIMIT ?"
        params.append(max(1, int(limit)))

        with self._lock, self._connect() as conn:
            rows = conn.execute(sql, tuple(params)).fetchall()
        return [Report.model_validate_json(str(row["payload_json"])) for row in rows]

    def append_audit(self, entry: AuditLogEntry) -> AuditLogEntry:
        with self._lock, self._connect() as conn:
            conn.execute(
                "INSERT INTO medlens_audit_log(entry_id, timestamp, payload_json) VALUES (?, ?, ?)",
                (entry.id, entry.timestamp.isoformat(), entry.model_dump_json()),
            )
            conn.commit()
        return entry

    def list_audit(self, *, limit: int = 100) -> List[AuditLogEntry]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT payload_json FROM medlens_audit_log ORDER BY timestamp DESC, seq DESC LIMIT ?",
                (max(1, int(limit)),),
            ).fetchall()
        return [AuditLogEntry.model_validate_json(str(row["payload_json"])) for row in rows]

    def close(self) -> None:
        return None
