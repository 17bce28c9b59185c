"""
MedLens Report Service - Report Workspace

Explicit state container for one interactive session:
  upload -> ModelGateway -> ResponseNormalizer -> ReportLifecycle (review_required)
  clinician feedback -> FeedbackLedger
  approval -> ReportLifecycle (approved)
  display/export -> language resolver / PDF exporter

Every mutation is computed by a pure function over the current report and
persisted as a full-record replace. Lifecycle events go to the audit log.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from threading import Lock
from typing import List, Optional, Tuple
from uuid import uuid4

from credentials import CredentialResolver, CredentialStore
from env_loader import load_service_env
from errors import ExportFailure, FindingNotFound, InvalidTransition, MedLensError
from feedback_ledger import find_finding, record_feedback
from language_resolver import ResolvedContent, select
from model_gateway import ModelGateway
from models import (
    Audience,
    AuditLogEntry,
    AuditStatus,
    ContentVariant,
    Finding,
    Report,
    ReportFile,
    SourceDocument,
    utc_now,
)
from report_exporter import ReportPdfExporter, export_filename
from report_lifecycle import ReportLifecycle
from report_repository import InMemoryReportRepository, ReportRepository, SqliteReportRepository

logger = logging.getLogger(__name__)

# Load `.env` / `.env.local` for this service before reading os.environ.
load_service_env()

SUPPORTED_LANGUAGES = (
    "English",
    "Hindi",
    "Tamil",
    "Telugu",
    "Malayalam",
    "Kannada",
    "Bengali",
    "Marathi",
    "Gujarati",
    "Punjabi",
)

SYSTEM_ACTOR = "system"


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


class MedLensReportService:
    """
    Owns the report collection for a session and coordinates the core components.
    """

    def __init__(
        self,
        repository: Optional[ReportRepository] = None,
        gateway: Optional[ModelGateway] = None,
        lifecycle: Optional[ReportLifecycle] = None,
        exporter: Optional[ReportPdfExporter] = None,
        credential_store: Optional[CredentialStore] = None,
    ) -> None:
        self.local_data_dir = Path(
            (os.getenv("MEDLENS_LOCAL_DATA_DIR", "./local_data") or "./local_data").strip()
        ).expanduser().resolve()
        self.store_backend = (
            os.getenv("MEDLENS_STORE_BACKEND", "memory").strip().lower() or "memory"
        )
        self.sqlite_db_path = (
            os.getenv("MEDLENS_SQLITE_DB_PATH") or str(self.local_data_dir / "medlens_reports.sqlite3")
        ).strip()
        self.max_correction_chars = max(1, _env_int("MEDLENS_MAX_CORRECTION_CHARS", 2000))

        self.repository: ReportRepository = repository or self._build_repository()
        self.credential_store = credential_store or CredentialStore()
        self.gateway = gateway or ModelGateway(credentials=CredentialResolver(self.credential_store))
        self.lifecycle = lifecycle or ReportLifecycle()
        self.exporter = exporter or ReportPdfExporter()
        self._lock = Lock()
        self.session_open = True

        logger.info(
            "MedLensReportService initialized | store=%s | model=%s | simulation_mode=%s | "
            "max_correction_chars=%d",
            self.store_backend,
            self.gateway.model_name,
            self.gateway.simulation_mode(),
            self.max_correction_chars,
        )

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    def open_session(self) -> None:
        self.session_open = True

    def close_session(self) -> None:
        """Tears down session state (logout). In-memory reports are discarded."""
        self.repository.close()
        self.session_open = False

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def create_report(
        self,
        document: SourceDocument,
        *,
        patient_id: str,
        patient_name: str,
        language: str = "English",
        actor: str = SYSTEM_ACTOR,
    ) -> Report:
        """
        Analyzes `document` and persists the resulting report in review.
        Gateway and normalizer errors abort creation; nothing is persisted.
        """
        self._ensure_open()
        try:
            analysis = await self.gateway.analyze(document, language)
        except MedLensError as exc:
            logger.error("Report creation failed for %s: %s", document.name, exc)
            self._audit(actor, "REPORT_CREATION_FAILED", document.name, AuditStatus.FAILURE)
            raise

        report = self.lifecycle.create_report(
            analysis,
            patient_id=patient_id,
            patient_name=patient_name,
            files=[
                ReportFile(
                    id=document.id,
                    name=document.name,
                    mime_type=document.mime_type,
                    size_bytes=document.size_bytes,
                )
            ],
            language=language,
        )
        with self._lock:
            self.repository.save_report(report)
        self._audit(actor, "REPORT_CREATED", report.id)
        logger.info(
            "Report %s created | findings=%d | simulated=%s",
            report.id,
            len(report.findings),
            report.simulated,
        )
        return report

    def get_report(self, report_id: str) -> Report:
        self._ensure_open()
        return self.repository.get_report(report_id)

    def list_reports(self, *, patient_id: Optional[str] = None, limit: int = 100) -> List[Report]:
        self._ensure_open()
        return self.repository.list_reports(patient_id=patient_id, limit=limit)

    def record_feedback(
        self,
        report_id: str,
        finding_id: str,
        is_accurate: bool,
        correction: Optional[str] = None,
        *,
        actor: str = SYSTEM_ACTOR,
    ) -> Finding:
        self._ensure_open()
        if correction is not None and len(correction) > self.max_correction_chars:
            raise ValueError(
                f"Correction exceeds {self.max_correction_chars} characters."
            )
        with self._lock:
            report = self.repository.get_report(report_id)
            try:
                findings = record_feedback(report.findings, finding_id, is_accurate, correction)
            except FindingNotFound:
                self._audit(actor, "FEEDBACK_REJECTED", f"{report_id}/{finding_id}", AuditStatus.FAILURE)
                raise
            updated = report.model_copy(update={"findings": findings, "updated_at": utc_now()})
            self.repository.save_report(updated)
        self._audit(actor, "FEEDBACK_RECORDED", f"{report_id}/{finding_id}")
        return find_finding(updated.findings, finding_id)

    def approve_report(self, report_id: str, clinician_name: str) -> Report:
        self._ensure_open()
        with self._lock:
            report = self.repository.get_report(report_id)
            try:
                approved = self.lifecycle.approve(report, clinician_name)
            except InvalidTransition:
                self._audit(clinician_name, "REPORT_APPROVAL_REJECTED", report_id, AuditStatus.FAILURE)
                raise
            self.repository.save_report(approved)
        self._audit(clinician_name, "REPORT_APPROVED", report_id)
        return approved

    def resolve_content(
        self,
        report_id: str,
        audience: Audience,
        variant: ContentVariant = ContentVariant.DISPLAY,
    ) -> ResolvedContent:
        return select(self.get_report(report_id), audience, variant)

    def export_report(
        self,
        report_id: str,
        audience: Audience = Audience.PATIENT,
        *,
        actor: str = SYSTEM_ACTOR,
    ) -> Tuple[str, bytes]:
        report = self.get_report(report_id)
        try:
            content = self.exporter.render(report, audience)
        except ExportFailure:
            self._audit(actor, "REPORT_EXPORT_FAILED", report_id, AuditStatus.FAILURE)
            raise
        self._audit(actor, "REPORT_EXPORTED", report_id)
        return export_filename(report), content

    def export_report_to_path(
        self,
        report_id: str,
        path: str,
        audience: Audience = Audience.PATIENT,
        *,
        actor: str = SYSTEM_ACTOR,
    ) -> Path:
        report = self.get_report(report_id)
        try:
            written = self.exporter.export_to_path(report, audience, path)
        except ExportFailure:
            self._audit(actor, "REPORT_EXPORT_FAILED", report_id, AuditStatus.FAILURE)
            raise
        self._audit(actor, "REPORT_EXPORTED", report_id)
        return written

    def list_audit_logs(self, limit: int = 100) -> List[AuditLogEntry]:
        return self.repository.list_audit(limit=limit)

    # -------------------------------------------------------------------------
    # Credential administration
    # -------------------------------------------------------------------------

    def credential_status(self) -> Tuple[bool, Optional[str]]:
        credential = self.gateway.credentials.resolve()
        if credential is None:
            return False, None
        return True, credential.source

    def set_credential(self, api_key: str, actor: str = SYSTEM_ACTOR) -> None:
        if not (api_key or "").strip():
            self.clear_credential(actor)
            return
        self.credential_store.set(api_key)
        self._audit(actor, "CREDENTIAL_UPDATED", "model_api_key")

    def clear_credential(self, actor: str = SYSTEM_ACTOR) -> None:
        self.credential_store.clear()
        self._audit(actor, "CREDENTIAL_CLEARED", "model_api_key")

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if not self.session_open:
            raise RuntimeError("Report session is closed. Call open_session() first.")

    def _audit(
        self,
        actor: str,
        action: str,
        target: str,
        status: AuditStatus = AuditStatus.SUCCESS,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            id=f"log-{uuid4().hex[:12]}",
            actor=actor or SYSTEM_ACTOR,
            action=action,
            target=target,
            status=status,
        )
        return self.repository.append_audit(entry)

    def _build_repository(self) -> ReportRepository:
        if self.store_backend == "memory":
            return InMemoryReportRepository()
        if self.store_backend == "sqlite":
            return SqliteReportRepository(db_path=self.sqlite_db_path)
        raise ValueError(
            f"Unsupported MEDLENS_STORE_BACKEND='{self.store_backend}'. "
            "Allowed values: memory, sqlite."
        )


# Service-level singleton
report_service = MedLensReportService()
