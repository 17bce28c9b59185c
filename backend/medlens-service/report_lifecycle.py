"""
Report lifecycle state machine.

uploaded -> review_required -> approved

Single-clinician sign-off: no rejection state, no reverse transitions, and
approval has no side conditions beyond the current state.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, FrozenSet, List, Optional
from uuid import uuid4

from errors import InvalidTransition
from models import AnalysisResult, Report, ReportFile, ReportStatus, utc_now


ALLOWED_TRANSITIONS: Dict[ReportStatus, FrozenSet[ReportStatus]] = {
    ReportStatus.UPLOADED: frozenset({ReportStatus.REVIEW_REQUIRED}),
    ReportStatus.REVIEW_REQUIRED: frozenset({ReportStatus.APPROVED}),
    ReportStatus.APPROVED: frozenset(),
}


def can_transition(current: ReportStatus, target: ReportStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def is_terminal(status: ReportStatus) -> bool:
    return not ALLOWED_TRANSITIONS.get(status)


class ReportLifecycle:
    def create_report(
        self,
        analysis: AnalysisResult,
        *,
        patient_id: str,
        patient_name: str,
        files: List[ReportFile],
        language: str,
        report_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Report:
        """
        Builds the persisted report from a normalized analysis. Upload is
        implicit, so the report enters review immediately.
        """
        created_at = now or utc_now()
        draft = Report(
            id=report_id or f"rep-{uuid4().hex[:12]}",
            patient_id=patient_id,
            patient_name=patient_name,
            status=ReportStatus.UPLOADED,
            created_at=created_at,
            updated_at=created_at,
            language=language,
            files=list(files),
            summary=analysis.summary,
            file_type=analysis.file_type,
            disclaimer=analysis.disclaimer,
            simulated=analysis.simulated,
            findings=list(analysis.findings),
            audiences=analysis.audiences,
        )
        return self.transition(draft, ReportStatus.REVIEW_REQUIRED, now=created_at)

    def transition(
        self,
        report: Report,
        target: ReportStatus,
        *,
        now: Optional[datetime] = None,
    ) -> Report:
        if not can_transition(report.status, target):
            raise InvalidTransition(
                f"Report {report.id} cannot move from {report.status.value} to {target.value}."
            )
        return report.model_copy(update={"status": target, "updated_at": now or utc_now()})

    def approve(
        self,
        report: Report,
        clinician_name: str,
        *,
        now: Optional[datetime] = None,
    ) -> Report:
        approved_at = now or utc_now()
        approved = self.transition(report, ReportStatus.APPROVED, now=approved_at)
        return approved.model_copy(update={"approved_at": approved_at, "approved_by": clinician_name})
