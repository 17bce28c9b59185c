"""
MedLens Report Service - FastAPI Application

Endpoints:
  POST   /reports
  GET    /reports
  GET    /reports/{report_id}
  GET    /reports/{report_id}/content
  POST   /reports/{report_id}/findings/{finding_id}/feedback
  POST   /reports/{report_id}/approve
  GET    /reports/{report_id}/export
  GET    /admin/audit-logs
  GET    /admin/credential
  PUT    /admin/credential
  DELETE /admin/credential
  GET    /health
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, File, Form, HTTPException, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from errors import (
    EmptyResponse,
    ExportFailure,
    FindingNotFound,
    InvalidTransition,
    MalformedResponse,
    ReportNotFound,
    UpstreamError,
    UpstreamReason,
)
from models import (
    ApproveReportRequest,
    ApproveReportResponse,
    Audience,
    AuditLogResponse,
    ContentVariant,
    CreateReportResponse,
    CredentialStatusResponse,
    CredentialUpdateRequest,
    FeedbackRequest,
    FeedbackResponse,
    HealthResponse,
    ReportContentResponse,
    ReportListResponse,
    ReportResponse,
    SourceDocument,
    summarize_report,
)
from report_service import SUPPORTED_LANGUAGES, report_service

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="MedLens Report Service",
    description="Analysis normalization and report lifecycle for AI-assisted medical document review",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SUPPORTED_UPLOAD_MIME_TYPES = {"image/jpeg", "image/png", "image/webp", "application/pdf"}
_EXTENSION_MIME_MAP = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".pdf": "application/pdf",
}
_UPSTREAM_STATUS = {
    UpstreamReason.INVALID_CREDENTIAL: 401,
    UpstreamReason.UNSUPPORTED_INPUT: 400,
    UpstreamReason.OVERLOADED: 503,
    UpstreamReason.NETWORK_UNREACHABLE: 502,
    UpstreamReason.UNKNOWN: 502,
}


def _debug_error_enabled() -> bool:
    return (os.getenv("MEDLENS_EXPOSE_ERRORS", "true") or "true").strip().lower() in {
        "1",
        "true",
        "yes",
        "on",
    }


def _error_detail(prefix: str, exc: Exception) -> str:
    if not _debug_error_enabled():
        return prefix
    detail = str(exc).strip() or exc.__class__.__name__
    # Keep payload concise for UI.
    if len(detail) > 500:
        detail = detail[:500] + "..."
    return f"{prefix} {detail}"


def _max_upload_bytes() -> int:
    try:
        megabytes = float(os.getenv("MEDLENS_MAX_UPLOAD_MB", "50"))
    except ValueError:
        megabytes = 50.0
    return int(max(1.0, megabytes) * 1024 * 1024)


def _resolve_upload_mime(filename: str, content_type: str) -> Optional[str]:
    mime = (content_type or "").lower().strip()
    if mime in SUPPORTED_UPLOAD_MIME_TYPES:
        return mime
    return _EXTENSION_MIME_MAP.get(Path(filename or "").suffix.lower().strip())


def _resolve_language(language: str) -> Optional[str]:
    wanted = (language or "English").strip().lower()
    for supported in SUPPORTED_LANGUAGES:
        if supported.lower() == wanted:
            return supported
    return None


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(
        status="ok",
        service="medlens-service",
        store_backend=report_service.store_backend,
        model_name=report_service.gateway.model_name,
        simulation_mode=report_service.gateway.simulation_mode(),
        timestamp=datetime.now(timezone.utc),
    )


@app.get("/")
async def root() -> dict:
    return {
        "service": "medlens-service",
        "status": "ok",
        "health": "/health",
        "docs": "/docs",
    }


@app.post("/reports", response_model=CreateReportResponse)
async def create_report(
    file: UploadFile = File(...),
    patient_id: str = Form(...),
    patient_name: str = Form(...),
    language: str = Form("English"),
    actor: str = Form("clinician"),
) -> CreateReportResponse:
    payload = await file.read()
    if not payload:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    max_bytes = _max_upload_bytes()
    if len(payload) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File is too large. Max size is {max_bytes // (1024 * 1024)}MB.",
        )

    filename = file.filename or "upload"
    mime_type = _resolve_upload_mime(filename, file.content_type or "")
    if mime_type is None:
        raise HTTPException(status_code=400, detail="Invalid file type. Please upload JPG, PNG, or PDF.")

    resolved_language = _resolve_language(language)
    if resolved_language is None:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported language {language!r}. Choose one of: {', '.join(SUPPORTED_LANGUAGES)}.",
        )

    document = SourceDocument(
        id=f"file-{uuid4().hex[:12]}",
        name=filename,
        mime_type=mime_type,
        size_bytes=len(payload),
        content=payload,
    )
    try:
        report = await report_service.create_report(
            document,
            patient_id=patient_id,
            patient_name=patient_name,
            language=resolved_language,
            actor=actor,
        )
    except UpstreamError as exc:
        raise HTTPException(status_code=_UPSTREAM_STATUS[exc.reason], detail=exc.user_message) from exc
    except (EmptyResponse, MalformedResponse) as exc:
        raise HTTPException(status_code=502, detail=exc.user_message) from exc
    except Exception as exc:
        logger.exception("Failed to create report for %s: %s", filename, exc)
        raise HTTPException(
            status_code=500,
            detail=_error_detail("Failed to create report.", exc),
        ) from exc

    message = "Report created and routed to clinician review."
    if report.simulated:
        message = "Report created in simulation mode. Configure a model API key for real analysis."
    return CreateReportResponse(
        success=True,
        report_id=report.id,
        status=report.status,
        simulated=report.simulated,
        message=message,
        report=report,
    )


@app.get("/reports", response_model=ReportListResponse)
async def list_reports(patient_id: Optional[str] = None, limit: int = 100) -> ReportListResponse:
    reports = report_service.list_reports(patient_id=patient_id, limit=max(1, min(500, int(limit))))
    return ReportListResponse(
        success=True,
        count=len(reports),
        reports=[summarize_report(r) for r in reports],
    )


@app.get("/reports/{report_id}", response_model=ReportResponse)
async def get_report(report_id: str) -> ReportResponse:
    try:
        return ReportResponse(success=True, report=report_service.get_report(report_id))
    except ReportNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/reports/{report_id}/content", response_model=ReportContentResponse)
async def get_report_content(
    report_id: str,
    audience: Audience = Audience.PATIENT,
    variant: ContentVariant = ContentVariant.DISPLAY,
) -> ReportContentResponse:
    try:
        content = report_service.resolve_content(report_id, audience, variant)
    except ReportNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return ReportContentResponse(
        success=True,
        report_id=report_id,
        audience=audience,
        variant=variant,
        summary=content.summary,
        recommendations=content.recommendations,
    )


@app.post(
    "/reports/{report_id}/findings/{finding_id}/feedback",
    response_model=FeedbackResponse,
)
async def submit_feedback(report_id: str, finding_id: str, request: FeedbackRequest) -> FeedbackResponse:
    try:
        finding = report_service.record_feedback(
            report_id,
            finding_id,
            request.is_accurate,
            request.correction,
            actor=request.actor or "clinician",
        )
    except (ReportNotFound, FindingNotFound) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Failed to record feedback for %s/%s: %s", report_id, finding_id, exc)
        raise HTTPException(status_code=500, detail="Failed to record feedback.") from exc

    message = "Finding verified as accurate." if request.is_accurate else "Finding flagged as incorrect."
    return FeedbackResponse(success=True, report_id=report_id, finding=finding, message=message)


@app.post("/reports/{report_id}/approve", response_model=ApproveReportResponse)
async def approve_report(report_id: str, request: ApproveReportRequest) -> ApproveReportResponse:
    try:
        report = report_service.approve_report(report_id, request.clinician_name)
    except ReportNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Failed to approve report %s: %s", report_id, exc)
        raise HTTPException(status_code=500, detail="Failed to process approval.") from exc
    return ApproveReportResponse(
        success=True,
        report_id=report.id,
        status=report.status,
        message="Report approved and signed off.",
    )


@app.get("/reports/{report_id}/export")
async def export_report(report_id: str, audience: Audience = Audience.PATIENT) -> Response:
    try:
        filename, content = report_service.export_report(report_id, audience)
    except ReportNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ExportFailure as exc:
        raise HTTPException(status_code=500, detail=_error_detail(exc.user_message, exc)) from exc
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/admin/audit-logs", response_model=AuditLogResponse)
async def list_audit_logs(limit: int = 100) -> AuditLogResponse:
    entries = report_service.list_audit_logs(limit=max(1, min(1000, int(limit))))
    return AuditLogResponse(success=True, count=len(entries), entries=entries)


def _credential_status_response() -> CredentialStatusResponse:
    configured, source = report_service.credential_status()
    return CredentialStatusResponse(
        success=True,
        configured=configured,
        source=source,
        simulation_mode=not configured,
    )


@app.get("/admin/credential", response_model=CredentialStatusResponse)
async def get_credential_status() -> CredentialStatusResponse:
    return _credential_status_response()


@app.put("/admin/credential", response_model=CredentialStatusResponse)
async def update_credential(request: CredentialUpdateRequest) -> CredentialStatusResponse:
    try:
        report_service.set_credential(request.api_key, actor=request.actor or "admin")
    except OSError as exc:
        logger.exception("Failed to save model API key override: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to save API key.") from exc
    return _credential_status_response()


@app.delete("/admin/credential", response_model=CredentialStatusResponse)
async def delete_credential() -> CredentialStatusResponse:
    report_service.clear_credential(actor="admin")
    return _credential_status_response()
