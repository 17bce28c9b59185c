"""
MedLens Report Service - Data Models

Pydantic contracts for:
- Report lifecycle and per-finding feedback
- Audience x localization content lookup
- Raw model payload schema (validated at the normalizer boundary)
- API request/response payloads
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_SUMMARY = "Analysis complete."


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================


class ReportStatus(str, Enum):
    UPLOADED = "uploaded"
    REVIEW_REQUIRED = "review_required"
    APPROVED = "approved"


class FindingCategory(str, Enum):
    FINDING = "Finding"
    IMPRESSION = "Impression"


class EvidenceSource(str, Enum):
    MODEL_VISION = "MODEL_VISION"
    OTHER = "OTHER"


class Audience(str, Enum):
    PATIENT = "patient"
    STUDENT = "student"
    DOCTOR = "doctor"


class Localization(str, Enum):
    LOCALIZED = "localized"
    ENGLISH = "english"


class ContentVariant(str, Enum):
    DISPLAY = "display"
    EXPORT_ENGLISH = "export_english"


class AuditStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


# =============================================================================
# FINDINGS AND EVIDENCE
# =============================================================================


class BoundingBox(BaseModel):
    x: float
    y: float
    width: float = Field(ge=0.0)
    height: float = Field(ge=0.0)


class Evidence(BaseModel):
    file_id: str
    confidence: float
    source: EvidenceSource = EvidenceSource.MODEL_VISION
    bbox: Optional[BoundingBox] = None


class Feedback(BaseModel):
    is_accurate: bool
    correction: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


class Finding(BaseModel):
    id: str
    category: FindingCategory
    text: str
    # Not range-constrained: out-of-range model confidences are a display concern.
    confidence: float
    explanation: str = ""
    explanation_en: str = ""
    suggested_actions: List[str] = Field(default_factory=list)
    evidence: List[Evidence] = Field(default_factory=list)
    feedback: Optional[Feedback] = None


# =============================================================================
# AUDIENCE CONTENT
# =============================================================================


class AudienceVariant(BaseModel):
    summary: str = ""
    recommendations: List[str] = Field(default_factory=list)


class AudienceContent(BaseModel):
    localized: AudienceVariant = Field(default_factory=AudienceVariant)
    english: AudienceVariant = Field(default_factory=AudienceVariant)

    def variant(self, localization: Localization) -> AudienceVariant:
        if localization == Localization.LOCALIZED:
            return self.localized
        return self.english


def _complete_audiences(value: Any) -> Dict[Audience, AudienceContent]:
    audiences: Dict[Audience, AudienceContent] = {}
    for key, content in dict(value or {}).items():
        audiences[Audience(key)] = (
            content if isinstance(content, AudienceContent) else AudienceContent.model_validate(content)
        )
    for audience in Audience:
        audiences.setdefault(audience, AudienceContent())
    return audiences


class SourceDocument(BaseModel):
    """An uploaded file awaiting analysis. `content` never leaves the process."""

    id: str
    name: str
    mime_type: str
    size_bytes: int = Field(ge=0)
    content: bytes = Field(default=b"", exclude=True, repr=False)


class ReportFile(BaseModel):
    id: str
    name: str
    mime_type: str
    size_bytes: int = 0


class AnalysisResult(BaseModel):
    summary: str = DEFAULT_SUMMARY
    file_type: str = "unknown"
    confidence_overall: Optional[float] = None
    disclaimer: Optional[str] = None
    findings: List[Finding] = Field(default_factory=list)
    audiences: Dict[Audience, AudienceContent] = Field(default_factory=dict, validate_default=True)
    simulated: bool = False
    model_name: Optional[str] = None

    @field_validator("audiences", mode="before")
    @classmethod
    def _fill_audiences(cls, value: Any) -> Dict[Audience, AudienceContent]:
        return _complete_audiences(value)


# =============================================================================
# REPORT
# =============================================================================


class Report(BaseModel):
    id: str
    patient_id: str
    patient_name: str
    status: ReportStatus
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    language: str = "English"
    files: List[ReportFile] = Field(default_factory=list)
    summary: str = DEFAULT_SUMMARY
    file_type: str = "unknown"
    disclaimer: Optional[str] = None
    simulated: bool = False
    findings: List[Finding] = Field(default_factory=list)
    audiences: Dict[Audience, AudienceContent] = Field(default_factory=dict, validate_default=True)
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None

    @field_validator("audiences", mode="before")
    @classmethod
    def _fill_audiences(cls, value: Any) -> Dict[Audience, AudienceContent]:
        return _complete_audiences(value)


class AuditLogEntry(BaseModel):
    id: str
    timestamp: datetime = Field(default_factory=utc_now)
    actor: str
    action: str
    target: str
    status: AuditStatus = AuditStatus.SUCCESS


# =============================================================================
# RAW MODEL PAYLOAD
# =============================================================================


def _require_finite(value: Optional[float]) -> Optional[float]:
    if value is not None and not math.isfinite(value):
        raise ValueError(f"confidence must be a finite number, got {value}")
    return value


class RawRegion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    label: str = ""
    description: str = ""
    confidence: Optional[float] = None
    box_2d: Optional[List[float]] = None

    @field_validator("label", "description", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("confidence")
    @classmethod
    def _finite_confidence(cls, value: Optional[float]) -> Optional[float]:
        return _require_finite(value)

    @field_validator("box_2d")
    @classmethod
    def _check_box(cls, value: Optional[List[float]]) -> Optional[List[float]]:
        if not value:
            return None
        if len(value) != 4:
            raise ValueError(f"box_2d must have four values [ymin, xmin, ymax, xmax], got {len(value)}")
        ymin, xmin, ymax, xmax = value
        if ymax < ymin or xmax < xmin:
            raise ValueError(f"box_2d is inverted: {value}")
        return value


class RawHighlights(BaseModel):
    model_config = ConfigDict(extra="ignore")

    regions_of_interest: List[RawRegion] = Field(default_factory=list)
    artifacts: List[RawRegion] = Field(default_factory=list)

    @field_validator("regions_of_interest", "artifacts", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value


class RawModelPayload(BaseModel):
    """Shape the model is instructed to return. Unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    file_type: Optional[str] = None
    summary_patient: Optional[str] = None
    summary_student: Optional[str] = None
    summary_doctor: Optional[str] = None
    summary_patient_en: Optional[str] = None
    summary_student_en: Optional[str] = None
    summary_doctor_en: Optional[str] = None
    highlights: RawHighlights = Field(default_factory=RawHighlights)
    recommendations_patient: Optional[List[str]] = None
    recommendations_student: Optional[List[str]] = None
    recommendations_doctor: Optional[List[str]] = None
    recommendations_patient_en: Optional[List[str]] = None
    recommendations_student_en: Optional[List[str]] = None
    recommendations_doctor_en: Optional[List[str]] = None
    confidence_overall: Optional[float] = None
    disclaimer: Optional[str] = None

    @field_validator("confidence_overall")
    @classmethod
    def _finite_confidence(cls, value: Optional[float]) -> Optional[float]:
        return _require_finite(value)

    @field_validator("highlights", mode="before")
    @classmethod
    def _none_to_highlights(cls, value: Any) -> Any:
        return {} if value is None else value

    def summary_for(self, audience: Audience, localization: Localization) -> Optional[str]:
        suffix = "_en" if localization == Localization.ENGLISH else ""
        return getattr(self, f"summary_{audience.value}{suffix}")

    def recommendations_for(self, audience: Audience, localization: Localization) -> Optional[List[str]]:
        suffix = "_en" if localization == Localization.ENGLISH else ""
        return getattr(self, f"recommendations_{audience.value}{suffix}")


# =============================================================================
# API MODELS
# =============================================================================


class ReportSummaryItem(BaseModel):
    id: str
    patient_id: str
    patient_name: str
    status: ReportStatus
    created_at: datetime
    language: str
    file_type: str
    finding_count: int
    simulated: bool


class CreateReportResponse(BaseModel):
    success: bool
    report_id: str
    status: ReportStatus
    simulated: bool
    message: str
    report: Report


class ReportResponse(BaseModel):
    success: bool
    report: Report


class ReportListResponse(BaseModel):
    success: bool
    count: int
    reports: List[ReportSummaryItem] = Field(default_factory=list)


class ReportContentResponse(BaseModel):
    success: bool
    report_id: str
    audience: Audience
    variant: ContentVariant
    summary: str
    recommendations: List[str] = Field(default_factory=list)


class FeedbackRequest(BaseModel):
    is_accurate: bool
    correction: Optional[str] = None
    actor: Optional[str] = None

    @field_validator("correction")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value


class FeedbackResponse(BaseModel):
    success: bool
    report_id: str
    finding: Finding
    message: str


class ApproveReportRequest(BaseModel):
    clinician_name: str = Field(min_length=1)


class ApproveReportResponse(BaseModel):
    success: bool
    report_id: str
    status: ReportStatus
    message: str


class AuditLogResponse(BaseModel):
    success: bool
    count: int
    entries: List[AuditLogEntry] = Field(default_factory=list)


class CredentialUpdateRequest(BaseModel):
    api_key: str
    actor: Optional[str] = None


class CredentialStatusResponse(BaseModel):
    success: bool
    configured: bool
    source: Optional[str] = None
    simulation_mode: bool


class HealthResponse(BaseModel):
    status: str
    service: str
    store_backend: str
    model_name: str
    simulation_mode: bool
    timestamp: datetime = Field(default_factory=utc_now)


# =============================================================================
# API HELPERS
# =============================================================================


def summarize_report(report: Report) -> ReportSummaryItem:
    return ReportSummaryItem(
        id=report.id,
        patient_id=report.patient_id,
        patient_name=report.patient_name,
        status=report.status,
        created_at=report.created_at,
        language=report.language,
        file_type=report.file_type,
        finding_count=len(report.findings),
        simulated=report.simulated,
    )

