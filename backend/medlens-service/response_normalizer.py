"""
MedLens Report Service - Response Normalizer

Turns the model's raw JSON into typed findings, evidence and audience content:
- Finding 0 is always the synthetic file-classification impression
- Regions of interest follow, then artifacts, in model order
- Every audience x localization slot is filled (English falls back to localized)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from errors import MalformedResponse
from models import (
    DEFAULT_SUMMARY,
    AnalysisResult,
    Audience,
    AudienceContent,
    AudienceVariant,
    BoundingBox,
    Evidence,
    EvidenceSource,
    Finding,
    FindingCategory,
    Localization,
    RawModelPayload,
    RawRegion,
)

logger = logging.getLogger(__name__)

DEFAULT_REGION_CONFIDENCE = 0.8
DEFAULT_CLASSIFICATION_CONFIDENCE = 0.9
CLASSIFICATION_EXPLANATION = "Classified based on visual features."
REGION_EXPLANATION = "Visual pattern detected."


def box_to_bbox(box_2d: List[float]) -> BoundingBox:
    """
    Converts a `[ymin, xmin, ymax, xmax]` quadruple into top-left/size form.
    Inverted boxes are rejected upstream by `RawRegion`.
    """
    ymin, xmin, ymax, xmax = box_2d
    return BoundingBox(x=xmin, y=ymin, width=xmax - xmin, height=ymax - ymin)


def _format_file_type(file_type: Optional[str]) -> str:
    text = (file_type or "").strip()
    if not text:
        return "UNKNOWN"
    return text.replace("_", " ").upper()


class ResponseNormalizer:
    def normalize(self, raw: Any, file_id: str) -> AnalysisResult:
        payload = self.parse_payload(raw)

        audiences = self._build_audiences(payload)
        student = audiences[Audience.STUDENT]

        findings: List[Finding] = [self._classification_finding(payload, file_id)]
        regions = list(payload.highlights.regions_of_interest) + list(payload.highlights.artifacts)
        for index, region in enumerate(regions, start=1):
            findings.append(
                self._region_finding(
                    region,
                    finding_id=f"find-{file_id}-{index}",
                    file_id=file_id,
                    explanation=student.localized.summary or REGION_EXPLANATION,
                    explanation_en=payload.summary_student_en or REGION_EXPLANATION,
                    suggested_actions=list(student.localized.recommendations),
                )
            )

        return AnalysisResult(
            summary=payload.summary_patient or DEFAULT_SUMMARY,
            file_type=(payload.file_type or "unknown").strip() or "unknown",
            confidence_overall=payload.confidence_overall,
            disclaimer=payload.disclaimer,
            findings=findings,
            audiences=audiences,
        )

    @staticmethod
    def parse_payload(raw: Any) -> RawModelPayload:
        if not isinstance(raw, dict):
            raise MalformedResponse(
                f"Model payload must be a JSON object, got {type(raw).__name__}."
            )
        try:
            return RawModelPayload.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Model payload failed schema validation: %s", exc)
            raise MalformedResponse(f"Model payload schema violation: {exc}") from exc

    def _classification_finding(self, payload: RawModelPayload, file_id: str) -> Finding:
        confidence = payload.confidence_overall
        if confidence is None:
            confidence = DEFAULT_CLASSIFICATION_CONFIDENCE
        return Finding(
            id=f"ft-{file_id}",
            category=FindingCategory.IMPRESSION,
            text=f"File Classification: {_format_file_type(payload.file_type)}",
            confidence=confidence,
            explanation=CLASSIFICATION_EXPLANATION,
            explanation_en=CLASSIFICATION_EXPLANATION,
        )

    def _region_finding(
        self,
        region: RawRegion,
        *,
        finding_id: str,
        file_id: str,
        explanation: str,
        explanation_en: str,
        suggested_actions: List[str],
    ) -> Finding:
        confidence = region.confidence
        if confidence is None:
            confidence = DEFAULT_REGION_CONFIDENCE

        evidence: List[Evidence] = []
        if region.box_2d:
            evidence.append(
                Evidence(
                    file_id=file_id,
                    confidence=confidence,
                    source=EvidenceSource.MODEL_VISION,
                    bbox=box_to_bbox(region.box_2d),
                )
            )

        return Finding(
            id=finding_id,
            category=FindingCategory.FINDING,
            text=f"{region.label}: {region.description}",
            confidence=confidence,
            explanation=explanation,
            explanation_en=explanation_en,
            suggested_actions=suggested_actions,
            evidence=evidence,
        )

    def _build_audiences(self, payload: RawModelPayload) -> Dict[Audience, AudienceContent]:
        audiences: Dict[Audience, AudienceContent] = {}
        for audience in Audience:
            localized_summary = payload.summary_for(audience, Localization.LOCALIZED) or ""
            localized_recs = list(payload.recommendations_for(audience, Localization.LOCALIZED) or [])
            english_summary = payload.summary_for(audience, Localization.ENGLISH) or localized_summary
            english_recs = list(payload.recommendations_for(audience, Localization.ENGLISH) or localized_recs)
            audiences[audience] = AudienceContent(
                localized=AudienceVariant(summary=localized_summary, recommendations=localized_recs),
                english=AudienceVariant(summary=english_summary, recommendations=english_recs),
            )
        return audiences
