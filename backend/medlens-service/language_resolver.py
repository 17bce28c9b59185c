"""
Audience/language fallback resolution for report content.

Display honors the report's chosen language; export is always the English
record so the exported document is stable regardless of display language.
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from models import (
    DEFAULT_SUMMARY,
    Audience,
    AudienceContent,
    ContentVariant,
    Finding,
    Localization,
    Report,
)


_VARIANT_LOCALIZATION = {
    ContentVariant.DISPLAY: Localization.LOCALIZED,
    ContentVariant.EXPORT_ENGLISH: Localization.ENGLISH,
}


class ResolvedContent(BaseModel):
    summary: str
    recommendations: List[str] = Field(default_factory=list)


def localization_for(variant: ContentVariant) -> Localization:
    return _VARIANT_LOCALIZATION[ContentVariant(variant)]


def select(report: Report, audience: Audience, variant: ContentVariant) -> ResolvedContent:
    content = report.audiences.get(Audience(audience)) or AudienceContent()
    chosen = content.variant(localization_for(variant))
    return ResolvedContent(
        summary=chosen.summary or report.summary or DEFAULT_SUMMARY,
        recommendations=list(chosen.recommendations),
    )


def select_summary(report: Report, audience: Audience, variant: ContentVariant) -> str:
    return select(report, audience, variant).summary


def select_recommendations(report: Report, audience: Audience, variant: ContentVariant) -> List[str]:
    return select(report, audience, variant).recommendations


def select_finding_context(finding: Finding, variant: ContentVariant) -> str:
    if localization_for(variant) == Localization.ENGLISH:
        return finding.explanation_en or finding.explanation
    return finding.explanation
