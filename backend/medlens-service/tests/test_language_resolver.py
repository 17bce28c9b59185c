from language_resolver import select, select_finding_context, select_recommendations, select_summary
from models import (
    Audience,
    AudienceContent,
    AudienceVariant,
    ContentVariant,
    Finding,
    FindingCategory,
    Report,
    ReportStatus,
)


def _report(**overrides):
    data = {
        "id": "rep-1",
        "patient_id": "P-1",
        "patient_name": "Asha Rao",
        "status": ReportStatus.REVIEW_REQUIRED,
        "language": "Tamil",
        "summary": "Top-level summary",
        "audiences": {
            Audience.PATIENT: AudienceContent(
                localized=AudienceVariant(summary="localized patient", recommendations=["loc rec"]),
                english=AudienceVariant(summary="english patient", recommendations=["en rec"]),
            ),
        },
    }
    data.update(overrides)
    return Report(**data)


def test_display_uses_localized_and_export_uses_english():
    report = _report()

    display = select(report, Audience.PATIENT, ContentVariant.DISPLAY)
    assert display.summary == "localized patient"
    assert display.recommendations == ["loc rec"]

    export = select(report, Audience.PATIENT, ContentVariant.EXPORT_ENGLISH)
    assert export.summary == "english patient"
    assert export.recommendations == ["en rec"]


def test_empty_audience_falls_back_to_report_summary():
    report = _report()
    assert select_summary(report, Audience.DOCTOR, ContentVariant.DISPLAY) == "Top-level summary"
    assert select_recommendations(report, Audience.DOCTOR, ContentVariant.EXPORT_ENGLISH) == []


def test_blank_report_summary_falls_back_to_default():
    report = _report(summary="", audiences={})
    assert select_summary(report, Audience.STUDENT, ContentVariant.DISPLAY) == "Analysis complete."


def test_returned_recommendations_are_a_copy():
    report = _report()
    recs = select_recommendations(report, Audience.PATIENT, ContentVariant.DISPLAY)
    recs.append("mutated")
    assert report.audiences[Audience.PATIENT].localized.recommendations == ["loc rec"]


def test_finding_context_prefers_english_on_export():
    finding = Finding(
        id="find-f1-1",
        category=FindingCategory.FINDING,
        text="Nodule: 3mm",
        confidence=0.9,
        explanation="explicacion",
        explanation_en="explanation",
    )
    assert select_finding_context(finding, ContentVariant.DISPLAY) == "explicacion"
    assert select_finding_context(finding, ContentVariant.EXPORT_ENGLISH) == "explanation"

    legacy = finding.model_copy(update={"explanation_en": ""})
    assert select_finding_context(legacy, ContentVariant.EXPORT_ENGLISH) == "explicacion"
