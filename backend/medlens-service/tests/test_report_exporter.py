import pytest

import report_exporter
from errors import ExportFailure
from models import Audience, Finding, FindingCategory, ReportFile
from report_exporter import ReportPdfExporter, export_filename, pdf_text
from report_lifecycle import ReportLifecycle
from response_normalizer import ResponseNormalizer


def _report(model_payload, patient_name="Asha Rao"):
    analysis = ResponseNormalizer().normalize(model_payload, "f1")
    return ReportLifecycle().create_report(
        analysis,
        patient_id="P-100",
        patient_name=patient_name,
        files=[ReportFile(id="f1", name="chest.png", mime_type="image/png", size_bytes=10)],
        language="Spanish",
    )


def test_render_returns_pdf_bytes(model_payload):
    data = ReportPdfExporter().render(_report(model_payload))
    assert data.startswith(b"%PDF-")


def test_export_always_uses_english_record(model_payload):
    data = ReportPdfExporter(compress=False).render(_report(model_payload), Audience.PATIENT)

    assert b"Clinical Summary" in data
    assert b"Patient summary" in data
    assert b"Talk to your doctor" in data
    assert b"Nodule: 3mm opacity" in data
    assert b"Context: Student summary" in data
    assert b"Resumen para el paciente" not in data
    assert b"Hable con su medico" not in data


def test_export_uses_requested_audience(model_payload):
    data = ReportPdfExporter(compress=False).render(_report(model_payload), Audience.DOCTOR)
    assert b"Clinical summary" in data
    assert b"Correlate clinically" in data
    assert b"DOCTOR View" in data


def test_many_findings_paginate(model_payload):
    report = _report(model_payload)
    extra = [
        Finding(
            id=f"find-f1-{n}",
            category=FindingCategory.FINDING,
            text=f"Region {n}: a longer description of the observed visual pattern",
            confidence=0.5,
            explanation_en="Visual pattern detected.",
        )
        for n in range(2, 42)
    ]
    report = report.model_copy(update={"findings": report.findings + extra})

    pdf = ReportPdfExporter()._build(report, Audience.PATIENT)
    assert pdf.page_no() > 1


def test_non_latin_text_does_not_break_export(model_payload):
    model_payload["summary_patient_en"] = "Résumé • with “quotes” and 日本語"
    data = ReportPdfExporter().render(_report(model_payload, patient_name="ஆஷா"))
    assert data.startswith(b"%PDF-")


def test_pdf_text_coerces_to_latin1():
    assert pdf_text("a • b – c “d”") == 'a - b - c "d"'
    assert pdf_text("日本") == "??"
    assert pdf_text(None) == ""


def test_export_filename(model_payload):
    assert export_filename(_report(model_payload)) == "MedLens_Report_Asha_Rao_English.pdf"
    assert export_filename(_report(model_payload, patient_name="  ")) == "MedLens_Report_Patient_English.pdf"


def test_export_to_path_writes_file(tmp_path, model_payload):
    target = tmp_path / "out" / "report.pdf"
    written = ReportPdfExporter().export_to_path(_report(model_payload), Audience.PATIENT, str(target))
    assert written == target.resolve()
    assert target.read_bytes().startswith(b"%PDF-")
    assert [p.name for p in target.parent.iterdir()] == ["report.pdf"]


def test_failed_write_leaves_no_partial_file(tmp_path, model_payload, monkeypatch):
    def _fail_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(report_exporter.os, "replace", _fail_replace)
    with pytest.raises(ExportFailure):
        ReportPdfExporter().export_to_path(_report(model_payload), Audience.PATIENT, str(tmp_path / "r.pdf"))
    assert list(tmp_path.iterdir()) == []


def test_render_failure_is_export_failure(tmp_path, model_payload, monkeypatch):
    def _boom(self, report, audience):
        raise RuntimeError("font missing")

    monkeypatch.setattr(ReportPdfExporter, "_build", _boom)
    with pytest.raises(ExportFailure):
        ReportPdfExporter().export_to_path(_report(model_payload), Audience.PATIENT, str(tmp_path / "r.pdf"))
    assert list(tmp_path.iterdir()) == []
