"""
English PDF export of a report.

Layout (fixed order): header, identity block, clinical summary,
recommendations, detailed findings. Content always comes from the English
record regardless of the report's display language.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Optional

from fpdf import FPDF

from errors import ExportFailure
from language_resolver import select, select_finding_context
from models import Audience, ContentVariant, Report

logger = logging.getLogger(__name__)

PAGE_WIDTH_MM = 210
MARGIN_MM = 20
TEXT_WIDTH_MM = PAGE_WIDTH_MM - 2 * MARGIN_MM
PAGE_BREAK_Y_MM = 270

_PDF_REPLACEMENTS = {
    "•": "-",
    "–": "-",
    "—": "-",
    "‘": "'",
    "’": "'",
    "“": '"',
    "”": '"',
    "…": "...",
}


def pdf_text(value: Optional[str]) -> str:
    """Core PDF fonts only cover Latin-1; anything else becomes '?'."""
    text = value or ""
    for src, dst in _PDF_REPLACEMENTS.items():
        text = text.replace(src, dst)
    return text.encode("latin-1", "replace").decode("latin-1")


def export_filename(report: Report) -> str:
    safe_name = re.sub(r"\s+", "_", report.patient_name.strip()) or "Patient"
    safe_name = re.sub(r"[^A-Za-z0-9_.-]", "", safe_name) or "Patient"
    return f"MedLens_Report_{safe_name}_English.pdf"


class ReportPdfExporter:
    def __init__(self, compress: bool = True) -> None:
        self.compress = compress

    def render(self, report: Report, audience: Audience = Audience.PATIENT) -> bytes:
        try:
            return bytes(self._build(report, Audience(audience)).output())
        except ExportFailure:
            raise
        except Exception as exc:
            logger.exception("PDF generation failed for report %s: %s", report.id, exc)
            raise ExportFailure(f"PDF generation failed: {exc}") from exc

    def export_to_path(self, report: Report, audience: Audience, path: str) -> Path:
        """
        Writes the PDF next to `path` and swaps it in, so a failed export
        never leaves a partial file behind.
        """
        target = Path(path).expanduser().resolve()
        content = self.render(report, audience)
        tmp_name: Optional[str] = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=str(target.parent), prefix=".medlens-", suffix=".pdf.tmp", delete=False
            ) as handle:
                tmp_name = handle.name
                handle.write(content)
            os.replace(tmp_name, target)
            tmp_name = None
        except OSError as exc:
            raise ExportFailure(f"Could not write PDF to {target}: {exc}") from exc
        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
        return target

    def _build(self, report: Report, audience: Audience) -> FPDF:
        pdf = FPDF(orientation="P", unit="mm", format="A4")
        pdf.set_compression(self.compress)
        pdf.set_margins(MARGIN_MM, MARGIN_MM, MARGIN_MM)
        pdf.set_auto_page_break(auto=True, margin=MARGIN_MM)
        pdf.add_page()

        self._header(pdf)
        self._identity(pdf, report, audience)

        content = select(report, audience, ContentVariant.EXPORT_ENGLISH)

        pdf.set_font("Helvetica", "B", 14)
        pdf.set_text_color(0)
        pdf.cell(0, 6, "Clinical Summary", new_x="LMARGIN", new_y="NEXT")
        pdf.set_font("Helvetica", "", 10)
        pdf.set_text_color(60)
        pdf.multi_cell(TEXT_WIDTH_MM, 5, pdf_text(content.summary), new_x="LMARGIN", new_y="NEXT")
        pdf.ln(10)

        if content.recommendations:
            pdf.set_font("Helvetica", "B", 12)
            pdf.cell(0, 6, "Recommendations", new_x="LMARGIN", new_y="NEXT")
            pdf.set_font("Helvetica", "", 10)
            for rec in content.recommendations:
                pdf.multi_cell(TEXT_WIDTH_MM, 5, pdf_text(f"- {rec}"), new_x="LMARGIN", new_y="NEXT")
                pdf.ln(2)
            pdf.ln(8)

        pdf.set_font("Helvetica", "B", 14)
        pdf.set_text_color(0)
        pdf.cell(0, 8, "Detailed Findings", new_x="LMARGIN", new_y="NEXT")

        for index, finding in enumerate(report.findings, start=1):
            if pdf.get_y() > PAGE_BREAK_Y_MM:
                pdf.add_page()
                pdf.set_y(MARGIN_MM)

            pdf.set_font("Helvetica", "B", 11)
            pdf.set_text_color(0)
            title = f"{index}. {finding.category.value} ({round((finding.confidence or 0) * 100)}%)"
            pdf.cell(0, 5, pdf_text(title), new_x="LMARGIN", new_y="NEXT")

            pdf.set_font("Helvetica", "", 10)
            pdf.set_text_color(50)
            pdf.multi_cell(TEXT_WIDTH_MM, 5, pdf_text(finding.text), new_x="LMARGIN", new_y="NEXT")
            pdf.ln(2)

            context = select_finding_context(finding, ContentVariant.EXPORT_ENGLISH)
            if context:
                pdf.set_font("Helvetica", "I", 9)
                pdf.set_text_color(80)
                pdf.multi_cell(
                    TEXT_WIDTH_MM, 4, pdf_text(f"Context: {context}"), new_x="LMARGIN", new_y="NEXT"
                )
                pdf.ln(6)
            else:
                pdf.ln(4)

        return pdf

    @staticmethod
    def _header(pdf: FPDF) -> None:
        pdf.set_font("Helvetica", "B", 22)
        pdf.set_text_color(14, 165, 233)
        pdf.cell(0, 8, "MedLens AI", new_x="LMARGIN", new_y="NEXT")
        pdf.set_font("Helvetica", "", 10)
        pdf.set_text_color(100)
        pdf.cell(0, 6, "AI-Assisted Medical Report (Official English Record)", new_x="LMARGIN", new_y="NEXT")
        pdf.ln(4)
        pdf.set_draw_color(200)
        pdf.line(MARGIN_MM, pdf.get_y(), PAGE_WIDTH_MM - MARGIN_MM, pdf.get_y())
        pdf.ln(10)

    @staticmethod
    def _identity(pdf: FPDF, report: Report, audience: Audience) -> None:
        pdf.set_font("Helvetica", "", 12)
        pdf.set_text_color(0)
        lines = [
            f"Patient Name: {report.patient_name}",
            f"Report ID: {report.id}",
            f"Date: {report.created_at.strftime('%Y-%m-%d')}",
            f"Mode: {audience.value.upper()} View",
        ]
        if report.simulated:
            lines.append("Source: SIMULATION (no model credential configured)")
        for line in lines:
            pdf.cell(0, 6, pdf_text(line), new_x="LMARGIN", new_y="NEXT")
        pdf.ln(6)
