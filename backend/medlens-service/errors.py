"""
MedLens Report Service - Error taxonomy

Every failure the analysis/report core can raise. Each error carries a
`user_message` that is safe to show to a clinician.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class MedLensError(Exception):
    user_message = "An unexpected error occurred during analysis."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.user_message)
        self.detail = message or self.user_message

    def __str__(self) -> str:
        return self.detail


class CredentialMissing(MedLensError):
    """Raised internally when no model credential resolves. Triggers simulation mode."""

    user_message = "No model API key is configured."


class EmptyResponse(MedLensError):
    user_message = "The AI model returned an empty response. Please try again."


class MalformedResponse(MedLensError):
    user_message = "Failed to parse the medical report. The AI response was malformed."


class UpstreamReason(str, Enum):
    INVALID_CREDENTIAL = "InvalidCredential"
    NETWORK_UNREACHABLE = "NetworkUnreachable"
    UNSUPPORTED_INPUT = "UnsupportedInput"
    OVERLOADED = "Overloaded"
    UNKNOWN = "Unknown"


_UPSTREAM_MESSAGES = {
    UpstreamReason.INVALID_CREDENTIAL: "Invalid API Key. Please update it in the Admin Configuration.",
    UpstreamReason.NETWORK_UNREACHABLE: "Network Error: Could not connect to Google AI services.",
    UpstreamReason.UNSUPPORTED_INPUT: "The image format is not supported or corrupted.",
    UpstreamReason.OVERLOADED: "The AI service is currently overloaded. Please try again in a moment.",
}


class UpstreamError(MedLensError):
    def __init__(
        self,
        reason: UpstreamReason,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.reason = reason
        self.status_code = status_code
        # Unknown failures surface the raw transport message, as nothing better is known.
        self.user_message = _UPSTREAM_MESSAGES.get(
            reason, message or MedLensError.user_message
        )
        super().__init__(message or self.user_message)


class ReportNotFound(MedLensError, KeyError):
    user_message = "Report not found."

    def __init__(self, report_id: str) -> None:
        self.report_id = report_id
        super().__init__(f"Report not found: {report_id}.")


class FindingNotFound(MedLensError, KeyError):
    user_message = "Finding not found in this report."

    def __init__(self, finding_id: str) -> None:
        self.finding_id = finding_id
        super().__init__(f"Finding not found: {finding_id}.")


class InvalidTransition(MedLensError, ValueError):
    user_message = "This report can no longer change status."


class ExportFailure(MedLensError):
    user_message = "PDF generation failed. The report could not be exported."
