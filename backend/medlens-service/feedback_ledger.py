"""
Per-finding clinician feedback.

One record per finding; recording again overwrites (last write wins).
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from errors import FindingNotFound
from models import Feedback, Finding, utc_now


def find_finding(findings: List[Finding], finding_id: str) -> Finding:
    for finding in findings:
        if finding.id == finding_id:
            return finding
    raise FindingNotFound(finding_id)


def record_feedback(
    findings: List[Finding],
    finding_id: str,
    is_accurate: bool,
    correction: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> List[Finding]:
    """
    Returns a new finding list with `finding_id`'s feedback replaced.
    Untouched findings are the same objects as in `findings`.
    """
    find_finding(findings, finding_id)

    feedback = Feedback(
        is_accurate=is_accurate,
        correction=correction,
        timestamp=now or utc_now(),
    )
    return [
        finding.model_copy(update={"feedback": feedback}) if finding.id == finding_id else finding
        for finding in findings
    ]
