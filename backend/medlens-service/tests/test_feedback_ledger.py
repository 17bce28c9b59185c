from datetime import datetime, timezone

import pytest

from errors import FindingNotFound
from feedback_ledger import find_finding, record_feedback
from models import Finding, FindingCategory


def _findings():
    return [
        Finding(id="ft-f1", category=FindingCategory.IMPRESSION, text="File Classification: XRAY", confidence=0.9),
        Finding(id="find-f1-1", category=FindingCategory.FINDING, text="Nodule: 3mm", confidence=0.95),
        Finding(id="find-f1-2", category=FindingCategory.FINDING, text="Artifact: blur", confidence=0.5),
    ]


def test_record_feedback_replaces_only_target():
    findings = _findings()
    when = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    updated = record_feedback(findings, "find-f1-1", False, "Actually a vessel", now=when)

    assert updated is not findings
    assert updated[0] is findings[0]
    assert updated[2] is findings[2]
    assert updated[1].feedback is not None
    assert updated[1].feedback.is_accurate is False
    assert updated[1].feedback.correction == "Actually a vessel"
    assert updated[1].feedback.timestamp == when
    # Input list is untouched.
    assert findings[1].feedback is None


def test_record_feedback_last_write_wins():
    findings = record_feedback(_findings(), "find-f1-1", False, "wrong")
    findings = record_feedback(findings, "find-f1-1", True)

    feedback = find_finding(findings, "find-f1-1").feedback
    assert feedback.is_accurate is True
    assert feedback.correction is None


def test_record_feedback_unknown_finding():
    findings = _findings()
    before = [f.model_copy() for f in findings]
    with pytest.raises(FindingNotFound):
        record_feedback(findings, "find-missing", True)
    assert findings == before
    assert all(f.feedback is None for f in findings)


def test_find_finding_returns_match():
    assert find_finding(_findings(), "find-f1-2").text == "Artifact: blur"
