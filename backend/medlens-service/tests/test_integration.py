from fastapi.testclient import TestClient

from errors import UpstreamError, UpstreamReason
from main import app
from model_gateway import SIMULATION_DOCTOR_NOTE
from report_service import report_service


client = TestClient(app)

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def _upload(filename="chest.png", content=PNG_BYTES, content_type="image/png", **form):
    data = {"patient_id": "P-200", "patient_name": "Asha Rao", "language": "Tamil"}
    data.update(form)
    return client.post("/reports", files={"file": (filename, content, content_type)}, data=data)


def test_health_reports_simulation_mode():
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["service"] == "medlens-service"
    assert body["store_backend"] == "memory"
    assert body["simulation_mode"] is True


def test_report_end_to_end_flow():
    create_resp = _upload(language="tamil")
    assert create_resp.status_code == 200
    create_body = create_resp.json()
    assert create_body["success"] is True
    assert create_body["status"] == "review_required"
    assert create_body["simulated"] is True
    report_id = create_body["report_id"]
    report = create_body["report"]
    assert report["language"] == "Tamil"
    assert len(report["findings"]) == 2
    assert "content" not in report["files"][0]
    finding_id = report["findings"][1]["id"]

    get_resp = client.get(f"/reports/{report_id}")
    assert get_resp.status_code == 200
    assert get_resp.json()["report"]["id"] == report_id

    list_resp = client.get("/reports", params={"patient_id": "P-200"})
    assert list_resp.status_code == 200
    assert report_id in [item["id"] for item in list_resp.json()["reports"]]

    content_resp = client.get(
        f"/reports/{report_id}/content",
        params={"audience": "doctor", "variant": "export_english"},
    )
    assert content_resp.status_code == 200
    assert content_resp.json()["summary"] == SIMULATION_DOCTOR_NOTE

    feedback_resp = client.post(
        f"/reports/{report_id}/findings/{finding_id}/feedback",
        json={"is_accurate": False, "correction": "Not a lesion", "actor": "Dr. Mehta"},
    )
    assert feedback_resp.status_code == 200
    feedback_body = feedback_resp.json()
    assert feedback_body["message"] == "Finding flagged as incorrect."
    assert feedback_body["finding"]["feedback"]["correction"] == "Not a lesion"

    approve_resp = client.post(f"/reports/{report_id}/approve", json={"clinician_name": "Dr. Mehta"})
    assert approve_resp.status_code == 200
    assert approve_resp.json()["status"] == "approved"

    again_resp = client.post(f"/reports/{report_id}/approve", json={"clinician_name": "Dr. Mehta"})
    assert again_resp.status_code == 409

    export_resp = client.get(f"/reports/{report_id}/export", params={"audience": "patient"})
    assert export_resp.status_code == 200
    assert export_resp.headers["content-type"] == "application/pdf"
    assert "MedLens_Report_Asha_Rao_English.pdf" in export_resp.headers["content-disposition"]
    assert export_resp.content.startswith(b"%PDF-")

    audit_resp = client.get("/admin/audit-logs")
    assert audit_resp.status_code == 200
    actions = [entry["action"] for entry in audit_resp.json()["entries"]]
    for action in (
        "REPORT_CREATED",
        "FEEDBACK_RECORDED",
        "REPORT_APPROVED",
        "REPORT_APPROVAL_REJECTED",
        "REPORT_EXPORTED",
    ):
        assert action in actions


def test_upload_validation_errors():
    assert _upload(content=b"").status_code == 400
    assert _upload(filename="notes.txt", content=b"hello", content_type="text/plain").status_code == 400
    assert _upload(language="Klingon").status_code == 400


def test_upload_type_falls_back_to_extension():
    resp = _upload(filename="scan.JPG", content_type="application/octet-stream", language="English")
    assert resp.status_code == 200
    assert resp.json()["report"]["files"][0]["mime_type"] == "image/jpeg"


def test_upload_too_large(monkeypatch):
    monkeypatch.setenv("MEDLENS_MAX_UPLOAD_MB", "1")
    resp = _upload(content=b"\x00" * (1024 * 1024 + 1))
    assert resp.status_code == 413


def test_not_found_and_bad_requests():
    assert client.get("/reports/rep-missing").status_code == 404
    assert client.get("/reports/rep-missing/export").status_code == 404
    assert client.post("/reports/rep-missing/approve", json={"clinician_name": "Dr. X"}).status_code == 404

    report_id = _upload().json()["report_id"]
    missing = client.post(
        f"/reports/{report_id}/findings/find-missing/feedback",
        json={"is_accurate": True},
    )
    assert missing.status_code == 404

    finding_id = client.get(f"/reports/{report_id}").json()["report"]["findings"][0]["id"]
    too_long = client.post(
        f"/reports/{report_id}/findings/{finding_id}/feedback",
        json={"is_accurate": False, "correction": "x" * 5000},
    )
    assert too_long.status_code == 400

    assert client.post(f"/reports/{report_id}/approve", json={"clinician_name": ""}).status_code == 422


def test_upstream_errors_map_to_http_status(monkeypatch):
    class _FailingTransport:
        model_name = "stub-model"

        def __init__(self, reason):
            self.reason = reason

        async def generate_content(self, document, prompt, api_key):
            raise UpstreamError(self.reason)

    monkeypatch.setattr(report_service.gateway.credentials, "runtime_key", "test-key")
    expected = {
        UpstreamReason.INVALID_CREDENTIAL: 401,
        UpstreamReason.UNSUPPORTED_INPUT: 400,
        UpstreamReason.OVERLOADED: 503,
        UpstreamReason.NETWORK_UNREACHABLE: 502,
    }
    for reason, status in expected.items():
        monkeypatch.setattr(report_service.gateway, "transport", _FailingTransport(reason))
        resp = _upload()
        assert resp.status_code == status
        assert resp.json()["detail"]


def test_credential_admin_endpoints():
    assert client.get("/admin/credential").json()["configured"] is False

    put_resp = client.put("/admin/credential", json={"api_key": "user-key", "actor": "admin"})
    assert put_resp.status_code == 200
    put_body = put_resp.json()
    assert put_body["configured"] is True
    assert put_body["source"] == "user_override"
    assert put_body["simulation_mode"] is False

    delete_resp = client.delete("/admin/credential")
    assert delete_resp.status_code == 200
    assert delete_resp.json()["simulation_mode"] is True
