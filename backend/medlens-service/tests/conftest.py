import os
import sys
import tempfile
from pathlib import Path

import pytest


SERVICE_ROOT = Path(__file__).resolve().parents[1]
if str(SERVICE_ROOT) not in sys.path:
    sys.path.insert(0, str(SERVICE_ROOT))

# Keep tests hermetic regardless of local shell/.env values.
for _name in ("MEDLENS_API_KEY", "API_KEY", "GEMINI_API_KEY"):
    os.environ[_name] = ""
os.environ["MEDLENS_STORE_BACKEND"] = "memory"
os.environ["MEDLENS_SIMULATION_DELAY_SECONDS"] = "0"
os.environ["MEDLENS_EXPOSE_ERRORS"] = "true"

_TEST_DATA_DIR = Path(tempfile.mkdtemp(prefix="medlens-service-tests-"))
os.environ["MEDLENS_LOCAL_DATA_DIR"] = str(_TEST_DATA_DIR)
os.environ["MEDLENS_CREDENTIAL_FILE"] = str(_TEST_DATA_DIR / "credential.json")
os.environ["MEDLENS_SQLITE_DB_PATH"] = str(_TEST_DATA_DIR / "medlens_reports.sqlite3")


@pytest.fixture(autouse=True)
def _no_saved_credential():
    credential_file = Path(os.environ["MEDLENS_CREDENTIAL_FILE"])
    if credential_file.exists():
        credential_file.unlink()
    yield
    if credential_file.exists():
        credential_file.unlink()


@pytest.fixture
def model_payload():
    return {
        "file_type": "xray",
        "summary_patient": "Resumen para el paciente",
        "summary_student": "Resumen para estudiantes",
        "summary_doctor": "Resumen clinico",
        "summary_patient_en": "Patient summary",
        "summary_student_en": "Student summary",
        "summary_doctor_en": "Clinical summary",
        "highlights": {
            "regions_of_interest": [
                {
                    "label": "Nodule",
                    "description": "3mm opacity",
                    "confidence": 0.95,
                    "box_2d": [10, 20, 30, 40],
                }
            ],
            "artifacts": [],
        },
        "recommendations_patient": ["Hable con su medico"],
        "recommendations_student": ["Revise la anatomia"],
        "recommendations_doctor": ["Correlacionar clinicamente"],
        "recommendations_patient_en": ["Talk to your doctor"],
        "recommendations_student_en": ["Review the anatomy"],
        "recommendations_doctor_en": ["Correlate clinically"],
        "confidence_overall": 0.87,
        "disclaimer": "NOT MEDICAL ADVICE",
    }
