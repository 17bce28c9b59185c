"""
MedLens Report Service - Model Gateway

Sends an uploaded document to the external multimodal model and returns a
normalized AnalysisResult.

Modes:
- live: Gemini generateContent over HTTP (httpx) when a credential resolves
- simulation: honest demo-mode result when no credential is configured

One call per report, no retries. Every failure propagates to the caller.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
from typing import Any, Dict, Optional

import httpx

from credentials import CredentialResolver
from errors import (
    CredentialMissing,
    EmptyResponse,
    MalformedResponse,
    MedLensError,
    UpstreamError,
    UpstreamReason,
)
from models import AnalysisResult, SourceDocument
from response_normalizer import ResponseNormalizer

logger = logging.getLogger(__name__)

DEFAULT_MODEL_NAME = "gemini-2.5-flash"
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
LOW_CONFIDENCE_THRESHOLD = 0.2

SYSTEM_INSTRUCTION = """
You are MedLens AI, a medical explainability system. You DO NOT diagnose.
Analyze the attached medical image or document and explain it at three levels of understanding.

OUTPUT RULES:
1. Return ONLY valid JSON.
2. When a Target Language is given (for example Tamil or Hindi):
   a) write "summary_patient", "summary_student", "summary_doctor" and the
      "recommendations_*" lists in that language;
   b) also write English versions in the matching "*_en" keys.
3. JSON keys stay in English, and so does the "file_type" value.

EXPLANATION MODES:
- patient: simple, friendly, everyday language.
- student: moderate detail, educational.
- doctor: technical descriptors.

OUTPUT FORMAT (MANDATORY JSON):
{
  "file_type": "xray | mri | prescription | lab_report | other",
  "summary_patient": "...", "summary_student": "...", "summary_doctor": "...",
  "summary_patient_en": "...", "summary_student_en": "...", "summary_doctor_en": "...",
  "highlights": {
    "regions_of_interest": [
      {"label": "...", "description": "...", "confidence": 0.9, "box_2d": [ymin, xmin, ymax, xmax]}
    ],
    "artifacts": []
  },
  "recommendations_patient": ["..."], "recommendations_student": ["..."], "recommendations_doctor": ["..."],
  "recommendations_patient_en": ["..."], "recommendations_student_en": ["..."], "recommendations_doctor_en": ["..."],
  "confidence_overall": 0.0,
  "disclaimer": "NOT MEDICAL ADVICE"
}

REQUIREMENTS:
- NEVER diagnose. NEVER give treatment instructions.
- If the file is unclear or not medical, set "confidence_overall" to 0.1 and say so in the summaries.
""".strip()

SIMULATION_NOTICE = "DEMO MODE: REAL AI IS DISABLED."
SIMULATION_INSTRUCTIONS = (
    "To enable Real AI Analysis: go to Admin > Configuration > API Key Management "
    "and enter your Gemini API Key, or set MEDLENS_API_KEY for the service."
)
SIMULATION_DOCTOR_NOTE = (
    "MISSING_API_KEY: The service is running in Simulation Mode because no API Key was found "
    "in the saved override, the runtime environment, or the build-time configuration."
)
SIMULATION_STEPS = ["Go to Admin Page", "Click Configuration Tab", "Enter API Key"]


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def build_user_prompt(target_language: str) -> str:
    return (
        f"Analyze this medical file. Target Language: {target_language}. "
        f"Ensure summaries and recommendations are in {target_language}, "
        "and also provide English versions."
    )


def parse_model_json(raw_text: str) -> Dict[str, Any]:
    """
    Parse model text as a JSON object, allowing fenced markdown wrappers.
    """
    cleaned = (raw_text or "").strip()
    cleaned = cleaned.replace("```json", "").replace("```", "").strip()
    try:
        data = json.loads(cleaned)
    except ValueError as exc:
        logger.error("Model returned non-JSON text (%d chars).", len(cleaned))
        raise MalformedResponse(f"Model response is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedResponse(
            f"Model response must be a JSON object, got {type(data).__name__}."
        )
    return data


def classify_upstream_error(exc: Exception) -> UpstreamError:
    status_code: Optional[int] = None
    message = str(exc)
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        try:
            message = f"{message} {exc.response.text}"
        except httpx.ResponseNotRead:
            pass

    lowered = message.lower()
    if "api key not valid" in lowered or "API_KEY" in message or status_code in {401, 403}:
        reason = UpstreamReason.INVALID_CREDENTIAL
    elif isinstance(exc, httpx.TransportError) or "fetch" in lowered:
        reason = UpstreamReason.NETWORK_UNREACHABLE
    elif status_code == 400 or (status_code is None and "400" in message):
        reason = UpstreamReason.UNSUPPORTED_INPUT
    elif status_code == 503 or (status_code is None and "503" in message) or "overloaded" in lowered:
        reason = UpstreamReason.OVERLOADED
    else:
        reason = UpstreamReason.UNKNOWN
    return UpstreamError(reason, message=message.strip() or exc.__class__.__name__, status_code=status_code)


def simulated_payload() -> Dict[str, Any]:
    return {
        "file_type": "demo_simulation",
        "summary_patient": SIMULATION_NOTICE,
        "summary_student": SIMULATION_INSTRUCTIONS,
        "summary_doctor": SIMULATION_DOCTOR_NOTE,
        "summary_patient_en": SIMULATION_NOTICE,
        "summary_student_en": SIMULATION_INSTRUCTIONS,
        "summary_doctor_en": SIMULATION_DOCTOR_NOTE,
        "highlights": {
            "regions_of_interest": [
                {
                    "label": "Configuration Error",
                    "description": "API Key Not Found",
                    "confidence": 1.0,
                    "box_2d": [10, 10, 90, 90],
                }
            ],
            "artifacts": [],
        },
        "recommendations_patient": list(SIMULATION_STEPS),
        "recommendations_student": [],
        "recommendations_doctor": [],
        "recommendations_patient_en": list(SIMULATION_STEPS),
        "recommendations_student_en": [],
        "recommendations_doctor_en": [],
        "confidence_overall": 0.0,
        "disclaimer": "SIMULATION ONLY",
    }


class GeminiTransport:
    """
    Thin HTTP client for the Gemini generateContent endpoint.
    Timeouts live here, not in the gateway.
    """

    def __init__(
        self,
        model_name: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.model_name = (model_name or os.getenv("MEDLENS_MODEL_NAME", DEFAULT_MODEL_NAME)).strip()
        self.base_url = (base_url or os.getenv("MEDLENS_MODEL_BASE_URL", DEFAULT_BASE_URL)).strip().rstrip("/")
        self.timeout_seconds = max(1.0, _env_float("MEDLENS_MODEL_TIMEOUT_SECONDS", 120.0))
        self.temperature = _env_float("MEDLENS_MODEL_TEMPERATURE", 0.1)
        self._client = client

    def build_request_body(self, document: SourceDocument, prompt: str) -> Dict[str, Any]:
        return {
            "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {
                            "inlineData": {
                                "mimeType": document.mime_type or "image/jpeg",
                                "data": base64.b64encode(document.content).decode("ascii"),
                            }
                        },
                        {"text": prompt},
                    ],
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "temperature": self.temperature,
            },
        }

    async def generate_content(self, document: SourceDocument, prompt: str, api_key: str) -> str:
        url = f"{self.base_url}/models/{self.model_name}:generateContent"
        body = self.build_request_body(document, prompt)
        headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}

        if self._client is not None:
            resp = await self._client.post(url, json=body, headers=headers)
            resp.raise_for_status()
            payload = resp.json()
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                resp = await client.post(url, json=body, headers=headers)
                resp.raise_for_status()
                payload = resp.json()
        return self.extract_text(payload)

    @staticmethod
    def extract_text(payload: Any) -> str:
        if not isinstance(payload, dict):
            return ""
        candidates = payload.get("candidates") or []
        if not candidates or not isinstance(candidates[0], dict):
            return ""
        content = candidates[0].get("content") or {}
        parts = content.get("parts") or []
        return "".join(str(part.get("text") or "") for part in parts if isinstance(part, dict))


class ModelGateway:
    def __init__(
        self,
        credentials: Optional[CredentialResolver] = None,
        transport: Optional[GeminiTransport] = None,
        normalizer: Optional[ResponseNormalizer] = None,
    ) -> None:
        self.credentials = credentials or CredentialResolver()
        self.transport = transport or GeminiTransport()
        self.normalizer = normalizer or ResponseNormalizer()
        self.simulation_delay_seconds = max(0.0, _env_float("MEDLENS_SIMULATION_DELAY_SECONDS", 1.5))

    @property
    def model_name(self) -> str:
        return self.transport.model_name

    def simulation_mode(self) -> bool:
        return self.credentials.resolve() is None

    async def analyze(self, document: SourceDocument, target_language: str = "English") -> AnalysisResult:
        logger.info("Analyzing file %s (%s) in %s", document.name, document.mime_type, target_language)
        try:
            credential = self.credentials.require()
        except CredentialMissing:
            logger.warning("No valid model API key found. Using simulation.")
            return await self.simulate(document, target_language)

        prompt = build_user_prompt(target_language)
        try:
            text = await self.transport.generate_content(document, prompt, credential.api_key)
        except MedLensError:
            raise
        except Exception as exc:
            error = classify_upstream_error(exc)
            logger.error(
                "Model call failed | reason=%s | status=%s | source=%s",
                error.reason.value,
                error.status_code,
                credential.source,
            )
            raise error from exc

        if not text or not text.strip():
            raise EmptyResponse()

        data = parse_model_json(text)
        confidence = data.get("confidence_overall")
        if isinstance(confidence, (int, float)) and confidence < LOW_CONFIDENCE_THRESHOLD:
            logger.warning("Low confidence analysis for %s: %.2f", document.name, confidence)

        result = self.normalizer.normalize(data, document.id)
        return result.model_copy(update={"model_name": self.model_name})

    async def simulate(self, document: SourceDocument, target_language: str) -> AnalysisResult:
        _ = target_language
        if self.simulation_delay_seconds > 0:
            await asyncio.sleep(self.simulation_delay_seconds)
        result = self.normalizer.normalize(simulated_payload(), document.id)
        return result.model_copy(update={"simulated": True})
