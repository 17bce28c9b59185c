"""
Model credential resolution.

Precedence (first non-blank wins):
1. user-entered override saved through the admin endpoint
2. runtime-injected value (constructor argument or MEDLENS_API_KEY)
3. build-time value (API_KEY / GEMINI_API_KEY, usually from `.env`)
Absent -> CredentialMissing, which callers turn into simulation mode.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Optional

from errors import CredentialMissing

logger = logging.getLogger(__name__)

SOURCE_USER_OVERRIDE = "user_override"
SOURCE_RUNTIME = "runtime"
SOURCE_BUILD_TIME = "build_time"

BUILD_TIME_ENV_VARS = ("API_KEY", "GEMINI_API_KEY")


@dataclass(frozen=True)
class ResolvedCredential:
    api_key: str
    source: str


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


def _default_credential_path() -> Path:
    explicit = _clean(os.getenv("MEDLENS_CREDENTIAL_FILE"))
    if explicit:
        return Path(explicit).expanduser().resolve()
    base = Path(
        (os.getenv("MEDLENS_LOCAL_DATA_DIR", "./local_data") or "./local_data").strip()
    ).expanduser().resolve()
    return base / "credential.json"


class CredentialStore:
    """
    Persists the user-entered key override as a small JSON file.
    """

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = Path(path).expanduser().resolve() if path else _default_credential_path()
        self._lock = Lock()

    def get(self) -> str:
        with self._lock:
            if not self.path.exists():
                return ""
            try:
                payload = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.warning("Ignoring unreadable credential override at %s: %s", self.path, exc)
                return ""
        if not isinstance(payload, dict):
            return ""
        return _clean(payload.get("api_key"))

    def set(self, api_key: str) -> None:
        key = _clean(api_key)
        if not key:
            self.clear()
            return
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps({"api_key": key}), encoding="utf-8")

    def clear(self) -> None:
        with self._lock:
            if self.path.exists():
                self.path.unlink()


class CredentialResolver:
    def __init__(
        self,
        store: Optional[CredentialStore] = None,
        runtime_key: Optional[str] = None,
    ) -> None:
        self.store = store or CredentialStore()
        self.runtime_key = runtime_key

    def resolve(self) -> Optional[ResolvedCredential]:
        override = self.store.get()
        if override:
            return ResolvedCredential(override, SOURCE_USER_OVERRIDE)

        runtime = _clean(self.runtime_key) or _clean(os.getenv("MEDLENS_API_KEY"))
        if runtime:
            return ResolvedCredential(runtime, SOURCE_RUNTIME)

        for name in BUILD_TIME_ENV_VARS:
            build_time = _clean(os.getenv(name))
            if build_time:
                return ResolvedCredential(build_time, SOURCE_BUILD_TIME)
        return None

    def require(self) -> ResolvedCredential:
        credential = self.resolve()
        if credential is None:
            raise CredentialMissing()
        return credential
