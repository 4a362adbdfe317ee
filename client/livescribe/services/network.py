"""HTTP client helpers for the LiveScribe backend."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from ..store.settings_store import SettingsStore


class ApiError(Exception):
    pass


class BackendClient:
    def __init__(self, settings: SettingsStore, *, timeout: float = 15.0, client: Optional[httpx.Client] = None) -> None:
        self.settings_store = settings
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    def _url(self, path: str) -> str:
        base = self.settings_store.get().backend_url.rstrip("/")
        if not base:
            raise ApiError("Backend URL missing")
        return f"{base}{path}"

    def check_health(self) -> bool:
        try:
            resp = self._client.get(self._url("/api/health"))
        except httpx.HTTPError:
            return False
        if resp.status_code != 200:
            return False
        try:
            data = resp.json()
        except ValueError:
            return False
        if not isinstance(data, dict):
            return False
        return data.get("status") == "ok" and data.get("model_loaded") is True

    def transcribe_file(self, file_path: str) -> Dict[str, Any]:
        try:
            with open(file_path, "rb") as fh:
                files = {"audio": (Path(file_path).name, fh, self._mime_type(file_path))}
                resp = self._client.post(self._url("/api/transcribe"), files=files)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise ApiError(f"Transcription failed: {exc.response.status_code}") from exc
        except ValueError as exc:
            raise ApiError(f"Invalid response: {exc}") from exc
        except (httpx.HTTPError, OSError) as exc:
            raise ApiError(str(exc)) from exc
        if not isinstance(data, dict) or not isinstance(data.get("transcript"), str):
            raise ApiError("Invalid response format from backend")
        return data

    def _mime_type(self, file_path: str) -> str:
        suffix = Path(file_path).suffix.lower()
        if suffix == ".webm":
            return "audio/webm"
        if suffix == ".flac":
            return "audio/flac"
        if suffix == ".mp3":
            return "audio/mpeg"
        return "audio/wav"

    def close(self) -> None:
        self._client.close()
