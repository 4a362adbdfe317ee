"""Persistent settings storage for the backend URL and streaming preferences."""

from __future__ import annotations

import json
from dataclasses import dataclass, asdict
from pathlib import Path


@dataclass(slots=True)
class AppSettings:
    backend_url: str = "http://localhost:3847"
    include_timestamps: bool = False
    streaming_mode: bool = True
    max_memory_mb: int = 200
    poll_interval_ms: int = 50
    finish_timeout_s: float = 5.0
    settle_time_s: float = 1.0

    def live_url(self) -> str:
        base = self.backend_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}/api/live"


class SettingsStore:
    def __init__(self, path: Path) -> None:
        self.path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._settings = self._load()

    @property
    def _path(self) -> Path:
        return self.path

    def _load(self) -> AppSettings:
        if not self._path.exists():
            return AppSettings()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            raw = {}
        settings = AppSettings()
        settings.backend_url = str(raw.get("backend_url", settings.backend_url))
        settings.include_timestamps = bool(raw.get("include_timestamps", settings.include_timestamps))
        settings.streaming_mode = bool(raw.get("streaming_mode", settings.streaming_mode))
        settings.max_memory_mb = int(raw.get("max_memory_mb", settings.max_memory_mb))
        settings.poll_interval_ms = int(raw.get("poll_interval_ms", settings.poll_interval_ms))
        settings.finish_timeout_s = float(raw.get("finish_timeout_s", settings.finish_timeout_s))
        settings.settle_time_s = float(raw.get("settle_time_s", settings.settle_time_s))
        return settings

    def get(self) -> AppSettings:
        return self._settings

    def update(self, **kwargs) -> AppSettings:
        for key, value in kwargs.items():
            if not hasattr(self._settings, key):
                continue
            current = getattr(self._settings, key)
            if isinstance(current, bool):
                setattr(self._settings, key, bool(value))
            elif isinstance(current, float):
                setattr(self._settings, key, float(value))
            elif isinstance(current, int):
                setattr(self._settings, key, int(value))
            else:
                setattr(self._settings, key, value or "")
        self._persist()
        return self._settings

    def _persist(self) -> None:
        self._path.write_text(json.dumps(asdict(self._settings)), encoding="utf-8")
