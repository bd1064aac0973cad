"""Persistent settings storage for the proxy endpoint and recorder tuning."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path

from ..config import SessionConfig


@dataclass(slots=True)
class AppSettings:
    server_url: str = ""
    api_key: str = ""
    user_id: str = ""
    language: str = "en"
    dialect: str = "en-us"
    silence_threshold: float = 0.01
    silence_delay_ms: int = 1000
    max_segment_duration_ms: int = 12000
    max_total_duration_ms: int = 60000


class SettingsStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._settings = self._load()

    def _load(self) -> AppSettings:
        if not self.path.exists():
            return AppSettings()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            raw = {}
        if not isinstance(raw, dict):
            raw = {}
        settings = AppSettings()
        for key, value in raw.items():
            try:
                self._assign(settings, key, value)
            except (TypeError, ValueError):
                continue
        return settings

    def get(self) -> AppSettings:
        return self._settings

    def update(self, **kwargs) -> AppSettings:
        for key, value in kwargs.items():
            self._assign(self._settings, key, value)
        self._persist()
        return self._settings

    def session_config(self, **overrides) -> SessionConfig:
        """Build a session config from the stored tuning values."""
        current = self._settings
        values = {
            "silence_threshold": current.silence_threshold,
            "silence_delay_ms": current.silence_delay_ms,
            "max_segment_duration_ms": current.max_segment_duration_ms,
            "max_total_duration_ms": current.max_total_duration_ms,
            "language": current.language,
            "dialect": current.dialect,
            "user_id": current.user_id or None,
        }
        values.update(overrides)
        return SessionConfig(**values)

    @staticmethod
    def _assign(settings: AppSettings, key: str, value) -> None:
        if key not in {f.name for f in fields(AppSettings)}:
            return
        current = getattr(settings, key)
        if isinstance(current, float):
            setattr(settings, key, float(value))
        elif isinstance(current, int):
            setattr(settings, key, int(value))
        else:
            setattr(settings, key, str(value or ""))

    def _persist(self) -> None:
        self.path.write_text(json.dumps(asdict(self._settings)), encoding="utf-8")


__all__ = ["AppSettings", "SettingsStore"]
