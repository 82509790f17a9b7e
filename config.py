"""Simple JSON-based settings store."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class VoiceSettings:
    language: str = "en-US"
    sensitivity: float = 0.5
    continuous_mode: bool = False
    voice_rate: float = 1.0
    engine: str = "google"


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "voice_todo" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_api_key(self) -> str:
        data = self._read_all()
        return str(data.get("api_key", ""))

    def set_api_key(self, key: str) -> None:
        data = self._read_all()
        data["api_key"] = key
        self._write_all(data)

    def get_hotkey(self) -> str:
        data = self._read_all()
        return str(data.get("hotkey", "Key.alt_r"))

    def set_hotkey(self, hotkey: str) -> None:
        data = self._read_all()
        data["hotkey"] = hotkey
        self._write_all(data)

    def get_voice_settings(self) -> VoiceSettings:
        stored = self._read_all().get("voice", {})
        if not isinstance(stored, dict):
            return VoiceSettings()
        settings = VoiceSettings()
        for f in fields(VoiceSettings):
            if f.name not in stored:
                continue
            default = getattr(settings, f.name)
            try:
                setattr(settings, f.name, _coerce(stored[f.name], default))
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid setting %s=%r", f.name, stored[f.name])
        settings.sensitivity = min(max(settings.sensitivity, 0.0), 1.0)
        return settings

    def set_voice_settings(self, settings: VoiceSettings) -> None:
        data = self._read_all()
        data["voice"] = asdict(settings)
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("Config at %s is unreadable, using defaults", self._path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def _coerce(value: object, default: object) -> object:
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(default, float):
        return float(value)  # type: ignore[arg-type]
    return str(value)
