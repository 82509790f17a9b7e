from __future__ import annotations

import json
from pathlib import Path

from config import JsonConfigStore, VoiceSettings


def test_config_read_write(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    store = JsonConfigStore(path=path)

    assert store.get_api_key() == ""
    assert store.get_hotkey() == "Key.alt_r"
    assert store.get_voice_settings() == VoiceSettings()

    store.set_api_key("abc")
    store.set_hotkey("Key.f8")
    store.set_voice_settings(
        VoiceSettings(language="de-DE", sensitivity=0.7, continuous_mode=True, engine="dashscope")
    )

    reloaded = JsonConfigStore(path=path)
    assert reloaded.get_api_key() == "abc"
    assert reloaded.get_hotkey() == "Key.f8"
    settings = reloaded.get_voice_settings()
    assert settings.language == "de-DE"
    assert settings.sensitivity == 0.7
    assert settings.continuous_mode is True
    assert settings.engine == "dashscope"


def test_config_invalid_json_fallback(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{invalid", encoding="utf-8")

    store = JsonConfigStore(path=path)
    assert store.get_api_key() == ""
    assert store.get_voice_settings() == VoiceSettings()


def test_voice_settings_coerce_and_clamp(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "voice": {
                    "sensitivity": "3",
                    "continuous_mode": "yes",
                    "voice_rate": "fast",
                    "unknown": 1,
                }
            }
        ),
        encoding="utf-8",
    )

    settings = JsonConfigStore(path=path).get_voice_settings()

    assert settings.sensitivity == 1.0
    assert settings.continuous_mode is True
    assert settings.voice_rate == 1.0
    assert settings.language == "en-US"
