from __future__ import annotations

import logging
import os
import time
from pathlib import Path

import pytest

from editor_dojo.config import load_settings
from editor_dojo.errors import ConfigurationError, ValidationError
from editor_dojo.logging_config import setup_logging
from editor_dojo.paths import dojo_home, find_latest_recording, recording_path_for, validate_challenge_id


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("EDITOR_DOJO_HOME", "EDITOR_DOJO_LOG_LEVEL", "EDITOR_DOJO_LOG_FILE", "EDITOR_DOJO_LOCK_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_config_file(tmp_path: Path) -> None:
    settings = load_settings(tmp_path)
    assert settings.progress_path == tmp_path / "progress.json"
    assert settings.recordings_dir == tmp_path / "recordings"
    assert settings.log_level == "INFO"
    assert settings.lock_timeout_seconds == 10.0
    assert settings.display_max_length == 80


def test_default_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    assert dojo_home() == Path.home() / ".local" / "share" / "editor-dojo"
    monkeypatch.setenv("EDITOR_DOJO_HOME", str(tmp_path / "custom"))
    assert dojo_home() == (tmp_path / "custom").resolve()


def test_yaml_config_and_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "config.yaml").write_text(
        "\n".join(
            [
                "progress_path: state/progress.json",
                "logging:",
                "  level: debug",
                "  file: logs/dojo.log",
                "lock_timeout_seconds: 2.5",
                "display_max_length: 120",
                "api:",
                "  port: 9000",
                "theme: dark",
            ]
        ),
        encoding="utf-8",
    )
    settings = load_settings(tmp_path)
    assert settings.progress_path == tmp_path / "state" / "progress.json"
    assert settings.log_level == "DEBUG"
    assert settings.log_file == tmp_path / "logs" / "dojo.log"
    assert settings.lock_timeout_seconds == 2.5
    assert settings.display_max_length == 120
    assert settings.api_port == 9000
    assert settings.extra == {"theme": "dark"}

    monkeypatch.setenv("EDITOR_DOJO_LOG_LEVEL", "warning")
    monkeypatch.setenv("EDITOR_DOJO_LOCK_TIMEOUT", "0.5")
    settings = load_settings(tmp_path)
    assert settings.log_level == "WARNING"
    assert settings.lock_timeout_seconds == 0.5


def test_invalid_env_timeout_falls_back(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EDITOR_DOJO_LOCK_TIMEOUT", "soon")
    assert load_settings(tmp_path).lock_timeout_seconds == 10.0
    monkeypatch.setenv("EDITOR_DOJO_LOCK_TIMEOUT", "-1")
    assert load_settings(tmp_path).lock_timeout_seconds == 10.0


def test_invalid_config_files(tmp_path: Path) -> None:
    config = tmp_path / "config.yaml"
    config.write_text("logging: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_settings(tmp_path)
    config.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigurationError) as excinfo:
        load_settings(tmp_path)
    assert excinfo.value.code == "CONFIG_INVALID"


@pytest.mark.parametrize("timeout", ["0", "-5"])
def test_non_positive_lock_timeout_in_config_is_rejected(tmp_path: Path, timeout: str) -> None:
    (tmp_path / "config.yaml").write_text(f"lock_timeout_seconds: {timeout}\n", encoding="utf-8")
    with pytest.raises(ConfigurationError) as excinfo:
        load_settings(tmp_path)
    assert excinfo.value.code == "CONFIG_INVALID"


def test_unknown_log_level_is_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text("logging:\n  level: verbose\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_settings(tmp_path)

    config.write_text("logging:\n  level: warn\n", encoding="utf-8")
    assert load_settings(tmp_path).log_level == "WARNING"

    monkeypatch.setenv("EDITOR_DOJO_LOG_LEVEL", "VERBOSE")
    with pytest.raises(ConfigurationError) as excinfo:
        load_settings(tmp_path)
    assert excinfo.value.to_dict()["level"] == "VERBOSE"


def test_setup_logging_rejects_unknown_level(tmp_path: Path) -> None:
    settings = load_settings(tmp_path)
    settings.log_level = "LOUD"
    with pytest.raises(ConfigurationError):
        setup_logging(settings)


def test_setup_logging_writes_rotating_file(tmp_path: Path) -> None:
    settings = load_settings(tmp_path)
    settings.log_file = tmp_path / "logs" / "dojo.log"
    root = logging.getLogger()
    try:
        setup_logging(settings)
        setup_logging(settings)
        ours = [handler for handler in root.handlers if getattr(handler, "_editor_dojo", False)]
        assert len(ours) == 2
        logging.getLogger("editor_dojo.test").warning("hello log")
        for handler in ours:
            handler.flush()
        assert "hello log" in settings.log_file.read_text(encoding="utf-8")
    finally:
        for handler in list(root.handlers):
            if getattr(handler, "_editor_dojo", False):
                root.removeHandler(handler)
                handler.close()


@pytest.mark.parametrize("challenge_id", ["", "..", "../x", "a/b", "a\\b", "sp ace", "dot.id"])
def test_validate_challenge_id_rejects_unsafe(challenge_id: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_challenge_id(challenge_id)
    assert excinfo.value.code == "CHALLENGE_ID_INVALID"


def test_recording_paths(tmp_path: Path) -> None:
    assert recording_path_for(tmp_path, "dw_1", 1700000000) == tmp_path / "challenge-dw_1-1700000000.cast"
    assert find_latest_recording(tmp_path / "absent", "dw_1") is None

    older = tmp_path / "challenge-dw-100.cast"
    newer = tmp_path / "challenge-dw-200.cast"
    other = tmp_path / "challenge-dw-extra-300.cast"
    for path in (older, newer, other):
        path.write_text("{}\n", encoding="utf-8")
    now = time.time()
    os.utime(older, (now - 100, now - 100))
    os.utime(newer, (now - 50, now - 50))
    os.utime(other, (now, now))
    assert find_latest_recording(tmp_path, "dw") == newer
    assert find_latest_recording(tmp_path, "dw-extra") == other
