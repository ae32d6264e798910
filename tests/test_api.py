from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

from fastapi.testclient import TestClient

from editor_dojo.api import create_app
from editor_dojo.errors import LockError
from editor_dojo.integrity import IntegritySigner
from editor_dojo.repository import JsonProgressRepository
from editor_dojo.service import ProgressLedger


def _write_cast(path: Path, keys: list[str]) -> Path:
    lines = [json.dumps({"version": 2})] + [json.dumps([0.1, "i", key]) for key in keys]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def _ledger_and_client(tmp_path: Path) -> tuple[ProgressLedger, TestClient]:
    ledger = ProgressLedger(
        JsonProgressRepository(tmp_path / "home" / "progress.json"),
        IntegritySigner.development(),
        recordings_dir=tmp_path / "home" / "recordings",
        clock=lambda: datetime(2026, 7, 4, 9, 0, tzinfo=UTC),
    )
    return ledger, TestClient(create_app(ledger))


def test_health_endpoint(tmp_path: Path) -> None:
    _, client = _ledger_and_client(tmp_path)
    response = client.get("/v1/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["production_signing"] is False


def test_submit_solution_with_recording(tmp_path: Path) -> None:
    _, client = _ledger_and_client(tmp_path)
    cast = _write_cast(tmp_path / "home" / "recordings" / "challenge-dd-1.cast", ["d", "d", "\x1b"])
    response = client.post(
        "/v1/challenges/dd/solutions",
        json={"elapsed_secs": 4.2, "recording_path": str(cast)},
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["keystrokes"] == 3
    assert payload["new_time_record"] is True
    assert payload["stats"]["best_keystrokes"] == 3
    assert payload["stats"]["mastery_tier"] == "Gold"
    assert payload["stats"]["mastery_emoji"] == "\U0001f947"
    assert len(payload["stats"]["signature"]) == 64

    stats = client.get("/v1/challenges/dd")
    assert stats.status_code == 200
    assert stats.json()["attempt_count"] == 1

    verify = client.get("/v1/verify")
    assert verify.json() == {"ok": True, "results": {"dd": "verified"}}


def test_failed_attempt_is_not_a_record(tmp_path: Path) -> None:
    _, client = _ledger_and_client(tmp_path)
    response = client.post("/v1/challenges/dd/solutions", json={"elapsed_secs": 60, "completed": False})
    assert response.status_code == 200
    payload = response.json()
    assert payload["new_time_record"] is False
    assert payload["stats"]["completed"] is False
    assert payload["stats"]["mastery_tier"] is None
    assert payload["stats"]["mastery_emoji"] is None


def test_invalid_challenge_id_returns_400(tmp_path: Path) -> None:
    _, client = _ledger_and_client(tmp_path)
    response = client.post("/v1/challenges/bad..id/solutions", json={"elapsed_secs": 1})
    assert response.status_code == 400
    assert response.json()["code"] == "CHALLENGE_ID_INVALID"


def test_missing_recording_returns_404(tmp_path: Path) -> None:
    _, client = _ledger_and_client(tmp_path)
    response = client.post(
        "/v1/challenges/dd/solutions",
        json={"elapsed_secs": 1, "recording_path": str(tmp_path / "nope.cast")},
    )
    assert response.status_code == 404
    assert response.json()["code"] == "RECORDING_NOT_FOUND"


def test_negative_elapsed_rejected(tmp_path: Path) -> None:
    _, client = _ledger_and_client(tmp_path)
    response = client.post("/v1/challenges/dd/solutions", json={"elapsed_secs": -1})
    assert response.status_code == 422


def test_unknown_challenge_returns_404(tmp_path: Path) -> None:
    _, client = _ledger_and_client(tmp_path)
    response = client.get("/v1/challenges/never-played")
    assert response.status_code == 404
    assert response.json()["code"] == "CHALLENGE_NOT_FOUND"


def test_achievements_check_and_list(tmp_path: Path) -> None:
    _, client = _ledger_and_client(tmp_path)
    client.post("/v1/challenges/c1/solutions", json={"elapsed_secs": 20})

    check = client.post("/v1/achievements/check", json={"total_challenges": 50})
    assert check.status_code == 200
    assert [item["id"] for item in check.json()["unlocked"]] == ["FirstSteps"]

    again = client.post("/v1/achievements/check", json={"total_challenges": 50})
    assert again.json() == {"unlocked": []}

    listing = client.get("/v1/achievements").json()
    assert len(listing) == 12
    first = next(item for item in listing if item["id"] == "FirstSteps")
    assert first["unlocked"] is True
    assert first["unlocked_at"] == "2026-07-04T09:00:00+00:00"


def test_progress_and_editor_preference(tmp_path: Path) -> None:
    _, client = _ledger_and_client(tmp_path)
    client.post("/v1/challenges/c1/solutions", json={"elapsed_secs": 12.5})
    put = client.put("/v1/preferences/editor", json={"editor": "vim"})
    assert put.status_code == 200
    assert put.json() == {"editor_preference": "vim"}

    progress = client.get("/v1/progress").json()
    assert progress["editor_preference"] == "vim"
    assert progress["total_completed"] == 1
    assert progress["total_practice_time_secs"] == 12.5


def test_lock_error_maps_to_503(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    ledger, client = _ledger_and_client(tmp_path)

    def busy() -> None:
        raise LockError("busy")

    monkeypatch.setattr(ledger, "get_progress", busy)
    response = client.get("/v1/progress")
    assert response.status_code == 503
    assert response.json()["code"] == "LEDGER_LOCK_TIMEOUT"
