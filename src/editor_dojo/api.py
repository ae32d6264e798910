from __future__ import annotations

"""HTTP API surface for local progress ledger operations."""

import logging
from datetime import timedelta
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from .achievements import achievement_catalog
from .errors import LedgerError, LockError, NotFoundError, PersistenceError, ValidationError
from .models import SolutionOutcome
from .paths import validate_challenge_id
from .recording import Recording
from .service import ProgressLedger, progress_summary, stats_payload, verification_report


logger = logging.getLogger(__name__)


class SolutionRequest(BaseModel):
    """Payload for `/v1/challenges/{id}/solutions`."""

    completed: bool = True
    elapsed_secs: float = Field(ge=0)
    recording_path: str | None = Field(default=None, max_length=4096)


class AchievementCheckRequest(BaseModel):
    total_challenges: int = Field(ge=0)


class EditorPreferenceRequest(BaseModel):
    editor: str = Field(min_length=1, max_length=120)


def _status_for(exc: LedgerError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, LockError):
        return 503
    if isinstance(exc, PersistenceError):
        return 500
    return 400


def create_app(ledger: ProgressLedger) -> FastAPI:
    """Create API routes backed by `ProgressLedger`."""

    app = FastAPI(title="Editor Dojo API", version=__version__)

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        status_code = _status_for(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.get("/v1/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "production_signing": ledger.signer.is_production_build,
        }

    @app.get("/v1/progress")
    def get_progress() -> dict[str, Any]:
        return progress_summary(ledger.get_progress())

    @app.get("/v1/challenges/{challenge_id}")
    def get_challenge(challenge_id: str) -> dict[str, Any]:
        stats = ledger.require_challenge_stats(challenge_id)
        return stats_payload(stats)

    @app.post("/v1/challenges/{challenge_id}/solutions")
    def submit_solution(challenge_id: str, request: SolutionRequest) -> dict[str, Any]:
        validate_challenge_id(challenge_id)
        recording = None
        if request.recording_path:
            path = Path(request.recording_path).expanduser()
            if not path.is_file():
                raise NotFoundError(
                    f"Recording not found: {path}",
                    code="RECORDING_NOT_FOUND",
                    recording_path=str(path),
                )
            recording = Recording.from_cast(path)
        elapsed = timedelta(seconds=request.elapsed_secs)
        outcome = (
            SolutionOutcome.success(elapsed, recording)
            if request.completed
            else SolutionOutcome.failure(elapsed, recording)
        )
        submission = ledger.submit_solution(challenge_id, outcome)
        return {
            "stats": stats_payload(submission.stats),
            "keystrokes": outcome.keystrokes(),
            "new_time_record": submission.new_time_record,
            "new_keystroke_record": submission.new_keystroke_record,
        }

    @app.get("/v1/achievements")
    def list_achievements() -> list[dict[str, Any]]:
        unlocked = ledger.get_progress().unlocked_achievements
        rows = []
        for achievement in achievement_catalog():
            item = unlocked.get(achievement.id)
            rows.append(
                {
                    **achievement.to_dict(),
                    "unlocked": item is not None,
                    "unlocked_at": item.unlocked_at.isoformat() if item else None,
                }
            )
        return rows

    @app.post("/v1/achievements/check")
    def check_achievements(request: AchievementCheckRequest) -> dict[str, Any]:
        unlocked = ledger.check_achievements(request.total_challenges)
        return {"unlocked": [achievement.to_dict() for achievement in unlocked]}

    @app.get("/v1/verify")
    def verify() -> dict[str, Any]:
        return verification_report(ledger.verify_all())

    @app.put("/v1/preferences/editor")
    def put_editor_preference(request: EditorPreferenceRequest) -> dict[str, Any]:
        ledger.set_editor_preference(request.editor)
        return {"editor_preference": request.editor.strip()}

    return app
