from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import timedelta
from pathlib import Path

import uvicorn

from .achievements import achievement_catalog
from .api import create_app
from .config import Settings, load_settings
from .errors import LedgerError, NotFoundError
from .integrity import IntegritySigner
from .logging_config import setup_logging
from .models import SolutionOutcome
from .paths import ensure_home_dirs
from .recording import Recording
from .repository import JsonProgressRepository
from .service import ProgressLedger, progress_summary, stats_payload, verification_report


logger = logging.getLogger(__name__)


def _ledger(settings: Settings) -> ProgressLedger:
    ensure_home_dirs(settings.home)
    settings.recordings_dir.mkdir(parents=True, exist_ok=True)
    return ProgressLedger(
        JsonProgressRepository(settings.progress_path),
        IntegritySigner.from_environment(),
        lock_timeout=settings.lock_timeout_seconds,
        recordings_dir=settings.recordings_dir,
    )


def _print(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _load_recording(raw_path: str) -> Recording:
    path = Path(raw_path).expanduser()
    if not path.is_file():
        raise NotFoundError(f"Recording not found: {path}", code="RECORDING_NOT_FOUND", recording_path=str(path))
    return Recording.from_cast(path)


def main() -> int:
    parser = argparse.ArgumentParser(description="Editor Dojo progress CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("progress", help="Print the progress summary")

    stats_cmd = sub.add_parser("stats", help="Show stats for one challenge")
    stats_cmd.add_argument("challenge_id")

    record_cmd = sub.add_parser("record", help="Record a challenge attempt")
    record_cmd.add_argument("challenge_id")
    record_cmd.add_argument("--elapsed", type=float, required=True, help="Elapsed time in seconds")
    record_cmd.add_argument("--failed", action="store_true", help="Record the attempt as not completed")
    record_cmd.add_argument("--recording", help="Path to the asciinema .cast file for this attempt")

    achievements_cmd = sub.add_parser("achievements", help="List achievements or check for new unlocks")
    achievements_cmd.add_argument("--total", type=int, help="Total available challenges; runs an unlock check")

    verify_cmd = sub.add_parser("verify", help="Verify stored results against their signatures and recordings")
    verify_cmd.add_argument("--recordings-dir", help="Directory holding challenge recordings")

    decode_cmd = sub.add_parser("decode", help="Decode the keystrokes of a .cast recording")
    decode_cmd.add_argument("cast")
    decode_cmd.add_argument("--max-length", type=int, help="Display width for the key sequence")

    editor_cmd = sub.add_parser("editor", help="Set the preferred editor")
    editor_cmd.add_argument("name")

    api_cmd = sub.add_parser("api", help="Run local API server")
    api_cmd.add_argument("--host")
    api_cmd.add_argument("--port", type=int)

    args = parser.parse_args()

    try:
        settings = load_settings()
        setup_logging(settings)

        if args.command == "decode":
            sequence = _load_recording(args.cast).key_sequence
            max_length = args.max_length or settings.display_max_length
            _print(
                {
                    "keystrokes": sequence.count(),
                    "keys": list(sequence.keys),
                    "display": sequence.format_for_display(max_length),
                }
            )
            return 0

        ledger = _ledger(settings)

        if args.command == "progress":
            _print(progress_summary(ledger.get_progress()))
            return 0
        if args.command == "stats":
            _print(stats_payload(ledger.require_challenge_stats(args.challenge_id)))
            return 0
        if args.command == "record":
            recording = _load_recording(args.recording) if args.recording else None
            elapsed = timedelta(seconds=args.elapsed)
            if args.failed:
                outcome = SolutionOutcome.failure(elapsed, recording)
            else:
                outcome = SolutionOutcome.success(elapsed, recording)
            submission = ledger.submit_solution(args.challenge_id, outcome)
            _print(
                {
                    "stats": stats_payload(submission.stats),
                    "keystrokes": outcome.keystrokes(),
                    "new_time_record": submission.new_time_record,
                    "new_keystroke_record": submission.new_keystroke_record,
                }
            )
            return 0
        if args.command == "achievements":
            if args.total is not None:
                unlocked = ledger.check_achievements(args.total)
                _print({"unlocked": [achievement.to_dict() for achievement in unlocked]})
                return 0
            unlocked_ids = ledger.get_progress().unlocked_achievement_ids()
            _print(
                [
                    {**achievement.to_dict(), "unlocked": achievement.id in unlocked_ids}
                    for achievement in achievement_catalog()
                ]
            )
            return 0
        if args.command == "verify":
            recordings_dir = Path(args.recordings_dir).expanduser() if args.recordings_dir else None
            report = verification_report(ledger.verify_all(recordings_dir))
            _print(report)
            return 0 if report["ok"] else 1
        if args.command == "editor":
            ledger.set_editor_preference(args.name)
            _print({"editor_preference": args.name.strip()})
            return 0
        if args.command == "api":
            app = create_app(ledger)
            uvicorn.run(
                app,
                host=args.host or settings.api_host,
                port=args.port or settings.api_port,
                log_level=settings.log_level.lower(),
            )
            return 0
    except LedgerError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(json.dumps({"error": exc.to_dict()}, indent=2), file=sys.stderr)
        return 2

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
