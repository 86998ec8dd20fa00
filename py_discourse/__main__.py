"""Command line client for the discourse analysis service.

Usage:
    python -m py_discourse queue
    python -m py_discourse submit lesson.mp4 [--yes]
    python -m py_discourse status <analysis_id>
    python -m py_discourse stop <analysis_id>
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from py_discourse.api import AnalysisAPI
from py_discourse.config import SyncConfig, load_config
from py_discourse.errors import (
    CancellationNetworkFailure,
    InvalidVideoError,
    PollError,
    ServerReportedError,
    SubmissionError,
)
from py_discourse.formatting import format_log_line, processing_steps
from py_discourse.models import AnalysisResults, JobPhase, QueueState, StateChange
from py_discourse.session import AnalysisSession
from py_discourse.submission import fetch_queue_state

LOGGER = logging.getLogger("py_discourse")


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _api_for(config: SyncConfig) -> AnalysisAPI:
    return AnalysisAPI(
        config.api_base,
        connect_timeout=config.connect_timeout_s,
        request_timeout=config.request_timeout_s,
        upload_timeout=config.upload_timeout_s,
    )


def _prompt_confirm(queue_state: QueueState) -> bool:
    print(f"Queue warning ({queue_state.warning_level.value}): {queue_state.warning_message}")
    if queue_state.estimated_wait_minutes is not None:
        print(f"Estimated wait: {queue_state.estimated_wait_minutes:.0f} min")
    answer = input("Submit anyway? [y/N] ").strip().lower()
    return answer in ("y", "yes")


def _print_results(results: AnalysisResults, config: SyncConfig) -> None:
    if results.overall_score is not None:
        print(f"Overall score: {results.overall_score:.1f}")
    for row in results.score_breakdown(config.score_weights):
        print(f"  {row['label']:<24} {row['score']:5.1f} x {row['weight_pct']:.0f}% = {row['weighted']:.1f}")
    for strength in results.strengths:
        print(f"  + {strength}")
    for suggestion in results.improvement_suggestions:
        print(f"  - {suggestion}")


def cmd_queue(config: SyncConfig) -> int:
    with _api_for(config) as api:
        state = fetch_queue_state(api)
    if state is None:
        return 1
    print(json.dumps(state.model_dump(mode="json"), indent=2))
    return 0


def cmd_status(config: SyncConfig, analysis_id: str) -> int:
    with _api_for(config) as api:
        try:
            snapshot = api.get_analysis_status(analysis_id)
        except PollError as exc:
            LOGGER.error("Status request failed: %s", exc)
            return 1
    print(f"{snapshot.status.value} {snapshot.progress:.0f}% {snapshot.message}")
    for entry in snapshot.log_entries():
        print(format_log_line(entry, config.display_timezone))
    if snapshot.results:
        _print_results(AnalysisResults.model_validate(snapshot.results), config)
    return 0


def cmd_stop(config: SyncConfig, analysis_id: str) -> int:
    with _api_for(config) as api:
        try:
            success = api.stop_analysis(analysis_id)
        except CancellationNetworkFailure as exc:
            LOGGER.error("Stop request failed: %s", exc)
            return 1
    print("stopped" if success else "stop not confirmed by server")
    return 0 if success else 1


def cmd_submit(config: SyncConfig, video: Path, assume_yes: bool = False) -> int:
    confirm = (lambda _state: True) if assume_yes else _prompt_confirm

    def _on_change(change: StateChange) -> None:
        status = change.snapshot.status
        if change.kind in ("status", "terminal") and change.progress_changed:
            active = [s["label"] for s in processing_steps(status.progress) if s["state"] == "active"]
            step = f" ({active[-1]})" if active else ""
            print(f"{status.status.value:<10} {status.progress:5.1f}%{step} {status.message}")
        elif change.kind == "log" and change.snapshot.logs:
            print(format_log_line(change.snapshot.logs[-1], config.display_timezone))

    with AnalysisSession(config, confirm=confirm, watch_queue=False) as session:
        session.store.add_listener(_on_change)
        try:
            job_id = session.submit(video, on_upload_progress=lambda pct: print(f"upload {pct}%"))
        except (InvalidVideoError, SubmissionError) as exc:
            LOGGER.error("Submission failed: %s", exc)
            return 1
        if job_id is None:
            print("Submission cancelled")
            return 0

        snapshot = None
        while snapshot is None:
            try:
                snapshot = session.wait()
            except KeyboardInterrupt:
                LOGGER.info("Interrupted; stopping %s", job_id)
                if not session.stop():
                    snapshot = session.snapshot()
            except ServerReportedError as exc:
                LOGGER.error("Analysis %s failed: %s", job_id, exc)
                return 1

        print(f"Analysis {job_id}: {snapshot.phase.value}")
        results = session.results()
        if results is not None:
            _print_results(results, config)
        return 0 if snapshot.phase == JobPhase.COMPLETED else 130


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(prog="py_discourse", description="Discourse analysis client")
    parser.add_argument("--config", type=Path, default=None, help="Path to sync YAML config")
    parser.add_argument("--env-file", type=Path, default=Path(".env"), help="dotenv file to load")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("queue", help="Show the queue advisory")

    submit = subparsers.add_parser("submit", help="Upload a video and follow the analysis")
    submit.add_argument("video", type=Path, help="Video file (.mp4, .avi, .mov, .mkv, .wmv)")
    submit.add_argument("-y", "--yes", action="store_true", help="Submit without confirming queue warnings")

    status = subparsers.add_parser("status", help="Fetch the status of an analysis")
    status.add_argument("analysis_id")

    stop = subparsers.add_parser("stop", help="Ask the server to stop an analysis")
    stop.add_argument("analysis_id")

    args = parser.parse_args(argv)
    load_dotenv(args.env_file)
    setup_logging(args.verbose)
    config = load_config(args.config)

    if args.command == "queue":
        return cmd_queue(config)
    if args.command == "submit":
        return cmd_submit(config, args.video, assume_yes=args.yes)
    if args.command == "status":
        return cmd_status(config, args.analysis_id)
    return cmd_stop(config, args.analysis_id)


if __name__ == "__main__":
    sys.exit(main())
