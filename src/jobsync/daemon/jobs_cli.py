"""Terminal entrypoint for running and inspecting the job pipeline."""

from __future__ import annotations

import argparse
from datetime import datetime
import json
from typing import Any

from src.jobsync.core.auth import Caller
from src.jobsync.core.errors import JobsError
from src.jobsync.core.job_status import STAGE_COMPLETED, JobStatus
from src.jobsync.core.pipeline import MAX_MAX_JOBS, MIN_MAX_JOBS, PipelineRunRequest
from src.jobsync.runtime.jobs_service import JobsService, get_jobs_service

CLI_CALLER = Caller(user_id="cli", is_admin=True)


def _ts() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, ensure_ascii=True, indent=2))


def _max_jobs(value: str) -> int:
    parsed = int(value)
    if not MIN_MAX_JOBS <= parsed <= MAX_MAX_JOBS:
        raise argparse.ArgumentTypeError(f"must be between {MIN_MAX_JOBS} and {MAX_MAX_JOBS}")
    return parsed


def _cmd_run(service: JobsService, args: argparse.Namespace) -> int:
    request = PipelineRunRequest(max_jobs=args.max_jobs, skip_duplicates=not args.allow_duplicates)
    started = service.start_run(CLI_CALLER, request)
    run_id = started["run_id"]
    print(f"[{_ts()}] Started run {run_id} ({request.to_dict()})", flush=True)

    last_seen: tuple[str, int] | None = None
    while not service.wait_for_idle(timeout_sec=args.poll_sec):
        status = service.status_store.get(run_id)
        if status is not None and (status.stage, status.progress) != last_seen:
            last_seen = (status.stage, status.progress)
            print(f"[{_ts()}] {status.stage:<10} {status.progress:>3}%  {status.message}", flush=True)

    final: JobStatus | None = service.status_store.get(run_id)
    if final is None:
        print(f"[{_ts()}] Run {run_id} finished but its status was cleared.", flush=True)
        return 1
    _print_json(final.to_dict())
    return 0 if final.stage == STAGE_COMPLETED else 1


def _cmd_validate(service: JobsService, _args: argparse.Namespace) -> int:
    out = service.validate_connections(CLI_CALLER)
    _print_json(out)
    return 0 if out["ok"] else 1


def _cmd_list(service: JobsService, args: argparse.Namespace) -> int:
    out = service.list_jobs(CLI_CALLER)
    if args.json:
        _print_json(out)
        return 0
    print(f"{out['count']} job(s) in sheet")
    for job in out["jobs"]:
        print(f"- [{job['status']}] {job['title']} at {job['company']} ({job['location']}) {job['jobLink']}")
    return 0


def _cmd_serve(_service: JobsService, args: argparse.Namespace) -> int:
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover - dependency error guard
        raise RuntimeError("uvicorn is required to serve the HTTP app") from exc
    uvicorn.run("app.main:app", host=args.host, port=args.port, reload=False)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run and inspect the LinkedIn -> Google Sheets job pipeline.")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the pipeline once and stream progress.")
    run.add_argument("--max-jobs", type=_max_jobs, default=100, help="Maximum jobs to scrape (1-200).")
    run.add_argument("--allow-duplicates", action="store_true", help="Append rows even when the job key exists.")
    run.add_argument("--poll-sec", type=float, default=1.0, help="Progress polling interval.")
    run.set_defaults(handler=_cmd_run)

    validate = sub.add_parser("validate", help="Check the Google Sheets connection and header row.")
    validate.set_defaults(handler=_cmd_validate)

    listing = sub.add_parser("list", help="List jobs stored in the sheet.")
    listing.add_argument("--json", action="store_true", help="Print raw JSON.")
    listing.set_defaults(handler=_cmd_list)

    serve = sub.add_parser("serve", help="Serve the HTTP app with uvicorn.")
    serve.add_argument("--host", default="127.0.0.1", help="Local bind host.")
    serve.add_argument("--port", type=int, default=8000, help="Local bind port.")
    serve.set_defaults(handler=_cmd_serve)
    return parser


def main(argv: list[str] | None = None, *, service: JobsService | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return int(args.handler(service or get_jobs_service(), args))
    except JobsError as exc:
        print(f"error: {exc.message}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
