"""Reel Studio command-line client.

Talks to a running Reel Studio server over HTTP.

Usage:
    reelstudio-cli submit <kind> [-p key=value ...] [--wait]
    reelstudio-cli status <job_id>
    reelstudio-cli list [--kind dubbing] [--limit 20]
    reelstudio-cli wait <job_id> [--interval 3] [--max-attempts 60]
    reelstudio-cli delete <job_id>
    reelstudio-cli upload <file>

Every command accepts --url (default: REELSTUDIO_URL or http://localhost:8000)
and --user (default: REELSTUDIO_USER).
"""

import argparse
import json
import mimetypes
import os
import sys
import time
from pathlib import Path
from typing import Any

import httpx

from reelstudio.jobs.models import JobKind

_DEFAULT_URL = "http://localhost:8000"
_TERMINAL = {"completed", "failed"}


def parse_param(raw: str) -> tuple[str, Any]:
    """Parse ``key=value``; values that are valid JSON are decoded."""
    key, sep, value = raw.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected key=value, got {raw!r}")
    try:
        return key, json.loads(value)
    except json.JSONDecodeError:
        return key, value


def _client(args: argparse.Namespace) -> httpx.Client:
    if not args.user:
        print("Error: --user or REELSTUDIO_USER is required", file=sys.stderr)
        sys.exit(2)
    return httpx.Client(
        base_url=args.url.rstrip("/") + "/api/v1",
        headers={"X-User-Id": args.user},
        timeout=30.0,
    )


def _check(response: httpx.Response) -> Any:
    if response.status_code >= 400:
        try:
            message = response.json().get("error", response.text)
        except ValueError:
            message = response.text
        print(f"Error ({response.status_code}): {message}", file=sys.stderr)
        sys.exit(1)
    if response.status_code == 204 or not response.content:
        return None
    return response.json()


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def wait_for_job(
    client: httpx.Client,
    job_id: str,
    interval: float = 3.0,
    max_attempts: int = 60,
) -> dict[str, Any] | None:
    """Poll the status endpoint until the job is terminal or attempts run out."""
    for attempt in range(1, max_attempts + 1):
        status = _check(client.get(f"/jobs/{job_id}/status"))
        print(f"  [{attempt}/{max_attempts}] {status['status']}", file=sys.stderr)
        if status["status"] in _TERMINAL:
            return status
        time.sleep(interval)
    return None


def upload_file(client: httpx.Client, path: Path) -> dict[str, Any]:
    """Upload a media file; the returned ``upload_id`` goes into dubbing params."""
    media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    with path.open("rb") as f:
        return _check(client.post("/uploads", files={"file": (path.name, f, media_type)}))


# --- Subcommands ---


def cmd_submit(args: argparse.Namespace) -> None:
    params = dict(args.param or [])
    with _client(args) as client:
        created = _check(client.post("/jobs", json={"kind": args.kind, "params": params}))
        _print_json(created)
        if args.wait and created["status"] not in _TERMINAL:
            _finish_wait(client, created["job_id"], args.interval, args.max_attempts)


def cmd_status(args: argparse.Namespace) -> None:
    with _client(args) as client:
        _print_json(_check(client.get(f"/jobs/{args.job_id}/status")))


def cmd_list(args: argparse.Namespace) -> None:
    query: dict[str, Any] = {"limit": args.limit}
    if args.kind:
        query["kind"] = args.kind
    with _client(args) as client:
        jobs = _check(client.get("/jobs", params=query))
    if not jobs:
        print("No jobs.")
        return
    for job in jobs:
        print(f"{job['job_id']}  {job['kind']:<15} {job['status']:<11} {job['created_at']}")


def cmd_wait(args: argparse.Namespace) -> None:
    with _client(args) as client:
        _finish_wait(client, args.job_id, args.interval, args.max_attempts)


def cmd_delete(args: argparse.Namespace) -> None:
    with _client(args) as client:
        _check(client.delete(f"/jobs/{args.job_id}"))
    print(f"Deleted {args.job_id}")


def cmd_upload(args: argparse.Namespace) -> None:
    path = Path(args.file)
    if not path.is_file():
        print(f"Error: file not found: {path}", file=sys.stderr)
        sys.exit(2)
    with _client(args) as client:
        _print_json(upload_file(client, path))


def _finish_wait(client: httpx.Client, job_id: str, interval: float, max_attempts: int) -> None:
    status = wait_for_job(client, job_id, interval=interval, max_attempts=max_attempts)
    if status is None:
        print(f"Job {job_id} still running after {max_attempts} checks", file=sys.stderr)
        sys.exit(3)
    _print_json(status)
    if status["status"] == "failed":
        sys.exit(1)


# --- Main CLI ---


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reelstudio-cli",
        description="Reel Studio - asynchronous media jobs",
    )
    parser.add_argument("--url", default=os.environ.get("REELSTUDIO_URL", _DEFAULT_URL), help="Server URL")
    parser.add_argument("--user", default=os.environ.get("REELSTUDIO_USER"), help="User id sent as X-User-Id")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    def add_wait_options(p: argparse.ArgumentParser) -> None:
        p.add_argument("--interval", type=float, default=3.0, help="Seconds between checks (default: 3)")
        p.add_argument("--max-attempts", type=int, default=60, help="Maximum checks (default: 60)")

    # --- submit ---
    p_submit = subparsers.add_parser("submit", help="Submit a new job")
    p_submit.add_argument("kind", choices=[k.value for k in JobKind], help="Job kind")
    p_submit.add_argument("-p", "--param", action="append", type=parse_param, help="Parameter as key=value (repeatable)")
    p_submit.add_argument("--wait", action="store_true", help="Wait for the job to finish")
    add_wait_options(p_submit)

    # --- status ---
    p_status = subparsers.add_parser("status", help="Show job status")
    p_status.add_argument("job_id")

    # --- list ---
    p_list = subparsers.add_parser("list", help="List your jobs, newest first")
    p_list.add_argument("--kind", choices=[k.value for k in JobKind], help="Filter by kind")
    p_list.add_argument("--limit", type=int, default=50, help="Maximum jobs (default: 50)")

    # --- wait ---
    p_wait = subparsers.add_parser("wait", help="Wait until a job finishes")
    p_wait.add_argument("job_id")
    add_wait_options(p_wait)

    # --- delete ---
    p_delete = subparsers.add_parser("delete", help="Delete a job and its cached artifact")
    p_delete.add_argument("job_id")

    # --- upload ---
    p_upload = subparsers.add_parser("upload", help="Upload media for a dubbing job")
    p_upload.add_argument("file")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Dispatch
    if args.command == "submit":
        cmd_submit(args)
    elif args.command == "status":
        cmd_status(args)
    elif args.command == "list":
        cmd_list(args)
    elif args.command == "wait":
        cmd_wait(args)
    elif args.command == "delete":
        cmd_delete(args)
    elif args.command == "upload":
        cmd_upload(args)


if __name__ == "__main__":
    main()
