#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from pathlib import Path

# Allow running from a checkout without installing the package.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from siterefresh._util import format_duration, from_iso, utc_now  # noqa: E402
from siterefresh.app import build_app  # noqa: E402
from siterefresh.banners import banner_config, banner_dir_status  # noqa: E402
from siterefresh.config import ConfigError, load_settings  # noqa: E402
from siterefresh.models import TASK_ORDER  # noqa: E402
from siterefresh.scheduler import InvalidScheduleError  # noqa: E402
from siterefresh.status_store import PersistenceError, StatusStore  # noqa: E402

_TASK_LABELS = {
    "contentGeneration": "Content generation",
    "bannerUpdates": "Banner updates",
    "languageUpdates": "Language updates",
}


def format_status(data: dict[str, object] | None, *, verbose: bool = False) -> str:
    lines = ["", "Scheduler status", "================"]
    if not data:
        lines.append("No scheduler status recorded yet.")
        return "\n".join(lines) + "\n"

    now = utc_now()
    lines.append(f"Running: {'yes' if data.get('isRunning') else 'no'}")
    lines.append(f"Schedule: {data.get('schedule') or '-'}")
    lines.append(f"Last run: {data.get('lastRun') or 'never'}")

    next_run = from_iso(data.get("nextRun"))
    if next_run is not None:
        wait_ms = int((next_run - now).total_seconds() * 1000)
        lines.append(f"Next run: {data.get('nextRun')} (in {format_duration(wait_ms)})")
    else:
        lines.append("Next run: none")

    last_status = data.get("lastStatus")
    if verbose and isinstance(last_status, dict):
        lines.extend(["", "Last run details", "----------------"])
        for name in TASK_ORDER:
            outcome = last_status.get(name) or {}
            ok = isinstance(outcome, dict) and outcome.get("success") is True
            lines.append(f"{_TASK_LABELS.get(name, name)}: {'success' if ok else 'failed'}")
            ts = outcome.get("timestamp") if isinstance(outcome, dict) else None
            if ts:
                lines.append(f"  at: {ts}")
    return "\n".join(lines) + "\n"


def _cmd_status(args: argparse.Namespace) -> int:
    settings = load_settings()
    raw = StatusStore(settings.status_file).read()
    sys.stdout.write(format_status(raw, verbose=bool(args.verbose)))
    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    app = build_app(load_settings())
    try:
        result = app.scheduler.run_updates()
    finally:
        app.scheduler.shutdown()
    summary = {
        "success": result.success,
        "summary": result.summary(),
        "outcomes": {name: o.to_dict() for name, o in result.outcomes.items()},
    }
    sys.stdout.write(json.dumps(summary, ensure_ascii=False, indent=2) + "\n")
    return 0 if result.success else 1


def _cmd_banners(args: argparse.Namespace) -> int:
    settings = load_settings()
    if args.action == "update":
        app = build_app(settings)
        try:
            resp = app.banners.update_banners(args.page_type)
        finally:
            app.scheduler.shutdown()
        code, body = resp.status_code, resp.body
    elif args.action == "status":
        code, body = 200, {"success": True, "status": banner_dir_status(settings.banner_dir)}
    else:
        code, body = 200, {"success": True, "config": banner_config()}
    sys.stdout.write(json.dumps(body, ensure_ascii=False, indent=2) + "\n")
    return 0 if code == 200 else 1


def _cmd_start(args: argparse.Namespace) -> int:
    app = build_app(load_settings())
    next_run = app.scheduler.start(args.schedule)
    sys.stdout.write(f"Scheduler started with schedule '{app.scheduler.schedule}'. Next run: {next_run.isoformat()}\n")
    done = threading.Event()
    try:
        # Foreground until interrupted; the timer thread does the work.
        while not done.wait(3600):
            pass
    except KeyboardInterrupt:
        sys.stdout.write("Stopping scheduler...\n")
    finally:
        app.scheduler.shutdown()
    return 0


def main(argv: list[str]) -> int:
    parser = argparse.ArgumentParser(description="Scheduled marketing-site asset refresh.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")
    sub = parser.add_subparsers(dest="command", required=True)

    p_start = sub.add_parser("start", help="Run the scheduler in the foreground until interrupted.")
    p_start.add_argument("--schedule", default=None, help='Cron expression, e.g. "0 0 * * *" (default: UPDATE_SCHEDULE).')
    p_start.set_defaults(func=_cmd_start)

    p_run = sub.add_parser("run", help="Run all update tasks once and print the outcome.")
    p_run.set_defaults(func=_cmd_run)

    p_status = sub.add_parser("status", help="Show the persisted scheduler status.")
    p_status.add_argument("--verbose", action="store_true", help="Include per-task outcomes.")
    p_status.set_defaults(func=_cmd_status)

    p_banners = sub.add_parser("banners", help="Regenerate banners now, or list banner files and slots.")
    p_banners.add_argument("action", choices=("update", "status", "config"))
    p_banners.add_argument(
        "--page-type", action="append", default=None, help="Limit update to this page type (repeatable)."
    )
    p_banners.set_defaults(func=_cmd_banners)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return int(args.func(args))
    except (ConfigError, InvalidScheduleError, PersistenceError) as e:
        sys.stderr.write(f"error: {e}\n")
        return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
