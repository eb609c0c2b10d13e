"""CLI entrypoint for inspecting and driving a running yagna daemon."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from golem_requestor import __version__
from golem_requestor.config import RequestorSettings
from golem_requestor.errors import RequestorError
from golem_requestor.logging import configure_logging
from golem_requestor.rest.activity import Activity, ActivityApi
from golem_requestor.rest.market import Agreement, MarketApi

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="golem-requestor",
        description="Requestor-side tools for a yagna daemon",
    )
    parser.add_argument("--version", action="version", version=f"golem-requestor {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    state = subparsers.add_parser("state", help="Show the state of an activity")
    state.add_argument("activity_id", help="Activity id")

    exec_script = subparsers.add_parser(
        "exec", help="Run an exe-script on an activity and print its command events"
    )
    exec_script.add_argument("activity_id", help="Activity id")
    exec_script.add_argument(
        "--script",
        required=True,
        type=Path,
        help="Path to a JSON file holding the list of commands",
    )
    exec_script.add_argument(
        "--stream",
        action="store_true",
        help="Consume results over the event stream instead of long-polling",
    )
    exec_script.add_argument(
        "--timeout",
        type=float,
        default=300.0,
        help="Seconds to wait for the batch to complete (default: 300)",
    )

    terminate = subparsers.add_parser("terminate", help="Terminate an agreement")
    terminate.add_argument("agreement_id", help="Agreement id")
    terminate.add_argument("--message", default="Work cancelled", help="Termination message")

    return parser


def _load_script(path: Path) -> list[dict[str, object]]:
    script = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(script, list) or not all(isinstance(c, dict) for c in script):
        raise ValueError(f"{path} must contain a JSON list of command objects")
    return script


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = RequestorSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        if args.command == "state":
            activity_api = ActivityApi(
                base_url=settings.activity_url or "",
                app_key=settings.app_key,
                timeout=settings.request_timeout,
            )
            try:
                state = Activity(api=activity_api, activity_id=args.activity_id).state()
            finally:
                activity_api.close()
            print(json.dumps(state.model_dump(mode="json")))
            return 0

        if args.command == "exec":
            script = _load_script(args.script)
            activity_api = ActivityApi(
                base_url=settings.activity_url or "",
                app_key=settings.app_key,
                timeout=settings.request_timeout,
            )
            activity = Activity(api=activity_api, activity_id=args.activity_id)
            deadline = datetime.now(tz=UTC) + timedelta(seconds=args.timeout)
            failed = False
            try:
                batch = activity.send(script, stream=args.stream, deadline=deadline)
                logger.info("Script sent", extra={"batch_id": batch.id, "size": batch.size})
                for event in batch.events():
                    print(json.dumps({"kind": type(event).__name__, **asdict(event)}, default=str))
                    failed = failed or getattr(event, "success", True) is False
            finally:
                activity_api.close()
            return 1 if failed else 0

        if args.command == "terminate":
            market_api = MarketApi(
                base_url=settings.market_url or "",
                app_key=settings.app_key,
                timeout=settings.request_timeout,
            )
            agreement = Agreement(api=market_api, agreement_id=args.agreement_id)
            try:
                terminated = agreement.terminate({"message": args.message})
            finally:
                market_api.close()
            if terminated:
                print(f"Terminated agreement {args.agreement_id}")
            else:
                print(f"Agreement {args.agreement_id} was already terminated")
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except RequestorError as e:
        logger.warning(str(e), extra={"command": args.command})
        print(str(e), file=sys.stderr)
        return 1

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
