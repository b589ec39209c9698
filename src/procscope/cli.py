"""procscope - JSON command line front end."""

import argparse
import json
import logging
import sys
from typing import Any

from procscope.commands import Procscope
from procscope.config import Settings
from procscope.errors import (
    InvalidRequest,
    InvocationFailure,
    PermissionDenied,
    ProcessNotFound,
    ProcscopeError,
)
from procscope.tree import SortKey, sort_records

EXIT_CODES: dict[type[ProcscopeError], int] = {
    InvalidRequest: 2,
    ProcessNotFound: 3,
    PermissionDenied: 4,
    InvocationFailure: 1,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="procscope",
        description="Inspect processes and open ports, and terminate processes.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    snapshot = sub.add_parser("snapshot", help="List running processes")
    snapshot.add_argument("--tree", action="store_true", help="Emit parent/child rows")
    snapshot.add_argument(
        "--sort",
        choices=[key.value for key in SortKey],
        default=SortKey.CPU.value,
        help="Sort order (default: cpu)",
    )

    sub.add_parser("ports", help="List listening TCP and bound UDP ports")

    details = sub.add_parser("details", help="Show details for one process")
    details.add_argument("pid", type=int)

    kill = sub.add_parser("kill", help="Terminate a process")
    kill.add_argument("pid", type=int)

    kill_matching = sub.add_parser("kill-matching", help="Terminate matching processes")
    kill_matching.add_argument("query")

    for kill_parser in (kill, kill_matching):
        kill_parser.add_argument(
            "--no-children",
            dest="include_children",
            action="store_false",
            help="Leave descendant processes alone",
        )
        kill_parser.add_argument(
            "--force", action="store_true", help="Send SIGKILL instead of SIGTERM"
        )

    return parser


def run_command(app: Procscope, args: argparse.Namespace) -> Any:
    """Dispatch parsed arguments and return a JSON-ready value."""
    if args.command == "snapshot":
        sort_key = SortKey(args.sort)
        if args.tree:
            rows = app.process_tree(sort_key)
            return [{"depth": row.depth, **row.record.to_dict()} for row in rows]
        snapshot = app.get_process_snapshot()
        payload = snapshot.to_dict()
        payload["processes"] = [
            record.to_dict() for record in sort_records(snapshot.processes, sort_key)
        ]
        return payload
    if args.command == "ports":
        return [record.to_dict() for record in app.list_open_ports()]
    if args.command == "details":
        return app.get_process_details(args.pid).to_dict()
    if args.command == "kill":
        return app.kill_process(
            args.pid, include_children=args.include_children, force=args.force
        ).to_dict()
    if args.command == "kill-matching":
        return app.kill_matching_processes(
            args.query, include_children=args.include_children, force=args.force
        ).to_dict()
    raise InvalidRequest(f"Unknown command: {args.command}")


def _report(exc: ProcscopeError) -> int:
    json.dump({"error": str(exc), "kind": exc.kind}, sys.stderr)
    sys.stderr.write("\n")
    return EXIT_CODES.get(type(exc), 1)


def main(argv: list[str] | None = None) -> int:
    """Entry point for the procscope command."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        payload = run_command(Procscope(Settings.from_env()), args)
    except ProcscopeError as exc:
        return _report(exc)
    except Exception as exc:
        return _report(InvocationFailure(str(exc) or type(exc).__name__))

    json.dump(payload, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
