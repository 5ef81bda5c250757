"""CLI entry point for drawat."""

import argparse
import asyncio
import json
import logging
import os
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .models import decode_paths
from .runtime import Runtime, create_runtime
from .session import OAuthSession
from .storage import LocalStorage
from .sync import MergedCanvas


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


def _session_from_args(args: argparse.Namespace) -> OAuthSession | None:
    token = getattr(args, "access_token", None) or os.environ.get("DRAWAT_ACCESS_TOKEN")
    did = getattr(args, "did", None)
    if not token or not did:
        return None
    return OAuthSession(did=did, access_token=token, token_type="Bearer")


async def _open_runtime(config: Config, args: argparse.Namespace) -> Runtime:
    storage = LocalStorage(config.storage.db_path)
    return await create_runtime(config, storage=storage, session=_session_from_args(args))


def _canvas_summary(canvas: MergedCanvas) -> dict:
    return {
        "did": canvas.did,
        "pulled_at": canvas.pulled_at.isoformat(),
        "holders": canvas.holder_identities,
        "points": len(canvas.points),
        "strokes": len(canvas.strokes),
    }


async def cmd_holders(args: argparse.Namespace) -> int:
    """List identities holding a record."""
    config = load_config(args.config)
    runtime = await _open_runtime(config, args)
    try:
        for did in await runtime.adapter.list_record_holders():
            print(did)
    finally:
        await runtime.close()
    return 0


async def cmd_pull(args: argparse.Namespace) -> int:
    """Pull every record and summarize the merged canvas."""
    config = load_config(args.config)
    runtime = await _open_runtime(config, args)
    try:
        did = args.did or runtime.context.did
        result = await runtime.engine.pull(did)
    finally:
        await runtime.close()

    summary = {
        "did": did,
        "pulled_at": result.pulled_at.isoformat(),
        "holders": result.holder_identities,
        "failed": result.failed_identities,
        "own_points": len(result.own_paths),
        "others": [
            {
                "did": r.did,
                "updated_at": r.updated_at.isoformat() if r.updated_at else None,
                "points": len(r.paths or []),
                "strokes": len(r.strokes),
            }
            for r in result.others_records
        ],
    }

    if args.json:
        print(json.dumps(summary, indent=2))
    else:
        print(f"Pulled for: {did or '(anonymous)'}")
        print(f"Holders: {len(summary['holders'])}")
        if summary["failed"]:
            print(f"Failed: {', '.join(summary['failed'])}")
        print(f"Own points: {summary['own_points']}")
        for other in summary["others"]:
            print(
                f"  {other['did']}  updated {other['updated_at']}  "
                f"{other['points']} points / {other['strokes']} strokes"
            )
    return 0


async def cmd_push(args: argparse.Namespace) -> int:
    """Replace a record with the points in a JSON file."""
    config = load_config(args.config)

    try:
        paths = decode_paths(Path(args.file).read_text())
    except (OSError, ValueError) as e:
        print(f"Error reading {args.file}: {e}", file=sys.stderr)
        return 1

    runtime = await _open_runtime(config, args)
    try:
        result = await runtime.engine.push(args.did, paths or [])
    finally:
        await runtime.close()

    for backend in result.succeeded:
        print(f"{backend}: ok")
    for backend, error in result.failed.items():
        print(f"{backend}: failed ({error})", file=sys.stderr)
    return 0 if result.ok else 1


async def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a record from every backend."""
    config = load_config(args.config)
    runtime = await _open_runtime(config, args)
    try:
        result = await runtime.adapter.delete_record(args.did)
    finally:
        await runtime.close()

    for backend in result.succeeded:
        print(f"{backend}: deleted")
    for backend, error in result.failed.items():
        print(f"{backend}: failed ({error})", file=sys.stderr)
    return 0 if result.ok else 1


async def cmd_watch(args: argparse.Namespace) -> int:
    """Run the sync loop until interrupted."""
    config = load_config(args.config)
    interval = args.interval or config.sync.interval_seconds
    runtime = await _open_runtime(config, args)

    def show(canvas: MergedCanvas) -> None:
        print(json.dumps(_canvas_summary(canvas)))

    try:
        await runtime.engine.sync_loop(interval, on_canvas=show)
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nShutting down...")
    finally:
        await runtime.close()
    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Show configuration and backend reachability."""
    config = load_config(args.config)
    runtime = await _open_runtime(config, args)
    try:
        mirror = getattr(runtime.adapter, "mirror", None)
        mirror_reachable = await mirror.check_connection() if mirror else None
        status_data = {
            "timestamp": datetime.now().isoformat(),
            "environment": config.app.environment,
            "backend": runtime.adapter.kind,
            "session": {
                "did": runtime.context.did,
                "state": runtime.context.state.value,
            },
            "repository": {
                "service_url": config.repository.service_url,
                "collection": config.repository.collection,
            },
            "mirror": {
                "url": config.mirror.url or None,
                "reachable": mirror_reachable,
            },
        }
    finally:
        await runtime.close()

    if args.json:
        print(json.dumps(status_data, indent=2))
    else:
        print("drawat Status Check")
        print("===================")
        print(f"Environment: {status_data['environment']}")
        print(f"Backend: {status_data['backend']}")
        print(f"Session: {status_data['session']['did'] or 'anonymous'}")
        print(f"Repository: {config.repository.service_url} ({config.repository.collection})")
        if mirror_reachable is None:
            print("Mirror: not used")
        else:
            state = "reachable" if mirror_reachable else "unreachable"
            print(f"Mirror: {config.mirror.url or '(not configured)'} - {state}")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="drawat",
        description="Synchronize shared-canvas vector records",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )
    parser.add_argument(
        "--access-token",
        default=None,
        help="Bearer token for repository writes (default: $DRAWAT_ACCESS_TOKEN)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    holders_parser = subparsers.add_parser("holders", help="List record holders")
    holders_parser.set_defaults(func=cmd_holders)

    pull_parser = subparsers.add_parser("pull", help="Pull and summarize records")
    pull_parser.add_argument("--did", default=None, help="Local identity")
    pull_parser.add_argument("--json", action="store_true", help="Output as JSON")
    pull_parser.set_defaults(func=cmd_pull)

    push_parser = subparsers.add_parser("push", help="Replace a record from a file")
    push_parser.add_argument("--did", required=True, help="Identity to write")
    push_parser.add_argument("file", help="JSON file holding a list of stroke points")
    push_parser.set_defaults(func=cmd_push)

    delete_parser = subparsers.add_parser("delete", help="Delete a record")
    delete_parser.add_argument("--did", required=True, help="Identity to delete")
    delete_parser.set_defaults(func=cmd_delete)

    watch_parser = subparsers.add_parser("watch", help="Run the sync loop")
    watch_parser.add_argument("--did", default=None, help="Identity for the session")
    watch_parser.add_argument(
        "-i", "--interval",
        type=int,
        default=None,
        help="Seconds between passes (default: sync.interval_seconds)",
    )
    watch_parser.set_defaults(func=cmd_watch)

    status_parser = subparsers.add_parser("status", help="Check configuration and backends")
    status_parser.add_argument("--json", action="store_true", help="Output status as JSON")
    status_parser.set_defaults(func=cmd_status)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
