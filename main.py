"""Engine entry point — wires services and runs the scheduler or one-shot commands.

Usage:
    python main.py [--data-dir DIR] run [--stream]
    python main.py backup [--notes TEXT]
    python main.py list
    python main.py verify <name>
    python main.py notes <name> [--notes TEXT] [--tag TAG ...]
    python main.py delete <name>
    python main.py prune [--max N]
    python main.py restore <name>
    python main.py server {status,start,stop}
    python main.py settings [--interval SECONDS] [--max-backups N] [--safety-backup | --no-safety-backup]

Events from ``run --stream`` and ``restore`` are written to stdout as
newline-delimited JSON.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import signal
import sys
from pathlib import Path

from loguru import logger

from arkbackup.config import Config, get_config
from arkbackup.context import AppContext, create_context
from arkbackup.errors import BackupManagerError
from arkbackup.logger import setup_logger
from arkbackup.streaming.events import ERROR, encode_ndjson


def _print_json(data: object) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


async def _run(ctx: AppContext, stream: bool) -> None:
    """Run the scheduler until SIGINT/SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # Windows
            pass

    ctx.store.backup_dir.mkdir(parents=True, exist_ok=True)
    ctx.scheduler.start()

    printer: asyncio.Task[None] | None = None
    conn = ctx.multiplexer.connect() if stream else None
    if conn is not None:

        async def _print_events() -> None:
            async for event in conn:
                sys.stdout.write(encode_ndjson(event))
                sys.stdout.flush()

        printer = asyncio.create_task(_print_events())

    await stop.wait()
    logger.info("Shutting down...")
    if printer is not None:
        printer.cancel()
    await ctx.aclose()
    await ctx.scheduler.wait_stopped()


async def _restore(ctx: AppContext, name: str) -> int:
    exit_code = 0
    async for event in ctx.restore.restore(name):
        sys.stdout.write(encode_ndjson(event))
        sys.stdout.flush()
        if event.event == ERROR:
            exit_code = 1
    return exit_code


async def _server(ctx: AppContext, action: str) -> None:
    if action == "start":
        status = await ctx.server.start()
    elif action == "stop":
        status = await ctx.server.stop()
    else:
        status = await ctx.server.status()
    _print_json({"ok": True, "status": status})


def _settings(config: Config, args: argparse.Namespace) -> None:
    current = config.load_backup_settings()
    changes = {
        "backup_interval_seconds": args.interval,
        "max_backups": args.max_backups,
        "auto_safety_backup": args.safety_backup,
    }
    changes = {k: v for k, v in changes.items() if v is not None}
    if changes:
        current = dataclasses.replace(current, **changes)
        config.update_backup_settings(current)
    _print_json(current.to_dict())


async def _dispatch(ctx: AppContext, args: argparse.Namespace) -> int:
    store = ctx.store
    try:
        if args.command == "run":
            await _run(ctx, args.stream)
            return 0
        if args.command == "backup":
            archive = await ctx.scheduler.execute_and_prune(args.notes)
            _print_json(archive.to_dict())
        elif args.command == "list":
            _print_json([a.to_dict() for a in store.list()])
        elif args.command == "verify":
            _print_json(store.verify(args.name).to_dict())
        elif args.command == "notes":
            store.update_metadata(args.name, args.notes, args.tag)
            _print_json(store.get(args.name).to_dict())
        elif args.command == "delete":
            store.delete(args.name)
            _print_json({"ok": True})
        elif args.command == "prune":
            max_count = args.max
            if max_count is None:
                max_count = ctx.config.load_backup_settings().max_backups
            _print_json({"ok": True, "deleted": store.prune(max_count)})
        elif args.command == "restore":
            return await _restore(ctx, args.name)
        elif args.command == "server":
            await _server(ctx, args.action)
        elif args.command == "settings":
            _settings(ctx.config, args)
        return 0
    except (BackupManagerError, OSError) as e:
        logger.error(str(e))
        _print_json({"ok": False, "error": str(e)})
        return 1
    finally:
        if args.command != "run":
            await ctx.runtime.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ark-backup-engine", description="Game server save backup engine"
    )
    parser.add_argument("--data-dir", type=Path, default=None, help="Directory holding config.json")
    parser.add_argument("--verbose", action="store_true", help="Log debug output to the console")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the backup scheduler")
    run.add_argument("--stream", action="store_true", help="Print live status events")

    backup = sub.add_parser("backup", help="Create a backup now and prune")
    backup.add_argument("--notes", default=None)

    sub.add_parser("list", help="List backups")

    verify = sub.add_parser("verify", help="Verify a backup")
    verify.add_argument("name")

    notes = sub.add_parser("notes", help="Set notes/tags of a backup (empty clears)")
    notes.add_argument("name")
    notes.add_argument("--notes", default="")
    notes.add_argument("--tag", action="append", default=[])

    delete = sub.add_parser("delete", help="Delete a backup")
    delete.add_argument("name")

    prune = sub.add_parser("prune", help="Delete backups beyond the retention count")
    prune.add_argument("--max", type=int, default=None)

    restore = sub.add_parser("restore", help="Restore a backup into the save directory")
    restore.add_argument("name")

    server = sub.add_parser("server", help="Control the game server container")
    server.add_argument("action", choices=["status", "start", "stop"])

    settings = sub.add_parser("settings", help="Show or change backup settings")
    settings.add_argument("--interval", type=int, default=None)
    settings.add_argument("--max-backups", type=int, default=None)
    settings.add_argument(
        "--safety-backup", action=argparse.BooleanOptionalAction, default=None
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Application entry point."""
    args = build_parser().parse_args(argv)
    config = Config(args.data_dir) if args.data_dir else get_config()

    setup_logger(config.log_dir, level="DEBUG" if args.verbose else "INFO")

    async def _main() -> int:
        ctx = create_context(config)
        return await _dispatch(ctx, args)

    return asyncio.run(_main())


if __name__ == "__main__":
    sys.exit(main())
