"""Command line launcher for the recorder service and its upload backlog."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from pathlib import Path

from matchtracker.recorder.api import create_app
from matchtracker.recorder.attribution import AttributionResolver, load_extension
from matchtracker.recorder.config import RecorderSettings, load_settings
from matchtracker.recorder.store import create_store
from matchtracker.recorder.tracker import SessionTracker
from matchtracker.recorder.uploader import UploadPipeline

logger = logging.getLogger("matchtracker")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Match tracker session recorder")
    parser.add_argument("--storage-dir", default=None, help="Directory holding session records")
    parser.add_argument("--collector-url", default=None, help="Remote collector endpoint")
    subcommands = parser.add_subparsers(dest="command", required=True)

    serve = subcommands.add_parser("serve", help="Accept signals over HTTP and record sessions")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    subcommands.add_parser("backlog", help="Upload pending records once and exit")
    subcommands.add_parser("status", help="List pending and delivered records")
    return parser.parse_args(argv)


def apply_overrides(settings: RecorderSettings, args: argparse.Namespace) -> RecorderSettings:
    overrides: dict[str, object] = {}
    if args.storage_dir:
        overrides["storage_dir"] = Path(args.storage_dir)
    if args.collector_url:
        overrides["collector_url"] = args.collector_url
    if getattr(args, "host", None):
        overrides["host"] = args.host
    if getattr(args, "port", None):
        overrides["port"] = args.port
    return dataclasses.replace(settings, **overrides)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def build_runtime(settings: RecorderSettings) -> tuple[SessionTracker, UploadPipeline]:
    store = create_store(settings.storage_dir)
    pipeline = UploadPipeline.from_settings(settings, store)
    resolver = AttributionResolver(
        proximity_threshold=settings.proximity_threshold,
        neutral_killer_roles=settings.neutral_killer_roles,
        extension=load_extension(settings.extension),
    )
    tracker = SessionTracker(store=store, resolver=resolver, on_persisted=pipeline.submit)
    return tracker, pipeline


def serve(settings: RecorderSettings) -> int:
    import uvicorn

    tracker, pipeline = build_runtime(settings)
    app = create_app(tracker=tracker)
    logger.info("Session records will be saved to: %s", settings.storage_dir)
    pipeline.start_backlog()
    try:
        uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
    finally:
        pipeline.shutdown()
    return 0


def run_backlog(settings: RecorderSettings) -> int:
    store = create_store(settings.storage_dir)
    pipeline = UploadPipeline.from_settings(settings, store)
    try:
        outcomes = pipeline.deliver_backlog()
    except KeyboardInterrupt:
        pipeline.shutdown()
        return 130
    failed = [outcome for outcome in outcomes if not outcome.delivered]
    print(f"Uploaded {len(outcomes) - len(failed)}/{len(outcomes)} records")
    return 1 if failed else 0


def show_status(settings: RecorderSettings) -> int:
    store = create_store(settings.storage_dir)
    pending = store.pending_records()
    delivered = store.delivered_records()
    print(f"Storage: {settings.storage_dir}")
    print(f"Pending: {len(pending)}")
    for path in pending:
        print(f"  {path.name}")
    print(f"Delivered: {len(delivered)}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = apply_overrides(load_settings(), args)
    configure_logging(settings.log_level)

    if args.command == "serve":
        return serve(settings)
    if args.command == "backlog":
        return run_backlog(settings)
    if args.command == "status":
        return show_status(settings)
    print(f"Unknown command: {args.command}", file=sys.stderr)
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
