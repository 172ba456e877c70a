from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from count_review.config import YamlConfigLoader
from count_review.config.models import AppConfig, ConfigLoadRequest
from count_review.logging import init_logging
from count_review.offline.client import cache_key
from count_review.offline.context import OfflineContext, build_offline_context
from count_review.offline.errors import CountReviewError
from count_review.offline.transport import TRANSPORT_ERRORS, AiohttpTransport

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="count-review", description="Count review offline client")
    parser.add_argument(
        "--config",
        default="data/config/config.yaml",
        help="Path to config.yaml (default: data/config/config.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    subparsers.add_parser("status", help="Show pending queue and connectivity state")
    subparsers.add_parser("flush", help="Replay queued writes once")

    fetch_parser = subparsers.add_parser("fetch", help="GET a path, falling back to the cache when offline")
    fetch_parser.add_argument("path", help="Server path, e.g. /api/report-exports")

    watch_parser = subparsers.add_parser("watch", help="Track connectivity and replay the queue on reconnect")
    watch_parser.add_argument(
        "--run-seconds",
        type=float,
        default=None,
        help="Stop after N seconds instead of running until interrupted.",
    )

    return parser


async def _load_config(args: argparse.Namespace) -> AppConfig:
    loader = YamlConfigLoader()
    request = ConfigLoadRequest(
        yaml_path=args.config,
    )
    return await loader.load(request)


def _status(context: OfflineContext) -> None:
    pending = context.queue.load()
    print(f"pending_requests: {len(pending)}")
    for item in pending:
        print(f"  {item.queued_at} {item.method} {item.url} id={item.id}")
    since = context.connectivity.disconnected_since
    print(f"disconnected_since: {since if since is not None else '-'}")
    print(f"warning: {'yes' if context.connectivity.is_disconnected_past_threshold() else 'no'}")


async def _flush(context: OfflineContext) -> int:
    result = await context.client.flush()
    print(f"sent={len(result.sent)} retained={len(result.retained)} stopped_on_disconnect={result.stopped_on_disconnect}")
    return 1 if result.stopped_on_disconnect else 0


async def _fetch(context: OfflineContext, path: str) -> int:
    try:
        result = await context.client.fetch_with_cache(path, cache_key("GET", path))
    except CountReviewError as e:
        logger.error("Fetch rejected. path=%s error=%s", path, e)
        return 1
    except TRANSPORT_ERRORS as e:
        logger.error("Server unreachable and nothing cached. path=%s error=%s", path, e)
        return 1
    if result.from_cache:
        logger.warning("Server unreachable, showing cached copy. path=%s", path)
    json.dump(result.payload, sys.stdout, indent=2, sort_keys=True)
    sys.stdout.write("\n")
    await context.client.wait_idle()
    return 0


async def _watch(context: OfflineContext, config: AppConfig, run_seconds: float | None) -> int:
    context.connectivity.add_warning_listener(
        lambda visible: print("Server unreachable for 5+ minutes." if visible else "Server reachable.")
    )
    await context.start_background(poll_interval_seconds=config.connectivity.poll_interval_seconds)
    try:
        if run_seconds is not None:
            await asyncio.sleep(run_seconds)
        else:
            await asyncio.Event().wait()
    finally:
        await context.stop_background()
    return 0


async def _main_async() -> int:
    parser = _build_parser()
    args = parser.parse_args()

    config = await _load_config(args)
    init_logging(config.logging)

    async with AiohttpTransport(
        base_url=config.server.base_url,
        request_timeout_seconds=config.server.request_timeout_seconds,
    ) as transport:
        context = build_offline_context(config, transport=transport)
        if args.command == "status":
            _status(context)
            return 0
        if args.command == "flush":
            return await _flush(context)
        if args.command == "fetch":
            return await _fetch(context, args.path)
        if args.command == "watch":
            return await _watch(context, config, args.run_seconds)
    return 2


def main() -> None:
    try:
        code = asyncio.run(_main_async())
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
