"""Entry point: ``python -m newsstack_cls.run <command>``

Commands:
    fetch  [--limit N] [--detail]    newest telegraph items as JSON
    search KEYWORD [--limit N]       keyword search as JSON
    watch  [--interval-min M]        run the scheduler until Ctrl-C

Environment variables (see ``Config``) control the source URL, the
browser and the rate shaping, e.g.:
    HEADLESS=1                (default: on)
    ENABLE_DETAIL_DELAY=1     (default: on)
    NOTIFY_WEBHOOK_URL=...    (default: off)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Optional, Sequence

from dotenv import load_dotenv

from .config import Config
from .errors import NewsstackError
from .service import NewsService, register_cleanup

logger = logging.getLogger(__name__)


def _print_json(payload: Any) -> None:
    json.dump(payload, sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="newsstack_cls", description="CLS telegraph feed")
    sub = parser.add_subparsers(dest="command", required=True)

    p_fetch = sub.add_parser("fetch", help="fetch the newest telegraph items")
    p_fetch.add_argument("--limit", type=int, default=0, help="max items (0 = all cached)")
    p_fetch.add_argument("--detail", action="store_true", help="also fetch full article bodies")

    p_search = sub.add_parser("search", help="search telegraph items by keyword")
    p_search.add_argument("keyword")
    p_search.add_argument("--limit", type=int, default=0)

    p_watch = sub.add_parser("watch", help="refresh on a timer until interrupted")
    p_watch.add_argument("--interval-min", type=float, default=0.0, help="minutes between refreshes")
    return parser


def _watch(service: NewsService, interval_min: float) -> None:
    _print_json(service.start_scheduler(interval_min))
    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        _print_json(service.stop_scheduler())


def main(argv: Optional[Sequence[str]] = None) -> int:
    # Auto-load .env so NOTIFY_WEBHOOK_URL etc. need no manual shell sourcing
    env_path = Path.cwd() / ".env"
    if env_path.is_file():
        load_dotenv(env_path, override=False)
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    args = build_parser().parse_args(argv)
    service = NewsService(Config())
    register_cleanup(service)
    try:
        if args.command == "fetch":
            _print_json(service.fetch_latest(args.limit, fetch_detail=args.detail))
        elif args.command == "search":
            _print_json(service.search(args.keyword, args.limit))
        elif args.command == "watch":
            _watch(service, args.interval_min)
    except (NewsstackError, ValueError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1
    finally:
        service.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
