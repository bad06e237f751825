"""Command line entry point: harvest one user's comments across songs."""

import argparse
import asyncio
import dataclasses
import logging
import sys
from typing import List, Optional

from .client import API_BASE_URL, CommentClient, load_cookie, with_retry
from .exceptions import HarvestError, SetupError
from .flows import harvest
from .models import Song
from .presets import HarvestConfig, Presets
from .progress import ProgressTracker, TqdmLoggingHandler
from .sink import JsonDirectorySink

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SETUP_ERROR = 2
EXIT_INTERRUPTED = 130


def parse_args(args: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="pocketflow-comments",
        description="Collect a user's comments from the comment threads of many songs",
    )
    parser.add_argument("--uid", type=int, required=True, help="User whose comments are collected")
    parser.add_argument(
        "--songs",
        type=int,
        nargs="+",
        help="Song ids to walk (default: the user's all-time listening record)",
    )
    parser.add_argument("--cookie", help="Login cookie (overrides --cookie-file)")
    parser.add_argument(
        "--cookie-file",
        default="login_info.json",
        help="Saved login info holding the cookie (default: login_info.json)",
    )
    parser.add_argument("--out-dir", default="comments", help="Output directory (default: comments)")
    parser.add_argument(
        "--preset",
        default="default",
        choices=sorted(Presets.list_presets()),
        help="Pacing profile (default: default)",
    )
    parser.add_argument("--concurrency", type=int, help="Songs walked at once (overrides preset)")
    parser.add_argument("--delay-ms", type=int, help="Milliseconds between requests per song (overrides preset)")
    parser.add_argument("--max-offset", type=int, help="Hard stop offset per song (default: 10000)")
    parser.add_argument("--retries", type=int, default=0, help="Retries per failed page request (default: 0)")
    parser.add_argument(
        "--confirm-exhaustion",
        action="store_true",
        help="Keep probing after a short page until an empty page comes back",
    )
    parser.add_argument("--base-url", default=API_BASE_URL, help="API root URL")
    parser.add_argument("--quiet", action="store_true", help="Hide progress bars")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser.parse_args(args)


def build_config(args: argparse.Namespace) -> HarvestConfig:
    """Apply command line overrides on top of the chosen preset."""
    overrides = {}
    if args.concurrency is not None:
        overrides["max_concurrent_items"] = args.concurrency
    if args.delay_ms is not None:
        overrides["request_delay"] = args.delay_ms / 1000
    if args.max_offset is not None:
        overrides["max_offset"] = args.max_offset
    if args.confirm_exhaustion:
        overrides["confirm_exhaustion"] = True
    return dataclasses.replace(Presets.get(args.preset), **overrides)


def setup_logging(level: str) -> None:
    handler = TqdmLoggingHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logging.basicConfig(level=getattr(logging, level), handlers=[handler])


async def run(args: argparse.Namespace) -> int:
    config = build_config(args)
    cookie = args.cookie or load_cookie(args.cookie_file)
    sink = JsonDirectorySink(args.out_dir)
    
    async with CommentClient(
        base_url=args.base_url,
        cookie=cookie,
        max_connections=config.max_concurrent_items,
    ) as client:
        if args.songs:
            songs = [Song(id=song_id) for song_id in args.songs]
        else:
            songs = await client.fetch_listening_record(args.uid)
            logger.info("Listening record of user %s has %d songs", args.uid, len(songs))
        
        fetch_page = client.fetch_comments
        if args.retries > 0:
            fetch_page = with_retry(fetch_page, attempts=args.retries + 1)
        
        results = await harvest(
            songs,
            fetch_page,
            args.uid,
            sink,
            config=config,
            progress=ProgressTracker(disable=args.quiet),
        )
    
    matched = sum(len(r.comments) for r in results.values())
    saved = sum(1 for r in results.values() if r.flushed)
    logger.info("Found %d comments by user %s in %d songs; output in %s", matched, args.uid, saved, args.out_dir)
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    try:
        return asyncio.run(run(args))
    except SetupError as e:
        logger.error("Setup failed: %s", e)
        return EXIT_SETUP_ERROR
    except HarvestError as e:
        # Only the song list lookup can get here; per-song errors never escape harvest().
        logger.error("Could not load songs: %s", e)
        return EXIT_SETUP_ERROR
    except KeyboardInterrupt:
        logger.warning("Interrupted; songs still in progress were not saved")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
