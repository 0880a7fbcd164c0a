"""
Command line entry point.

    realty collect            # stage 1: discover listing links
    realty filter             # stage 2: classify links by keywords
    realty enrich             # stage 3: extract attributes with the model
    realty run                # all three stages
"""
import argparse
import asyncio
import logging
import os
import sys
from typing import List, Optional

from .browser import SessionError
from .config import EXHAUSTED_POLICIES, Config, load_keywords_file
from .pipeline import run_all, run_collect, run_enrich, run_filter
from .utils import init_logger, now_iso

logger = logging.getLogger("realty")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(
        prog="realty",
        description="Real-estate listing crawler with keyword filtering and AI attribute extraction",
    )
    ap.add_argument("command", choices=["collect", "filter", "enrich", "run"], help="Stage to run")
    ap.add_argument("--url", dest="base_url", default=None, help="Search results URL to crawl")
    ap.add_argument("--directory", default=None, help="Output directory for all artifacts")
    ap.add_argument("--keywords-file", default=None, help="JSON file with keywords (list or list of lists)")
    ap.add_argument("--keywords", default=None, help="Comma separated keywords")
    ap.add_argument("--store", dest="store_url", default=None,
                    help="Link state store URL: memory://, sqlite:///path.db or redis://host:port/db")
    ap.add_argument("--concurrency", type=int, default=None, help="Parallel classification workers")
    ap.add_argument("--max-attempts", type=int, default=None, help="Attempts per link before giving up")
    ap.add_argument("--on-exhausted", dest="exhausted_policy", choices=EXHAUSTED_POLICIES, default=None,
                    help="What to do with links that used up their attempts")
    ap.add_argument("--max-pages", type=int, default=None, help="Maximum result pages to collect")
    ap.add_argument("--fresh", action="store_true", help="Do not restore the previous report before filtering")
    ap.add_argument("--exchange-rate", type=float, default=None, help="Price conversion rate")
    ap.add_argument("--model", dest="ollama_model", default=None, help="Ollama model name")
    ap.add_argument("--headful", action="store_true", help="Show the browser window")
    # Logging
    lvl_choices = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    ap.add_argument("--log-level", choices=lvl_choices, default=None,
                    help="Global log level for both console and file (overrides --log-console/--log-file).")
    ap.add_argument("--log-console", choices=lvl_choices, default=os.getenv("LOG_CONSOLE", "INFO"),
                    help="Console log level (default from env LOG_CONSOLE or INFO).")
    ap.add_argument("--log-file", choices=lvl_choices, default=os.getenv("LOG_FILE", "DEBUG"),
                    help="File log level (default from env LOG_FILE or DEBUG).")
    ap.add_argument("--log-file-path", default=os.getenv("LOG_FILE_PATH", "realty.log"),
                    help="Path to log file (default from env LOG_FILE_PATH or realty.log).")
    ap.add_argument("--no-file-log", action="store_true",
                    help="Disable file logging (only console output).")
    return ap.parse_args(argv)


def build_config(args: argparse.Namespace) -> Config:
    keywords = None
    if args.keywords_file:
        keywords = load_keywords_file(args.keywords_file)
    elif args.keywords:
        keywords = tuple(k.strip() for k in args.keywords.split(",") if k.strip())

    config = Config.from_env(
        base_url=args.base_url,
        directory=args.directory,
        keywords=keywords,
        store_url=args.store_url,
        concurrency=args.concurrency,
        max_attempts=args.max_attempts,
        exhausted_policy=args.exhausted_policy,
        max_pages=args.max_pages,
        exchange_rate=args.exchange_rate,
        ollama_model=args.ollama_model,
        resume=False if args.fresh else None,
        headless=False if args.headful else None,
    )
    config.validate()
    return config


COMMANDS = {
    "collect": run_collect,
    "filter": run_filter,
    "enrich": run_enrich,
    "run": run_all,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    eff_console = args.log_level or args.log_console
    eff_file = args.log_level or args.log_file
    init_logger(
        console_level=eff_console,
        file_level=eff_file,
        log_file=None if args.no_file_log else args.log_file_path
    )
    logger.info(
        f"Logger initialized: console={eff_console}, "
        f"file={'DISABLED' if args.no_file_log else eff_file}, "
        f"path={'N/A' if args.no_file_log else args.log_file_path}"
    )

    try:
        config = build_config(args)
    except (OSError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    logger.info(f">>> Run started at {now_iso()} ({args.command})")
    try:
        asyncio.run(COMMANDS[args.command](config))
    except SessionError as e:
        logger.error(f"Critical error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    except Exception:
        logger.exception("Critical error")
        return 1
    logger.info(">>> Done")
    return 0


if __name__ == "__main__":
    sys.exit(main())
