"""
Local runner: loads .env, extracts one or more call pages and prints JSON results.

Usage:
    python run_local.py https://example.com/calls/123 [more urls] [--max-attempts 3]
"""

import argparse
import asyncio
import json
import os
import sys

from dotenv import load_dotenv

from extraction_config import ExtractionConfig
from extraction_service import CallExtractionService
from logging_setup import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Extract call metadata and transcript from call pages")
    parser.add_argument("urls", nargs="+", help="Call page URL(s)")
    parser.add_argument("--max-attempts", type=int, help="Attempts per URL (default from env or 3)")
    parser.add_argument("--retry-delay", type=float, help="Seconds between attempts")
    parser.add_argument("--navigation-timeout", type=int, help="Navigation timeout in milliseconds")
    parser.add_argument("--concurrency", type=int, help="Concurrent browser sessions")
    parser.add_argument("--no-headless", action="store_true", help="Show the browser window")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"))
    parser.add_argument("--plain-logs", action="store_true", help="Human-readable logs instead of JSON")
    return parser


def config_from_args(args: argparse.Namespace) -> ExtractionConfig:
    return ExtractionConfig.from_env().with_overrides(
        max_attempts=args.max_attempts,
        retry_delay_seconds=args.retry_delay,
        navigation_timeout_ms=args.navigation_timeout,
        max_concurrent_sessions=args.concurrency,
        headless=False if args.no_headless else None,
    )


async def run(args: argparse.Namespace) -> int:
    service = CallExtractionService(config_from_args(args))
    results = await service.run_batch(args.urls)

    output = [dict(url=url, **result.to_dict(include_attempts=True))
              for url, result in zip(args.urls, results)]
    print(json.dumps(output if len(output) > 1 else output[0], indent=2, ensure_ascii=False))
    return 0 if all(result.ok for result in results) else 1


def main(argv=None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging(log_level=args.log_level, use_json=not args.plain_logs)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
