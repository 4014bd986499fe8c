#!/usr/bin/env python3
"""
Command line entry point for the signed API client
"""

import argparse
import asyncio
import json
import logging
import sys
from urllib.parse import urlencode

from .api.client import SignedApiClient
from .config import load_settings, print_settings_summary
from .errors.handling import log_error
from .errors.internal import ConfigurationError, InternalError
from .logging_config import LoggerConfigurator

configurator = LoggerConfigurator()
configurator.configure()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="signed-api", description="Send one signed request to the configured backend."
    )
    parser.add_argument("method", nargs="?", default="GET", help="HTTP method (default GET)")
    parser.add_argument("endpoint", nargs="?", default="/", help="Path relative to API_BASE_URL")
    parser.add_argument("--data", help="JSON request body")
    parser.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Query parameter, may be repeated",
    )
    parser.add_argument(
        "--health-check", action="store_true", help="Validate configuration and exit"
    )
    return parser


def parse_params(pairs: list[str]) -> list[tuple[str, str]]:
    """Split KEY=VALUE arguments, keeping repeated keys."""
    params: list[tuple[str, str]] = []
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid --param {pair!r}, expected KEY=VALUE")
        params.append((key, value))
    return params


async def main(argv: list[str] | None = None) -> int:
    """Run one signed request described by ``argv``.

    Returns:
        Process exit code.
    """
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings()
    except ConfigurationError as e:
        log_error("Configuration error", e)
        return 1

    if args.health_check:
        print_settings_summary(settings)
        logging.info("✅ Health check passed")
        return 0

    try:
        body = json.loads(args.data) if args.data is not None else None
        params = parse_params(args.param)
    except ValueError as e:
        logging.error(f"❌ Invalid arguments: {e}")
        return 1

    async with SignedApiClient(settings) as client:
        try:
            url = client.build_url(args.endpoint)
            if params:
                # repeated keys are kept, so encode the pair list directly
                url = f"{url}{'&' if '?' in url else '?'}{urlencode(params)}"
            response = await client.request(args.method, url, data=body)
            payload = response.json()
        except InternalError as e:
            log_error(f"{args.method.upper()} {args.endpoint} failed", e)
            return 1
    print(json.dumps(payload, indent=2, ensure_ascii=False) if payload is not None else "")
    return 0


def run() -> None:
    """Synchronous entry point for the application.

    Raises:
        SystemExit: With the exit code of main().
    """
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(0)
    except asyncio.CancelledError:
        sys.exit(0)


if __name__ == "__main__":
    run()
