#!/usr/bin/env python3
"""
Print the consolidated KIS portfolio as JSON.

Reads accounts, manual holdings and credentials from the environment (or a
.env file) and runs one orchestration pass.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import List, Optional

from .config import PortfolioSettings
from .portfolio_service import PortfolioService


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Consolidated KIS portfolio")
    parser.add_argument(
        "--account",
        action="append",
        default=[],
        help="Only include this account number (repeatable)",
    )
    parser.add_argument(
        "--summary",
        action="store_true",
        help="Include the portfolio-wide rollup and per-instrument weights",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> dict:
    settings = PortfolioSettings.from_env()
    service = PortfolioService.from_settings(settings)

    accounts = None
    if args.account:
        wanted = {a.replace("-", "") for a in args.account}
        accounts = [a for a in settings.accounts if a.account_no in wanted]

    try:
        if args.summary:
            return await service.get_portfolio_summary(accounts)
        balances = await service.get_portfolio(accounts)
        return {'accounts': [b.to_dict() for b in balances]}
    finally:
        await service.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    result = asyncio.run(run(args))
    json.dump(result, sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
