"""
Re-encrypt every stored ESP credential with the newest ``ESP_TOKEN_SECRET``.

    python -m scripts.reencrypt_credentials [--dry-run]

Exits non-zero if any row could not be decrypted with the configured keys.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from esp.errors import ConfigurationError
from esp.reencrypt import ReencryptStats, reencrypt_credentials

logger = logging.getLogger("scripts.reencrypt_credentials")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--dry-run", action="store_true", help="decrypt and re-encrypt in memory only")
    return parser


async def run(session_factory: Callable[[], AsyncSession], *, dry_run: bool) -> ReencryptStats:
    async with session_factory() as session:
        stats = await reencrypt_credentials(session, dry_run=dry_run)
        if dry_run:
            await session.rollback()
        else:
            await session.commit()
    return stats


def main(argv: Optional[List[str]] = None, session_factory: Optional[Callable[[], AsyncSession]] = None) -> int:
    args = build_parser().parse_args(argv)
    if session_factory is None:
        from database.session import async_session_factory as session_factory

    try:
        stats = asyncio.run(run(session_factory, dry_run=args.dry_run))
    except ConfigurationError as exc:
        logger.error("%s", exc.message)
        return 1

    print(json.dumps({"mode": "dry-run" if args.dry_run else "apply", **stats.as_dict()}, indent=2))
    return 1 if stats.has_failures else 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s")
    sys.exit(main())
