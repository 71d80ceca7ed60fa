"""CLI entrypoints for operational maintenance tasks."""

from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Sequence

from ovo_api.config import configure_structlog, get_settings
from ovo_api.core.refresh_tokens import get_refresh_token_manager
from ovo_api.db.session import dispose_engine, get_session_factory


async def _run_purge_refresh_tokens() -> int:
    """Delete expired refresh tokens and report how many were removed."""
    refresh_token_manager = get_refresh_token_manager()
    session_factory = get_session_factory()
    try:
        async with session_factory() as db_session:
            deleted = await refresh_token_manager.purge_expired(db_session=db_session)
    finally:
        await dispose_engine()

    print(json.dumps({"deleted": deleted}))
    return 0


def _build_parser() -> argparse.ArgumentParser:
    """Build command-line parser for supported operational commands."""
    parser = argparse.ArgumentParser(prog="python -m ovo_api.cli")
    subcommands = parser.add_subparsers(dest="command", required=True)
    subcommands.add_parser(
        "purge-refresh-tokens",
        help="Delete refresh tokens whose expiry has passed.",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run CLI command."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_structlog(get_settings())
    if args.command == "purge-refresh-tokens":
        return asyncio.run(_run_purge_refresh_tokens())
    parser.error("Unsupported command")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
