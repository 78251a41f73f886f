#!/usr/bin/env python3
"""CLI for certificate issuer management tasks.

Usage:
    python -m cli <command>

Commands:
    create-tables   Create missing database tables and the storage layout
    add-recipient   Add an email to the generation allow-list
    stats           Print template/certificate counters
"""

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def _create_tables() -> None:
    from core.database import create_engine, dispose_engine, init_db
    from core.storage import FileStorage

    engine = create_engine()
    try:
        await init_db(engine)
    finally:
        await dispose_engine(engine)
    FileStorage.from_settings().ensure_layout()


def cmd_create_tables() -> int:
    """Create missing tables (never alters existing ones)."""
    logger.info("Creating database tables...")
    asyncio.run(_create_tables())
    logger.info("Tables ready")
    return 0


async def _add_recipient(name: str, email: str, event: str | None) -> int:
    from core.database import create_engine, create_session_maker, dispose_engine
    from schemas import RecipientCreateRequest
    from services.recipients_service import RecipientAlreadyExistsError, add_recipient

    try:
        body = RecipientCreateRequest(name=name, email=email, event=event)
    except ValidationError as e:
        logger.error(f"Invalid recipient: {e.errors()[0]['msg']}")
        return 1

    engine = create_engine()
    try:
        async with create_session_maker(engine)() as db:
            try:
                recipient = await add_recipient(
                    db, name=body.name, email=body.email, event=body.event
                )
                await db.commit()
            except RecipientAlreadyExistsError:
                await db.rollback()
                logger.error(f"{body.email} is already on the allow-list")
                return 1
    finally:
        await dispose_engine(engine)

    logger.info(f"Added {recipient.email} (id={recipient.id})")
    return 0


def cmd_add_recipient(args: argparse.Namespace) -> int:
    """Add an email to the allow-list."""
    return asyncio.run(_add_recipient(args.name, args.email, args.event))


async def _print_stats() -> None:
    from core.database import create_engine, create_session_maker, dispose_engine
    from services.stats_service import get_stats

    engine = create_engine()
    try:
        async with create_session_maker(engine)() as db:
            stats = await get_stats(db)
    finally:
        await dispose_engine(engine)

    print(f"templates:    {stats.templates}")
    print(f"certificates: {stats.certificates}")
    print(f"verified:     {stats.verified}")


def cmd_stats() -> int:
    asyncio.run(_print_stats())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Certificate Issuer CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "create-tables",
        help="Create missing database tables and the storage layout",
    )

    add = subparsers.add_parser(
        "add-recipient",
        help="Add an email to the generation allow-list",
    )
    add.add_argument("name")
    add.add_argument("email")
    add.add_argument("--event", default=None)

    subparsers.add_parser("stats", help="Print template/certificate counters")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "create-tables":
        return cmd_create_tables()
    elif args.command == "add-recipient":
        return cmd_add_recipient(args)
    elif args.command == "stats":
        return cmd_stats()
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
