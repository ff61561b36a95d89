#!/usr/bin/env python3
"""Development script to mint a session token for the task API.

Usage:
    uv run python scripts/issue_token.py <user_id> <email>
    uv run python scripts/issue_token.py --list-users
"""

import asyncio
import logging
import sys

from src.core import db_client
from src.domain.user import AuthenticatedUser
from src.interface.auth import issue_session_token


logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)


async def list_users() -> None:
    """List owners that have created tasks."""
    users = await db_client.list_records(collection="users", sort="+user_id", per_page=500)
    for user in users:
        logger.info("%s <%s>", user["user_id"], user["email"])
    await db_client.close_connection()


def print_usage() -> None:
    """Print usage information."""
    logger.info(__doc__)


async def main() -> None:
    """Main entry point."""
    args = sys.argv[1:]

    if not args or "--help" in args or "-h" in args:
        print_usage()
        return

    if "--list-users" in args:
        await list_users()
        return

    if len(args) != 2:  # noqa: PLR2004
        print_usage()
        sys.exit(1)

    user = AuthenticatedUser(id=args[0], email=args[1])
    logger.info(issue_session_token(user))


if __name__ == "__main__":
    asyncio.run(main())
