#!/usr/bin/env python3
"""Create the SQLite tables and indexes without starting the server."""

import asyncio

from src.core.db_client import close_connection
from src.core.schema import init_db


async def main() -> None:
    await init_db()
    await close_connection()


if __name__ == "__main__":
    asyncio.run(main())
