"""SQLite schema management (code-first approach)."""

import logging

from src.core import db_client


logger = logging.getLogger(__name__)


# Central list of all tables in the schema, in dependency order
COLLECTIONS = [
    "users",
    "tasks",
]

_TIMESTAMP_DEFAULT = "(strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))"

_TABLES: dict[str, str] = {
    # Owners seen by the service; authentication itself happens elsewhere
    "users": f"""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL UNIQUE,
            email TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT {_TIMESTAMP_DEFAULT}
        )
    """,
    "tasks": f"""
        CREATE TABLE IF NOT EXISTS tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            title TEXT NOT NULL CHECK (length(trim(title)) > 0),
            description TEXT,
            status TEXT NOT NULL DEFAULT 'todo' CHECK (status IN ('todo', 'in_progress', 'done')),
            priority TEXT NOT NULL DEFAULT 'medium' CHECK (priority IN ('low', 'medium', 'high')),
            due_date TEXT,
            created_at TEXT NOT NULL DEFAULT {_TIMESTAMP_DEFAULT},
            updated_at TEXT NOT NULL DEFAULT {_TIMESTAMP_DEFAULT},
            CHECK (created_at <= updated_at)
        )
    """,
}

_INDEXES: dict[str, list[str]] = {
    "users": [],
    "tasks": [
        "CREATE INDEX IF NOT EXISTS idx_tasks_user_created ON tasks (user_id, created_at)",
        "CREATE INDEX IF NOT EXISTS idx_tasks_user_status ON tasks (user_id, status)",
    ],
}


async def init_db(*, db_path: str | None = None) -> None:
    """Create all tables and indexes (idempotent).

    Args:
        db_path: Optional database path. If not provided, uses settings.sqlite_db_path.
    """
    logger.info("Starting SQLite schema sync...")

    conn = await db_client.get_connection(db_path=db_path)
    for collection_name in COLLECTIONS:
        await conn.execute(_TABLES[collection_name])
        for index_sql in _INDEXES[collection_name]:
            await conn.execute(index_sql)
        logger.info("Collection %s schema is up to date", collection_name)

    await conn.commit()
    logger.info("SQLite schema sync complete")
