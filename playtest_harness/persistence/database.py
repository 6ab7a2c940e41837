"""
SQLite database initialization for the checkpoint store.

Uses aiosqlite for async SQLite access.
Schema is defined in schema.sql (consolidated, no migrations).
"""

from pathlib import Path

import aiosqlite
import structlog

log = structlog.get_logger(__name__)

# Path to consolidated schema file
SCHEMA_FILE = Path(__file__).parent / "schema.sql"


async def init_database(db_path: Path) -> None:
    """
    Initialize the checkpoint database from the consolidated schema.

    Args:
        db_path: Path to the database file

    Creates the database file if it doesn't exist and applies the schema.
    Existing databases are left intact (CREATE TABLE IF NOT EXISTS).
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    log.info("initializing_database", path=str(db_path))

    if not SCHEMA_FILE.exists():
        log.error("schema_file_not_found", path=str(SCHEMA_FILE))
        raise FileNotFoundError(f"Schema file not found: {SCHEMA_FILE}")

    async with aiosqlite.connect(db_path) as db:
        # WAL lets batch sessions read while another writes
        await db.execute("PRAGMA journal_mode = WAL")
        await db.executescript(SCHEMA_FILE.read_text())
        await db.commit()

    log.info("database_initialized", path=str(db_path))
