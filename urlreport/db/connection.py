import logging
import sqlite3
from collections.abc import Iterator
from contextlib import closing, contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

_MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# Store lookups are split so a single statement stays below SQLite's host-parameter limit.
MAX_SQL_PARAMS = 500


def get_connection(db_path: str) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and row factory enabled."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=10, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


@contextmanager
def connection(db_path: str) -> Iterator[sqlite3.Connection]:
    """Yield a connection that commits on success, rolls back on error and always closes."""
    with closing(get_connection(db_path)) as conn:
        with conn:
            yield conn


def run_migrations(db_path: str) -> None:
    """Apply the SQL files in migrations/ that have not been recorded yet."""
    with closing(get_connection(db_path)) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS _schema_migrations (
                filename TEXT PRIMARY KEY,
                applied_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        conn.commit()

        applied = {row["filename"] for row in conn.execute("SELECT filename FROM _schema_migrations")}

        for migration_path in sorted(_MIGRATIONS_DIR.glob("*.sql")):
            if migration_path.name in applied:
                continue
            logger.info("[db] applying migration | file=%s | db=%s", migration_path.name, db_path)
            conn.executescript(migration_path.read_text())
            conn.execute("INSERT INTO _schema_migrations (filename) VALUES (?)", (migration_path.name,))
            conn.commit()
