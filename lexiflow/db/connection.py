import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

_TRACKING_TABLE = """
CREATE TABLE IF NOT EXISTS _schema_migrations (
    filename TEXT PRIMARY KEY,
    applied_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""


def get_connection(db_path: str) -> sqlite3.Connection:
    """Open a SQLite connection in WAL mode with foreign keys enforced."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=10, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def pending_migrations(conn: sqlite3.Connection, migrations_dir: Path = MIGRATIONS_DIR) -> list[Path]:
    applied = {row["filename"] for row in conn.execute("SELECT filename FROM _schema_migrations")}
    return [path for path in sorted(migrations_dir.glob("*.sql")) if path.name not in applied]


def run_migrations(db_path: str, migrations_dir: Path = MIGRATIONS_DIR) -> list[str]:
    """Apply unapplied *.sql files in name order. Returns the filenames applied."""
    conn = get_connection(db_path)
    applied: list[str] = []
    try:
        conn.execute(_TRACKING_TABLE)
        conn.commit()
        for migration_path in pending_migrations(conn, migrations_dir):
            logger.info("[db] applying migration | file=%s", migration_path.name)
            conn.executescript(migration_path.read_text())
            conn.execute(
                "INSERT INTO _schema_migrations (filename) VALUES (?)", (migration_path.name,)
            )
            conn.commit()
            applied.append(migration_path.name)
    finally:
        conn.close()
    return applied
