"""Applies the SQL schema migrations shipped with Safe Transit."""

import argparse
import logging
from pathlib import Path
from typing import List, Optional, Set

import psycopg2

from safetransit.config import settings

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


class MigrationRunner:
    """Runs numbered .sql files in name order, each in its own transaction."""

    def __init__(self, database_url: Optional[str] = None, migrations_dir: Optional[Path] = None):
        """
        Initialize migration runner.

        Args:
            database_url: PostgreSQL connection string (defaults to config)
            migrations_dir: Directory holding the .sql files
        """
        self.database_url = database_url or settings.DATABASE_URL
        self.migrations_dir = Path(migrations_dir) if migrations_dir else MIGRATIONS_DIR

    def migration_files(self) -> List[Path]:
        """Get sorted list of migration files."""
        if not self.migrations_dir.exists():
            return []
        return sorted(self.migrations_dir.glob("*.sql"))

    def _ensure_tracking_table(self, conn):
        with conn.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    id SERIAL PRIMARY KEY,
                    migration_name VARCHAR(255) NOT NULL UNIQUE,
                    applied_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
            """)
        conn.commit()

    def _applied_migrations(self, conn) -> Set[str]:
        with conn.cursor() as cur:
            cur.execute("SELECT migration_name FROM schema_migrations")
            return {row[0] for row in cur.fetchall()}

    def pending_migrations(self, conn) -> List[Path]:
        """Migration files not yet recorded in schema_migrations."""
        applied = self._applied_migrations(conn)
        return [path for path in self.migration_files() if path.name not in applied]

    def run_migrations(self) -> int:
        """
        Run all pending migrations.

        A failing migration is rolled back together with its tracking row,
        and later migrations are not attempted.

        Returns:
            Number of migrations applied
        """
        if not self.migration_files():
            logger.info("No migration files found")
            return 0

        conn = psycopg2.connect(self.database_url)
        try:
            self._ensure_tracking_table(conn)

            applied_count = 0
            for migration_file in self.pending_migrations(conn):
                logger.info(f"Applying migration: {migration_file.name}")
                with conn.cursor() as cur:
                    cur.execute(migration_file.read_text(encoding="utf-8"))
                    cur.execute(
                        "INSERT INTO schema_migrations (migration_name) VALUES (%s)",
                        (migration_file.name,)
                    )
                conn.commit()
                applied_count += 1

            logger.info(f"Applied {applied_count} migrations")
            return applied_count

        except Exception as e:
            conn.rollback()
            logger.error(f"Migration failed: {e}")
            raise
        finally:
            conn.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Command-line entry point; returns the number of migrations applied."""
    parser = argparse.ArgumentParser(description="Run Safe Transit database migrations")
    parser.add_argument(
        "--database-url",
        default=None,
        help="PostgreSQL connection string (defaults to DB_* settings)"
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    return MigrationRunner(args.database_url).run_migrations()


if __name__ == "__main__":
    main()
