from __future__ import annotations

import threading
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy.engine import Engine

from relaybot.logging_config import logger
from relaybot.models import Base

_MIGRATION_LOCK = threading.Lock()
_MIGRATION_APPLIED = False

PROJECT_DIR = Path(__file__).resolve().parents[2]


def _is_postgres(database_url: str) -> bool:
    return database_url.lower().startswith("postgres")


def _build_alembic_config(base_dir: Path, database_url: str) -> Config:
    cfg = Config(str(base_dir / "alembic.ini"))
    cfg.set_main_option("script_location", str(base_dir / "alembic"))
    cfg.set_main_option("sqlalchemy.url", database_url)
    return cfg


def auto_upgrade_database(
    database_url: str, *, enabled: bool = True, base_dir: Path = PROJECT_DIR
) -> bool:
    """
    Bring a Postgres schema up to head once per process.

    Returns True when an upgrade ran. Other databases are left to
    `ensure_schema`.
    """
    global _MIGRATION_APPLIED
    if _MIGRATION_APPLIED or not enabled or not _is_postgres(database_url):
        return False

    with _MIGRATION_LOCK:
        if _MIGRATION_APPLIED:
            return False

        if not (base_dir / "alembic.ini").exists():
            logger.warning(
                "Alembic config %s not found; skipping automatic migration.",
                base_dir / "alembic.ini",
            )
            _MIGRATION_APPLIED = True
            return False

        logger.info("Applying Alembic migrations to bring the schema to head...")
        try:
            command.upgrade(_build_alembic_config(base_dir, database_url), "head")
        except Exception:
            logger.exception(
                "Automatic Alembic migration failed; run 'alembic upgrade head' manually."
            )
            raise
        logger.info("Database migrations complete.")
        _MIGRATION_APPLIED = True
        return True


def ensure_schema(engine: Engine) -> None:
    """Create missing tables directly (SQLite and test databases)."""
    if engine.dialect.name == "postgresql":
        return
    Base.metadata.create_all(bind=engine)


__all__ = ["auto_upgrade_database", "ensure_schema"]
