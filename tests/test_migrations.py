from sqlalchemy import create_engine, inspect
from sqlalchemy.pool import StaticPool

from relaybot.db.migration_runner import auto_upgrade_database, ensure_schema


def test_non_postgres_urls_skip_alembic():
    assert auto_upgrade_database("sqlite+pysqlite:///:memory:") is False
    assert auto_upgrade_database("postgresql+psycopg://u:p@db/relay", enabled=False) is False


def test_ensure_schema_creates_relay_tables():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    try:
        ensure_schema(engine)
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    assert {"sessions", "message_logs", "bot_instances"} <= tables
