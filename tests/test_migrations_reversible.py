import psycopg
from alembic import command
from alembic.config import Config


def _alembic_config() -> Config:
    # env.py translates the async DSN to a sync driver for Alembic.
    return Config("alembic.ini")


def test_migrations_are_reversible(sync_dsn):
    """Smoke-test: upgrade head -> downgrade base -> upgrade head against Postgres."""

    with psycopg.connect(sync_dsn) as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")

    cfg = _alembic_config()

    command.upgrade(cfg, "head")
    command.downgrade(cfg, "base")
    command.upgrade(cfg, "head")
