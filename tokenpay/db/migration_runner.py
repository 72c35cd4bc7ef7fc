"""
Migration Runner - Applies pending Alembic migrations.

Invoked from the application lifespan when RUN_MIGRATIONS_ON_STARTUP is set,
and from scripts/ for one-off upgrades.
"""

from pathlib import Path

from sqlalchemy import Engine, create_engine
from structlog import get_logger

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from tokenpay.config import settings

logger = get_logger(__name__)

ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


def sync_database_url(url: str) -> str:
    """Alembic's command API is synchronous: swap asyncpg for psycopg2."""
    return url.replace("+asyncpg", "+psycopg2")


def _alembic_config(url: str) -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    return alembic_cfg


def _current_revision(engine: Engine) -> str | None:
    with engine.connect() as conn:
        return MigrationContext.configure(conn).get_current_revision()


def run_migrations() -> None:
    """
    Upgrade the schema to head if it is behind.

    Raises:
        RuntimeError: If the upgrade fails
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    url = sync_database_url(settings.database_url)
    alembic_cfg = _alembic_config(url)
    engine = create_engine(url)
    try:
        current = _current_revision(engine)
        head = ScriptDirectory.from_config(alembic_cfg).get_current_head()
        if current == head:
            logger.info("database_schema_up_to_date", revision=current)
            return

        logger.info("database_migration_started", current=current, head=head)
        command.upgrade(alembic_cfg, "head")
        logger.info("database_migration_completed", revision=_current_revision(engine))
    except Exception as exc:
        logger.error("database_migration_failed", error=str(exc))
        raise RuntimeError(f"Database migration failed: {exc}") from exc
    finally:
        engine.dispose()
