"""
Migration Runner - Applies pending Alembic migrations at application startup.

Enabled with RUN_MIGRATIONS_ON_STARTUP; otherwise run ``alembic upgrade head``
as a deploy step.
"""

from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import Engine, create_engine
from structlog import get_logger

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from app.config import settings

logger = get_logger(__name__)

# Path to alembic.ini relative to project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


@dataclass(frozen=True)
class MigrationStatus:
    """Current vs head revision of the database schema."""

    current_revision: str | None
    head_revision: str

    @property
    def pending(self) -> bool:
        return self.current_revision != self.head_revision


def get_sync_database_url(url: str | None = None) -> str:
    """
    Synchronous URL for Alembic.

    The app talks to PostgreSQL through asyncpg; Alembic's command API needs
    a psycopg2 connection.
    """
    url = url or settings.database_url
    return url.replace("+asyncpg", "+psycopg2")


def _alembic_config() -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("sqlalchemy.url", get_sync_database_url().replace("%", "%%"))
    return alembic_cfg


def _get_current_revision(engine: Engine) -> str | None:
    with engine.connect() as conn:
        context = MigrationContext.configure(conn)
        return context.get_current_revision()


def _get_head_revision(alembic_cfg: Config) -> str:
    script = ScriptDirectory.from_config(alembic_cfg)
    head = script.get_current_head()
    if head is None:
        raise RuntimeError("No migration scripts found")
    return head


def check_migrations_status() -> MigrationStatus:
    """Compare the database revision with the newest migration script."""
    alembic_cfg = _alembic_config()
    engine = create_engine(get_sync_database_url())
    try:
        return MigrationStatus(
            current_revision=_get_current_revision(engine),
            head_revision=_get_head_revision(alembic_cfg),
        )
    finally:
        engine.dispose()


def run_migrations() -> None:
    """
    Upgrade the database to head if migrations are pending.

    Raises:
        RuntimeError: A migration failed
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    try:
        status = check_migrations_status()
        if not status.pending:
            logger.info("database_schema_up_to_date", revision=status.current_revision)
            return

        logger.info(
            "database_migrations_running",
            from_revision=status.current_revision,
            to_revision=status.head_revision,
        )
        command.upgrade(_alembic_config(), "head")
        logger.info("database_migrations_complete", revision=status.head_revision)

    except Exception as e:
        logger.error("database_migration_failed", error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e
