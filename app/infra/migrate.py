from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config

from app.infra.db import DATABASE_URL
from app.infra.logging import get_logger, setup_logging

ROOT = Path(__file__).resolve().parents[2]

log = get_logger(__name__)


def run_upgrade_head(database_url: str | None = None) -> None:
    config = Config(str(ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(ROOT / "infra" / "migrations"))
    config.set_main_option("sqlalchemy.url", database_url or DATABASE_URL)
    log.info("Upgrading schema to head")
    command.upgrade(config, "head")


if __name__ == "__main__":
    setup_logging()
    run_upgrade_head()
