from __future__ import annotations

import logging
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def alembic_config(database_url: str | None = None) -> Config:
    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "infra" / "migrations"))
    if database_url:
        config.attributes["database_url"] = database_url
    return config


def run_upgrade(revision: str = "head", database_url: str | None = None) -> None:
    logger.info("migrate.upgrade.started", extra={"revision": revision})
    command.upgrade(alembic_config(database_url), revision)
    logger.info("migrate.upgrade.completed", extra={"revision": revision})


if __name__ == "__main__":
    run_upgrade(sys.argv[1] if len(sys.argv) > 1 else "head")
