from __future__ import annotations

import logging

from alembic import command
from alembic.config import Config

from sustainwatch.infra.log import setup_logging
from sustainwatch.services.framework_service import FrameworkService

logger = logging.getLogger(__name__)


def run_upgrade_head() -> None:
    config = Config("alembic.ini")
    command.upgrade(config, "head")


def seed_reference_data() -> int:
    inserted = FrameworkService().seed_catalog()
    logger.info("framework catalog seeded, %d new entries", inserted)
    return inserted


if __name__ == "__main__":
    setup_logging()
    run_upgrade_head()
    seed_reference_data()
