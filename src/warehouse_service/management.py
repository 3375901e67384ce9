"""Utility helpers for administrative tasks."""
from __future__ import annotations

import asyncio

from sqlalchemy.ext.asyncio import AsyncEngine

from . import models  # noqa: F401  registers tables on Base.metadata
from .alert_rules import AlertRuleEngine
from .config import get_settings
from .database import Base, create_session_factory, engine
from .logging_config import configure_logging, get_logger
from .schemas import AlertCheckReport
from .services import run_alert_check

logger = get_logger(__name__)


async def init_database(db_engine: AsyncEngine | None = None) -> None:
    """Create database tables for the application."""

    engine_to_use = db_engine or engine
    async with engine_to_use.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_alerts(db_engine: AsyncEngine | None = None) -> AlertCheckReport:
    """Run one alert evaluation pass, e.g. from cron."""

    settings = get_settings()
    session_factory = create_session_factory(db_engine or engine)
    async with session_factory() as session:
        report = await run_alert_check(
            session, AlertRuleEngine(settings.alerts), settings.repository_timeout_seconds
        )
    logger.info(
        "alert_check_finished",
        created=len(report.created),
        skipped=len(report.skipped),
        failed=len(report.failed),
    )
    return report


def cli_init_database() -> None:
    """CLI wrapper executed from :mod:`python -m`."""

    configure_logging()
    asyncio.run(init_database())


def cli_check_alerts() -> None:
    configure_logging()
    report = asyncio.run(check_alerts())
    if report.failed:
        raise SystemExit(1)


if __name__ == "__main__":
    cli_init_database()
