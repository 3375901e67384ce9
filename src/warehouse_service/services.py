"""Orchestration between the repository and the pure engines."""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import crud, schemas
from .aggregation import Snapshot
from .alert_rules import AlertRuleEngine
from .exceptions import PersistenceFailure
from .logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def with_timeout(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """Await a repository call, turning timeouts and driver errors into failures."""

    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        logger.error("repository_timeout", operation=operation, timeout=timeout)
        raise PersistenceFailure(
            f"{operation} timed out after {timeout:g}s", details={"operation": operation}
        ) from exc
    except SQLAlchemyError as exc:
        logger.error("repository_error", operation=operation, error=str(exc))
        raise PersistenceFailure(
            f"{operation} failed", details={"operation": operation}
        ) from exc


async def load_snapshot(session: AsyncSession, timeout: float) -> Snapshot:
    materials = await with_timeout(crud.list_materials(session), timeout, "list_materials")
    transactions = await with_timeout(crud.list_transactions(session), timeout, "list_transactions")
    defects = await with_timeout(crud.list_defects(session), timeout, "list_defects")
    alerts = await with_timeout(crud.list_alerts(session), timeout, "list_alerts")
    return Snapshot(
        materials=[schemas.MaterialOut.model_validate(row) for row in materials],
        transactions=[schemas.TransactionOut.model_validate(row) for row in transactions],
        defects=[schemas.DefectOut.model_validate(row) for row in defects],
        alerts=[schemas.AlertOut.model_validate(row) for row in alerts],
    )


async def run_alert_check(
    session: AsyncSession, engine: AlertRuleEngine, timeout: float
) -> schemas.AlertCheckReport:
    """Load, evaluate and persist new alerts.

    Each candidate is committed on its own, so one failed write leaves the
    others in place. A unique index violation means another writer created the
    same pending alert after our read and is reported as a skip.
    """

    materials = await with_timeout(crud.list_materials(session), timeout, "list_materials")
    pending = await with_timeout(
        crud.list_unacknowledged_alerts(session), timeout, "list_unacknowledged_alerts"
    )
    result = engine.evaluate(
        [schemas.MaterialOut.model_validate(row) for row in materials],
        [schemas.AlertOut.model_validate(row) for row in pending],
    )

    report = schemas.AlertCheckReport(skipped=list(result.skipped))
    for candidate in result.created:
        key = candidate.dedup_key
        try:
            alert = await asyncio.wait_for(crud.put_alert(session, candidate), timeout)
            await asyncio.wait_for(session.commit(), timeout)
        except IntegrityError:
            await session.rollback()
            logger.info("alert_skipped_duplicate", dedup_key=key)
            report.skipped.append(key)
            continue
        except (SQLAlchemyError, asyncio.TimeoutError) as exc:
            await session.rollback()
            logger.error("alert_persist_failed", dedup_key=key, error=repr(exc))
            report.failed.append(key)
            continue
        logger.info("alert_created", dedup_key=key, severity=alert.severity, alert_id=alert.id)
        report.created.append(schemas.AlertOut.model_validate(alert))

    return report


__all__ = ["load_snapshot", "run_alert_check", "with_timeout"]
