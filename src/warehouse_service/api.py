"""FastAPI router configuration."""
from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Literal, Sequence
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import NoResultFound
from sqlalchemy.ext.asyncio import AsyncSession

from . import aggregation, crud, export, roles, schemas, services
from .alert_rules import AlertRuleEngine
from .config import Settings, get_settings
from .database import create_engine, create_session_factory, get_session
from .exceptions import DuplicateEntityError, PermissionDeniedError, PersistenceFailure
from .logging_config import configure_logging, get_logger

logger = get_logger(__name__)

router = APIRouter()

_ALERT_SEVERITY_ORDER = {"critical": 0, "error": 1, "warning": 2}


def provide_settings() -> Settings:
    """Dependency returning the active :class:`Settings` instance."""

    return get_settings()


def provide_rule_engine(settings: Settings = Depends(provide_settings)) -> AlertRuleEngine:
    return AlertRuleEngine(settings.alerts)


def provide_cost_lookup(settings: Settings = Depends(provide_settings)) -> aggregation.UnitCostLookup:
    return aggregation.UnitCostLookup(costs=settings.unit_costs, default=settings.default_unit_cost)


def actor_role(x_actor_role: str | None = Header(default=None)) -> roles.Role | None:
    return roles.parse_role(x_actor_role)


def require(capability: Callable[[roles.Role | None], bool]):
    """Dependency factory rejecting callers whose role lacks ``capability``."""

    def dependency(role: roles.Role | None = Depends(actor_role)) -> roles.Role | None:
        if not capability(role):
            raise PermissionDeniedError(
                f"Role {role.value if role else 'anonymous'} may not perform this action",
                details={"capability": capability.__name__},
            )
        return role

    return dependency


def _not_found(exc: NoResultFound) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _bad_request(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("/health", response_model=schemas.HealthStatus, tags=["system"])
async def health_check(settings: Settings = Depends(provide_settings)) -> schemas.HealthStatus:
    return schemas.HealthStatus(environment=settings.environment)


# Materials


@router.post(
    "/materials",
    response_model=schemas.MaterialOut,
    status_code=status.HTTP_201_CREATED,
    tags=["materials"],
    dependencies=[Depends(require(roles.can_manage_materials))],
)
async def create_material(
    payload: schemas.MaterialCreate, session: AsyncSession = Depends(get_session)
) -> schemas.MaterialOut:
    material = await crud.create_material(session, payload)
    await session.commit()
    return schemas.MaterialOut.model_validate(material)


@router.get(
    "/materials",
    response_model=list[schemas.MaterialOut], tags=["materials"],
    dependencies=[Depends(require(roles.can_view))],
)
async def list_materials(session: AsyncSession = Depends(get_session)) -> Sequence[schemas.MaterialOut]:
    materials = await crud.list_materials(session)
    return [schemas.MaterialOut.model_validate(material) for material in materials]


@router.get(
    "/materials/{material_id}",
    response_model=schemas.MaterialOut, tags=["materials"],
    dependencies=[Depends(require(roles.can_view))],
)
async def get_material(
    material_id: int, session: AsyncSession = Depends(get_session)
) -> schemas.MaterialOut:
    try:
        material = await crud.get_material(session, material_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    return schemas.MaterialOut.model_validate(material)


@router.put(
    "/materials/{material_id}",
    response_model=schemas.MaterialOut,
    tags=["materials"],
    dependencies=[Depends(require(roles.can_manage_materials))],
)
async def update_material(
    material_id: int,
    payload: schemas.MaterialUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.MaterialOut:
    try:
        material = await crud.get_material(session, material_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    material = await crud.update_material(session, material, payload)
    await session.commit()
    await session.refresh(material)
    return schemas.MaterialOut.model_validate(material)


@router.delete(
    "/materials/{material_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["materials"],
    dependencies=[Depends(require(roles.can_manage_materials))],
)
async def delete_material(material_id: int, session: AsyncSession = Depends(get_session)) -> None:
    try:
        material = await crud.get_material(session, material_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    await crud.delete_material(session, material)
    await session.commit()


@router.get(
    "/materials/{material_code}/transactions",
    response_model=list[schemas.TransactionOut],
    tags=["materials"],
    dependencies=[Depends(require(roles.can_view))],
)
async def material_transaction_history(
    material_code: str, session: AsyncSession = Depends(get_session)
) -> Sequence[schemas.TransactionOut]:
    transactions = await crud.list_material_transactions(session, material_code)
    return [schemas.TransactionOut.model_validate(txn) for txn in transactions]


# Transactions


@router.post(
    "/transactions",
    response_model=schemas.TransactionOut,
    status_code=status.HTTP_201_CREATED,
    tags=["transactions"],
    dependencies=[Depends(require(roles.can_record_transactions))],
)
async def record_transaction(
    payload: schemas.TransactionCreate, session: AsyncSession = Depends(get_session)
) -> schemas.TransactionOut:
    try:
        transaction, _ = await crud.record_transaction(session, payload)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise _bad_request(exc) from exc
    await session.commit()
    await session.refresh(transaction)
    return schemas.TransactionOut.model_validate(transaction)


@router.get(
    "/transactions",
    response_model=list[schemas.TransactionOut], tags=["transactions"],
    dependencies=[Depends(require(roles.can_view))],
)
async def list_transactions(
    session: AsyncSession = Depends(get_session),
) -> Sequence[schemas.TransactionOut]:
    transactions = await crud.list_transactions(session)
    return [schemas.TransactionOut.model_validate(txn) for txn in transactions]


@router.get(
    "/transactions/{transaction_id}",
    response_model=schemas.TransactionOut,
    tags=["transactions"],
    dependencies=[Depends(require(roles.can_view))],
)
async def get_transaction(
    transaction_id: int, session: AsyncSession = Depends(get_session)
) -> schemas.TransactionOut:
    try:
        transaction = await crud.get_transaction(session, transaction_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    return schemas.TransactionOut.model_validate(transaction)


@router.put(
    "/transactions/{transaction_id}",
    response_model=schemas.TransactionOut,
    tags=["transactions"],
    dependencies=[Depends(require(roles.can_record_transactions))],
)
async def update_transaction(
    transaction_id: int,
    payload: schemas.TransactionUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.TransactionOut:
    try:
        transaction = await crud.get_transaction(session, transaction_id)
        transaction = await crud.update_transaction(session, transaction, payload)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise _bad_request(exc) from exc
    await session.commit()
    await session.refresh(transaction)
    return schemas.TransactionOut.model_validate(transaction)


@router.delete(
    "/transactions/{transaction_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["transactions"],
    dependencies=[Depends(require(roles.can_record_transactions))],
)
async def delete_transaction(
    transaction_id: int, session: AsyncSession = Depends(get_session)
) -> None:
    try:
        transaction = await crud.get_transaction(session, transaction_id)
        await crud.delete_transaction(session, transaction)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise _bad_request(exc) from exc
    await session.commit()


# Defects


@router.post(
    "/defects",
    response_model=schemas.DefectOut,
    status_code=status.HTTP_201_CREATED,
    tags=["defects"],
    dependencies=[Depends(require(roles.can_record_transactions))],
)
async def report_defect(
    payload: schemas.DefectCreate, session: AsyncSession = Depends(get_session)
) -> schemas.DefectOut:
    try:
        defect = await crud.create_defect(session, payload)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise _bad_request(exc) from exc
    await session.commit()
    return schemas.DefectOut.model_validate(defect)


@router.get(
    "/defects",
    response_model=list[schemas.DefectOut], tags=["defects"],
    dependencies=[Depends(require(roles.can_view))],
)
async def list_defects(session: AsyncSession = Depends(get_session)) -> Sequence[schemas.DefectOut]:
    defects = await crud.list_defects(session)
    return [schemas.DefectOut.model_validate(defect) for defect in defects]


@router.get(
    "/defects/{defect_id}",
    response_model=schemas.DefectOut, tags=["defects"],
    dependencies=[Depends(require(roles.can_view))],
)
async def get_defect(defect_id: int, session: AsyncSession = Depends(get_session)) -> schemas.DefectOut:
    try:
        defect = await crud.get_defect(session, defect_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    return schemas.DefectOut.model_validate(defect)


@router.put(
    "/defects/{defect_id}",
    response_model=schemas.DefectOut,
    tags=["defects"],
    dependencies=[Depends(require(roles.can_record_transactions))],
)
async def update_defect(
    defect_id: int,
    payload: schemas.DefectUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.DefectOut:
    try:
        defect = await crud.get_defect(session, defect_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    defect = await crud.update_defect(session, defect, payload)
    await session.commit()
    await session.refresh(defect)
    return schemas.DefectOut.model_validate(defect)


@router.patch(
    "/defects/{defect_id}/status",
    response_model=schemas.DefectOut,
    tags=["defects"],
    dependencies=[Depends(require(roles.can_record_transactions))],
)
async def change_defect_status(
    defect_id: int,
    payload: schemas.DefectStatusUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.DefectOut:
    try:
        defect = await crud.get_defect(session, defect_id)
        defect = await crud.set_defect_status(session, defect, payload)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise _bad_request(exc) from exc
    await session.commit()
    await session.refresh(defect)
    return schemas.DefectOut.model_validate(defect)


@router.delete(
    "/defects/{defect_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["defects"],
    dependencies=[Depends(require(roles.can_manage_materials))],
)
async def delete_defect(defect_id: int, session: AsyncSession = Depends(get_session)) -> None:
    try:
        defect = await crud.get_defect(session, defect_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    await crud.delete_defect(session, defect)
    await session.commit()


# Alerts


@router.get(
    "/alerts",
    response_model=list[schemas.AlertOut], tags=["alerts"],
    dependencies=[Depends(require(roles.can_view))],
)
async def list_alerts(
    status_filter: Literal["all", "unacknowledged", "acknowledged"] = Query("all", alias="status"),
    session: AsyncSession = Depends(get_session),
) -> Sequence[schemas.AlertOut]:
    alerts = [schemas.AlertOut.model_validate(alert) for alert in await crud.list_alerts(session)]
    if status_filter == "unacknowledged":
        alerts = [alert for alert in alerts if not alert.acknowledged]
    elif status_filter == "acknowledged":
        alerts = [alert for alert in alerts if alert.acknowledged]
    # Newest first within each severity; the sort is stable.
    alerts.sort(key=lambda alert: aggregation.as_utc(alert.created_at), reverse=True)
    alerts.sort(key=lambda alert: _ALERT_SEVERITY_ORDER.get(alert.severity, 3))
    return alerts


@router.post(
    "/alerts/check",
    response_model=schemas.AlertCheckReport,
    tags=["alerts"],
    dependencies=[Depends(require(roles.can_acknowledge_alerts))],
)
async def check_alerts(
    session: AsyncSession = Depends(get_session),
    engine: AlertRuleEngine = Depends(provide_rule_engine),
    settings: Settings = Depends(provide_settings),
) -> schemas.AlertCheckReport:
    return await services.run_alert_check(session, engine, settings.repository_timeout_seconds)


@router.post(
    "/alerts/acknowledge-all",
    response_model=schemas.BulkResult,
    tags=["alerts"],
    dependencies=[Depends(require(roles.can_acknowledge_alerts))],
)
async def acknowledge_all_alerts(session: AsyncSession = Depends(get_session)) -> schemas.BulkResult:
    affected = await crud.acknowledge_all(session)
    await session.commit()
    return schemas.BulkResult(affected=affected)


@router.post(
    "/alerts/clear-acknowledged",
    response_model=schemas.BulkResult,
    tags=["alerts"],
    dependencies=[Depends(require(roles.can_manage_materials))],
)
async def clear_acknowledged_alerts(
    session: AsyncSession = Depends(get_session),
) -> schemas.BulkResult:
    affected = await crud.clear_acknowledged(session)
    await session.commit()
    return schemas.BulkResult(affected=affected)


@router.delete(
    "/alerts",
    response_model=schemas.BulkResult,
    tags=["alerts"],
    dependencies=[Depends(require(roles.can_manage_materials))],
)
async def clear_all_alerts(session: AsyncSession = Depends(get_session)) -> schemas.BulkResult:
    affected = await crud.clear_all(session)
    await session.commit()
    return schemas.BulkResult(affected=affected)


@router.post(
    "/alerts/{alert_id}/acknowledge",
    response_model=schemas.AlertOut,
    tags=["alerts"],
    dependencies=[Depends(require(roles.can_acknowledge_alerts))],
)
async def acknowledge_alert(
    alert_id: int, session: AsyncSession = Depends(get_session)
) -> schemas.AlertOut:
    try:
        alert = await crud.get_alert(session, alert_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    alert = await crud.acknowledge_alert(session, alert)
    await session.commit()
    return schemas.AlertOut.model_validate(alert)


@router.delete(
    "/alerts/{alert_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["alerts"],
    dependencies=[Depends(require(roles.can_acknowledge_alerts))],
)
async def delete_alert(alert_id: int, session: AsyncSession = Depends(get_session)) -> None:
    try:
        alert = await crud.get_alert(session, alert_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    await crud.delete_alert(session, alert)
    await session.commit()


# Reporting


@router.get(
    "/dashboard",
    response_model=schemas.DashboardSummary, tags=["reports"],
    dependencies=[Depends(require(roles.can_view))],
)
async def dashboard(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> schemas.DashboardSummary:
    snapshot = await services.load_snapshot(session, settings.repository_timeout_seconds)
    return aggregation.dashboard_summary(snapshot)


@router.get(
    "/analytics",
    response_model=schemas.AnalyticsReport, tags=["reports"],
    dependencies=[Depends(require(roles.can_view))],
)
async def analytics(
    range_key: schemas.RangeKey = Query("30d", alias="range"),
    category: str | None = Query(None),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> schemas.AnalyticsReport:
    snapshot = await services.load_snapshot(session, settings.repository_timeout_seconds)
    return aggregation.build_analytics_report(
        snapshot,
        range_key,
        category=None if category in (None, "", "all") else category,
        tz=ZoneInfo(settings.default_timezone),
    )


@router.get(
    "/analytics/costs",
    response_model=schemas.CostReport, tags=["reports"],
    dependencies=[Depends(require(roles.can_view))],
)
async def cost_analysis(
    range_key: schemas.RangeKey = Query("30d", alias="range"),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
    lookup: aggregation.UnitCostLookup = Depends(provide_cost_lookup),
) -> schemas.CostReport:
    snapshot = await services.load_snapshot(session, settings.repository_timeout_seconds)
    return aggregation.build_cost_report(
        snapshot, range_key, lookup, loss_factor=settings.defect_loss_factor
    )


_EXPORTS = {
    "materials": (crud.list_materials, schemas.MaterialOut, export.MATERIAL_COLUMNS),
    "transactions": (crud.list_transactions, schemas.TransactionOut, export.TRANSACTION_COLUMNS),
    "defects": (crud.list_defects, schemas.DefectOut, export.DEFECT_COLUMNS),
    "alerts": (crud.list_alerts, schemas.AlertOut, export.ALERT_COLUMNS),
}


@router.get(
    "/export/{collection}",
    tags=["reports"],
    dependencies=[Depends(require(roles.can_view))],
)
async def export_collection(
    collection: Literal["materials", "transactions", "defects", "alerts"],
    fmt: Literal["csv", "xls"] = Query("csv", alias="format"),
    session: AsyncSession = Depends(get_session),
) -> Response:
    loader, schema, columns = _EXPORTS[collection]
    rows = [schema.model_validate(row).model_dump() for row in await loader(session)]
    return export.export_response(columns, rows, prefix=collection, fmt=fmt)


# Users


@router.get(
    "/users",
    response_model=list[schemas.UserOut],
    tags=["users"],
    dependencies=[Depends(require(roles.can_manage_users))],
)
async def list_users(session: AsyncSession = Depends(get_session)) -> Sequence[schemas.UserOut]:
    users = await crud.list_users(session)
    return [schemas.UserOut.model_validate(user) for user in users]


@router.post(
    "/users",
    response_model=schemas.UserOut,
    status_code=status.HTTP_201_CREATED,
    tags=["users"],
    dependencies=[Depends(require(roles.can_manage_users))],
)
async def create_user(
    payload: schemas.UserCreate, session: AsyncSession = Depends(get_session)
) -> schemas.UserOut:
    user = await crud.create_user(session, payload)
    await session.commit()
    return schemas.UserOut.model_validate(user)


@router.delete(
    "/users/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["users"],
    dependencies=[Depends(require(roles.can_manage_users))],
)
async def delete_user(user_id: int, session: AsyncSession = Depends(get_session)) -> None:
    try:
        user = await crud.get_user(session, user_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    await crud.delete_user(session, user)
    await session.commit()


async def _persistence_failure_handler(request: Request, exc: PersistenceFailure) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": exc.message, "hint": "The data store did not respond; retry the request."},
    )


async def _duplicate_handler(request: Request, exc: DuplicateEntityError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": exc.message})


async def _permission_handler(request: Request, exc: PermissionDeniedError) -> JSONResponse:
    logger.warning("permission_denied", path=request.url.path, detail=exc.message)
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": exc.message})


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    await app.state.engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)
    app = FastAPI(title=settings.app_name, lifespan=_lifespan)
    app.state.engine = create_engine(settings)
    app.state.session_factory = create_session_factory(app.state.engine)
    app.dependency_overrides[provide_settings] = lambda: settings
    app.add_exception_handler(PersistenceFailure, _persistence_failure_handler)
    app.add_exception_handler(DuplicateEntityError, _duplicate_handler)
    app.add_exception_handler(PermissionDeniedError, _permission_handler)
    app.include_router(router)
    return app


app = create_app()


__all__ = ["app", "create_app"]
