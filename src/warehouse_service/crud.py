"""Business logic for interacting with the database."""
from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, NoResultFound
from sqlalchemy.ext.asyncio import AsyncSession
from werkzeug.security import generate_password_hash

from . import schemas
from .exceptions import DefectResolutionError, DuplicateEntityError, InsufficientStockError
from .logging_config import get_logger
from .models import Alert, Defect, Material, MaterialTransaction, User, utcnow

logger = get_logger(__name__)


def _signed_delta(transaction_type: str, quantity: float) -> float:
    return quantity if transaction_type == "receiving" else -quantity


# Materials


async def create_material(session: AsyncSession, data: schemas.MaterialCreate) -> Material:
    material = Material(**data.model_dump())
    session.add(material)
    try:
        await session.flush()
    except IntegrityError as exc:
        await session.rollback()
        raise DuplicateEntityError(
            f"Material {data.material_code} already exists",
            details={"material_code": data.material_code},
        ) from exc
    logger.info("material_created", material_code=material.material_code)
    return material


async def list_materials(session: AsyncSession) -> Sequence[Material]:
    stmt = select(Material).order_by(Material.material_code)
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_material(session: AsyncSession, material_id: int) -> Material:
    stmt = select(Material).where(Material.id == material_id)
    result = await session.execute(stmt)
    material = result.scalar_one_or_none()
    if material is None:
        raise NoResultFound(f"Material {material_id} not found")
    return material


async def get_material_by_code(session: AsyncSession, material_code: str) -> Material:
    stmt = select(Material).where(Material.material_code == material_code)
    result = await session.execute(stmt)
    material = result.scalar_one_or_none()
    if material is None:
        raise NoResultFound(f"Material {material_code} not found")
    return material


async def update_material(
    session: AsyncSession, material: Material, data: schemas.MaterialUpdate
) -> Material:
    # Historical transactions, defects and alerts keep their description snapshot.
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(material, field, value)
    material.last_updated = utcnow()
    await session.flush()
    return material


async def delete_material(session: AsyncSession, material: Material) -> None:
    await session.delete(material)
    await session.flush()
    logger.info("material_deleted", material_code=material.material_code)


async def adjust_stock(session: AsyncSession, material_code: str, delta: float) -> Material:
    """Apply ``delta`` to a material's quantity in a single conditional UPDATE.

    The read-modify-write happens inside the database, so concurrent movements
    against the same material cannot lose each other's update.
    """

    stmt = (
        update(Material)
        .where(Material.material_code == material_code, Material.quantity + delta >= 0)
        .values(quantity=Material.quantity + delta, last_updated=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount == 0:
        # Either the material does not exist or the stock would go negative.
        material = await get_material_by_code(session, material_code)
        raise InsufficientStockError(material.material_code, delta)
    material = await get_material_by_code(session, material_code)
    await session.refresh(material)
    logger.info(
        "stock_adjusted",
        material_code=material_code,
        delta=delta,
        quantity=material.quantity,
    )
    return material


# Transactions


async def list_transactions(session: AsyncSession) -> Sequence[MaterialTransaction]:
    stmt = select(MaterialTransaction).order_by(
        MaterialTransaction.date.desc(), MaterialTransaction.id.desc()
    )
    result = await session.execute(stmt)
    return result.scalars().all()


async def list_material_transactions(
    session: AsyncSession, material_code: str
) -> Sequence[MaterialTransaction]:
    stmt = (
        select(MaterialTransaction)
        .where(MaterialTransaction.material_code == material_code)
        .order_by(MaterialTransaction.date.desc(), MaterialTransaction.id.desc())
    )
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_transaction(session: AsyncSession, transaction_id: int) -> MaterialTransaction:
    stmt = select(MaterialTransaction).where(MaterialTransaction.id == transaction_id)
    result = await session.execute(stmt)
    transaction = result.scalar_one_or_none()
    if transaction is None:
        raise NoResultFound(f"Transaction {transaction_id} not found")
    return transaction


async def record_transaction(
    session: AsyncSession, data: schemas.TransactionCreate
) -> tuple[MaterialTransaction, Material]:
    material = await get_material_by_code(session, data.material_code)
    material = await adjust_stock(
        session, material.material_code, _signed_delta(data.transaction_type, data.quantity)
    )
    values = data.model_dump(exclude_none=True)
    transaction = MaterialTransaction(
        **values,
        material_description=material.description,
        unit=material.unit,
    )
    session.add(transaction)
    await session.flush()
    return transaction, material


async def update_transaction(
    session: AsyncSession, transaction: MaterialTransaction, data: schemas.TransactionUpdate
) -> MaterialTransaction:
    """Reverse the old stock effect and apply the new one in the same unit of work."""

    changes = data.model_dump(exclude_unset=True)
    new_code = changes.get("material_code", transaction.material_code)
    new_type = changes.get("transaction_type", transaction.transaction_type)
    new_quantity = changes.get("quantity", transaction.quantity)

    old_delta = _signed_delta(transaction.transaction_type, transaction.quantity)
    new_delta = _signed_delta(new_type, new_quantity)

    if new_code == transaction.material_code:
        if new_delta != old_delta:
            await adjust_stock(session, new_code, new_delta - old_delta)
    else:
        target = await get_material_by_code(session, new_code)
        await _reverse_stock(session, transaction)
        await adjust_stock(session, new_code, new_delta)
        transaction.material_description = target.description
        transaction.unit = target.unit

    for field, value in changes.items():
        if value is not None:
            setattr(transaction, field, value)
    await session.flush()
    return transaction


async def _reverse_stock(session: AsyncSession, transaction: MaterialTransaction) -> None:
    delta = -_signed_delta(transaction.transaction_type, transaction.quantity)
    try:
        await adjust_stock(session, transaction.material_code, delta)
    except NoResultFound:
        logger.warning(
            "transaction_material_missing",
            transaction_id=transaction.id,
            material_code=transaction.material_code,
        )


async def delete_transaction(session: AsyncSession, transaction: MaterialTransaction) -> None:
    await _reverse_stock(session, transaction)
    await session.delete(transaction)
    await session.flush()


# Defects


def _check_resolution(status: str, notes: str | None) -> None:
    if status == "resolved" and not (notes and notes.strip()):
        raise DefectResolutionError("Resolution notes are required to resolve a defect.")


async def create_defect(session: AsyncSession, data: schemas.DefectCreate) -> Defect:
    _check_resolution(data.status, data.resolution_notes)
    material = await get_material_by_code(session, data.material_code)
    defect = Defect(
        **data.model_dump(exclude_none=True),
        material_description=material.description,
        unit=material.unit,
    )
    session.add(defect)
    await session.flush()
    logger.info(
        "defect_reported",
        defect_id=defect.id,
        material_code=defect.material_code,
        severity=defect.severity,
    )
    return defect


async def list_defects(session: AsyncSession) -> Sequence[Defect]:
    stmt = select(Defect).order_by(Defect.reported_date.desc(), Defect.id.desc())
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_defect(session: AsyncSession, defect_id: int) -> Defect:
    stmt = select(Defect).where(Defect.id == defect_id)
    result = await session.execute(stmt)
    defect = result.scalar_one_or_none()
    if defect is None:
        raise NoResultFound(f"Defect {defect_id} not found")
    return defect


async def update_defect(session: AsyncSession, defect: Defect, data: schemas.DefectUpdate) -> Defect:
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(defect, field, value)
    await session.flush()
    return defect


async def set_defect_status(
    session: AsyncSession, defect: Defect, data: schemas.DefectStatusUpdate
) -> Defect:
    notes = data.resolution_notes if data.resolution_notes is not None else defect.resolution_notes
    _check_resolution(data.status, notes)
    defect.status = data.status
    defect.resolution_notes = notes
    await session.flush()
    logger.info("defect_status_changed", defect_id=defect.id, status=defect.status)
    return defect


async def delete_defect(session: AsyncSession, defect: Defect) -> None:
    await session.delete(defect)
    await session.flush()


# Alerts


async def list_alerts(session: AsyncSession) -> Sequence[Alert]:
    stmt = select(Alert).order_by(Alert.created_at.desc(), Alert.id.desc())
    result = await session.execute(stmt)
    return result.scalars().all()


async def list_unacknowledged_alerts(session: AsyncSession) -> Sequence[Alert]:
    stmt = select(Alert).where(Alert.acknowledged.is_(False)).order_by(Alert.id)
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_alert(session: AsyncSession, alert_id: int) -> Alert:
    stmt = select(Alert).where(Alert.id == alert_id)
    result = await session.execute(stmt)
    alert = result.scalar_one_or_none()
    if alert is None:
        raise NoResultFound(f"Alert {alert_id} not found")
    return alert


async def put_alert(session: AsyncSession, data: schemas.AlertCreate) -> Alert:
    alert = Alert(**data.model_dump(), acknowledged=False)
    session.add(alert)
    await session.flush()
    return alert


async def acknowledge_alert(session: AsyncSession, alert: Alert) -> Alert:
    alert.acknowledged = True
    await session.flush()
    return alert


async def delete_alert(session: AsyncSession, alert: Alert) -> None:
    await session.delete(alert)
    await session.flush()


async def acknowledge_all(session: AsyncSession) -> int:
    stmt = (
        update(Alert)
        .where(Alert.acknowledged.is_(False))
        .values(acknowledged=True)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount


async def clear_acknowledged(session: AsyncSession) -> int:
    result = await session.execute(delete(Alert).where(Alert.acknowledged.is_(True)))
    return result.rowcount


async def clear_all(session: AsyncSession) -> int:
    result = await session.execute(delete(Alert))
    return result.rowcount


# Users


async def create_user(session: AsyncSession, data: schemas.UserCreate) -> User:
    existing = await session.execute(select(User).where(User.email == data.email.lower()))
    if existing.scalar_one_or_none() is not None:
        raise DuplicateEntityError(
            "User with this email already exists", details={"email": data.email}
        )
    user = User(
        email=data.email.lower(),
        name=data.name,
        password_hash=generate_password_hash(data.password),
        role=data.role.value,
        department=data.department,
    )
    session.add(user)
    await session.flush()
    logger.info("user_created", user_id=user.id, role=user.role)
    return user


async def list_users(session: AsyncSession) -> Sequence[User]:
    result = await session.execute(select(User).order_by(User.email))
    return result.scalars().all()


async def get_user(session: AsyncSession, user_id: int) -> User:
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NoResultFound(f"User {user_id} not found")
    return user


async def delete_user(session: AsyncSession, user: User) -> None:
    await session.delete(user)
    await session.flush()


__all__ = [
    "acknowledge_alert",
    "acknowledge_all",
    "adjust_stock",
    "clear_acknowledged",
    "clear_all",
    "create_defect",
    "create_material",
    "create_user",
    "delete_alert",
    "delete_defect",
    "delete_material",
    "delete_transaction",
    "delete_user",
    "get_alert",
    "get_defect",
    "get_material",
    "get_material_by_code",
    "get_transaction",
    "get_user",
    "list_alerts",
    "list_defects",
    "list_materials",
    "list_material_transactions",
    "list_transactions",
    "list_unacknowledged_alerts",
    "list_users",
    "put_alert",
    "record_transaction",
    "set_defect_status",
    "update_defect",
    "update_material",
    "update_transaction",
]
