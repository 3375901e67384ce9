from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from warehouse_service import aggregation, crud, schemas, services
from warehouse_service.alert_rules import AlertRuleEngine
from warehouse_service.exceptions import PersistenceFailure
from warehouse_service.export import MATERIAL_COLUMNS, rows_to_csv
from warehouse_service.roles import (
    Role,
    can_acknowledge_alerts,
    can_manage_materials,
    can_manage_users,
    can_record_transactions,
    can_view,
    parse_role,
)


async def test_with_timeout_raises_persistence_failure() -> None:
    with pytest.raises(PersistenceFailure) as excinfo:
        await services.with_timeout(asyncio.sleep(1), 0.01, "slow_read")
    assert excinfo.value.details == {"operation": "slow_read"}


async def test_with_timeout_wraps_driver_errors() -> None:
    async def broken() -> None:
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    with pytest.raises(PersistenceFailure):
        await services.with_timeout(broken(), 1, "broken_read")


async def test_with_timeout_returns_result() -> None:
    async def answer() -> int:
        return 42

    assert await services.with_timeout(answer(), 1, "answer") == 42


async def test_run_alert_check_persists_and_dedups(session) -> None:
    await crud.create_material(
        session, schemas.MaterialCreate(material_code="S1", quantity=150, sap_quantity=100)
    )
    await session.commit()
    engine = AlertRuleEngine()

    first = await services.run_alert_check(session, engine, timeout=5)
    assert [alert.dedup_key for alert in first.created] == ["mismatch-S1"]
    assert first.failed == []

    second = await services.run_alert_check(session, engine, timeout=5)
    assert second.created == []
    assert second.skipped == ["mismatch-S1"]


async def test_run_alert_check_treats_unique_violation_as_skip(session, monkeypatch) -> None:
    await crud.create_material(session, schemas.MaterialCreate(material_code="S2", quantity=3))
    await session.commit()
    engine = AlertRuleEngine()
    await services.run_alert_check(session, engine, timeout=5)

    # simulate a stale read: another writer created the pending alert after our query
    async def stale(_session):
        return []

    monkeypatch.setattr(crud, "list_unacknowledged_alerts", stale)
    report = await services.run_alert_check(session, engine, timeout=5)

    assert report.created == []
    assert report.skipped == ["low-stock-S2"]
    assert report.failed == []
    assert len(await crud.list_alerts(session)) == 1


async def test_run_alert_check_reports_failed_writes_and_keeps_the_rest(session, monkeypatch) -> None:
    for code in ("F1", "F2"):
        await crud.create_material(session, schemas.MaterialCreate(material_code=code, quantity=3))
    await session.commit()
    put_alert = crud.put_alert

    async def flaky_put_alert(db_session, data):
        if data.material_code == "F1":
            raise OperationalError("INSERT INTO alerts", {}, Exception("disk I/O error"))
        return await put_alert(db_session, data)

    monkeypatch.setattr(crud, "put_alert", flaky_put_alert)
    report = await services.run_alert_check(session, AlertRuleEngine(), timeout=5)

    assert report.failed == ["low-stock-F1"]
    assert [alert.dedup_key for alert in report.created] == ["low-stock-F2"]
    assert report.skipped == []
    assert [alert.material_code for alert in await crud.list_alerts(session)] == ["F2"]


async def test_load_snapshot(session) -> None:
    await crud.create_material(session, schemas.MaterialCreate(material_code="S3", quantity=20))
    await session.commit()
    await crud.record_transaction(
        session,
        schemas.TransactionCreate(material_code="S3", transaction_type="issuance", quantity=5),
    )
    await session.commit()

    snapshot = await services.load_snapshot(session, timeout=5)
    assert [material.quantity for material in snapshot.materials] == [15]
    assert [txn.transaction_type for txn in snapshot.transactions] == ["issuance"]
    assert snapshot.defects == []
    assert snapshot.alerts == []


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("admin", Role.ADMIN), (" Manager ", Role.MANAGER), ("root", None), (None, None), (Role.STAFF, Role.STAFF)],
)
def test_parse_role(raw, expected) -> None:
    assert parse_role(raw) is expected


def test_role_capabilities() -> None:
    assert [role for role in Role if can_manage_users(role)] == [Role.ADMIN]
    assert [role for role in Role if can_manage_materials(role)] == [Role.ADMIN, Role.MANAGER]
    assert not can_record_transactions(Role.VIEWER)
    assert can_acknowledge_alerts(Role.STAFF)
    assert can_view(Role.VIEWER)
    assert not can_view(None)


def test_rows_to_csv_renders_blank_optionals() -> None:
    content = rows_to_csv(
        MATERIAL_COLUMNS[:6], [{"material_code": "C1", "quantity": 2.5, "sap_quantity": None}]
    ).decode("utf-8-sig")
    assert content.splitlines() == [
        "Material Code,Description,Category,Unit,Quantity,SAP Quantity",
        "C1,,,,2.5,",
    ]


@pytest.mark.parametrize("module", [crud, aggregation])
def test_exported_names_are_defined_locally(module) -> None:
    for name in module.__all__:
        assert name.isupper() or getattr(module, name).__module__ == module.__name__
    assert "select" not in module.__all__
    assert "schemas" not in module.__all__
