from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any

import pytest

from warehouse_service import aggregation
from warehouse_service.aggregation import Snapshot, UnitCostLookup
from warehouse_service.schemas import AlertOut, DefectOut, MaterialOut, TransactionOut

NOW = datetime(2024, 5, 10, 15, 0, tzinfo=timezone.utc)
LOOKUP = UnitCostLookup(costs={"Electronics": 150, "Packaging": 20}, default=100)


def _material(code: str, category: str = "Electronics", quantity: float = 10) -> MaterialOut:
    return MaterialOut(
        id=1,
        material_code=code,
        description=f"Material {code}",
        category=category,
        unit="pcs",
        quantity=quantity,
        location="",
        last_updated=NOW,
    )


def _txn(code: str, kind: str, when: datetime, quantity: float = 1) -> TransactionOut:
    return TransactionOut(
        id=1,
        material_code=code,
        material_description=f"Material {code}",
        transaction_type=kind,
        quantity=quantity,
        unit="pcs",
        date=when,
        user="tester",
        reference="REF",
    )


def _defect(code: str, severity: str = "low", quantity: float = 1, when: datetime = NOW) -> DefectOut:
    return DefectOut(
        id=1,
        material_code=code,
        material_description=f"Material {code}",
        defect_type="damaged",
        quantity=quantity,
        unit="pcs",
        severity=severity,
        description="",
        reported_by="qa",
        reported_date=when,
        status="open",
    )


def _alert(code: str, severity: str = "warning", acknowledged: bool = False, **extra: Any) -> AlertOut:
    data: dict[str, Any] = {
        "id": 1,
        "type": "low-stock",
        "material_code": code,
        "message": f"Low stock: {code}",
        "severity": severity,
        "created_at": NOW,
        "acknowledged": acknowledged,
    }
    data.update(extra)
    return AlertOut(**data)


def test_counts_by_type() -> None:
    counts = aggregation.counts_by_type(
        [_txn("A", "receiving", NOW), _txn("A", "issuance", NOW), _txn("B", "receiving", NOW)]
    )
    assert (counts.receiving, counts.issuance, counts.total) == (2, 1, 3)
    assert aggregation.counts_by_type([]).total == 0


def test_category_distribution() -> None:
    assert aggregation.category_distribution([]) == []

    shares = aggregation.category_distribution(
        [
            _material("A", "Packaging"),
            _material("B", "Electronics"),
            _material("C", "Electronics"),
            _material("D", ""),
        ]
    )
    assert [(share.category, share.count, share.percentage) for share in shares] == [
        ("Electronics", 2, 50.0),
        ("Packaging", 1, 25.0),
        ("Uncategorized", 1, 25.0),
    ]


def test_severity_distribution_reports_every_level() -> None:
    empty = aggregation.severity_distribution([], "severity", aggregation.DEFECT_SEVERITIES)
    assert [(share.severity, share.count, share.percentage) for share in empty] == [
        ("critical", 0, 0.0),
        ("high", 0, 0.0),
        ("medium", 0, 0.0),
        ("low", 0, 0.0),
    ]

    alerts = [_alert("A", "critical"), _alert("B", "warning"), _alert("C", "warning"), _alert("D", "warning")]
    shares = aggregation.severity_distribution(alerts, "severity", aggregation.ALERT_SEVERITIES)
    assert {share.severity: share.percentage for share in shares} == {
        "critical": 25.0,
        "error": 0.0,
        "warning": 75.0,
    }


def test_daily_trend_has_fixed_length_and_zero_fills() -> None:
    today = NOW.date()
    transactions = [
        _txn("A", "receiving", NOW),
        _txn("A", "receiving", NOW - timedelta(hours=3)),
        _txn("A", "issuance", NOW - timedelta(days=2)),
        _txn("A", "issuance", NOW - timedelta(days=30)),
    ]
    trend = aggregation.daily_trend(transactions, 7, today=today)

    assert len(trend) == 7
    assert [point.day for point in trend] == [today - timedelta(days=offset) for offset in range(6, -1, -1)]
    assert (trend[-1].receiving, trend[-1].issuance) == (2, 0)
    assert (trend[-3].receiving, trend[-3].issuance) == (0, 1)
    assert sum(point.receiving + point.issuance for point in trend) == 3

    assert len(aggregation.daily_trend([], 7, today=today)) == 7


def test_daily_trend_buckets_in_local_timezone() -> None:
    late_evening_utc = datetime(2024, 5, 9, 23, 30, tzinfo=timezone.utc)
    plus_two = timezone(timedelta(hours=2))
    trend = aggregation.daily_trend(
        [_txn("A", "receiving", late_evening_utc)], 2, today=date(2024, 5, 10), tz=plus_two
    )
    assert [(point.day, point.receiving) for point in trend] == [
        (date(2024, 5, 9), 0),
        (date(2024, 5, 10), 1),
    ]


def test_daily_trend_accepts_naive_timestamps() -> None:
    naive = datetime(2024, 5, 10, 8, 0)
    trend = aggregation.daily_trend([_txn("A", "issuance", naive)], 1, today=date(2024, 5, 10))
    assert trend[0].issuance == 1


def test_window_start() -> None:
    assert aggregation.window_start("7d", NOW) == NOW - timedelta(days=7)
    assert aggregation.window_start("1y", NOW) == NOW - timedelta(days=365)
    assert aggregation.window_start("all", NOW) == aggregation.EARLIEST
    with pytest.raises(ValueError):
        aggregation.window_start("2w", NOW)


def test_filter_window() -> None:
    recent = _txn("A", "receiving", NOW - timedelta(days=1))
    old = _txn("A", "receiving", NOW - timedelta(days=40))
    start = aggregation.window_start("30d", NOW)
    assert aggregation.filter_window([recent, old], start, "date") == [recent]
    assert len(aggregation.filter_window([recent, old], aggregation.EARLIEST, "date")) == 2


def test_unit_cost_lookup_falls_back_to_default() -> None:
    assert LOOKUP.cost_for("Electronics") == 150
    assert LOOKUP.cost_for("Unknown") == 100
    assert LOOKUP.cost_for("") == 100
    assert UnitCostLookup(default=0).cost_for("Anything") == 0


def test_estimated_inventory_value() -> None:
    materials = [
        _material("A", "Electronics", quantity=2),
        _material("B", "Packaging", quantity=10),
        _material("C", "Mystery", quantity=1),
    ]
    assert aggregation.estimated_inventory_value(materials, LOOKUP) == 2 * 150 + 10 * 20 + 100
    assert aggregation.estimated_inventory_value([], LOOKUP) == 0


def test_defect_loss_estimate_skips_unknown_materials() -> None:
    materials = [_material("A", "Electronics")]
    defects = [_defect("A", quantity=4), _defect("GONE", quantity=100)]
    assert aggregation.defect_loss_estimate(defects, materials, LOOKUP) == 4 * 150 * 0.5
    assert aggregation.defect_loss_estimate(defects, materials, LOOKUP, loss_factor=1) == 600


def test_transaction_value_and_cost_by_category() -> None:
    materials = [_material("A", "Electronics", quantity=1), _material("B", "Packaging", quantity=5)]
    transactions = [
        _txn("A", "receiving", NOW, quantity=2),
        _txn("B", "issuance", NOW, quantity=3),
        _txn("ZZ", "receiving", NOW, quantity=50),
    ]
    assert aggregation.transaction_value(transactions, materials, LOOKUP, "receiving") == 300
    assert aggregation.transaction_value(transactions, materials, LOOKUP, "issuance") == 60

    buckets = aggregation.cost_by_category(materials, LOOKUP)
    assert [(bucket.category, bucket.count, bucket.cost) for bucket in buckets] == [
        ("Electronics", 1, 150.0),
        ("Packaging", 1, 100.0),
    ]


def test_recent_activity_orders_newest_first() -> None:
    transactions = [_txn("A", "receiving", NOW - timedelta(hours=2), quantity=5)]
    defects = [_defect("A", when=NOW - timedelta(hours=1))]
    alerts = [_alert("A"), _alert("B", acknowledged=True)]

    activity = aggregation.recent_activity(transactions, defects, alerts)
    assert [entry.kind for entry in activity] == ["alert", "defect", "transaction"]
    assert activity[2].description == "Received 5 pcs of Material A"


def test_dashboard_summary_counts_active_alerts() -> None:
    snapshot = Snapshot(
        materials=[_material("A")],
        transactions=[_txn("A", "receiving", NOW)],
        defects=[],
        alerts=[_alert("A"), _alert("B", acknowledged=True)],
    )
    summary = aggregation.dashboard_summary(snapshot)
    assert summary.total_materials == 1
    assert summary.total_transactions == 1
    assert summary.total_defects == 0
    assert summary.active_alerts == 1


def test_analytics_report_windows_history_but_not_materials() -> None:
    snapshot = Snapshot(
        materials=[_material("A", "Electronics", 3), _material("B", "Packaging", 4)],
        transactions=[
            _txn("A", "receiving", NOW - timedelta(days=1)),
            _txn("A", "issuance", NOW - timedelta(days=20)),
        ],
        defects=[_defect("A", "critical", when=NOW - timedelta(days=60))],
        alerts=[_alert("A", "error", created_at=NOW - timedelta(days=2))],
    )

    report = aggregation.build_analytics_report(snapshot, "7d", now=NOW)
    assert report.total_materials == 2
    assert report.total_inventory_units == 7
    assert report.transactions.total == 1
    assert report.total_defects == 0
    assert report.active_alerts == 1
    assert len(report.trend) == 7
    assert report.trend[-1].day == NOW.date()
    assert {share.severity: share.count for share in report.alert_severity}["error"] == 1

    filtered = aggregation.build_analytics_report(snapshot, "all", category="Packaging", now=NOW)
    assert filtered.total_materials == 1
    assert filtered.total_inventory_units == 4
    assert filtered.transactions.total == 2
    assert filtered.total_defects == 1
    assert len(filtered.trend) == 30
    # the distribution always covers the full material set
    assert len(filtered.categories) == 2


def test_cost_report() -> None:
    snapshot = Snapshot(
        materials=[_material("A", "Electronics", 2)],
        transactions=[_txn("A", "receiving", NOW - timedelta(days=1), quantity=2)],
        defects=[_defect("A", quantity=2)],
        alerts=[],
    )
    report = aggregation.build_cost_report(snapshot, "30d", LOOKUP, now=NOW)
    assert report.total_inventory_value == 300
    assert report.receiving_cost == 300
    assert report.issuance_cost == 0
    assert report.defect_loss == 150
    assert report.by_category[0].category == "Electronics"
