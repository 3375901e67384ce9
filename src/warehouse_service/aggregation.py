"""Reporting aggregations for the dashboard, analytics and cost views.

Every function here is pure: it receives an already-loaded snapshot and never
mutates it. Materials describe current state and are never date filtered;
transactions, defects and alerts are narrowed to a reporting window first.
"""
from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any

from . import schemas
from .schemas import (
    AlertOut,
    DefectOut,
    MaterialOut,
    TransactionOut,
)

UNCATEGORIZED = "Uncategorized"
DEFECT_SEVERITIES = ("critical", "high", "medium", "low")
ALERT_SEVERITIES = ("critical", "error", "warning")
EARLIEST = datetime.min.replace(tzinfo=timezone.utc)

_RANGE_DAYS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}


@dataclass(frozen=True)
class UnitCostLookup:
    """Estimated unit cost per category with a declared fallback."""

    costs: Mapping[str, float] = field(default_factory=dict)
    default: float = 100.0

    def cost_for(self, category: str | None) -> float:
        if category and category in self.costs:
            return self.costs[category]
        return self.default


@dataclass
class Snapshot:
    materials: list[MaterialOut]
    transactions: list[TransactionOut]
    defects: list[DefectOut]
    alerts: list[AlertOut]


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def percentage(part: float, total: float) -> float:
    if not total:
        return 0.0
    return part / total * 100


def window_start(range_key: str, now: datetime | None = None) -> datetime:
    """Lower bound of a reporting window; ``all`` has no lower bound."""

    if range_key == "all":
        return EARLIEST
    try:
        days = _RANGE_DAYS[range_key]
    except KeyError:
        raise ValueError(f"Unknown reporting range: {range_key}") from None
    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    return now - timedelta(days=days)


def filter_window(items: Iterable[Any], start: datetime, field_name: str) -> list[Any]:
    start = as_utc(start)
    return [item for item in items if as_utc(getattr(item, field_name)) >= start]


def counts_by_type(transactions: Iterable[TransactionOut]) -> schemas.TransactionCounts:
    counter = Counter(txn.transaction_type for txn in transactions)
    receiving = counter.get("receiving", 0)
    issuance = counter.get("issuance", 0)
    return schemas.TransactionCounts(
        receiving=receiving, issuance=issuance, total=receiving + issuance
    )


def category_distribution(materials: Sequence[MaterialOut]) -> list[schemas.CategoryShare]:
    counter = Counter(material.category or UNCATEGORIZED for material in materials)
    total = len(materials)
    shares = [
        schemas.CategoryShare(category=category, count=count, percentage=percentage(count, total))
        for category, count in counter.items()
    ]
    shares.sort(key=lambda share: (-share.count, share.category))
    return shares


def severity_distribution(
    items: Sequence[Any], severity_field: str, levels: Sequence[str]
) -> list[schemas.SeverityShare]:
    """Count per severity level; every level is reported even when empty."""

    counter = Counter(getattr(item, severity_field) for item in items)
    total = len(items)
    return [
        schemas.SeverityShare(
            severity=level,
            count=counter.get(level, 0),
            percentage=percentage(counter.get(level, 0), total),
        )
        for level in levels
    ]


def daily_trend(
    transactions: Iterable[TransactionOut],
    days: int,
    *,
    today: date | None = None,
    tz: tzinfo = timezone.utc,
) -> list[schemas.TrendPoint]:
    """Receiving/issuance counts per calendar day, oldest first, ending today.

    Always returns exactly ``days`` points; days without movements are zero.
    """

    if days <= 0:
        return []
    today = today or datetime.now(tz).date()
    first = today - timedelta(days=days - 1)
    points = [schemas.TrendPoint(day=first + timedelta(days=offset)) for offset in range(days)]
    by_day = {point.day: point for point in points}

    for txn in transactions:
        point = by_day.get(as_utc(txn.date).astimezone(tz).date())
        if point is None:
            continue
        if txn.transaction_type == "receiving":
            point.receiving += 1
        elif txn.transaction_type == "issuance":
            point.issuance += 1
    return points


def estimated_inventory_value(materials: Iterable[MaterialOut], lookup: UnitCostLookup) -> float:
    return sum(material.quantity * lookup.cost_for(material.category) for material in materials)


def _materials_by_code(materials: Iterable[MaterialOut]) -> dict[str, MaterialOut]:
    return {material.material_code: material for material in materials}


def transaction_value(
    transactions: Iterable[TransactionOut],
    materials: Iterable[MaterialOut],
    lookup: UnitCostLookup,
    transaction_type: str,
) -> float:
    by_code = _materials_by_code(materials)
    total = 0.0
    for txn in transactions:
        if txn.transaction_type != transaction_type:
            continue
        material = by_code.get(txn.material_code)
        if material is None:
            continue
        total += txn.quantity * lookup.cost_for(material.category)
    return total


def defect_loss_estimate(
    defects: Iterable[DefectOut],
    materials: Iterable[MaterialOut],
    lookup: UnitCostLookup,
    loss_factor: float = 0.5,
) -> float:
    by_code = _materials_by_code(materials)
    total = 0.0
    for defect in defects:
        material = by_code.get(defect.material_code)
        if material is None:
            continue
        total += defect.quantity * lookup.cost_for(material.category) * loss_factor
    return total


def cost_by_category(
    materials: Iterable[MaterialOut], lookup: UnitCostLookup
) -> list[schemas.CategoryCost]:
    buckets: dict[str, schemas.CategoryCost] = {}
    for material in materials:
        category = material.category or UNCATEGORIZED
        bucket = buckets.setdefault(
            category, schemas.CategoryCost(category=category, count=0, cost=0.0)
        )
        bucket.count += 1
        bucket.cost += material.quantity * lookup.cost_for(material.category)
    return sorted(buckets.values(), key=lambda bucket: (-bucket.cost, bucket.category))


def recent_activity(
    transactions: Sequence[TransactionOut],
    defects: Sequence[DefectOut],
    alerts: Sequence[AlertOut],
    limit: int = 10,
) -> list[schemas.ActivityEntry]:
    """Latest movements, defect reports and pending alerts, newest first."""

    latest_transactions = sorted(transactions, key=lambda txn: as_utc(txn.date), reverse=True)
    latest_defects = sorted(defects, key=lambda d: as_utc(d.reported_date), reverse=True)
    pending_alerts = sorted(
        (alert for alert in alerts if not alert.acknowledged),
        key=lambda alert: as_utc(alert.created_at),
        reverse=True,
    )

    entries = [
        schemas.ActivityEntry(
            kind="transaction",
            description=(
                f"{'Received' if txn.transaction_type == 'receiving' else 'Issued'} "
                f"{txn.quantity:g} {txn.unit} of {txn.material_description or txn.material_code}"
            ),
            timestamp=as_utc(txn.date),
        )
        for txn in latest_transactions[:5]
    ]
    entries.extend(
        schemas.ActivityEntry(
            kind="defect",
            description=f"Defect reported for {d.material_description or d.material_code}",
            timestamp=as_utc(d.reported_date),
        )
        for d in latest_defects[:3]
    )
    entries.extend(
        schemas.ActivityEntry(kind="alert", description=alert.message, timestamp=as_utc(alert.created_at))
        for alert in pending_alerts[:2]
    )
    entries.sort(key=lambda entry: entry.timestamp, reverse=True)
    return entries[:limit]


def dashboard_summary(snapshot: Snapshot) -> schemas.DashboardSummary:
    return schemas.DashboardSummary(
        total_materials=len(snapshot.materials),
        total_transactions=len(snapshot.transactions),
        total_defects=len(snapshot.defects),
        active_alerts=sum(1 for alert in snapshot.alerts if not alert.acknowledged),
        recent_activity=recent_activity(snapshot.transactions, snapshot.defects, snapshot.alerts),
    )


def build_analytics_report(
    snapshot: Snapshot,
    range_key: str,
    *,
    category: str | None = None,
    now: datetime | None = None,
    tz: tzinfo = timezone.utc,
) -> schemas.AnalyticsReport:
    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    start = window_start(range_key, now)
    transactions = filter_window(snapshot.transactions, start, "date")
    defects = filter_window(snapshot.defects, start, "reported_date")
    alerts = filter_window(snapshot.alerts, start, "created_at")
    materials = (
        [material for material in snapshot.materials if material.category == category]
        if category
        else snapshot.materials
    )
    trend_days = min(_RANGE_DAYS.get(range_key, 365), 30)

    return schemas.AnalyticsReport(
        range=range_key,
        category=category,
        total_materials=len(materials),
        transactions=counts_by_type(transactions),
        total_defects=len(defects),
        active_alerts=sum(1 for alert in alerts if not alert.acknowledged),
        total_inventory_units=sum(material.quantity for material in materials),
        trend=daily_trend(transactions, trend_days, today=now.astimezone(tz).date(), tz=tz),
        categories=category_distribution(snapshot.materials),
        defect_severity=severity_distribution(defects, "severity", DEFECT_SEVERITIES),
        alert_severity=severity_distribution(alerts, "severity", ALERT_SEVERITIES),
    )


def build_cost_report(
    snapshot: Snapshot,
    range_key: str,
    lookup: UnitCostLookup,
    *,
    loss_factor: float = 0.5,
    now: datetime | None = None,
) -> schemas.CostReport:
    start = window_start(range_key, now)
    transactions = filter_window(snapshot.transactions, start, "date")
    defects = filter_window(snapshot.defects, start, "reported_date")
    return schemas.CostReport(
        range=range_key,
        total_inventory_value=estimated_inventory_value(snapshot.materials, lookup),
        receiving_cost=transaction_value(transactions, snapshot.materials, lookup, "receiving"),
        issuance_cost=transaction_value(transactions, snapshot.materials, lookup, "issuance"),
        defect_loss=defect_loss_estimate(defects, snapshot.materials, lookup, loss_factor),
        by_category=cost_by_category(snapshot.materials, lookup),
    )


__all__ = [
    "ALERT_SEVERITIES",
    "as_utc",
    "build_analytics_report",
    "build_cost_report",
    "category_distribution",
    "cost_by_category",
    "counts_by_type",
    "daily_trend",
    "dashboard_summary",
    "defect_loss_estimate",
    "DEFECT_SEVERITIES",
    "EARLIEST",
    "estimated_inventory_value",
    "filter_window",
    "percentage",
    "recent_activity",
    "severity_distribution",
    "Snapshot",
    "transaction_value",
    "UNCATEGORIZED",
    "UnitCostLookup",
    "window_start",
]
