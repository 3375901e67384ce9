"""Alert rule engine.

Decides which alerts must exist for a set of materials given the alerts that
are still waiting for acknowledgement. The engine is a pure function of its
inputs: it performs no I/O and keeps nothing between calls, so every check
re-reads the pending alerts it is handed rather than trusting an older set.

Two rules are evaluated independently for each material:

* **mismatch**: the locally tracked quantity differs from the ERP
  (``sap_quantity``) figure by at least ``mismatch_min_units`` units or by
  more than ``mismatch_min_percent`` percent;
* **low-stock**: the quantity is above zero and at or below
  ``low_stock_threshold``. Out-of-stock materials are not flagged.

At most one pending alert may exist per ``(type, material_code)`` pair; a
candidate whose key is already pending is reported as skipped, not created.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from .config import AlertThresholds
from .logging_config import get_logger
from .models import utcnow
from .schemas import AlertCreate, MaterialOut

logger = get_logger(__name__)


def dedup_key(alert_type: str, material_code: str) -> str:
    return f"{alert_type}-{material_code}"


def variance_percent(quantity: float, sap_quantity: float) -> float:
    """Relative difference between local and ERP quantity, in percent.

    A zero ERP quantity yields 100 when any stock is held locally and 0
    otherwise, never an infinite ratio.
    """

    if sap_quantity > 0:
        return abs((quantity - sap_quantity) / sap_quantity) * 100
    return 100.0 if quantity > 0 else 0.0


def _format_quantity(value: float) -> str:
    return f"{value:g}"


def _format_variance(value: float) -> str:
    sign = "+" if value > 0 else ""
    return f"{sign}{value:.2f}"


@dataclass
class EvaluationResult:
    """Outcome of one evaluation pass."""

    created: list[AlertCreate] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)


class AlertRuleEngine:
    def __init__(self, thresholds: AlertThresholds | None = None) -> None:
        self.thresholds = thresholds or AlertThresholds()

    def mismatch_severity(self, variance: float, percent: float) -> str:
        limits = self.thresholds
        magnitude = abs(variance)
        if percent > limits.critical_percent or magnitude > limits.critical_units:
            return "critical"
        if percent > limits.error_percent or magnitude > limits.error_units:
            return "error"
        return "warning"

    def low_stock_severity(self, quantity: float) -> str:
        if quantity <= self.thresholds.low_stock_critical:
            return "critical"
        return "warning"

    def check_mismatch(self, material: MaterialOut, now: datetime) -> AlertCreate | None:
        if material.sap_quantity is None:
            return None
        variance = material.quantity - material.sap_quantity
        percent = variance_percent(material.quantity, material.sap_quantity)
        if not (
            abs(variance) >= self.thresholds.mismatch_min_units
            or percent > self.thresholds.mismatch_min_percent
        ):
            return None
        return AlertCreate(
            type="mismatch",
            material_code=material.material_code,
            material_description=material.description,
            message=(
                "Quantity mismatch detected: "
                f"Local quantity ({_format_quantity(material.quantity)}) differs from "
                f"SAP quantity ({_format_quantity(material.sap_quantity)}) by "
                f"{_format_variance(variance)} {material.unit}"
            ),
            local_quantity=material.quantity,
            sap_quantity=material.sap_quantity,
            variance=variance,
            severity=self.mismatch_severity(variance, percent),
            created_at=now,
        )

    def check_low_stock(self, material: MaterialOut, now: datetime) -> AlertCreate | None:
        threshold = self.thresholds.low_stock_threshold
        if not (0 < material.quantity <= threshold):
            return None
        sap_quantity = material.sap_quantity if material.sap_quantity is not None else 0.0
        variance = material.quantity - sap_quantity if material.sap_quantity is not None else 0.0
        label = material.description or material.material_code
        return AlertCreate(
            type="low-stock",
            material_code=material.material_code,
            material_description=material.description,
            message=(
                f"Low stock: {label} has {_format_quantity(material.quantity)} "
                f"{material.unit} remaining (threshold {_format_quantity(threshold)})"
            ),
            local_quantity=material.quantity,
            sap_quantity=sap_quantity,
            variance=variance,
            severity=self.low_stock_severity(material.quantity),
            created_at=now,
        )

    def evaluate(
        self,
        materials: Iterable[MaterialOut],
        unacknowledged_alerts: Iterable[AlertCreate],
        *,
        now: datetime | None = None,
    ) -> EvaluationResult:
        now = now or utcnow()
        pending = {
            dedup_key(alert.type, alert.material_code)
            for alert in unacknowledged_alerts
            if not getattr(alert, "acknowledged", False)
        }
        result = EvaluationResult()

        for material in materials:
            if not material.material_code:
                logger.debug("alert_rule_material_without_code", material_id=material.id)
                continue
            for candidate in (
                self.check_mismatch(material, now),
                self.check_low_stock(material, now),
            ):
                if candidate is None:
                    continue
                key = candidate.dedup_key
                if key in pending:
                    result.skipped.append(key)
                    continue
                pending.add(key)
                result.created.append(candidate)

        logger.info(
            "alert_rules_evaluated",
            created=len(result.created),
            skipped=len(result.skipped),
        )
        return result

    def new_alerts(
        self,
        materials: Iterable[MaterialOut],
        unacknowledged_alerts: Iterable[AlertCreate],
        *,
        now: datetime | None = None,
    ) -> list[AlertCreate]:
        return self.evaluate(materials, unacknowledged_alerts, now=now).created


__all__ = [
    "AlertRuleEngine",
    "EvaluationResult",
    "dedup_key",
    "variance_percent",
]
