"""Pydantic schemas used by the API and the engines."""
from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .roles import Role

TransactionType = Literal["receiving", "issuance"]
DefectSeverity = Literal["low", "medium", "high", "critical"]
DefectStatus = Literal["open", "in-progress", "resolved"]
AlertType = Literal["mismatch", "low-stock", "discrepancy", "defect", "transaction"]
AlertSeverity = Literal["warning", "error", "critical"]
RangeKey = Literal["7d", "30d", "90d", "1y", "all"]


class HealthStatus(BaseModel):
    status: Literal["ok"] = "ok"
    environment: str


class BulkResult(BaseModel):
    affected: int = Field(..., ge=0, description="Number of rows changed by the operation.")


class MaterialBase(BaseModel):
    material_code: str = Field(..., min_length=1, description="Unique business key.")
    description: str = ""
    category: str = ""
    unit: str = Field("pcs", description="Unit of measurement, e.g. pcs, kg, m.")
    quantity: float = Field(0, ge=0)
    location: str = ""
    sap_quantity: float | None = Field(
        default=None, description="Quantity reported by the ERP system."
    )
    reorder_threshold: float | None = Field(default=None, ge=0)


class MaterialCreate(MaterialBase):
    pass


class MaterialUpdate(BaseModel):
    description: str | None = None
    category: str | None = None
    unit: str | None = None
    quantity: float | None = Field(default=None, ge=0)
    location: str | None = None
    sap_quantity: float | None = None
    reorder_threshold: float | None = Field(default=None, ge=0)


class MaterialOut(MaterialBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    last_updated: datetime


class TransactionCreate(BaseModel):
    material_code: str = Field(..., min_length=1)
    transaction_type: TransactionType
    quantity: float = Field(..., gt=0)
    date: datetime | None = None
    user: str = ""
    reference: str = ""
    notes: str | None = None


class TransactionUpdate(BaseModel):
    material_code: str | None = Field(default=None, min_length=1)
    transaction_type: TransactionType | None = None
    quantity: float | None = Field(default=None, gt=0)
    date: datetime | None = None
    user: str | None = None
    reference: str | None = None
    notes: str | None = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    material_code: str
    material_description: str
    transaction_type: TransactionType
    quantity: float
    unit: str
    date: datetime
    user: str
    reference: str
    notes: str | None = None


class DefectCreate(BaseModel):
    material_code: str = Field(..., min_length=1)
    defect_type: str = Field(..., min_length=1)
    quantity: float = Field(..., gt=0)
    severity: DefectSeverity
    description: str = ""
    reported_by: str = ""
    reported_date: datetime | None = None
    status: DefectStatus = "open"
    resolution_notes: str | None = None


class DefectUpdate(BaseModel):
    defect_type: str | None = Field(default=None, min_length=1)
    quantity: float | None = Field(default=None, gt=0)
    severity: DefectSeverity | None = None
    description: str | None = None
    reported_by: str | None = None


class DefectStatusUpdate(BaseModel):
    status: DefectStatus
    resolution_notes: str | None = None


class DefectOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    material_code: str
    material_description: str
    defect_type: str
    quantity: float
    unit: str
    severity: DefectSeverity
    description: str
    reported_by: str
    reported_date: datetime
    status: DefectStatus
    resolution_notes: str | None = None


class AlertCreate(BaseModel):
    type: AlertType
    material_code: str
    material_description: str = ""
    message: str
    local_quantity: float = 0
    sap_quantity: float = 0
    variance: float = 0
    severity: AlertSeverity
    created_at: datetime
    related_id: str | None = None

    @property
    def dedup_key(self) -> str:
        return f"{self.type}-{self.material_code}"


class AlertOut(AlertCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int
    acknowledged: bool = False


class AlertCheckReport(BaseModel):
    created: list[AlertOut] = Field(default_factory=list)
    skipped: list[str] = Field(
        default_factory=list, description="Dedup keys that already had a pending alert."
    )
    failed: list[str] = Field(
        default_factory=list, description="Dedup keys whose alert could not be stored."
    )


class TransactionCounts(BaseModel):
    receiving: int = 0
    issuance: int = 0
    total: int = 0


class CategoryShare(BaseModel):
    category: str
    count: int
    percentage: float


class SeverityShare(BaseModel):
    severity: str
    count: int
    percentage: float


class TrendPoint(BaseModel):
    day: date
    receiving: int = 0
    issuance: int = 0


class CategoryCost(BaseModel):
    category: str
    count: int
    cost: float


class ActivityEntry(BaseModel):
    kind: Literal["transaction", "defect", "alert"]
    description: str
    timestamp: datetime


class DashboardSummary(BaseModel):
    total_materials: int
    total_transactions: int
    total_defects: int
    active_alerts: int
    recent_activity: list[ActivityEntry]


class AnalyticsReport(BaseModel):
    range: RangeKey
    category: str | None = None
    total_materials: int
    transactions: TransactionCounts
    total_defects: int
    active_alerts: int
    total_inventory_units: float
    trend: list[TrendPoint]
    categories: list[CategoryShare]
    defect_severity: list[SeverityShare]
    alert_severity: list[SeverityShare]


class CostReport(BaseModel):
    range: RangeKey
    total_inventory_value: float
    receiving_cost: float
    issuance_cost: float
    defect_loss: float
    by_category: list[CategoryCost]


class UserCreate(BaseModel):
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+$")
    name: str = Field(..., min_length=1)
    password: str = Field(..., min_length=6)
    role: Role = Role.VIEWER
    department: str | None = None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str
    role: Role
    department: str | None = None
    is_active: bool
    created_at: datetime
