# ispscore/report_models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta


@dataclass
class WorkOrder:
    id: str
    technician_id: str
    technician_name: str
    login_id: str
    sector_id: str
    subject_id: str
    client_id: str
    opened_at: datetime | None
    closed_at: datetime | None
    reopened_at: datetime | None
    status: str
    raw: dict = field(default_factory=dict, repr=False)

    @property
    def is_open(self) -> bool:
        return self.closed_at is None


@dataclass
class Employee:
    id: str
    name: str
    active: bool = True
    function_id: str = ""
    sector_id: str = ""


@dataclass
class ErpUser:
    """Usuario (login) del ERP: enlaza con un funcionario y un grupo de permisos."""
    id: str
    employee_id: str = ""
    group_id: str = ""


@dataclass
class Rule:
    subject_id: str
    points: float
    type: str = "both"


@dataclass
class ScoringPolicy:
    reopen_gap: timedelta = timedelta(minutes=5)
    penalty_window_days: int = 30


@dataclass
class Resolution:
    technician_key: str
    technician_id: str
    technician_name: str
    department: str
    strategy: str
    debug: str = ""


@dataclass
class ScoredOrder:
    order: WorkOrder
    resolution: Resolution
    points: float
    client_name: str = ""


@dataclass
class ReportRow:
    technician_id: str
    technician_name: str
    role: str
    total_orders: int
    total_points: float
    orders: list[ScoredOrder] = field(default_factory=list)
