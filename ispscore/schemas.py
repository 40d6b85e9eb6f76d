# ispscore/schemas.py
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Literal, Optional
from datetime import date, datetime


class CamelModel(BaseModel):
    # El frontend habla camelCase; internamente se usa snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# --------------------------
# Auth / usuarios
# --------------------------

class LoginRequest(BaseModel):
    email: str
    password: str


class UserBase(CamelModel):
    name: str
    email: str
    role: Literal["saas_owner", "super_admin", "admin", "user"] = "user"
    active: bool = True
    permissions: Optional[dict] = None
    company_id: Optional[int] = None


class UserCreate(UserBase):
    password: str = Field(min_length=1)


class UserUpdate(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    role: Optional[Literal["saas_owner", "super_admin", "admin", "user"]] = None
    active: Optional[bool] = None
    permissions: Optional[dict] = None


class User(UserBase):
    id: int


# --------------------------
# Planes / empresas
# --------------------------

class PlanBase(CamelModel):
    name: str
    price: float = 0
    max_users: int = 5
    active: bool = True


class PlanCreate(PlanBase):
    pass


class Plan(PlanBase):
    id: int


class CompanyUpdate(CamelModel):
    name: Optional[str] = None
    cnpj: Optional[str] = None
    address: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    email_contact: Optional[str] = None
    ixc_domain: Optional[str] = None
    ixc_token: Optional[str] = None
    logo_url: Optional[str] = None
    plan_id: Optional[int] = None
    expiration_date: Optional[date] = None
    active: Optional[bool] = None
    department_precedence: Optional[str] = None
    resolver_order: Optional[str] = None
    reopen_gap_minutes: Optional[int] = Field(default=None, ge=0)
    reopen_penalty_days: Optional[int] = Field(default=None, ge=0)


class Company(CamelModel):
    id: int
    name: str
    cnpj: Optional[str] = None
    address: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    email_contact: Optional[str] = None
    ixc_domain: Optional[str] = None
    ixc_token: Optional[str] = None
    logo_url: Optional[str] = None
    plan_id: Optional[int] = None
    status: str = "active"
    expiration_date: Optional[date] = None
    active: bool = True
    department_precedence: str
    resolver_order: str
    reopen_gap_minutes: int
    reopen_penalty_days: int
    created_at: Optional[datetime] = None


class SaasCompanyCreate(CompanyUpdate):
    name: str
    admin_name: Optional[str] = None
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None


class CompanyStatusUpdate(BaseModel):
    status: Literal["active", "inactive", "suspended"]


# --------------------------
# Reglas de puntuación
# --------------------------

class ScoreRuleIn(CamelModel):
    company_id: int = 0
    subject_id: str
    points: float = 0
    type: Literal["internal", "external", "both"] = "both"


class ScoreRule(BaseModel):
    points: float
    type: str


# --------------------------
# Reportes
# --------------------------

class ReportRequest(CamelModel):
    start_date: date
    end_date: date
    sort_by: Literal["NAME", "POINTS"] = "NAME"
    technician_id: str = ""
    function: str = ""
    function_match: Literal["exact", "contains"] = "exact"
    report_type: Literal["SYNTHETIC", "ANALYTICAL"] = "SYNTHETIC"
    date_type: Literal["opening", "closing"] = "closing"


class ReportOrder(CamelModel):
    id: str
    client_id: str
    client_name: str
    subject_id: str
    status: str
    status_label: str
    opening_date: Optional[datetime] = None
    closing_date: Optional[datetime] = None
    reopening_date: Optional[datetime] = None
    points: float
    strategy: str
    debug: str = ""


class ReportRow(CamelModel):
    technician_id: str
    technician_name: str
    role: str
    total_orders: int
    total_points: float
    orders: list[ReportOrder] = []


class ReportOutcome(CamelModel):
    status: Literal["ok", "cancelled", "error"]
    rows: Optional[list[ReportRow]] = None
    error: Optional[str] = None
    fetched: int = 0


class DashboardSummary(CamelModel):
    opened_today: int
    closed_today: int
    with_technicians: int
    total_open: int
    last_updated: Optional[str] = None
