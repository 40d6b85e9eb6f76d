# ispscore/identity.py
"""
Resolución de técnico y departamento de cada OS.

El ERP puede registrar al técnico de tres formas distintas (id de técnico, login del
usuario que atendió, o solo el nombre en texto libre). Cada forma es una estrategia;
se evalúan en el orden configurado y gana la primera que encuentra al técnico.

El "departamento" también tiene varias fuentes posibles (grupo del login, función del
funcionario, sector de la OS); su precedencia es configurable por empresa.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from .report_models import Employee, ErpUser, Resolution, Rule, ScoringPolicy, WorkOrder

logger = logging.getLogger(__name__)

UNASSIGNED_DEPARTMENT = "Sin función asignada"
NO_TECHNICIAN = "OS sin técnico"

DEPARTMENT_SOURCES = ("group", "function", "sector")
RESOLVER_NAMES = ("by_login", "by_technician_id", "by_name")


def _valid_id(value: str | None) -> bool:
    return bool(value) and str(value).strip() not in ("", "0")


def _name_key(name: str) -> str:
    return name.strip().casefold()


def parse_precedence(value: str | Sequence[str] | None, allowed: Sequence[str]) -> List[str]:
    """'group, function' -> ['group', 'function'] ignorando valores desconocidos."""
    if value is None:
        return list(allowed)
    items = value.split(",") if isinstance(value, str) else list(value)
    out: List[str] = []
    for item in items:
        item = item.strip().lower()
        if item in allowed and item not in out:
            out.append(item)
    return out


@dataclass
class ReportContext:
    """Tablas de consulta de una sola ejecución del pipeline."""
    employees: Dict[str, Employee] = field(default_factory=dict)
    users: Dict[str, ErpUser] = field(default_factory=dict)
    groups: Dict[str, str] = field(default_factory=dict)
    functions: Dict[str, str] = field(default_factory=dict)
    sectors: Dict[str, str] = field(default_factory=dict)
    rules: Dict[str, Rule] = field(default_factory=dict)
    policy: ScoringPolicy = field(default_factory=ScoringPolicy)
    department_precedence: List[str] = field(default_factory=lambda: list(DEPARTMENT_SOURCES))
    resolver_order: List[str] = field(default_factory=lambda: list(RESOLVER_NAMES))
    employees_by_name: Dict[str, Employee] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.employees_by_name:
            for emp in self.employees.values():
                # Ante nombres repetidos se queda el primero
                self.employees_by_name.setdefault(_name_key(emp.name), emp)


# --------------------------
# Departamento
# --------------------------


def _group_label(ctx: ReportContext, user: ErpUser | None) -> Optional[str]:
    if user and _valid_id(user.group_id):
        return ctx.groups.get(user.group_id)
    return None


def _function_label(ctx: ReportContext, employee: Employee | None) -> Optional[str]:
    if employee and _valid_id(employee.function_id):
        return ctx.functions.get(employee.function_id)
    return None


def _sector_label(ctx: ReportContext, order: WorkOrder, employee: Employee | None) -> Optional[str]:
    if _valid_id(order.sector_id) and order.sector_id in ctx.sectors:
        return ctx.sectors[order.sector_id]
    if employee and _valid_id(employee.sector_id):
        return ctx.sectors.get(employee.sector_id)
    return None


def department_for(
    ctx: ReportContext,
    order: WorkOrder,
    employee: Employee | None,
    user: ErpUser | None,
    sources: Sequence[str] | None = None,
) -> Optional[str]:
    """Primera etiqueta conocida según la precedencia configurada."""
    for source in sources if sources is not None else ctx.department_precedence:
        if source == "group":
            label = _group_label(ctx, user)
        elif source == "function":
            label = _function_label(ctx, employee)
        elif source == "sector":
            label = _sector_label(ctx, order, employee)
        else:
            label = None
        if label:
            return label
    return None


# --------------------------
# Estrategias
# --------------------------


def _login_user(ctx: ReportContext, order: WorkOrder) -> ErpUser | None:
    if _valid_id(order.login_id):
        return ctx.users.get(order.login_id)
    return None


def _resolved(employee: Employee, department: Optional[str], strategy: str) -> Resolution:
    return Resolution(
        technician_key=employee.id,
        technician_id=employee.id,
        technician_name=employee.name,
        department=department or UNASSIGNED_DEPARTMENT,
        strategy=strategy,
    )


def resolve_by_login(ctx: ReportContext, order: WorkOrder) -> Resolution | None:
    """Login -> usuario -> funcionario; solo vale si ese vínculo trae grupo o función conocida."""
    user = _login_user(ctx, order)
    if user is None or not _valid_id(user.employee_id):
        return None
    employee = ctx.employees.get(user.employee_id)
    if employee is None:
        return None
    own_sources = [s for s in ctx.department_precedence if s in ("group", "function")]
    label = department_for(ctx, order, employee, user, sources=own_sources)
    if not label:
        return None
    return _resolved(employee, label, "by_login")


def resolve_by_technician_id(ctx: ReportContext, order: WorkOrder) -> Resolution | None:
    if not _valid_id(order.technician_id):
        return None
    employee = ctx.employees.get(order.technician_id)
    if employee is None:
        return None
    label = department_for(ctx, order, employee, _login_user(ctx, order))
    return _resolved(employee, label, "by_technician_id")


def resolve_by_name(ctx: ReportContext, order: WorkOrder) -> Resolution | None:
    if not order.technician_name.strip():
        return None
    employee = ctx.employees_by_name.get(_name_key(order.technician_name))
    if employee is None:
        return None
    label = department_for(ctx, order, employee, _login_user(ctx, order))
    return _resolved(employee, label, "by_name")


def resolve_unresolved(ctx: ReportContext, order: WorkOrder) -> Resolution:
    if order.technician_name.strip():
        name = order.technician_name.strip()
    elif _valid_id(order.technician_id):
        name = f"Técnico #{order.technician_id}"
    else:
        name = NO_TECHNICIAN
    return Resolution(
        technician_key=f"name:{_name_key(name)}",
        technician_id=order.technician_id if _valid_id(order.technician_id) else "",
        technician_name=name,
        department=UNASSIGNED_DEPARTMENT,
        strategy="unresolved",
        debug=f"id_tecnico={order.technician_id or '-'} login={order.login_id or '-'} setor={order.sector_id or '-'}",
    )


RESOLVERS: Dict[str, Callable[[ReportContext, WorkOrder], Optional[Resolution]]] = {
    "by_login": resolve_by_login,
    "by_technician_id": resolve_by_technician_id,
    "by_name": resolve_by_name,
}


def resolve_identity(ctx: ReportContext, order: WorkOrder) -> Resolution:
    for name in ctx.resolver_order:
        resolver = RESOLVERS.get(name)
        if resolver is None:
            continue
        res = resolver(ctx, order)
        if res is not None:
            return res
    res = resolve_unresolved(ctx, order)
    logger.debug("[identity] OS %s sin técnico resuelto: %s", order.id, res.debug)
    return res


# --------------------------
# Construcción de tablas desde registros del ERP
# --------------------------


def employees_from_records(records: List[dict]) -> Dict[str, Employee]:
    out: Dict[str, Employee] = {}
    for r in records:
        if not r.get("id"):
            continue
        eid = str(r["id"])
        out[eid] = Employee(
            id=eid,
            name=r.get("funcionario") or r.get("nome") or f"Func. {eid}",
            active=r.get("ativo") != "N",
            function_id=str(r.get("id_funcao") or ""),
            sector_id=str(r.get("setor_id") or ""),
        )
    return out


def users_from_records(records: List[dict]) -> Dict[str, ErpUser]:
    return {
        str(r["id"]): ErpUser(
            id=str(r["id"]),
            employee_id=str(r.get("funcionario") or ""),
            group_id=str(r.get("id_grupo") or ""),
        )
        for r in records
        if r.get("id")
    }


def labels_from_records(records: List[dict], label_field: str) -> Dict[str, str]:
    return {str(r["id"]): str(r[label_field]) for r in records if r.get("id") and r.get(label_field)}


def rules_from_mapping(rules: Mapping[str, Mapping]) -> Dict[str, Rule]:
    """{'7': {'points': 5, 'type': 'both'}} -> {'7': Rule(...)}"""
    out: Dict[str, Rule] = {}
    for subject_id, raw in rules.items():
        out[str(subject_id)] = Rule(
            subject_id=str(subject_id),
            points=float(raw.get("points") or 0),
            type=raw.get("type") or "both",
        )
    return out
