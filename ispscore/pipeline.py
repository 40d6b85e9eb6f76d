# ispscore/pipeline.py
"""
Pipeline de reportes de puntuación.

1. Carga en paralelo las tablas de apoyo del ERP (funcionarios, usuarios, grupos,
   funciones, sectores) en un ReportContext propio de la ejecución.
2. Pagina las OS por fecha de apertura/cierre (y, en modo cierre, suma el balde de
   OS encaminadas 'EN').
3. Deduplica por id, filtra por período, resuelve técnico, puntúa, agrupa y ordena.
4. En reportes analíticos resuelve el nombre de los clientes.

Cada paso verifica el token de cancelación; una ejecución reemplazada termina con
estado 'cancelled' y nunca con error.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, MutableMapping, Optional

from .client_names import resolve_client_names
from .config import DEPARTMENT_PRECEDENCE, ERP_MAX_PAGES, ERP_PAGE_SIZE, RESOLVER_ORDER
from .erp_client import ErpClient, ErpError, FetchCancelled, build_query
from .fetching import (
    DATE_FIELDS,
    NEVER_CANCELLED,
    ORDERS_TABLE,
    CancellationToken,
    fetch_all_pages,
    gather_or_default,
)
from .identity import (
    DEPARTMENT_SOURCES,
    RESOLVER_NAMES,
    ReportContext,
    employees_from_records,
    labels_from_records,
    parse_precedence,
    users_from_records,
)
from .report_logic import (
    dedupe_records,
    filter_window,
    group_by_technician,
    normalize_order,
    score_orders,
)
from .report_models import ReportRow, Rule, ScoringPolicy
from .scoring import policy_from_settings

logger = logging.getLogger(__name__)


@dataclass
class TenantSettings:
    policy: ScoringPolicy = field(default_factory=policy_from_settings)
    department_precedence: List[str] = field(default_factory=lambda: parse_precedence(DEPARTMENT_PRECEDENCE, DEPARTMENT_SOURCES))
    resolver_order: List[str] = field(default_factory=lambda: parse_precedence(RESOLVER_ORDER, RESOLVER_NAMES))


def tenant_settings(company) -> TenantSettings:
    """Ajustes de puntuación/resolución de una empresa (models.Company)."""
    return TenantSettings(
        policy=policy_from_settings(company.reopen_gap_minutes, company.reopen_penalty_days),
        department_precedence=parse_precedence(company.department_precedence, DEPARTMENT_SOURCES),
        resolver_order=parse_precedence(company.resolver_order, RESOLVER_NAMES),
    )


@dataclass
class ReportFilters:
    start_date: date
    end_date: date
    sort_by: str = "NAME"            # NAME | POINTS
    technician_id: str = ""
    function: str = ""
    function_match: str = "exact"    # exact | contains
    report_type: str = "SYNTHETIC"   # SYNTHETIC | ANALYTICAL
    date_type: str = "closing"       # opening | closing

    @property
    def analytical(self) -> bool:
        return self.report_type == "ANALYTICAL"


@dataclass
class ReportOutcome:
    status: str                      # ok | cancelled | error
    rows: Optional[List[ReportRow]] = None
    error: Optional[str] = None
    fetched: int = 0


# --------------------------
# Contexto
# --------------------------


def _list_all(table: str, sortname: str | None = None, rp: int = 10000) -> dict:
    return build_query(f"{table}.id", "0", ">", rp=rp, sortname=sortname, sortorder="asc" if sortname else None)


async def load_context(
    client: ErpClient,
    rules: Dict[str, Rule],
    settings: TenantSettings,
) -> ReportContext:
    """Tablas de apoyo en paralelo; la que falla queda vacía."""
    employees, users, groups, functions, sectors = await gather_or_default(
        [
            client.records("funcionarios", _list_all("funcionarios", "funcionarios.funcionario")),
            client.records("usuarios", _list_all("usuarios")),
            client.records("usuarios_grupo", _list_all("usuarios_grupo", rp=1000)),
            client.records("funcoes", _list_all("funcoes", rp=1000)),
            client.records("empresa_setor", _list_all("empresa_setor", "empresa_setor.setor", rp=1000)),
        ],
        list,
    )
    return ReportContext(
        employees=employees_from_records(employees),
        users=users_from_records(users),
        groups=labels_from_records(groups, "grupo"),
        functions=labels_from_records(functions, "funcao"),
        sectors=labels_from_records(sectors, "setor"),
        rules=rules,
        policy=settings.policy,
        department_precedence=settings.department_precedence,
        resolver_order=settings.resolver_order,
    )


# --------------------------
# Reporte
# --------------------------


async def _fetch_status_bucket(client: ErpClient, status: str, rp: int) -> List[dict]:
    body = build_query(f"{ORDERS_TABLE}.status", status, "=", rp=rp, sortname=f"{ORDERS_TABLE}.id", sortorder="desc")
    return await client.records(ORDERS_TABLE, body)


async def generate_report(
    client: ErpClient,
    filters: ReportFilters,
    rules: Dict[str, Rule],
    settings: TenantSettings | None = None,
    *,
    token: CancellationToken = NEVER_CANCELLED,
    client_cache: MutableMapping[str, str] | None = None,
    page_size: int = ERP_PAGE_SIZE,
    max_pages: int = ERP_MAX_PAGES,
    progress: Callable[[int, int], None] | None = None,
) -> ReportOutcome:
    settings = settings or TenantSettings()
    client_cache = {} if client_cache is None else client_cache
    try:
        token.raise_if_cancelled()
        ctx = await load_context(client, rules, settings)

        date_field = DATE_FIELDS[filters.date_type]
        records = await fetch_all_pages(
            client,
            date_field,
            filters.start_date.isoformat(),
            until=f"{filters.end_date.isoformat()} 23:59:59",
            page_size=page_size,
            max_pages=max_pages,
            token=token,
            progress=progress,
        )
        fetched = len(records)

        if filters.date_type == "closing":
            # OS encaminadas: pueden haber sido cerradas y reabiertas dentro del período
            (in_progress,) = await gather_or_default([_fetch_status_bucket(client, "EN", 200)], list)
            token.raise_if_cancelled()
            records = records + in_progress

        orders = [normalize_order(r, settings.policy) for r in dedupe_records(records)]
        orders = filter_window(orders, filters.start_date, filters.end_date, filters.date_type)
        scored = score_orders(
            orders,
            ctx,
            technician_id=filters.technician_id,
            department=filters.function,
            department_match=filters.function_match,
        )
        rows = group_by_technician(scored, sort_by=filters.sort_by, analytical=filters.analytical)

        if filters.analytical and scored:
            await resolve_client_names(
                client, (s.order.client_id for s in scored), client_cache, token=token
            )
            for s in scored:
                s.client_name = client_cache.get(s.order.client_id, "") if s.order.client_id else ""

        # No se entregan resultados de una ejecución ya reemplazada
        token.raise_if_cancelled()
        logger.info(
            "[report] period=%s..%s date_type=%s fetched=%s orders=%s technicians=%s",
            filters.start_date, filters.end_date, filters.date_type, fetched, len(scored), len(rows),
        )
        return ReportOutcome(status="ok", rows=rows, fetched=fetched)
    except FetchCancelled:
        logger.info("[report] ejecución reemplazada (%s)", token.key or "-")
        return ReportOutcome(status="cancelled")
    except ErpError as exc:
        logger.exception("[report] error generando reporte: %s", exc)
        return ReportOutcome(status="error", error=f"Error al generar el reporte: {exc}")


# --------------------------
# Consultas auxiliares
# --------------------------


async def list_technicians(client: ErpClient) -> dict:
    """Funcionarios activos (ordenados por nombre) y etiquetas de departamento disponibles."""
    ctx = await load_context(client, {}, TenantSettings())
    technicians = sorted(
        ({"id": e.id, "name": e.name} for e in ctx.employees.values() if e.active),
        key=lambda t: t["name"].casefold(),
    )
    labels = set(ctx.sectors.values()) | set(ctx.functions.values()) | set(ctx.groups.values())
    return {"technicians": technicians, "functions": sorted(labels)}


async def list_subjects(client: ErpClient) -> List[dict]:
    body = build_query("su_oss_assunto.ativo", "S", "=", rp=1000, sortname="su_oss_assunto.assunto", sortorder="asc")
    records = await client.records("su_oss_assunto", body)
    return [{"id": str(r["id"]), "title": r.get("assunto") or ""} for r in records if r.get("id")]


async def order_details(client: ErpClient, order_id: str) -> dict | None:
    records = await client.records(ORDERS_TABLE, build_query(f"{ORDERS_TABLE}.id", order_id, "=", rp=1))
    if not records:
        return None
    reg = records[0]
    order = normalize_order(reg, policy_from_settings())
    return {
        "id": order.id,
        "technicianId": order.technician_id,
        "subjectId": order.subject_id,
        "clientId": order.client_id,
        "status": order.status,
        "openingDate": order.opened_at,
        "closingDate": order.closed_at,
        "reopeningDate": order.reopened_at,
        "description": reg.get("mensagem") or "",
        "solution": reg.get("mensagem_resposta") or "",
    }
