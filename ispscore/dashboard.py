# ispscore/dashboard.py
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Dict, List

from .config import ERP_MAX_PAGES, ERP_PAGE_SIZE
from .erp_client import ErpClient, build_query
from .fetching import ORDERS_TABLE, fetch_all_pages, gather_or_default
from .identity import employees_from_records, labels_from_records
from .pipeline import TenantSettings
from .report_logic import dedupe_records, normalize_order
from .report_models import Rule
from .scoring import parse_erp_datetime, score_order

logger = logging.getLogger(__name__)

OPEN_STATUSES = ("A", "EN", "AS", "AG")  # Aberto, Encaminhado, Assumido, Agendado
_EMPTY = {"total": "0", "registros": []}


def _as_int(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


# --------------------------
# Resumen del día
# --------------------------


async def dashboard_summary(client: ErpClient, today: date | None = None) -> dict:
    """
    Tarjetas del dashboard: abiertas hoy, cerradas hoy, total en abierto y
    cuántas de esas tienen técnico. Cada consulta que falla cuenta como vacía.
    """
    today = today or date.today()
    day = today.isoformat()

    calls = [
        client.query(ORDERS_TABLE, build_query(f"{ORDERS_TABLE}.data_abertura", day, ">=", rp=1)),
        client.query(ORDERS_TABLE, build_query(f"{ORDERS_TABLE}.data_fechamento", day, ">=", rp=1)),
    ]
    for status in OPEN_STATUSES:
        calls.append(
            client.query(
                ORDERS_TABLE,
                build_query(f"{ORDERS_TABLE}.status", status, "=", rp=500, sortname=f"{ORDERS_TABLE}.id", sortorder="desc"),
            )
        )
    opened, closed, *buckets = await gather_or_default(calls, lambda: dict(_EMPTY))

    candidates = dedupe_records(reg for bucket in buckets for reg in (bucket.get("registros") or []))
    # Sin fecha de cierre (o con el centinela de ceros) => en abierto
    really_open = [reg for reg in candidates if parse_erp_datetime(reg.get("data_fechamento")) is None]
    with_technicians = [
        reg for reg in really_open if str(reg.get("id_tecnico") or "").strip() not in ("", "0")
    ]

    return {
        "openedToday": _as_int(opened.get("total")),
        "closedToday": _as_int(closed.get("total")),
        "withTechnicians": len(with_technicians),
        "totalOpen": len(really_open),
        "lastUpdated": datetime.now().isoformat(timespec="seconds"),
    }


# --------------------------
# Leaderboard (modo TV)
# --------------------------


def _months_back(today: date, months: int) -> date:
    month_index = today.year * 12 + (today.month - 1) - months
    return date(month_index // 12, month_index % 12 + 1, 1)


def _ranking(stats: Dict[str, dict], key: str, limit: int) -> List[dict]:
    ordered = sorted(stats.values(), key=lambda x: x[key], reverse=True)[:limit]
    return [
        {
            "technicianName": x["name"],
            "totalPoints": x["points"],
            "totalOrders": x["count"],
            "avatarLetter": x["name"][:1].upper(),
        }
        for x in ordered
    ]


async def tv_leaderboard(
    client: ErpClient,
    rules: Dict[str, Rule],
    settings: TenantSettings | None = None,
    today: date | None = None,
) -> dict:
    """
    Datos del panel público:
    - top 3 en puntos del mes y del trimestre
    - top 10 en cantidad de OS del mes
    - evolución semanal (semanas 1..5 del mes) de los 5 técnicos con más OS
    Solo cuentan funcionarios activos de sectores técnicos (si existe alguno).
    """
    settings = settings or TenantSettings()
    today = today or date.today()

    sectors_raw, employees_raw = await gather_or_default(
        [
            client.records("empresa_setor", build_query("empresa_setor.id", "0", ">", rp=1000)),
            client.records("funcionarios", build_query("funcionarios.ativo", "S", "=", rp=10000)),
        ],
        list,
    )
    sectors = labels_from_records(sectors_raw, "setor")
    tech_sector_ids = {sid for sid, name in sectors.items() if "CNICO" in name.upper()}
    if not tech_sector_ids:
        logger.warning("[tv] sector técnico no encontrado; se muestran todos los funcionarios")

    technicians = {
        eid: emp.name
        for eid, emp in employees_from_records(employees_raw).items()
        if emp.active and (not tech_sector_ids or emp.sector_id in tech_sector_ids)
    }

    since = _months_back(today, 3)
    month_start = date(today.year, today.month, 1)
    records = await fetch_all_pages(
        client, "data_fechamento", since.isoformat(), page_size=ERP_PAGE_SIZE, max_pages=ERP_MAX_PAGES
    )

    month: Dict[str, dict] = {}
    quarter: Dict[str, dict] = {}
    weekly: Dict[str, List[int]] = defaultdict(lambda: [0, 0, 0, 0, 0])

    for reg in dedupe_records(records):
        order = normalize_order(reg, settings.policy)
        name = technicians.get(order.technician_id)
        if name is None or order.closed_at is None:
            continue
        points = score_order(order, rules, settings.policy)

        q = quarter.setdefault(order.technician_id, {"name": name, "points": 0, "count": 0})
        q["points"] += points
        q["count"] += 1

        if order.closed_at.date() >= month_start:
            m = month.setdefault(order.technician_id, {"name": name, "points": 0, "count": 0})
            m["points"] += points
            m["count"] += 1
            week = min((order.closed_at.day - 1) // 7, 4)
            weekly[order.technician_id][week] += 1

    top_volume = sorted(month, key=lambda tid: month[tid]["count"], reverse=True)[:5]

    return {
        "topMonth": _ranking(month, "points", 3),
        "topQuarter": _ranking(quarter, "points", 3),
        "topOsMonth": _ranking(month, "count", 10),
        "evolution": [
            {"name": month[tid]["name"].split(" ")[0], "weeks": weekly[tid]} for tid in top_volume
        ],
        "lastUpdated": datetime.now().isoformat(timespec="seconds"),
    }
