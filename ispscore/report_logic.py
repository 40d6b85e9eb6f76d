# ispscore/report_logic.py
from __future__ import annotations

import json
from datetime import date, datetime, time
from pathlib import Path
from typing import Dict, Iterable, List, Sequence

import pandas as pd

from .config import ERP_ORDER_LOGIN_FIELD
from .identity import ReportContext, resolve_identity
from .report_models import ReportRow, ScoredOrder, ScoringPolicy, WorkOrder
from .scoring import parse_erp_datetime, reconcile_closing, score_order

CLOSING_STATUSES = {"F", "EN"}
STATUS_LABELS = {"F": "Fechado", "A": "Aberto"}
_STATUS_RANK = {"A": 0, "EN": 1, "F": 2}


# --------------------------
# Normalización
# --------------------------


def _s(value) -> str:
    return "" if value is None else str(value).strip()


def normalize_order(reg: dict, policy: ScoringPolicy) -> WorkOrder:
    """
    Convierte un registro crudo de su_oss_chamado en WorkOrder.
    El centinela de fecha vacía se convierte en None aquí y en ningún otro lugar.
    """
    fechamento = parse_erp_datetime(reg.get("data_fechamento"))
    final = parse_erp_datetime(reg.get("data_final"))
    closed_at, reopened_at = reconcile_closing(fechamento, final, policy.reopen_gap)
    return WorkOrder(
        id=_s(reg.get("id")),
        technician_id=_s(reg.get("id_tecnico")),
        technician_name=_s(reg.get("tecnico")),
        login_id=_s(reg.get(ERP_ORDER_LOGIN_FIELD)),
        sector_id=_s(reg.get("setor")),
        subject_id=_s(reg.get("id_assunto")),
        client_id=_s(reg.get("id_cliente")),
        opened_at=parse_erp_datetime(reg.get("data_abertura")),
        closed_at=closed_at,
        reopened_at=reopened_at,
        status=_s(reg.get("status")).upper(),
        raw=reg,
    )


def status_label(status: str) -> str:
    return STATUS_LABELS.get(status, "Em Andamento")


# --------------------------
# Deduplicación y filtros
# --------------------------


def _dedupe_key(reg: dict) -> tuple:
    fechamento = parse_erp_datetime(reg.get("data_fechamento")) or datetime.min
    final = parse_erp_datetime(reg.get("data_final")) or datetime.min
    status_rank = _STATUS_RANK.get(_s(reg.get("status")).upper(), -1)
    canonical = json.dumps(reg, sort_keys=True, default=str)
    return (fechamento, final, status_rank, canonical)


def dedupe_records(records: Iterable[dict]) -> List[dict]:
    """
    Una sola instancia por id, elegida de forma independiente del orden de entrada:
    gana la instantánea con fecha de cierre más reciente (desempate por fecha final,
    estado y contenido). El orden de salida sigue la primera aparición de cada id.
    """
    chosen: Dict[str, dict] = {}
    for reg in records:
        rid = _s(reg.get("id"))
        if not rid:
            continue
        current = chosen.get(rid)
        if current is None or _dedupe_key(reg) > _dedupe_key(current):
            chosen[rid] = reg
    return list(chosen.values())


def day_bounds(start: date, end: date) -> tuple[datetime, datetime]:
    return datetime.combine(start, time.min), datetime.combine(end, time(23, 59, 59))


def relevant_date(order: WorkOrder, date_type: str) -> datetime | None:
    if date_type == "closing" and order.closed_at is not None:
        return order.closed_at
    return order.opened_at


def filter_window(
    orders: Iterable[WorkOrder],
    start: date,
    end: date,
    date_type: str,
) -> List[WorkOrder]:
    lower, upper = day_bounds(start, end)
    out = []
    for order in orders:
        if date_type == "closing" and order.status not in CLOSING_STATUSES:
            continue
        when = relevant_date(order, date_type)
        if when is not None and lower <= when <= upper:
            out.append(order)
    return out


def department_matches(department: str, wanted: str, mode: str) -> bool:
    if not wanted:
        return True
    if mode == "contains":
        return wanted.casefold() in department.casefold()
    return department == wanted


# --------------------------
# Puntuación y agrupación
# --------------------------


def score_orders(
    orders: Iterable[WorkOrder],
    ctx: ReportContext,
    technician_id: str = "",
    department: str = "",
    department_match: str = "exact",
) -> List[ScoredOrder]:
    """Resuelve técnico, aplica filtros y calcula los puntos de cada OS."""
    scored: List[ScoredOrder] = []
    for order in orders:
        res = resolve_identity(ctx, order)
        if technician_id and technician_id not in (res.technician_id, order.technician_id):
            continue
        if not department_matches(res.department, department, department_match):
            continue
        scored.append(ScoredOrder(order=order, resolution=res, points=score_order(order, ctx.rules, ctx.policy)))
    return scored


def _build_frame(scored: Sequence[ScoredOrder]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "key": [s.resolution.technician_key for s in scored],
            "technician_id": [s.resolution.technician_id for s in scored],
            "technician_name": [s.resolution.technician_name for s in scored],
            "role": [s.resolution.department for s in scored],
            "points": [float(s.points) for s in scored],
        },
        columns=["key", "technician_id", "technician_name", "role", "points"],
    )


def group_by_technician(
    scored: Sequence[ScoredOrder],
    sort_by: str = "NAME",
    analytical: bool = False,
) -> List[ReportRow]:
    """
    Un renglón por técnico con total de OS y de puntos.

    - NAME: alfabético (sin distinguir mayúsculas)
    - POINTS: mayor puntuación primero
    Ambos con mergesort (estable): los empates conservan el orden de aparición.
    """
    if not scored:
        return []

    df = _build_frame(scored)
    grouped = (
        df.groupby("key", sort=False)
        .agg(
            technician_id=("technician_id", "first"),
            technician_name=("technician_name", "first"),
            role=("role", "first"),
            total_orders=("points", "size"),
            total_points=("points", "sum"),
        )
        .reset_index()
    )

    if sort_by == "POINTS":
        grouped = grouped.sort_values("total_points", ascending=False, kind="mergesort")
    else:
        grouped = grouped.sort_values(
            "technician_name", key=lambda col: col.str.casefold(), kind="mergesort"
        )

    by_key: Dict[str, List[ScoredOrder]] = {}
    if analytical:
        for s in scored:
            by_key.setdefault(s.resolution.technician_key, []).append(s)

    rows: List[ReportRow] = []
    for rec in grouped.to_dict("records"):
        total = float(rec["total_points"])
        rows.append(
            ReportRow(
                technician_id=rec["technician_id"],
                technician_name=rec["technician_name"],
                role=rec["role"],
                total_orders=int(rec["total_orders"]),
                total_points=int(total) if total.is_integer() else round(total, 2),
                orders=by_key.get(rec["key"], []),
            )
        )
    return rows


# --------------------------
# Reporte de texto (versión imprimible)
# --------------------------


def _fmt_dt(value: datetime | None, empty: str = "-") -> str:
    return value.strftime("%d/%m/%Y %H:%M") if value else empty


def _fmt_points(val) -> str:
    try:
        f = float(val)
    except (TypeError, ValueError):
        return str(val)
    return str(int(f)) if f.is_integer() else f"{f:.2f}"


def render_txt_report(rows: Sequence[ReportRow], title: str, analytical: bool = False) -> str:
    """Genera un reporte de texto alineado con la puntuación por técnico."""
    lines: list[str] = []
    lines.append(title)
    lines.append("-" * len(title))
    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    lines.append(f"Generado: {now}")
    lines.append(f"Técnicos: {len(rows)}")
    lines.append(f"OS totales: {sum(r.total_orders for r in rows)}")
    lines.append("")

    if not rows:
        lines.append("Ningún dato encontrado para el período.")
        return "\n".join(lines)

    cols = ["técnico", "función", "os", "puntos"]
    table = [
        {"técnico": r.technician_name, "función": r.role, "os": str(r.total_orders), "puntos": _fmt_points(r.total_points)}
        for r in rows
    ]
    right_align = {"os", "puntos"}

    # calcular anchos
    widths = {c: max(len(c), max(len(row[c]) for row in table)) for c in cols}

    def align(val, col):
        s = str(val)
        return s.rjust(widths[col]) if col in right_align else s.ljust(widths[col])

    lines.append("  ".join(align(c, c) for c in cols))
    lines.append("  ".join("-" * widths[c] for c in cols))

    for row, r in zip(table, rows):
        lines.append("  ".join(align(row[c], c) for c in cols))
        if analytical:
            for s in r.orders:
                o = s.order
                lines.append(
                    f"    #{o.id}  {s.client_name or 'N/A'}  cierre={_fmt_dt(o.closed_at, 'EN ABIERTO')}"
                    f"  reapertura={_fmt_dt(o.reopened_at)}  puntos={_fmt_points(s.points)}"
                )

    return "\n".join(lines)


def write_txt_report(txt_path: str, rows: Sequence[ReportRow], title: str, analytical: bool = False) -> None:
    Path(txt_path).parent.mkdir(parents=True, exist_ok=True)
    Path(txt_path).write_text(render_txt_report(rows, title, analytical), encoding="utf-8")
