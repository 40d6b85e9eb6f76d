# ispscore/scoring.py
from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Mapping

from .config import REOPEN_GAP_MINUTES, REOPEN_PENALTY_DAYS
from .report_models import Rule, ScoringPolicy, WorkOrder

ERP_EMPTY_DATETIME = "0000-00-00 00:00:00"
_ERP_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%Y-%m-%d")


def parse_erp_datetime(value) -> datetime | None:
    """
    Convierte una fecha del ERP a datetime.
    Vacío, None, el centinela '0000-00-00 00:00:00' o un valor ilegible -> None.
    """
    if value is None:
        return None
    s = str(value).strip()
    if not s or s.startswith("0000-00-00"):
        return None
    for fmt in _ERP_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue
    return None


def reconcile_closing(
    fechamento: datetime | None,
    final: datetime | None,
    gap: timedelta,
) -> tuple[datetime | None, datetime | None]:
    """
    Devuelve (cierre_real, reapertura).

    Si 'data_fechamento' es posterior a 'data_final' por más de `gap`, la OS se
    cerró en 'data_final' y fue reabierta/recerrada en 'data_fechamento'.
    """
    if fechamento is None:
        return None, None
    if final is not None and (fechamento - final) > gap:
        return final, fechamento
    return fechamento, None


def policy_from_settings(
    reopen_gap_minutes: int | None = None,
    reopen_penalty_days: int | None = None,
) -> ScoringPolicy:
    gap = REOPEN_GAP_MINUTES if reopen_gap_minutes is None else reopen_gap_minutes
    days = REOPEN_PENALTY_DAYS if reopen_penalty_days is None else reopen_penalty_days
    return ScoringPolicy(reopen_gap=timedelta(minutes=gap), penalty_window_days=days)


def _days_between(a: datetime, b: datetime) -> int:
    # Días redondeados hacia arriba (un día y un minuto cuentan como 2)
    return math.ceil(abs((b - a).total_seconds()) / 86400)


def score_order(
    order: WorkOrder,
    rules: Mapping[str, Rule],
    policy: ScoringPolicy,
) -> float:
    """
    Puntos de una OS:
    - abierta (sin fecha de cierre) -> 0
    - cerrada -> puntos de la regla de su asunto (0 sin regla)
    - reabierta dentro de la ventana de penalización -> -|puntos|
    """
    if order.closed_at is None:
        return 0
    rule = rules.get(order.subject_id)
    points = rule.points if rule else 0
    if order.reopened_at is not None:
        if _days_between(order.closed_at, order.reopened_at) <= policy.penalty_window_days:
            points = -abs(points)
    return points
