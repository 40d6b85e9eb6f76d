# ispscore/snapshots.py
from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from . import models

KIND_TV = "tv"
KIND_DASHBOARD = "dashboard"
KEEP_PER_KIND = 5


def fresh_snapshot(session: Session, company_id: int, kind: str, max_age: int, now: datetime | None = None) -> dict | None:
    """Último snapshot de la empresa si tiene menos de `max_age` segundos."""
    now = now or datetime.utcnow()
    snap = session.scalars(
        select(models.LeaderboardSnapshot)
        .where(
            models.LeaderboardSnapshot.company_id == company_id,
            models.LeaderboardSnapshot.kind == kind,
        )
        .order_by(models.LeaderboardSnapshot.created_at.desc(), models.LeaderboardSnapshot.id.desc())
        .limit(1)
    ).first()
    if snap is None or now - snap.created_at > timedelta(seconds=max_age):
        return None
    return snap.payload


def store_snapshot(session: Session, company_id: int, kind: str, payload: dict) -> models.LeaderboardSnapshot:
    snap = models.LeaderboardSnapshot(company_id=company_id, kind=kind, payload=payload)
    session.add(snap)
    session.flush()

    # Se guardan solo los últimos KEEP_PER_KIND por empresa/tipo
    keep = session.scalars(
        select(models.LeaderboardSnapshot.id)
        .where(
            models.LeaderboardSnapshot.company_id == company_id,
            models.LeaderboardSnapshot.kind == kind,
        )
        .order_by(models.LeaderboardSnapshot.id.desc())
        .limit(KEEP_PER_KIND)
    ).all()
    session.execute(
        delete(models.LeaderboardSnapshot).where(
            models.LeaderboardSnapshot.company_id == company_id,
            models.LeaderboardSnapshot.kind == kind,
            models.LeaderboardSnapshot.id.not_in(keep),
        )
        .execution_options(synchronize_session="fetch")
    )
    return snap
