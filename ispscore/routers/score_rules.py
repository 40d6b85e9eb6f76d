# ispscore/routers/score_rules.py
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..database import get_session
from ..erp_client import ErpError
from ..pipeline import list_subjects
from .deps import company_or_404, erp_client_for, get_erp_transport
from .. import models, schemas

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/score-rules", tags=["score-rules"])


def _rules_map(session: Session, company_id: int) -> dict[str, schemas.ScoreRule]:
    stmt = select(models.ScoreRule).where(models.ScoreRule.company_id == company_id).order_by(models.ScoreRule.id)
    return {
        r.subject_id: schemas.ScoreRule(points=float(r.points), type=r.type)
        for r in session.scalars(stmt).all()
    }


def _upsert(session: Session, company_id: int, subject_id: str, points: float, rule_type: str) -> models.ScoreRule:
    rule = session.scalars(
        select(models.ScoreRule).where(
            models.ScoreRule.company_id == company_id,
            models.ScoreRule.subject_id == subject_id,
        )
    ).first()
    if rule is None:
        rule = models.ScoreRule(company_id=company_id, subject_id=subject_id)
        session.add(rule)
    rule.points = points
    rule.type = rule_type
    return rule


@router.get("", response_model=dict[str, schemas.ScoreRule])
def get_rules(companyId: int = 0, session: Session = Depends(get_session)):
    return _rules_map(session, companyId)


@router.post("")
def save_rule(payload: schemas.ScoreRuleIn, session: Session = Depends(get_session)):
    _upsert(session, payload.company_id, payload.subject_id, payload.points, payload.type)
    session.flush()
    logger.info("[rules] upsert company=%s subject=%s points=%s", payload.company_id, payload.subject_id, payload.points)
    return {"success": True}


@router.post("/sync")
async def sync_rules(
    companyId: int,
    session: Session = Depends(get_session),
    transport=Depends(get_erp_transport),
):
    """Crea una regla vacía (0 puntos, 'both') por cada asunto activo del ERP que aún no tenga."""
    company = company_or_404(session, companyId)
    try:
        async with erp_client_for(company, transport) as client:
            subjects = await list_subjects(client)
    except ErpError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    existing = _rules_map(session, companyId)
    created = 0
    for subject in subjects:
        if subject["id"] not in existing:
            _upsert(session, companyId, subject["id"], 0, "both")
            created += 1
    session.flush()
    logger.info("[rules] sync company=%s asuntos=%s nuevas=%s", companyId, len(subjects), created)
    return {"success": True, "subjects": subjects, "created": created}
