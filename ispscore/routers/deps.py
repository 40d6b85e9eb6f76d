# ispscore/routers/deps.py
from __future__ import annotations

from typing import Dict, Optional

import httpx
from fastapi import Depends, Header, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..database import get_session
from ..erp_client import ErpClient, ErpNotConfigured
from ..identity import rules_from_mapping
from ..report_models import Rule
from .. import models


def get_erp_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Transporte HTTP hacia el ERP; None usa la red real (los tests lo reemplazan)."""
    return None


def company_or_404(session: Session, company_id: int) -> models.Company:
    company = session.get(models.Company, company_id)
    if not company:
        raise HTTPException(status_code=404, detail="Empresa no encontrada")
    return company


def get_company(
    x_company_id: int = Header(...),
    session: Session = Depends(get_session),
) -> models.Company:
    return company_or_404(session, x_company_id)


def erp_client_for(
    company: models.Company,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ErpClient:
    try:
        return ErpClient(company.ixc_domain, company.ixc_token, transport=transport)
    except ErpNotConfigured as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def rules_for(session: Session, company_id: int) -> Dict[str, Rule]:
    """Reglas de la empresa; las de company_id=0 son globales y se pisan por las propias."""
    stmt = (
        select(models.ScoreRule)
        .where(models.ScoreRule.company_id.in_((0, company_id)))
        .order_by(models.ScoreRule.company_id)
    )
    mapping = {
        r.subject_id: {"points": float(r.points), "type": r.type}
        for r in session.scalars(stmt).all()
    }
    return rules_from_mapping(mapping)
