# ispscore/routers/saas.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..database import get_session
from .deps import company_or_404
from .users import create_user_record
from .. import models, schemas

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/saas", tags=["saas"])


# --------------------------
# Empresas
# --------------------------

@router.get("/companies", response_model=list[schemas.Company])
def list_companies(session: Session = Depends(get_session)):
    return session.scalars(select(models.Company).order_by(models.Company.name)).all()


@router.post("/companies", response_model=schemas.Company, status_code=201)
def create_company(payload: schemas.SaasCompanyCreate, session: Session = Depends(get_session)):
    data = payload.model_dump(exclude_unset=True, exclude={"admin_name", "admin_email", "admin_password"})
    company = models.Company(**{k: v for k, v in data.items() if v is not None})
    session.add(company)
    session.flush()  # obtener id

    if payload.admin_email and payload.admin_password:
        create_user_record(
            session,
            schemas.UserCreate(
                name=payload.admin_name or payload.name,
                email=payload.admin_email,
                password=payload.admin_password,
                role="admin",
                company_id=company.id,
            ),
        )
    logger.info("[saas] empresa creada id=%s admin=%s", company.id, payload.admin_email or "-")
    return company


@router.put("/companies/{company_id}", response_model=schemas.Company)
def update_company(company_id: int, payload: schemas.CompanyUpdate, session: Session = Depends(get_session)):
    company = company_or_404(session, company_id)
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(company, key, value)
    session.flush()
    return company


@router.patch("/companies/{company_id}/status", response_model=schemas.Company)
def update_company_status(company_id: int, payload: schemas.CompanyStatusUpdate, session: Session = Depends(get_session)):
    company = company_or_404(session, company_id)
    company.status = payload.status
    company.active = payload.status == "active"
    session.flush()
    logger.info("[saas] empresa id=%s status=%s", company_id, payload.status)
    return company


@router.delete("/companies/{company_id}", status_code=204)
def delete_company(company_id: int, session: Session = Depends(get_session)):
    session.delete(company_or_404(session, company_id))
    return Response(status_code=204)


# --------------------------
# Planes
# --------------------------

def _plan_or_404(session: Session, plan_id: int) -> models.Plan:
    plan = session.get(models.Plan, plan_id)
    if not plan:
        raise HTTPException(status_code=404, detail="Plan no encontrado")
    return plan


@router.get("/plans", response_model=list[schemas.Plan])
def list_plans(session: Session = Depends(get_session)):
    return session.scalars(select(models.Plan).order_by(models.Plan.price)).all()


@router.post("/plans", response_model=schemas.Plan, status_code=201)
def create_plan(payload: schemas.PlanCreate, session: Session = Depends(get_session)):
    plan = models.Plan(**payload.model_dump())
    session.add(plan)
    session.flush()
    return plan


@router.put("/plans/{plan_id}", response_model=schemas.Plan)
def update_plan(plan_id: int, payload: schemas.PlanCreate, session: Session = Depends(get_session)):
    plan = _plan_or_404(session, plan_id)
    for key, value in payload.model_dump().items():
        setattr(plan, key, value)
    session.flush()
    return plan


@router.delete("/plans/{plan_id}", status_code=204)
def delete_plan(plan_id: int, session: Session = Depends(get_session)):
    session.delete(_plan_or_404(session, plan_id))
    return Response(status_code=204)
