# ispscore/routers/companies.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_session
from .deps import company_or_404
from .. import schemas

router = APIRouter(prefix="/api/companies", tags=["companies"])


@router.get("/{company_id}", response_model=schemas.Company)
def get_company(company_id: int, session: Session = Depends(get_session)):
    return company_or_404(session, company_id)


@router.put("/{company_id}", response_model=schemas.Company)
def update_company(company_id: int, payload: schemas.CompanyUpdate, session: Session = Depends(get_session)):
    company = company_or_404(session, company_id)
    # Solo se tocan los campos enviados
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(company, key, value)
    session.flush()
    return company
