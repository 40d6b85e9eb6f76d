# ispscore/routers/users.py
from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..database import get_session
from ..security import hash_password
from .. import models, schemas

router = APIRouter(prefix="/api/users", tags=["users"])


def _email_taken(session: Session, email: str, exclude_id: int | None = None) -> bool:
    stmt = select(models.User.id).where(models.User.email == email)
    if exclude_id is not None:
        stmt = stmt.where(models.User.id != exclude_id)
    return session.scalars(stmt).first() is not None


def _check_plan_limit(session: Session, company_id: int) -> None:
    company = session.get(models.Company, company_id)
    if not company:
        raise HTTPException(status_code=404, detail="Empresa no encontrada")
    if company.plan and len(company.users) >= company.plan.max_users:
        raise HTTPException(status_code=409, detail="Límite de usuarios del plan alcanzado")


def create_user_record(session: Session, payload: schemas.UserCreate) -> models.User:
    email = payload.email.strip().lower()
    if _email_taken(session, email):
        raise HTTPException(status_code=409, detail="E-mail ya registrado")
    user = models.User(
        company_id=payload.company_id,
        name=payload.name,
        email=email,
        password=hash_password(payload.password),
        role=payload.role,
        active=payload.active,
        permissions=payload.permissions,
    )
    session.add(user)
    session.flush()
    return user


@router.get("", response_model=list[schemas.User])
def list_users(companyId: int, session: Session = Depends(get_session)):
    stmt = select(models.User).where(models.User.company_id == companyId).order_by(models.User.name)
    return session.scalars(stmt).all()


@router.post("", response_model=schemas.User, status_code=201)
def create_user(payload: schemas.UserCreate, session: Session = Depends(get_session)):
    if payload.company_id is not None:
        _check_plan_limit(session, payload.company_id)
    return create_user_record(session, payload)


@router.put("/{user_id}", response_model=schemas.User)
def update_user(user_id: int, payload: schemas.UserUpdate, session: Session = Depends(get_session)):
    user = session.get(models.User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="Usuario no encontrado")

    data = payload.model_dump(exclude_unset=True)
    if "email" in data:
        data["email"] = data["email"].strip().lower()
        if _email_taken(session, data["email"], exclude_id=user_id):
            raise HTTPException(status_code=409, detail="E-mail ya registrado")
    if data.get("password"):
        data["password"] = hash_password(data["password"])
    else:
        data.pop("password", None)

    for key, value in data.items():
        setattr(user, key, value)
    session.flush()
    return user


@router.delete("/{user_id}", status_code=204)
def delete_user(user_id: int, session: Session = Depends(get_session)):
    user = session.get(models.User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="Usuario no encontrado")
    session.delete(user)
    return Response(status_code=204)
