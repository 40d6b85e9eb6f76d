# ispscore/routers/auth.py
import hmac
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ..config import FALLBACK_LOGINS
from ..database import get_session
from ..security import hash_password, is_hashed, verify_password
from .. import models, schemas

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])

INVALID_CREDENTIALS = "Credenciais inválidas"


def _unauthorized() -> JSONResponse:
    return JSONResponse(status_code=401, content={"success": False, "message": INVALID_CREDENTIALS})


def _company_payload(company: models.Company | None) -> dict | None:
    if company is None:
        return None
    return schemas.Company.model_validate(company).model_dump(by_alias=True, mode="json")


def _fallback_login(email: str, password: str) -> JSONResponse:
    """Solo se usa cuando la base de datos no responde."""
    for entry in FALLBACK_LOGINS:
        if entry.get("email") == email and hmac.compare_digest(
            str(entry.get("password", "")).encode("utf-8"), password.encode("utf-8")
        ):
            logger.warning("[auth] login de respaldo email=%s", email)
            user = {
                "id": entry.get("id"),
                "name": entry.get("name"),
                "email": email,
                "role": entry.get("role", "user"),
                "permissions": entry.get("permissions"),
                "companyId": entry.get("companyId"),
            }
            return JSONResponse(content={"success": True, "user": user, "company": None})
    return _unauthorized()


@router.post("/login")
def login(payload: schemas.LoginRequest, session: Session = Depends(get_session)):
    email = payload.email.strip().lower()
    try:
        user = session.scalars(select(models.User).where(models.User.email == email)).first()
    except OperationalError as exc:
        logger.error("[auth] base de datos no disponible: %s", exc)
        session.rollback()
        return _fallback_login(email, payload.password)

    if user is None or not user.active or not verify_password(payload.password, user.password):
        logger.info("[auth] login rechazado email=%s", email)
        return _unauthorized()

    if not is_hashed(user.password):
        user.password = hash_password(payload.password)

    body = {
        "success": True,
        "user": schemas.User.model_validate(user).model_dump(by_alias=True, mode="json"),
        "company": _company_payload(user.company),
    }
    return JSONResponse(content=body)
