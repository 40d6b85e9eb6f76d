# ispscore/tasks.py
import asyncio
import logging

from celery.utils.log import get_task_logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from .celery_app import celery_app
from .dashboard import dashboard_summary, tv_leaderboard
from .database import session_scope
from .erp_client import ErpClient, ErpError
from .pipeline import tenant_settings
from .routers.deps import rules_for
from .snapshots import KIND_DASHBOARD, KIND_TV, store_snapshot
from . import models

logger = get_task_logger(__name__)
logging.basicConfig(level=logging.INFO)


def _active_companies(session: Session) -> list[models.Company]:
    stmt = select(models.Company).where(models.Company.active.is_(True)).order_by(models.Company.id)
    return [c for c in session.scalars(stmt).all() if c.has_erp_config]


async def _tv_payload(company: models.Company, rules, transport=None) -> dict:
    async with ErpClient(company.ixc_domain, company.ixc_token, transport=transport) as client:
        board = await tv_leaderboard(client, rules, tenant_settings(company))
    board["companyName"] = company.name
    board["logoUrl"] = company.logo_url
    return board


async def _dashboard_payload(company: models.Company, transport=None) -> dict:
    async with ErpClient(company.ixc_domain, company.ixc_token, transport=transport) as client:
        return await dashboard_summary(client)


def refresh_company(session: Session, company: models.Company, kind: str, transport=None) -> bool:
    """Calcula y guarda un snapshot; devuelve False si el ERP falló."""
    try:
        if kind == KIND_TV:
            payload = asyncio.run(_tv_payload(company, rules_for(session, company.id), transport))
        else:
            payload = asyncio.run(_dashboard_payload(company, transport))
    except ErpError as e:
        logger.warning("[refresh] company=%s kind=%s error=%s", company.id, kind, e)
        return False
    store_snapshot(session, company.id, kind, payload)
    return True


def _refresh_all(kind: str, transport=None) -> dict:
    out = {"ok": [], "failed": []}
    with session_scope() as session:
        company_ids = [c.id for c in _active_companies(session)]

    # una sesión por empresa: si una falla no se deshacen los snapshots de las otras
    for company_id in company_ids:
        try:
            with session_scope() as session:
                company = session.get(models.Company, company_id)
                ok = refresh_company(session, company, kind, transport)
        except Exception as e:
            logger.exception("[refresh] company=%s kind=%s error inesperado: %s", company_id, kind, e)
            ok = False
        out["ok" if ok else "failed"].append(company_id)

    logger.info("[refresh] kind=%s ok=%s failed=%s", kind, out["ok"], out["failed"])
    return out


@celery_app.task(name="ispscore.tasks.refresh_dashboards")
def refresh_dashboards() -> dict:
    return _refresh_all(KIND_DASHBOARD)


@celery_app.task(name="ispscore.tasks.refresh_tv_leaderboards")
def refresh_tv_leaderboards() -> dict:
    return _refresh_all(KIND_TV)
