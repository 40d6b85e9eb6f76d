# ispscore/routers/tv.py
import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..config import TV_SNAPSHOT_MAX_AGE
from ..dashboard import tv_leaderboard
from ..database import get_session
from ..erp_client import ErpError
from ..pipeline import tenant_settings
from ..snapshots import KIND_TV, fresh_snapshot, store_snapshot
from .deps import company_or_404, erp_client_for, get_erp_transport, rules_for

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tv", tags=["tv"])


@router.get("/{company_id}")
async def get_tv_leaderboard(
    company_id: int,
    session: Session = Depends(get_session),
    transport=Depends(get_erp_transport),
):
    """Panel público (sin login): usa el snapshot de la tarea periódica si está fresco."""
    company = await asyncio.to_thread(company_or_404, session, company_id)
    cached = await asyncio.to_thread(fresh_snapshot, session, company.id, KIND_TV, TV_SNAPSHOT_MAX_AGE)
    if cached is not None:
        return cached

    rules = await asyncio.to_thread(rules_for, session, company.id)
    try:
        async with erp_client_for(company, transport) as client:
            board = await tv_leaderboard(client, rules, tenant_settings(company))
    except ErpError as exc:
        logger.error("[tv] company=%s error=%s", company.id, exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    board["companyName"] = company.name
    board["logoUrl"] = company.logo_url
    await asyncio.to_thread(store_snapshot, session, company.id, KIND_TV, board)
    return board
