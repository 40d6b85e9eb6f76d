# ispscore/routers/reports.py
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session

from ..config import DASHBOARD_REFRESH_SECONDS
from ..dashboard import dashboard_summary
from ..database import get_session
from ..erp_client import ErpError
from ..pipeline import ReportFilters, generate_report, list_technicians, order_details, tenant_settings
from ..report_logic import render_txt_report, status_label
from ..report_models import ReportRow
from ..snapshots import KIND_DASHBOARD, fresh_snapshot, store_snapshot
from .deps import erp_client_for, get_company, get_erp_transport, rules_for
from .. import models, schemas

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["reports"])


def _row_schema(row: ReportRow) -> schemas.ReportRow:
    return schemas.ReportRow(
        technician_id=row.technician_id,
        technician_name=row.technician_name,
        role=row.role,
        total_orders=row.total_orders,
        total_points=row.total_points,
        orders=[
            schemas.ReportOrder(
                id=s.order.id,
                client_id=s.order.client_id,
                client_name=s.client_name,
                subject_id=s.order.subject_id,
                status=s.order.status,
                status_label=status_label(s.order.status),
                opening_date=s.order.opened_at,
                closing_date=s.order.closed_at,
                reopening_date=s.order.reopened_at,
                points=s.points,
                strategy=s.resolution.strategy,
                debug=s.resolution.debug,
            )
            for s in row.orders
        ],
    )


def _report_title(filters: ReportFilters, company: models.Company) -> str:
    kind = "Analítico" if filters.analytical else "Sintético"
    return f"Reporte {kind} - {company.name} ({filters.start_date:%d/%m/%Y} a {filters.end_date:%d/%m/%Y})"


@router.post("/reports")
async def create_report(
    payload: schemas.ReportRequest,
    request: Request,
    format: str = "json",
    x_user_id: Optional[str] = Header(default=None),
    company: models.Company = Depends(get_company),
    session: Session = Depends(get_session),
    transport=Depends(get_erp_transport),
):
    """
    Genera el reporte de puntuación por técnico.
    Un nuevo pedido del mismo usuario/empresa/tipo cancela el anterior.
    """
    filters = ReportFilters(**payload.model_dump())
    rules = await asyncio.to_thread(rules_for, session, company.id)
    settings = tenant_settings(company)

    registry = request.app.state.report_runs
    token = registry.begin(f"{company.id}:{x_user_id or '-'}:{filters.report_type}")
    try:
        async with erp_client_for(company, transport) as client:
            outcome = await generate_report(client, filters, rules, settings, token=token)
    finally:
        registry.finish(token)

    if outcome.status == "error":
        return JSONResponse(
            status_code=502,
            content=schemas.ReportOutcome(status="error", error=outcome.error).model_dump(by_alias=True, mode="json"),
        )

    if format == "txt" and outcome.status == "ok":
        return PlainTextResponse(render_txt_report(outcome.rows or [], _report_title(filters, company), filters.analytical))

    body = schemas.ReportOutcome(
        status=outcome.status,
        rows=[_row_schema(r) for r in outcome.rows] if outcome.rows is not None else None,
        fetched=outcome.fetched,
    )
    return JSONResponse(content=body.model_dump(by_alias=True, mode="json"))


@router.get("/reports/technicians")
async def report_technicians(
    company: models.Company = Depends(get_company),
    transport=Depends(get_erp_transport),
):
    try:
        async with erp_client_for(company, transport) as client:
            return await list_technicians(client)
    except ErpError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@router.get("/orders/{order_id}")
async def get_order(
    order_id: str,
    company: models.Company = Depends(get_company),
    transport=Depends(get_erp_transport),
):
    try:
        async with erp_client_for(company, transport) as client:
            details = await order_details(client, order_id)
    except ErpError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    if details is None:
        raise HTTPException(status_code=404, detail="OS no encontrada")
    return details


@router.get("/dashboard/summary", response_model=schemas.DashboardSummary)
async def get_dashboard_summary(
    company: models.Company = Depends(get_company),
    session: Session = Depends(get_session),
    transport=Depends(get_erp_transport),
):
    cached = await asyncio.to_thread(
        fresh_snapshot, session, company.id, KIND_DASHBOARD, int(DASHBOARD_REFRESH_SECONDS)
    )
    if cached is not None:
        return cached
    async with erp_client_for(company, transport) as client:
        summary = await dashboard_summary(client)
    await asyncio.to_thread(store_snapshot, session, company.id, KIND_DASHBOARD, summary)
    return summary
