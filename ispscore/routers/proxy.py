# ispscore/routers/proxy.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from ..config import ERP_PROXY_ALLOWED_PREFIXES
from ..erp_client import ErpError
from .deps import erp_client_for, get_company, get_erp_transport
from .. import models

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["proxy"])


def path_allowed(erp_path: str) -> bool:
    path = erp_path.lstrip("/")
    if ".." in path.split("/"):
        return False
    return any(path.startswith(prefix) for prefix in ERP_PROXY_ALLOWED_PREFIXES)


@router.post("/ixc-proxy/{erp_path:path}")
async def ixc_proxy(
    erp_path: str,
    request: Request,
    company: models.Company = Depends(get_company),
    transport=Depends(get_erp_transport),
):
    """Reenvía la consulta al ERP de la empresa con sus credenciales."""
    if not path_allowed(erp_path):
        raise HTTPException(status_code=403, detail="Ruta no permitida")

    body = await request.body()
    try:
        async with erp_client_for(company, transport) as client:
            res = await client.forward(erp_path, body)
    except ErpError as exc:
        logger.error("[proxy] company=%s path=%s error=%s", company.id, erp_path, exc)
        return JSONResponse(status_code=502, content={"error": str(exc)})

    if res.is_json:
        return JSONResponse(status_code=res.status_code, content=res.content)
    return PlainTextResponse(status_code=res.status_code, content=res.content)
