# ispscore/erp_client.py
"""
Cliente HTTP para la API webservice/v1 del ERP (IXC).

Todas las consultas son POST con un cuerpo de filtro:
  {"qtype": "<tabla>.<campo>", "query": "...", "oper": "=", "rp": "500", "page": "1",
   "sortname": "...", "sortorder": "asc"}
La autenticación es Basic con el token de la empresa codificado en base64.
"""
from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .config import ERP_TIMEOUT

logger = logging.getLogger(__name__)

WEBSERVICE_PREFIX = "/webservice/v1"


# --------------------------
# Errores
# --------------------------


class ErpError(Exception):
    """Error base de comunicación con el ERP."""


class ErpNotConfigured(ErpError):
    """La empresa no tiene dominio/token del ERP configurados."""

    def __init__(self, message: str = "Configure el dominio y el token del ERP.") -> None:
        super().__init__(message)


class ErpTransportError(ErpError):
    """Falla de red / timeout."""


class ErpResponseError(ErpError):
    """Respuesta HTTP no 2xx."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


class ErpPayloadError(ErpError):
    """Cuerpo de respuesta que no es JSON válido."""


class FetchCancelled(Exception):
    """La ejecución fue reemplazada por otra más reciente (no es un error)."""


# --------------------------
# Helpers
# --------------------------


def build_query(
    qtype: str,
    query: Any,
    oper: str = "=",
    rp: int | str | None = None,
    page: int | str | None = None,
    sortname: str | None = None,
    sortorder: str | None = None,
) -> Dict[str, str]:
    """Arma el cuerpo de filtro del ERP; todos los valores viajan como string."""
    body = {
        "qtype": qtype,
        "query": query,
        "oper": oper,
        "rp": rp,
        "page": page,
        "sortname": sortname,
        "sortorder": sortorder,
    }
    return {k: str(v) for k, v in body.items() if v is not None}


def basic_auth_header(token: str) -> str:
    encoded = base64.b64encode(token.strip().encode("utf-8")).decode("ascii")
    return f"Basic {encoded}"


def error_message_for(status_code: int, text: str) -> str:
    try:
        data = json.loads(text)
    except ValueError:
        return f"Erro API ({status_code}): {text[:50]}..."
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return f"Erro API: {status_code}"


def parse_payload(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        if text.strip().startswith("<"):
            raise ErpPayloadError("API devolvió HTML. Verifique la configuración del proxy.") from None
        raise ErpPayloadError("JSON inválido.") from None


@dataclass
class ProxyResponse:
    status_code: int
    content: Any
    is_json: bool


# --------------------------
# Cliente
# --------------------------


class ErpClient:
    """Cliente asíncrono para el ERP de una empresa usando HTTPX."""

    def __init__(
        self,
        domain: Optional[str],
        token: Optional[str],
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = ERP_TIMEOUT,
    ) -> None:
        domain = (domain or "").strip().rstrip("/")
        token = (token or "").strip()
        if not domain or not token:
            raise ErpNotConfigured()
        self.domain = domain
        headers = {
            "Authorization": basic_auth_header(token),
            "Content-Type": "application/json",
            "ixcsoft": "listar",
        }
        try:
            self.http_client = httpx.AsyncClient(
                base_url=domain, headers=headers, timeout=timeout, transport=transport
            )
        except httpx.InvalidURL as exc:
            raise ErpNotConfigured(f"Dominio del ERP inválido: {domain}") from exc

    async def __aenter__(self) -> "ErpClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.http_client.aclose()

    async def _post(self, path: str, body: Dict[str, Any]) -> httpx.Response:
        try:
            payload = json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
            return await self.http_client.post(path, content=payload)
        except httpx.HTTPError as exc:
            logger.warning("[erp] action=post path=%s error=%s", path, exc)
            raise ErpTransportError(f"Falla de conexión con el ERP: {exc}") from exc

    async def query(self, table: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Consulta una tabla y devuelve el JSON ({'total': ..., 'registros': [...]})."""
        path = f"{WEBSERVICE_PREFIX}/{table}"
        response = await self._post(path, body)
        text = response.text
        if response.status_code >= 400:
            raise ErpResponseError(response.status_code, error_message_for(response.status_code, text))
        data = parse_payload(text)
        if not isinstance(data, dict):
            raise ErpPayloadError("JSON inválido.")
        return data

    async def records(self, table: str, body: Dict[str, Any]) -> list[dict]:
        data = await self.query(table, body)
        return data.get("registros") or []

    async def forward(self, path: str, body: bytes) -> ProxyResponse:
        """Reenvía el cuerpo tal cual a <dominio>/<path> (usado por el proxy)."""
        path = "/" + path.lstrip("/")
        try:
            response = await self.http_client.post(path, content=body)
        except httpx.HTTPError as exc:
            logger.warning("[erp] action=forward path=%s error=%s", path, exc)
            raise ErpTransportError(f"Falla de conexión con el ERP: {exc}") from exc
        try:
            return ProxyResponse(response.status_code, response.json(), True)
        except ValueError:
            return ProxyResponse(response.status_code, response.text, False)
