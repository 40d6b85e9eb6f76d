# ispscore/fetching.py
from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from typing import Awaitable, Callable, Dict, Iterable, List, TypeVar

from .config import ERP_MAX_PAGES, ERP_PAGE_SIZE
from .erp_client import ErpClient, ErpError, FetchCancelled, build_query

logger = logging.getLogger(__name__)

T = TypeVar("T")

ORDERS_TABLE = "su_oss_chamado"
DATE_FIELDS = {"opening": "data_abertura", "closing": "data_fechamento"}


# --------------------------
# Cancelación cooperativa
# --------------------------


class ReportRunRegistry:
    """
    Lleva una época por clave de reporte (empresa + usuario + tipo).
    Cada `begin` invalida los tokens emitidos antes para la misma clave.
    Las épocas salen de un contador único, así una clave borrada por `finish`
    nunca reutiliza una época que un token viejo todavía tenga.
    """

    def __init__(self) -> None:
        self._epochs: Dict[str, int] = {}
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def begin(self, key: str) -> "CancellationToken":
        with self._lock:
            epoch = next(self._counter)
            self._epochs[key] = epoch
            return CancellationToken(self, key, epoch)

    def finish(self, token: "CancellationToken") -> None:
        """Libera la clave si `token` sigue siendo la ejecución vigente."""
        with self._lock:
            if self._epochs.get(token.key) == token.epoch:
                del self._epochs[token.key]

    def current(self, key: str) -> int:
        with self._lock:
            return self._epochs.get(key, 0)

    def __len__(self) -> int:
        with self._lock:
            return len(self._epochs)


class CancellationToken:
    def __init__(self, registry: ReportRunRegistry | None = None, key: str = "", epoch: int = 0) -> None:
        self._registry = registry
        self.key = key
        self.epoch = epoch
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        if self._registry is None:
            return False
        return self._registry.current(self.key) != self.epoch

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise FetchCancelled(f"Búsqueda cancelada ({self.key or 'sin clave'}).")


NEVER_CANCELLED = CancellationToken()


# --------------------------
# Paginación
# --------------------------


async def fetch_all_pages(
    client: ErpClient,
    date_field: str,
    since: str,
    *,
    table: str = ORDERS_TABLE,
    until: str | None = None,
    page_size: int = ERP_PAGE_SIZE,
    max_pages: int = ERP_MAX_PAGES,
    token: CancellationToken = NEVER_CANCELLED,
    progress: Callable[[int, int], None] | None = None,
) -> List[dict]:
    """
    Pide páginas de `page_size` ordenadas por `date_field` (asc) desde `since`.

    Termina cuando:
    - una página trae menos registros que `page_size` (sin pedir la siguiente)
    - se alcanza `max_pages`
    - aparece un registro con fecha posterior a `until` (orden ascendente)

    Un error en cualquier página se propaga y aborta la acumulación.
    """
    qtype = f"{table}.{date_field}"
    accumulated: List[dict] = []
    page = 1

    while page <= max_pages:
        token.raise_if_cancelled()
        body = build_query(
            qtype, since, ">=", rp=page_size, page=page, sortname=qtype, sortorder="asc"
        )
        batch = await client.records(table, body)
        token.raise_if_cancelled()

        past_until = False
        for reg in batch:
            value = (reg.get(date_field) or "").strip()
            if until is not None and value and value > until:
                past_until = True
                break
            accumulated.append(reg)

        if progress is not None:
            progress(page, len(accumulated))
        logger.debug("[fetch] table=%s page=%s batch=%s total=%s", table, page, len(batch), len(accumulated))

        if past_until or len(batch) < page_size:
            break
        page += 1
    else:
        logger.warning("[fetch] table=%s tope de %s páginas alcanzado", table, max_pages)

    token.raise_if_cancelled()
    return accumulated


# --------------------------
# Fan-out / fan-in
# --------------------------


async def gather_or_default(
    calls: Iterable[Awaitable[T]],
    default: Callable[[], T],
) -> List[T]:
    """
    Ejecuta todas las llamadas a la vez; la que falla con ErpError se reemplaza
    por `default()` para no vaciar el resultado completo.
    """
    results = await asyncio.gather(*calls, return_exceptions=True)
    out: List[T] = []
    for res in results:
        if isinstance(res, ErpError):
            logger.warning("[fanout] sub-consulta fallida, se usa valor vacío: %s", res)
            out.append(default())
        elif isinstance(res, BaseException):
            raise res
        else:
            out.append(res)
    return out
