# ispscore/client_names.py
from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, MutableMapping

from .config import CLIENT_BATCH_DELAY, CLIENT_BATCH_SIZE
from .erp_client import ErpClient, ErpError, build_query
from .fetching import NEVER_CANCELLED, CancellationToken

logger = logging.getLogger(__name__)

_NAME_FIELDS = ("fantasia", "razao", "nome_social", "nome")


def placeholder_name(client_id: str) -> str:
    return f"Cliente #{client_id}"


def client_display_name(record: dict, client_id: str) -> str:
    for key in _NAME_FIELDS:
        value = (record.get(key) or "").strip()
        if value:
            return value
    return placeholder_name(client_id)


async def _lookup(client: ErpClient, client_id: str) -> str:
    try:
        records = await client.records("cliente", build_query("cliente.id", client_id, "=", rp=1))
    except ErpError as exc:
        logger.warning("[clientes] id=%s fallo=%s", client_id, exc)
        return placeholder_name(client_id)
    if not records:
        return placeholder_name(client_id)
    return client_display_name(records[0], client_id)


async def resolve_client_names(
    client: ErpClient,
    client_ids: Iterable[str],
    cache: MutableMapping[str, str],
    *,
    batch_size: int = CLIENT_BATCH_SIZE,
    delay: float = CLIENT_BATCH_DELAY,
    token: CancellationToken = NEVER_CANCELLED,
) -> Dict[str, str]:
    """
    Completa `cache` con el nombre de cada cliente que aún no esté en él.
    Lotes de `batch_size` en paralelo, con una pausa entre lotes para no saturar el ERP.
    Un fallo individual se degrada a 'Cliente #<id>'.
    """
    pending = []
    for cid in client_ids:
        if cid and cid not in cache and cid not in pending:
            pending.append(cid)

    for i in range(0, len(pending), batch_size):
        token.raise_if_cancelled()
        batch = pending[i:i + batch_size]
        names = await asyncio.gather(*(_lookup(client, cid) for cid in batch))
        cache.update(zip(batch, names))
        if i + batch_size < len(pending) and delay:
            await asyncio.sleep(delay)

    return dict(cache)
