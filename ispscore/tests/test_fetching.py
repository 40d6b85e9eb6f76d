# tests/test_fetching.py
import asyncio

import pytest

from ispscore.erp_client import ErpClient, ErpError, ErpResponseError, FetchCancelled
from ispscore.fetching import CancellationToken, ReportRunRegistry, fetch_all_pages, gather_or_default
from ispscore.tests.erp_fakes import FakeErp, order


def _orders(n, start_day=1):
    return [order(i, fechamento=f"2024-06-{start_day + i // 100:02d} 10:{i % 60:02d}:{i % 60:02d}") for i in range(n)]


def _run(erp, **kwargs):
    async def go():
        async with ErpClient("https://erp.example", "tok", transport=erp.transport) as client:
            return await fetch_all_pages(client, "data_fechamento", "2024-06-01", **kwargs)
    return asyncio.run(go())


def test_short_page_stops_without_extra_request():
    erp = FakeErp({"su_oss_chamado": _orders(7)})
    out = _run(erp, page_size=5)
    assert len(out) == 7
    pages = [b["page"] for b in erp.calls_for("su_oss_chamado")]
    assert pages == ["1", "2"]


def test_full_page_requests_next_page():
    erp = FakeErp({"su_oss_chamado": _orders(10)})
    out = _run(erp, page_size=5)
    assert len(out) == 10
    # la página 2 vino llena, entonces se pide la 3 (vacía)
    assert [b["page"] for b in erp.calls_for("su_oss_chamado")] == ["1", "2", "3"]


def test_query_body_shape():
    erp = FakeErp({"su_oss_chamado": []})
    _run(erp, page_size=500)
    (body,) = erp.calls_for("su_oss_chamado")
    assert body == {
        "qtype": "su_oss_chamado.data_fechamento",
        "query": "2024-06-01",
        "oper": ">=",
        "rp": "500",
        "page": "1",
        "sortname": "su_oss_chamado.data_fechamento",
        "sortorder": "asc",
    }


def test_max_pages_cap():
    erp = FakeErp({"su_oss_chamado": _orders(30)})
    out = _run(erp, page_size=5, max_pages=2)
    assert len(out) == 10
    assert len(erp.calls_for("su_oss_chamado")) == 2


def test_until_stops_on_later_records():
    records = [
        order(1, fechamento="2024-06-01 10:00:00"),
        order(2, fechamento="2024-06-02 10:00:00"),
        order(3, fechamento="2024-06-05 10:00:00"),
    ]
    erp = FakeErp({"su_oss_chamado": records})
    out = _run(erp, page_size=2, until="2024-06-02 23:59:59")
    assert [r["id"] for r in out] == ["1", "2"]


def test_error_on_any_page_propagates():
    erp = FakeErp(failing={"su_oss_chamado": (500, '{"message": "Falha interna"}')})
    with pytest.raises(ErpResponseError) as exc:
        _run(erp, page_size=5)
    assert str(exc.value) == "Falha interna"


def test_cancelled_token_stops_before_request():
    erp = FakeErp({"su_oss_chamado": _orders(3)})
    token = CancellationToken()
    token.cancel()
    with pytest.raises(FetchCancelled):
        _run(erp, token=token)
    assert erp.calls == []


def test_superseded_run_is_cancelled_between_pages():
    registry = ReportRunRegistry()
    token = registry.begin("1:u:SYNTHETIC")
    erp = FakeErp({"su_oss_chamado": _orders(10)})

    def progress(page, total):
        # otro pedido del mismo usuario reemplaza a este
        registry.begin("1:u:SYNTHETIC")

    with pytest.raises(FetchCancelled):
        _run(erp, page_size=5, token=token, progress=progress)
    assert len(erp.calls_for("su_oss_chamado")) == 1


def test_registry_epochs_are_per_key():
    registry = ReportRunRegistry()
    a1 = registry.begin("a")
    b1 = registry.begin("b")
    a2 = registry.begin("a")
    assert a1.cancelled
    assert not a2.cancelled
    assert not b1.cancelled
    assert registry.current("a") == a2.epoch


def test_registry_finish_releases_key():
    registry = ReportRunRegistry()
    old = registry.begin("1:u:SYNTHETIC")
    newer = registry.begin("1:u:SYNTHETIC")

    # terminar la ejecución reemplazada no libera la clave de la vigente
    registry.finish(old)
    assert len(registry) == 1
    assert not newer.cancelled

    registry.finish(newer)
    assert len(registry) == 0

    # una ejecución nueva sobre la misma clave no revive el token viejo
    registry.begin("1:u:SYNTHETIC")
    assert old.cancelled
    assert len(registry) == 1


def test_gather_or_default_replaces_erp_errors():
    async def ok():
        return [1]

    async def bad():
        raise ErpError("falla")

    assert asyncio.run(gather_or_default([ok(), bad(), ok()], list)) == [[1], [], [1]]


def test_gather_or_default_reraises_other_errors():
    async def boom():
        raise RuntimeError("bug")

    with pytest.raises(RuntimeError):
        asyncio.run(gather_or_default([boom()], list))
