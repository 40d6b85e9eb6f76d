# tests/test_api.py
import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from ispscore import database, main, models
from ispscore.database import Base, SessionLocal, engine, get_session
from ispscore.main import app
from ispscore.routers import tv as tv_router
from ispscore.routers.deps import get_erp_transport
from ispscore.security import is_hashed
from ispscore.tests.erp_fakes import order


@pytest.fixture
def client(fake_erp):
    Base.metadata.drop_all(bind=engine)
    app.dependency_overrides[get_erp_transport] = lambda: fake_erp.transport
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _create_company(client, **extra):
    payload = {"name": "Fibra Norte", "ixcDomain": "https://erp.example", "ixcToken": "tok"}
    payload.update(extra)
    res = client.post("/api/saas/companies", json=payload)
    assert res.status_code == 201, res.text
    return res.json()


def _hdr(company):
    return {"x-company-id": str(company["id"])}


# --------------------------
# Salud / login
# --------------------------

def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_login_seeded_owner(client):
    res = client.post("/api/login", json={"email": "unity@unityautomacoes.com.br", "password": "200616"})
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["user"]["role"] == "saas_owner"
    assert body["company"] is None


def test_login_invalid_credentials(client):
    res = client.post("/api/login", json={"email": "unity@unityautomacoes.com.br", "password": "x"})
    assert res.status_code == 401
    assert res.json() == {"success": False, "message": "Credenciais inválidas"}


def test_login_company_admin_returns_company(client):
    company = _create_company(client, adminName="Gestor", adminEmail="Gestor@Fibra.com", adminPassword="s3nha")
    res = client.post("/api/login", json={"email": "gestor@fibra.com", "password": "s3nha"})
    body = res.json()
    assert body["user"]["companyId"] == company["id"]
    assert body["user"]["role"] == "admin"
    assert body["company"]["name"] == "Fibra Norte"
    assert "password" not in body["user"]


def test_login_plaintext_password_is_rehashed(client):
    with SessionLocal() as session:
        session.add(models.User(name="Legado", email="legado@x.com", password="abc"))
        session.commit()

    assert client.post("/api/login", json={"email": "legado@x.com", "password": "abc"}).status_code == 200

    with SessionLocal() as session:
        user = session.scalars(select(models.User).where(models.User.email == "legado@x.com")).one()
        assert is_hashed(user.password)


def test_login_fallback_when_database_is_down(client):
    class DownSession:
        def scalars(self, *args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("sin conexión"))

        def rollback(self):
            pass

    def down_session():
        yield DownSession()

    app.dependency_overrides[get_session] = down_session
    res = client.post("/api/login", json={"email": "admin@saas.com", "password": "admin"})
    assert res.status_code == 200
    assert res.json()["user"]["role"] == "saas_owner"
    assert client.post("/api/login", json={"email": "admin@saas.com", "password": "no"}).status_code == 401


def test_app_starts_and_falls_back_when_database_is_unreachable(monkeypatch):
    unreachable = create_engine("sqlite:////nonexistent_dir/ispscore.db")
    monkeypatch.setattr(main, "engine", unreachable)
    monkeypatch.setattr(database, "SessionLocal", sessionmaker(bind=unreachable))

    with TestClient(app) as c:
        assert c.get("/api/health").json() == {"status": "ok"}
        res = c.post("/api/login", json={"email": "admin@saas.com", "password": "admin"})
        assert res.status_code == 200
        assert res.json()["user"]["role"] == "saas_owner"


# --------------------------
# Reglas
# --------------------------

def test_score_rules_upsert(client):
    rule = {"companyId": 1, "subjectId": "7", "points": 5, "type": "both"}
    assert client.post("/api/score-rules", json=rule).json() == {"success": True}
    client.post("/api/score-rules", json={**rule, "points": 8, "type": "internal"})

    rules = client.get("/api/score-rules", params={"companyId": 1}).json()
    assert rules == {"7": {"points": 8.0, "type": "internal"}}
    assert client.get("/api/score-rules", params={"companyId": 2}).json() == {}


def test_score_rules_sync_creates_missing(client, fake_erp):
    company = _create_company(client)
    fake_erp.tables["su_oss_assunto"] = [
        {"id": "7", "assunto": "Instalação", "ativo": "S"},
        {"id": "8", "assunto": "Reparo", "ativo": "S"},
    ]
    client.post("/api/score-rules", json={"companyId": company["id"], "subjectId": "7", "points": 5})

    res = client.post("/api/score-rules/sync", params={"companyId": company["id"]})
    assert res.json()["created"] == 1
    rules = client.get("/api/score-rules", params={"companyId": company["id"]}).json()
    assert rules == {"7": {"points": 5.0, "type": "both"}, "8": {"points": 0.0, "type": "both"}}


# --------------------------
# Empresas / SaaS / usuarios
# --------------------------

def test_company_get_and_update(client):
    company = _create_company(client)
    assert company["departmentPrecedence"] == "group,function,sector"
    assert company["reopenGapMinutes"] == 5

    res = client.put(f"/api/companies/{company['id']}", json={"phone": "11 9999", "reopenPenaltyDays": 15})
    assert res.status_code == 200
    body = client.get(f"/api/companies/{company['id']}").json()
    assert body["phone"] == "11 9999"
    assert body["reopenPenaltyDays"] == 15
    assert body["ixcDomain"] == "https://erp.example"

    assert client.get("/api/companies/999").status_code == 404


def test_saas_company_status_and_plans(client):
    plan = client.post("/api/saas/plans", json={"name": "Básico", "price": 99.9, "maxUsers": 3}).json()
    assert plan["maxUsers"] == 3

    company = _create_company(client, planId=plan["id"])
    res = client.patch(f"/api/saas/companies/{company['id']}/status", json={"status": "suspended"})
    assert res.json()["status"] == "suspended"
    assert res.json()["active"] is False

    names = [c["name"] for c in client.get("/api/saas/companies").json()]
    assert names == ["Fibra Norte"]

    client.put(f"/api/saas/plans/{plan['id']}", json={"name": "Pro", "price": 199, "maxUsers": 10})
    assert client.get("/api/saas/plans").json()[0]["name"] == "Pro"
    assert client.delete(f"/api/saas/plans/{plan['id']}").status_code == 204
    assert client.get("/api/saas/plans").json() == []


def test_users_crud_and_limits(client):
    plan = client.post("/api/saas/plans", json={"name": "Mini", "maxUsers": 1}).json()
    company = _create_company(client, planId=plan["id"], adminEmail="a@fibra.com", adminPassword="x")

    new_user = {"name": "Téc", "email": "t@fibra.com", "password": "y", "companyId": company["id"]}
    assert client.post("/api/users", json=new_user).status_code == 409

    client.put(f"/api/saas/plans/{plan['id']}", json={"name": "Mini", "maxUsers": 5})
    created = client.post("/api/users", json=new_user)
    assert created.status_code == 201
    assert client.post("/api/users", json=new_user).status_code == 409

    uid = created.json()["id"]
    client.put(f"/api/users/{uid}", json={"name": "Técnico 1", "role": "admin"})
    users = client.get("/api/users", params={"companyId": company["id"]}).json()
    # sin adminName el admin toma el nombre de la empresa
    assert {u["name"] for u in users} == {"Fibra Norte", "Técnico 1"}

    assert client.delete(f"/api/users/{uid}").status_code == 204
    assert client.delete(f"/api/users/{uid}").status_code == 404


# --------------------------
# Proxy
# --------------------------

def test_proxy_forwards_allowed_paths(client, fake_erp):
    company = _create_company(client)
    fake_erp.tables["cliente"] = [{"id": "1", "razao": "ACME"}]
    res = client.post(
        "/api/ixc-proxy/webservice/v1/cliente",
        json={"qtype": "cliente.id", "query": "1", "oper": "="},
        headers=_hdr(company),
    )
    assert res.status_code == 200
    assert res.json()["registros"] == [{"id": "1", "razao": "ACME"}]


def test_proxy_rejects_other_paths(client):
    company = _create_company(client)
    res = client.post("/api/ixc-proxy/admin/config", json={}, headers=_hdr(company))
    assert res.status_code == 403


def test_proxy_requires_erp_config(client):
    company = _create_company(client, ixcToken="")
    res = client.post("/api/ixc-proxy/webservice/v1/cliente", json={}, headers=_hdr(company))
    assert res.status_code == 400
    assert res.json()["detail"] == "Configure el dominio y el token del ERP."


# --------------------------
# Reportes / paneles
# --------------------------

def _seed_erp(fake_erp):
    fake_erp.tables.update({
        "funcionarios": [{"id": "10", "funcionario": "Ana Souza", "ativo": "S", "setor_id": "2"}],
        "empresa_setor": [{"id": "2", "setor": "SETOR TÉCNICO"}],
        "su_oss_chamado": [
            order(1, "10", fechamento="2024-06-05 10:00:00"),
            order(2, "10", fechamento="2024-06-06 10:00:00"),
            order(3, "10", fechamento="2024-06-07 10:00:00"),
        ],
    })


REPORT = {"startDate": "2024-06-01", "endDate": "2024-06-30", "sortBy": "POINTS"}


def test_report_json(client, fake_erp):
    company = _create_company(client)
    _seed_erp(fake_erp)
    client.post("/api/score-rules", json={"companyId": company["id"], "subjectId": "7", "points": 5})

    res = client.post("/api/reports", json=REPORT, headers={**_hdr(company), "x-user-id": "9"})
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "ok"
    assert body["rows"][0]["technicianName"] == "Ana Souza"
    assert body["rows"][0]["role"] == "SETOR TÉCNICO"
    assert body["rows"][0]["totalOrders"] == 3
    assert body["rows"][0]["totalPoints"] == 15
    # la clave de cancelación se libera al terminar
    assert len(app.state.report_runs) == 0


def test_global_rules_apply_when_company_has_none(client, fake_erp):
    company = _create_company(client)
    _seed_erp(fake_erp)
    client.post("/api/score-rules", json={"companyId": 0, "subjectId": "7", "points": 2})
    body = client.post("/api/reports", json=REPORT, headers=_hdr(company)).json()
    assert body["rows"][0]["totalPoints"] == 6


def test_report_txt(client, fake_erp):
    company = _create_company(client)
    _seed_erp(fake_erp)
    res = client.post("/api/reports", params={"format": "txt"}, json=REPORT, headers=_hdr(company))
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/plain")
    assert "Ana Souza" in res.text


def test_report_erp_error_is_502(client, fake_erp):
    company = _create_company(client)
    fake_erp.failing["su_oss_chamado"] = (500, '{"message": "Falha"}')
    res = client.post("/api/reports", json=REPORT, headers=_hdr(company))
    assert res.status_code == 502
    assert res.json()["error"] == "Error al generar el reporte: Falha"


def test_report_without_erp_config_is_400(client):
    company = _create_company(client, ixcDomain="")
    assert client.post("/api/reports", json=REPORT, headers=_hdr(company)).status_code == 400


def test_report_with_malformed_domain_is_400(client):
    company = _create_company(client, ixcDomain="http://[::1")
    res = client.post("/api/reports", json=REPORT, headers={**_hdr(company), "x-user-id": "9"})
    assert res.status_code == 400
    assert "Dominio del ERP inválido" in res.json()["detail"]
    assert len(app.state.report_runs) == 0


def test_report_technicians_and_order_details(client, fake_erp):
    company = _create_company(client)
    _seed_erp(fake_erp)
    techs = client.get("/api/reports/technicians", headers=_hdr(company)).json()
    assert techs["technicians"] == [{"id": "10", "name": "Ana Souza"}]

    assert client.get("/api/orders/2", headers=_hdr(company)).json()["id"] == "2"
    assert client.get("/api/orders/99", headers=_hdr(company)).status_code == 404


def test_dashboard_summary_uses_snapshot(client, fake_erp):
    company = _create_company(client)
    _seed_erp(fake_erp)
    first = client.get("/api/dashboard/summary", headers=_hdr(company))
    assert first.status_code == 200
    assert set(first.json()) >= {"openedToday", "closedToday", "totalOpen", "withTechnicians"}

    calls = len(fake_erp.calls)
    assert client.get("/api/dashboard/summary", headers=_hdr(company)).json() == first.json()
    assert len(fake_erp.calls) == calls


def test_tv_leaderboard_public_and_cached(client, fake_erp):
    company = _create_company(client)
    _seed_erp(fake_erp)
    first = client.get(f"/api/tv/{company['id']}")
    assert first.status_code == 200
    assert first.json()["companyName"] == "Fibra Norte"

    calls = len(fake_erp.calls)
    assert client.get(f"/api/tv/{company['id']}").json() == first.json()
    assert len(fake_erp.calls) == calls

    assert client.get("/api/tv/999").status_code == 404


def test_tv_database_work_runs_off_the_event_loop(client, fake_erp, monkeypatch):
    company = _create_company(client)
    _seed_erp(fake_erp)
    offloaded = []
    real_to_thread = asyncio.to_thread

    async def recording_to_thread(func, *args, **kwargs):
        offloaded.append(func.__name__)
        return await real_to_thread(func, *args, **kwargs)

    monkeypatch.setattr(tv_router.asyncio, "to_thread", recording_to_thread)
    assert client.get(f"/api/tv/{company['id']}").status_code == 200
    assert offloaded == ["company_or_404", "fresh_snapshot", "rules_for", "store_snapshot"]
