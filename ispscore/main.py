# ispscore/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from .config import LOG_LEVEL, SAAS_OWNER_EMAIL, SAAS_OWNER_NAME, SAAS_OWNER_PASSWORD
from .database import Base, engine, session_scope
from .fetching import ReportRunRegistry
from .routers import auth, companies, proxy, reports, saas, score_rules, tv, users
from .security import hash_password
from . import models

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)


def seed_saas_owner() -> None:
    """Crea el usuario dueño del SaaS si todavía no existe."""
    with session_scope() as session:
        exists = session.scalars(select(models.User).where(models.User.email == SAAS_OWNER_EMAIL)).first()
        if exists:
            return
        session.add(
            models.User(
                name=SAAS_OWNER_NAME,
                email=SAAS_OWNER_EMAIL,
                password=hash_password(SAAS_OWNER_PASSWORD),
                role="saas_owner",
            )
        )
        logger.info("[startup] usuario dueño del SaaS creado email=%s", SAAS_OWNER_EMAIL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Crear tablas al inicio (usa Alembic para producción)
    try:
        Base.metadata.create_all(bind=engine)
        seed_saas_owner()
    except OperationalError as e:
        # sin base el login sigue respondiendo con las credenciales de respaldo
        logger.exception("[startup] base de datos no disponible: %s", e)
    yield


app = FastAPI(title="ISP Score API", version="0.1.0", lifespan=lifespan)
app.state.report_runs = ReportRunRegistry()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health", tags=["health"])
def health():
    return {"status": "ok"}


app.include_router(auth.router)
app.include_router(score_rules.router)
app.include_router(companies.router)
app.include_router(users.router)
app.include_router(saas.router)
app.include_router(proxy.router)
app.include_router(reports.router)
app.include_router(tv.router)
