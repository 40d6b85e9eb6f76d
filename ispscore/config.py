# ispscore/config.py
import json
import os

# Base de datos (MySQL en producción)
DATABASE_URL = os.getenv("DATABASE_URL", "mysql+pymysql://score_user:score_pass@db:3306/score_db")

# Broker y backend (Redis)
REDIS_HOST = os.getenv("REDIS_HOST", "redis")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_DB = int(os.getenv("REDIS_DB", "0"))
BROKER_URL = os.getenv("CELERY_BROKER_URL", f"redis://{REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}")
RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", f"redis://{REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}")
CELERY_TIMEZONE = os.getenv("CELERY_TIMEZONE", "America/Sao_Paulo")

# Intervalos de refresco automático (segundos)
DASHBOARD_REFRESH_SECONDS = float(os.getenv("DASHBOARD_REFRESH_SECONDS", "60"))
TV_REFRESH_SECONDS = float(os.getenv("TV_REFRESH_SECONDS", "30"))
TV_SNAPSHOT_MAX_AGE = int(os.getenv("TV_SNAPSHOT_MAX_AGE", "60"))

# ERP (API webservice/v1)
ERP_PAGE_SIZE = int(os.getenv("ERP_PAGE_SIZE", "500"))
ERP_MAX_PAGES = int(os.getenv("ERP_MAX_PAGES", "50"))
ERP_TIMEOUT = float(os.getenv("ERP_TIMEOUT", "30"))
ERP_PROXY_ALLOWED_PREFIXES = tuple(
    p.strip()
    for p in os.getenv("ERP_PROXY_ALLOWED_PREFIXES", "webservice/v1/").split(",")
    if p.strip()
)
ERP_ORDER_LOGIN_FIELD = os.getenv("ERP_ORDER_LOGIN_FIELD", "id_login")

# Resolución de nombres de clientes
CLIENT_BATCH_SIZE = int(os.getenv("CLIENT_BATCH_SIZE", "10"))
CLIENT_BATCH_DELAY = float(os.getenv("CLIENT_BATCH_DELAY", "0.1"))

# Política de puntuación (valores por defecto; cada empresa puede sobrescribirlos)
REOPEN_GAP_MINUTES = int(os.getenv("REOPEN_GAP_MINUTES", "5"))
REOPEN_PENALTY_DAYS = int(os.getenv("REOPEN_PENALTY_DAYS", "30"))
DEPARTMENT_PRECEDENCE = os.getenv("DEPARTMENT_PRECEDENCE", "group,function,sector")
RESOLVER_ORDER = os.getenv("RESOLVER_ORDER", "by_login,by_technician_id,by_name")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Usuario dueño del SaaS creado al iniciar si no existe
SAAS_OWNER_NAME = os.getenv("SAAS_OWNER_NAME", "Unity Admin")
SAAS_OWNER_EMAIL = os.getenv("SAAS_OWNER_EMAIL", "unity@unityautomacoes.com.br")
SAAS_OWNER_PASSWORD = os.getenv("SAAS_OWNER_PASSWORD", "200616")

# Credenciales de respaldo cuando la base de datos no responde
_DEFAULT_FALLBACK_LOGINS = [
    {
        "id": "0",
        "name": "Admin SaaS",
        "email": "admin@saas.com",
        "password": "admin",
        "role": "saas_owner",
    },
    {
        "id": "1",
        "name": "Suporte Unity",
        "email": "suporte@unityautomacoes.com.br",
        "password": "200616",
        "role": "super_admin",
    },
]


def _load_fallback_logins() -> list[dict]:
    raw = os.getenv("FALLBACK_LOGINS")
    if not raw:
        return _DEFAULT_FALLBACK_LOGINS
    return json.loads(raw)


FALLBACK_LOGINS = _load_fallback_logins()
