# ispscore/celery_app.py
from celery import Celery

from .config import BROKER_URL, CELERY_TIMEZONE, DASHBOARD_REFRESH_SECONDS, RESULT_BACKEND, TV_REFRESH_SECONDS

celery_app = Celery("score_tasks", broker=BROKER_URL, backend=RESULT_BACKEND, include=["ispscore.tasks"])

# Refresco automático de los paneles
celery_app.conf.beat_schedule = {
    "refresh-dashboards": {
        "task": "ispscore.tasks.refresh_dashboards",
        "schedule": DASHBOARD_REFRESH_SECONDS,
    },
    "refresh-tv-leaderboards": {
        "task": "ispscore.tasks.refresh_tv_leaderboards",
        "schedule": TV_REFRESH_SECONDS,
    },
}

celery_app.conf.timezone = CELERY_TIMEZONE
