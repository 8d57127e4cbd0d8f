from datetime import timedelta

from celery import Celery

from sandcastle.core.config import get_settings
from sandcastle.core.database import init_engine
from sandcastle.core.logging import set_log_level

settings = get_settings()
init_engine(settings)

celery_app = Celery(
    "worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

# Autodiscover task modules
celery_app.autodiscover_tasks(["sandcastle.tasks"])

# Force import so Celery registers tasks
import sandcastle.tasks.gmail_import  # noqa: E402,F401

set_log_level(settings.LOG_LEVEL)


celery_app.conf.beat_schedule = {

    # --------------------------------------------------------
    # Recent-window top-up for every connected account
    # --------------------------------------------------------
    "gmail-recent-import": {
        "task": "sandcastle.tasks.gmail_import.import_all_connected_users",
        "schedule": timedelta(minutes=settings.RECENT_IMPORT_INTERVAL_MINUTES),
        "args": ("recent",),
    },

}
