"""
Celery Application Configuration

Only used when WATCHLIST_DISPATCH_MODE=celery; the default runs watchlist
jobs as asyncio tasks inside the API process.
"""

from celery import Celery

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "priceactions",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.watchlist.*": {"queue": "watchlist"},
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"])
