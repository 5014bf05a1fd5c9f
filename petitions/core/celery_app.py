"""
Celery application configuration.

Redis is used as both the message broker and result backend. Workers only run
mail delivery; the signing pipeline itself never waits on a task.
"""

from celery import Celery
from petitions.core.config import settings

celery_app = Celery(
    "epetitions_worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task behavior
    task_track_started=True,
    task_time_limit=120,
    task_soft_time_limit=90,

    # Result backend
    result_expires=3600,

    # Worker behavior
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=200,
)

# Auto-discover tasks from the petitions.tasks package
celery_app.autodiscover_tasks(['petitions'])
