from celery import Celery
from kombu import Queue

from core.env import env_int, env_str

CELERY_TIMEZONE = env_str("CELERY_TIMEZONE", "UTC") or "UTC"
CELERY_DEFAULT_QUEUE = env_str("CELERY_DEFAULT_QUEUE", "default") or "default"
CELERY_BROKER_URL = env_str("CELERY_BROKER_URL", "redis://redis:6379/0")
CELERY_RESULT_BACKEND = env_str("CELERY_RESULT_BACKEND", "redis://redis:6379/1")
SWEEP_INTERVAL_MINUTES = env_int("CHECK_INTERVAL_MINUTES", 60, minimum=1)

app = Celery(
    "easyfix",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=["worker.tasks"],
)

app.conf.update(
    task_track_started=True,
    timezone=CELERY_TIMEZONE,
    task_default_queue=CELERY_DEFAULT_QUEUE,
    task_queues=(Queue(CELERY_DEFAULT_QUEUE),),
    task_routes={},
    beat_schedule={
        "listings-sweep": {
            "task": "listings.sweep",
            "schedule": float(SWEEP_INTERVAL_MINUTES * 60),
        },
    },
)
app.conf.enable_utc = str(CELERY_TIMEZONE).upper() == "UTC"
