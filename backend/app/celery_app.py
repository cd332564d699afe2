from celery import Celery

from app.config import settings

celery_app = Celery(
    "storefront",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["app.tasks.notification_tasks"],
)

celery_app.conf.task_ignore_result = True
