"""Celery application configuration."""

from celery import Celery, signals

from hlsvault.core.config import settings
from hlsvault.core.logging import setup_logging
from hlsvault.core.metrics import set_app_info
from hlsvault.core.tracing import setup_tracing, shutdown_tracing

celery_app = Celery(
    "hlsvault",
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL,
    backend=settings.CELERY_RESULT_BACKEND or settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.VIDEO_JOB_TIMEOUT,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.autodiscover_tasks(["hlsvault.modules.transcoding"])


@signals.setup_logging.connect
def configure_worker_logging(**kwargs) -> None:
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)


@signals.worker_process_init.connect
def configure_worker_telemetry(**kwargs) -> None:
    setup_tracing(
        service_name=settings.PROJECT_NAME,
        service_version=settings.VERSION,
        environment=settings.ENVIRONMENT,
        otlp_endpoint=settings.OTLP_ENDPOINT,
    )
    set_app_info(settings.VERSION, settings.ENVIRONMENT)


@signals.worker_process_shutdown.connect
def flush_worker_telemetry(**kwargs) -> None:
    shutdown_tracing()
