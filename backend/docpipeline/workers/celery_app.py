"""
Celery Application Factory

Broker: Redis (or RabbitMQ via amqp://), from CELERY_BROKER_URL.
Result backend: Redis; results are informational only, document state lives
in PostgreSQL.

Queue topology:
  documents.ingest   — plain ingestion (extract → chunk → embed → upsert)
  documents.review   — ingestion + question scoring for a scoring session
  system.health      — internal health-check tasks

Job payloads carry the blob key, never the file bytes.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import after_setup_logger, task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

from docpipeline.core.config import settings
from docpipeline.core.logging import configure_logging

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

DOCUMENTS_EXCHANGE = Exchange("documents", type="direct", durable=True)

INGEST_QUEUE = "documents.ingest"
REVIEW_QUEUE = "documents.review"
HEALTH_QUEUE = "system.health"

TASK_QUEUES = (
    Queue(INGEST_QUEUE, exchange=DOCUMENTS_EXCHANGE, routing_key=INGEST_QUEUE, durable=True),
    Queue(REVIEW_QUEUE, exchange=DOCUMENTS_EXCHANGE, routing_key=REVIEW_QUEUE, durable=True),
    Queue(
        HEALTH_QUEUE,
        Exchange("system", type="direct"),
        routing_key=HEALTH_QUEUE,
        durable=True,
    ),
)

TASK_ROUTES = {
    "docpipeline.workers.tasks.process_document":        {"queue": INGEST_QUEUE},
    "docpipeline.workers.tasks.process_review_document": {"queue": REVIEW_QUEUE},
    "docpipeline.workers.tasks.health_check":            {"queue": HEALTH_QUEUE},
}

# ---------------------------------------------------------------------------
# Celery app factory
# ---------------------------------------------------------------------------

def create_celery_app() -> Celery:
    app = Celery("docpipeline")

    app.conf.update(
        # --- Broker / Backend ---
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        # --- Serialization (reject non-JSON messages) ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue=INGEST_QUEUE,
        task_default_exchange="documents",
        task_default_routing_key=INGEST_QUEUE,

        # --- Reliability ---
        task_acks_late=True,         # ack only after the job finishes
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,

        # --- Pool ---
        worker_concurrency=settings.worker_concurrency,
        worker_max_tasks_per_child=200,   # recycle children to cap memory growth

        # --- Retries ---
        task_default_retry_delay=30,

        # --- Timeouts ---
        task_soft_time_limit=settings.job_soft_time_limit,
        task_time_limit=settings.job_time_limit,

        # --- Results ---
        result_expires=3600,

        timezone="UTC",
        enable_utc=True,
    )

    app.autodiscover_tasks(["docpipeline.workers"])

    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals — logging
# ---------------------------------------------------------------------------

def _doc_id(kwargs: dict | None) -> str:
    job = (kwargs or {}).get("job") or {}
    return job.get("docId", "?") if isinstance(job, dict) else "?"


@after_setup_logger.connect
def on_setup_logger(logger, *args, **kwargs):
    configure_logging(logger)


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s doc=%s",
        task_id, task.name, _doc_id(kwargs),
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s doc=%s",
        task_id, task.name, state, _doc_id(kwargs),
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s doc=%s error=%s",
        task_id, _doc_id(kwargs), exception,
    )
