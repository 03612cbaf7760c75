"""
Celery Application Factory

Configures the Celery app for async document processing.
Broker: RabbitMQ (amqp://) in production; Redis (redis://) for local dev.
Result backend: Redis (optional; processing state is tracked in PostgreSQL).

Queue topology:
  documents.process   document processing pipeline
  documents.requeue   beat task re-publishing stale pending documents
  system.health       internal health-check tasks

Task payloads carry only the document id; workers load everything else
from the database and storage.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

from logbook.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

DOCUMENTS_EXCHANGE = Exchange("documents", type="direct", durable=True)

TASK_QUEUES = (
    Queue(
        "documents.process",
        exchange=DOCUMENTS_EXCHANGE,
        routing_key="documents.process",
        durable=True,
    ),
    Queue(
        "documents.requeue",
        exchange=DOCUMENTS_EXCHANGE,
        routing_key="documents.requeue",
        durable=True,
    ),
    Queue(
        "system.health",
        Exchange("system", type="direct"),
        routing_key="system.health",
        durable=True,
    ),
)

TASK_ROUTES = {
    "logbook.workers.tasks.process_document":        {"queue": "documents.process"},
    "logbook.workers.tasks.requeue_stale_documents": {"queue": "documents.requeue"},
    "logbook.workers.tasks.health_check":            {"queue": "system.health"},
}

# Documents left pending this long are assumed to have missed their task
STALE_PENDING_SECONDS = 300

# ---------------------------------------------------------------------------
# Celery app factory
# ---------------------------------------------------------------------------

def create_celery_app() -> Celery:
    app = Celery("logbook")

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
        task_default_queue="documents.process",
        task_default_exchange="documents",
        task_default_routing_key="documents.process",

        # --- Reliability ---
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,

        # --- Timeouts (LLM stages on long documents are slow) ---
        task_soft_time_limit=900,
        task_time_limit=960,

        # --- Result TTL ---
        result_expires=3600,

        # --- Timezone ---
        timezone="UTC",
        enable_utc=True,

        # --- Beat schedule (requeue scanner) ---
        beat_schedule={
            "requeue-stale-documents-every-60s": {
                "task":     "logbook.workers.tasks.requeue_stale_documents",
                "schedule": 60,
                "options":  {"queue": "documents.requeue"},
            },
        },

        # --- Worker ---
        worker_max_tasks_per_child=200,
    )

    app.autodiscover_tasks(["logbook.workers"])

    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals: structured task logging
# ---------------------------------------------------------------------------

@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s doc=%s",
        task_id, task.name, (kwargs or {}).get("document_id", "-"),
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s doc=%s",
        task_id, task.name, state, (kwargs or {}).get("document_id", "-"),
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s doc=%s error=%s",
        task_id, (kwargs or {}).get("document_id", "-"), exception,
    )
