"""
Celery task scheduler for the Content Audit Platform.

One task per job name runs the matching orchestrator handler; three
periodic tasks fan work out to them:

    - metrics import for every project, daily at 02:00 UTC
    - re-analysis of pages not analysed for 7 days, Sundays at 03:00 UTC
    - alert evaluation for every project, every 6 hours

Usage:
    Start the worker:
        celery -A content_audit.scheduler.celery_app worker \
            --loglevel=info -Q alerts,pipeline,imports

    Start the beat scheduler:
        celery -A content_audit.scheduler.celery_app beat \
            --loglevel=info

    Start both (development only):
        celery -A content_audit.scheduler.celery_app worker \
            --beat --loglevel=info -Q alerts,pipeline,imports
"""

import asyncio
import traceback

from celery import Celery
from celery.schedules import crontab, timedelta
from celery.signals import worker_process_init
from celery.utils.time import get_exponential_backoff_interval
from loguru import logger

from content_audit.config.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    LOG_FILE,
    LOG_LEVEL,
    SCHEDULE,
)
from content_audit.errors import ContentAuditError
from content_audit.scheduler.jobs import task_name

# ---------------------------------------------------------------------------
# Celery application
# ---------------------------------------------------------------------------

RETRY_BACKOFF_BASE = 60
RETRY_BACKOFF_MAX = 600

app = Celery("content_audit")

app.conf.update(
    # Broker & backend
    broker_url=CELERY_BROKER_URL,
    result_backend=CELERY_RESULT_BACKEND,

    # Serialization
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Retry policy -- exponential backoff defaults for all tasks
    task_default_retry_delay=RETRY_BACKOFF_BASE,
    task_max_retries=3,
    task_acks_late=True,
    worker_prefetch_multiplier=1,

    # Priority queues: alerts > pipeline > imports
    task_queues={
        "alerts": {
            "exchange": "alerts",
            "routing_key": "alerts",
            "queue_arguments": {"x-max-priority": 10},
        },
        "pipeline": {
            "exchange": "pipeline",
            "routing_key": "pipeline",
            "queue_arguments": {"x-max-priority": 5},
        },
        "imports": {
            "exchange": "imports",
            "routing_key": "imports",
            "queue_arguments": {"x-max-priority": 1},
        },
    },
    task_default_queue="pipeline",

    # Route tasks to queues
    task_routes={
        task_name("evaluate-page-changes"): {"queue": "alerts"},
        task_name("evaluate-project-changes"): {"queue": "alerts"},
        task_name("score-page"): {"queue": "pipeline"},
        task_name("analyze-keyword"): {"queue": "pipeline"},
        task_name("generate-suggestions"): {"queue": "pipeline"},
        task_name("import-pages"): {"queue": "imports"},
        "content_audit.schedule_metrics_import": {"queue": "imports"},
        "content_audit.schedule_stale_reanalysis": {"queue": "pipeline"},
        "content_audit.schedule_alert_evaluation": {"queue": "alerts"},
    },

    # Result expiration -- keep results for 24 hours
    result_expires=86400,
)

# ---------------------------------------------------------------------------
# Beat schedule -- automated recurring tasks
# ---------------------------------------------------------------------------

app.conf.beat_schedule = {
    # Metrics import -- every day at 2:00 AM UTC
    "import-pages-daily": {
        "task": "content_audit.schedule_metrics_import",
        "schedule": crontab(hour=2, minute=0),
        "options": {"queue": "imports", "priority": 1},
    },

    # Stale page re-analysis -- every Sunday at 3:00 AM UTC
    "re-analyze-stale-pages-weekly": {
        "task": "content_audit.schedule_stale_reanalysis",
        "schedule": crontab(hour=3, minute=0, day_of_week="sunday"),
        "options": {"queue": "pipeline", "priority": 5},
    },

    # Alert evaluation -- every 6 hours
    "evaluate-alerts-periodic": {
        "task": "content_audit.schedule_alert_evaluation",
        "schedule": timedelta(hours=6),
        "options": {"queue": "alerts", "priority": 10},
    },
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@worker_process_init.connect
def _configure_worker_logging(**kwargs):
    logger.add(LOG_FILE, rotation="10 MB", level=LOG_LEVEL, retention="30 days")


def _store_task_result(name: str, status: str, result_data: dict) -> None:
    """Log a task outcome; failures also become a ``task_failure`` alert."""
    from content_audit.database.models import Alert, SessionLocal
    session = SessionLocal()
    try:
        if status == "success":
            logger.info(
                "Task '{}' completed successfully | result_keys={}",
                name,
                list(result_data.keys()) if isinstance(result_data, dict) else "N/A",
            )
        else:
            alert = Alert(
                alert_type="task_failure",
                severity="critical",
                title=f"Task failed: {name}",
                message=result_data.get("error", "Unknown error"),
                data=result_data,
            )
            session.add(alert)
            session.commit()
            logger.error("Task '{}' FAILED -- alert created | error={}", name, result_data.get("error"))
    except Exception:
        session.rollback()
        logger.exception("Failed to store task result for '{}'", name)
    finally:
        session.close()


def _retry_countdown(task) -> int:
    """Exponential backoff with full jitter: 60s base, capped at 10 minutes."""
    return get_exponential_backoff_interval(
        factor=RETRY_BACKOFF_BASE,
        retries=task.request.retries,
        maximum=RETRY_BACKOFF_MAX,
        full_jitter=True,
    )


def _queue():
    from content_audit.scheduler.queue import CeleryJobQueue
    return CeleryJobQueue(app)


def _run_job(task, job_name: str, payload: dict) -> dict:
    """Run one job through the orchestrator inside a fresh event loop.

    Retryable errors go back to Celery with backoff; any other platform
    error fails the job for good.
    """
    from content_audit.scheduler.orchestrator import build_default_orchestrator

    logger.info("Starting task: {} | payload={}", job_name, payload)
    try:
        orchestrator = build_default_orchestrator(_queue())
        result = asyncio.run(orchestrator.handle(job_name, payload))
        _store_task_result(job_name, "success", result or {})
        return {"status": "success", "task": job_name, "result": result}
    except ContentAuditError as exc:
        if not exc.retryable:
            logger.error("Task '{}' failed permanently: {}", job_name, exc)
            _store_task_result(job_name, "failure", {
                "error": str(exc),
                "error_type": type(exc).__name__,
                "payload": payload,
            })
            return {"status": "failed", "task": job_name, "error": str(exc)}

        logger.warning(
            "Task '{}' hit a retryable error (attempt {}): {}", job_name, task.request.retries + 1, exc
        )
        if task.request.retries >= task.max_retries:
            _store_task_result(job_name, "failure", {
                "error": str(exc),
                "error_type": type(exc).__name__,
                "payload": payload,
            })
        raise task.retry(exc=exc, countdown=_retry_countdown(task))
    except Exception as exc:
        logger.exception("Task '{}' raised an exception", job_name)
        if task.request.retries >= task.max_retries:
            _store_task_result(job_name, "failure", {
                "error": str(exc),
                "traceback": traceback.format_exc(),
                "payload": payload,
            })
        raise task.retry(exc=exc, countdown=_retry_countdown(task))


def _run_fan_out(task, name: str, method: str, *args) -> dict:
    from content_audit.modules.page_audit import PageAuditService

    logger.info("Starting scheduled task: {}", name)
    try:
        queued = getattr(PageAuditService(_queue()), method)(*args)
        result = {"queued": queued}
        _store_task_result(name, "success", result)
        return {"status": "success", "task": name, "result": result}
    except Exception as exc:
        logger.exception("Task '{}' raised an exception", name)
        if task.request.retries >= task.max_retries:
            _store_task_result(name, "failure", {
                "error": str(exc),
                "traceback": traceback.format_exc(),
            })
        raise task.retry(exc=exc, countdown=_retry_countdown(task))


# ---------------------------------------------------------------------------
# Job tasks
# ---------------------------------------------------------------------------

_RETRY_POLICY = dict(
    bind=True,
    max_retries=3,
    default_retry_delay=RETRY_BACKOFF_BASE,
)


@app.task(name=task_name("score-page"), **_RETRY_POLICY)
def score_page(self, payload):
    """Score a page against its guidelines, deferring to analysis when there are none."""
    return _run_job(self, "score-page", payload)


@app.task(name=task_name("analyze-keyword"), **_RETRY_POLICY)
def analyze_keyword(self, payload):
    """Build the competitor guideline profile for a page, then re-score it."""
    return _run_job(self, "analyze-keyword", payload)


@app.task(name=task_name("import-pages"), **_RETRY_POLICY)
def import_pages(self, payload):
    """Import top pages and 30-day metrics from Search Console."""
    return _run_job(self, "import-pages", payload)


@app.task(name=task_name("evaluate-page-changes"), **_RETRY_POLICY)
def evaluate_page_changes(self, payload):
    return _run_job(self, "evaluate-page-changes", payload)


@app.task(name=task_name("evaluate-project-changes"), **_RETRY_POLICY)
def evaluate_project_changes(self, payload):
    return _run_job(self, "evaluate-project-changes", payload)


@app.task(name=task_name("generate-suggestions"), **_RETRY_POLICY)
def generate_suggestions(self, payload):
    """Regenerate auto-optimize changes and internal link suggestions."""
    return _run_job(self, "generate-suggestions", payload)


# ---------------------------------------------------------------------------
# Periodic tasks
# ---------------------------------------------------------------------------

@app.task(name="content_audit.schedule_metrics_import", **_RETRY_POLICY)
def schedule_metrics_import(self):
    """Queue an import for every project."""
    return _run_fan_out(self, "schedule_metrics_import", "queue_metrics_import")


@app.task(name="content_audit.schedule_stale_reanalysis", **_RETRY_POLICY)
def schedule_stale_reanalysis(self):
    """Queue re-scoring for the oldest stale pages."""
    return _run_fan_out(
        self,
        "schedule_stale_reanalysis",
        "queue_stale_pages",
        SCHEDULE["stale_after_days"],
        SCHEDULE["re_analysis_batch"],
    )


@app.task(name="content_audit.schedule_alert_evaluation", **_RETRY_POLICY)
def schedule_alert_evaluation(self):
    """Queue alert evaluation for every project."""
    return _run_fan_out(self, "schedule_alert_evaluation", "queue_alert_evaluation")
