from __future__ import annotations

import json
import os
from datetime import datetime

from celery import Celery
from celery.signals import task_failure, task_retry

LIFECYCLE_TASKS = "jobflow.tasks.lifecycle_tasks"


def _setting(flask_app, *names: str, default: str = "") -> str:
    for name in names:
        value = str(flask_app.config.get(name) or os.getenv(name) or "").strip()
        if value:
            return value
    return default


def _reconciliation_interval_seconds(flask_app) -> float:
    try:
        value = int(_setting(flask_app, "RECONCILIATION_INTERVAL_SECONDS", default="3600"))
    except ValueError:
        value = 3600
    return float(max(60, value))


def _bind_task_observers(flask_app) -> None:
    def _emit(level: str, event: str, task_name: str, task_id, kwargs, **extra) -> None:
        payload = {
            "event": event,
            "task_name": task_name,
            "task_id": str(task_id or ""),
            "trace_id": str((kwargs or {}).get("trace_id") or "") if isinstance(kwargs, dict) else "",
            "timestamp": datetime.utcnow().isoformat(),
        }
        payload.update(extra)
        getattr(flask_app.logger, level)(json.dumps(payload, default=str))

    @task_failure.connect(weak=False, dispatch_uid="jobflow.task_failure")
    def _on_task_failure(sender=None, task_id=None, exception=None, kwargs=None, **_):
        _emit("error", "celery_task_failure", getattr(sender, "name", ""), task_id, kwargs, exception=str(exception or ""))

    @task_retry.connect(weak=False, dispatch_uid="jobflow.task_retry")
    def _on_task_retry(request=None, reason=None, **_):
        _emit(
            "warning",
            "celery_task_retry",
            str(getattr(request, "task", "") or ""),
            getattr(request, "id", ""),
            getattr(request, "kwargs", None),
            reason=str(reason or ""),
            retry_count=int(getattr(request, "retries", 0) or 0),
        )


def create_celery_app(flask_app) -> Celery:
    """Celery bound to the Flask app: effect delivery plus the periodic ledger check."""
    broker = _setting(flask_app, "CELERY_BROKER_URL", "REDIS_URL", default="redis://localhost:6379/0")
    celery = Celery(
        flask_app.import_name,
        broker=broker,
        backend=_setting(flask_app, "CELERY_RESULT_BACKEND", "REDIS_URL", default=broker),
    )
    celery.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        # Side effects are at-least-once; ack after the handler finishes.
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        broker_connection_retry_on_startup=True,
        beat_schedule={
            "balance-reconciliation": {
                "task": f"{LIFECYCLE_TASKS}.run_balance_reconciliation",
                "schedule": _reconciliation_interval_seconds(flask_app),
            },
        },
    )
    if flask_app.config.get("CELERY_TASK_ALWAYS_EAGER"):
        celery.conf.update(task_always_eager=True, task_eager_propagates=False)

    class FlaskContextTask(celery.Task):
        def __call__(self, *args, **kwargs):
            with flask_app.app_context():
                return self.run(*args, **kwargs)

    celery.Task = FlaskContextTask
    celery.set_default()
    celery.autodiscover_tasks(["jobflow.tasks"], related_name="lifecycle_tasks")
    _bind_task_observers(flask_app)
    return celery
