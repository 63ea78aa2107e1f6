from __future__ import annotations

import json
import time
from datetime import datetime

from celery import shared_task
from flask import current_app

from jobflow.integrations.side_effects.base import SideEffect


def _task_log(task_name: str, *, status: str, started_at: float, trace_id: str = "", **extra):
    duration_ms = int(max(0.0, (time.perf_counter() - float(started_at))) * 1000.0)
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": duration_ms,
        "trace_id": str(trace_id or ""),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra or {})
    current_app.logger.info(json.dumps(payload, default=str))


def retry_countdown(retries: int) -> int:
    return int(min(900, max(5, 5 * (2 ** int(max(0, retries))))))


@shared_task(
    bind=True,
    name="jobflow.tasks.lifecycle_tasks.dispatch_side_effects",
    max_retries=5,
)
def dispatch_side_effects_task(self, *, effects: list, trace_id: str = ""):
    """Deliver a committed transition's side effects, retrying only the failures."""
    from jobflow.services.dispatch_service import dispatch_side_effects

    started = time.perf_counter()
    batch = [SideEffect.from_dict(item) for item in (effects or [])]
    result = dispatch_side_effects(batch)
    if result.get("ok"):
        _task_log(
            "dispatch_side_effects",
            status="ok",
            started_at=started,
            trace_id=trace_id,
            sent=result.get("sent"),
        )
        return result

    remaining = [f["effect"] for f in result.get("failures") or []]
    if int(self.request.retries or 0) < int(self.max_retries or 0):
        countdown = retry_countdown(int(self.request.retries or 0))
        _task_log(
            "dispatch_side_effects",
            status="retrying",
            started_at=started,
            trace_id=trace_id,
            sent=result.get("sent"),
            failed=len(remaining),
            countdown=countdown,
        )
        raise self.retry(
            exc=RuntimeError(f"{len(remaining)} side effect(s) failed"),
            countdown=countdown,
            kwargs={"effects": remaining, "trace_id": trace_id},
        )
    _task_log(
        "dispatch_side_effects",
        status="failed",
        started_at=started,
        trace_id=trace_id,
        failed=len(remaining),
        failures=result.get("failures"),
    )
    return result


@shared_task(
    bind=True,
    name="jobflow.tasks.lifecycle_tasks.run_balance_reconciliation",
    max_retries=3,
)
def run_balance_reconciliation(self, *, persist: bool = True, trace_id: str = ""):
    from jobflow.services.reconciliation_service import persist_report, recompute_balances
    from jobflow.utils.task_runs import record_task_run

    started = time.perf_counter()
    started_at = datetime.utcnow()
    try:
        summary = recompute_balances(tolerance_minor=int(current_app.config.get("RECONCILIATION_TOLERANCE_MINOR", 0)))
        if persist:
            summary["report_id"] = int(persist_report(summary).id)
        drift = int(summary.get("drift_count") or 0)
        record_task_run(
            task_name="run_balance_reconciliation",
            ok=drift == 0,
            started_at=started_at,
            error=f"drift_count={drift}" if drift else None,
        )
        _task_log(
            "run_balance_reconciliation",
            status="ok" if drift == 0 else "drift",
            started_at=started,
            trace_id=trace_id,
            balance_count=summary.get("balance_count"),
            drift_count=drift,
        )
        return summary
    except Exception as exc:
        record_task_run(task_name="run_balance_reconciliation", ok=False, started_at=started_at, error=str(exc))
        if int(self.request.retries or 0) < int(self.max_retries or 0):
            countdown = retry_countdown(int(self.request.retries or 0))
            _task_log(
                "run_balance_reconciliation",
                status="retrying",
                started_at=started,
                trace_id=trace_id,
                detail=str(exc),
                countdown=countdown,
            )
            raise self.retry(exc=exc, countdown=countdown)
        _task_log(
            "run_balance_reconciliation",
            status="failed",
            started_at=started,
            trace_id=trace_id,
            detail=str(exc),
        )
        raise
