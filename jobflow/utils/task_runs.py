from __future__ import annotations

from datetime import datetime

from jobflow.extensions import db
from jobflow.models import TaskRun


def record_task_run(*, task_name: str, ok: bool, started_at: datetime, error: str | None = None) -> TaskRun | None:
    try:
        duration_ms = max(0, int((datetime.utcnow() - started_at).total_seconds() * 1000))
    except (TypeError, AttributeError):
        duration_ms = None
    try:
        row = TaskRun(
            task_name=(task_name or "unknown").strip()[:64],
            ran_at=datetime.utcnow(),
            ok=bool(ok),
            duration_ms=duration_ms,
            error=(error or "")[:1000] or None,
        )
        db.session.add(row)
        db.session.commit()
        return row
    except Exception:
        db.session.rollback()
        return None
