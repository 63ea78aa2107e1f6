from __future__ import annotations

import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

REQUIRED_TASKS = (
    "jobflow.tasks.lifecycle_tasks.dispatch_side_effects",
    "jobflow.tasks.lifecycle_tasks.run_balance_reconciliation",
)


def main() -> int:
    try:
        from celery_app import celery

        import jobflow.tasks.lifecycle_tasks  # noqa: F401

        missing = [name for name in REQUIRED_TASKS if name not in celery.tasks]
        if missing:
            print(f"error: tasks not registered: {', '.join(missing)}", file=sys.stderr)
            return 1
        print(f"ok: celery_app:celery broker={celery.conf.broker_url} tasks={len(REQUIRED_TASKS)}")
        return 0
    except Exception as exc:
        print(f"error: failed to import celery_app:celery -> {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
