from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from jobflow.extensions import db
from jobflow.integrations.common import DispatchResult
from jobflow.integrations.side_effects.base import SideEffectDispatcher
from jobflow.models import AuditLog, Notification


def _safe_value(value: Any):
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _safe_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_safe_value(v) for v in value]
    return str(value)


class InAppDispatcher(SideEffectDispatcher):
    """Writes in-app notifications and audit rows.

    Runs after the lifecycle commit in its own transaction, so a failure here
    rolls back only the side effect.
    """

    name = "in_app"

    def notify(self, *, user_id, type, title, message, order_id=None) -> DispatchResult:
        try:
            row = Notification(
                user_id=int(user_id),
                order_id=int(order_id) if order_id is not None else None,
                type=(type or "general")[:64],
                title=(title or "")[:160],
                message=message or "",
                status="sent",
            )
            db.session.add(row)
            db.session.commit()
            return DispatchResult(ok=True, code="OK", raw={"notification_id": int(row.id)})
        except Exception as exc:
            db.session.rollback()
            return DispatchResult(ok=False, code="NOTIFY_FAILED", message=str(exc)[:300])

    def audit(self, *, actor_id, action, target_id, target_type="order", details=None) -> DispatchResult:
        try:
            row = AuditLog(
                actor_id=int(actor_id) if actor_id is not None else None,
                action=(action or "unknown")[:80],
                target_type=(target_type or "order")[:40],
                target_id=str(target_id)[:120] if target_id is not None else None,
                details_json=json.dumps(_safe_value(details or {}), separators=(",", ":")),
            )
            db.session.add(row)
            db.session.commit()
            return DispatchResult(ok=True, code="OK", raw={"audit_id": int(row.id)})
        except Exception as exc:
            db.session.rollback()
            return DispatchResult(ok=False, code="AUDIT_FAILED", message=str(exc)[:300])
