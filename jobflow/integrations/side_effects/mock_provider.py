from __future__ import annotations

import os

from jobflow.integrations.common import DispatchResult
from jobflow.integrations.side_effects.base import SideEffectDispatcher


class MockDispatcher(SideEffectDispatcher):
    name = "mock"

    def __init__(self):
        self.notifications: list[dict] = []
        self.audits: list[dict] = []

    def _force_failure(self, text: str) -> bool:
        return "[fail]" in (text or "").lower() or (os.getenv("MOCK_DISPATCH_FORCE_FAIL") or "").strip() == "1"

    def notify(self, *, user_id, type, title, message, order_id=None) -> DispatchResult:
        if self._force_failure(message):
            return DispatchResult(ok=False, code="NOTIFY_PROVIDER_DOWN", message="mock forced failure")
        self.notifications.append(
            {"user_id": user_id, "type": type, "title": title, "message": message, "order_id": order_id}
        )
        return DispatchResult(ok=True, code="OK", message="mock_sent")

    def audit(self, *, actor_id, action, target_id, target_type="order", details=None) -> DispatchResult:
        if self._force_failure(action):
            return DispatchResult(ok=False, code="AUDIT_SINK_DOWN", message="mock forced failure")
        self.audits.append(
            {
                "actor_id": actor_id,
                "action": action,
                "target_id": target_id,
                "target_type": target_type,
                "details": dict(details or {}),
            }
        )
        return DispatchResult(ok=True, code="OK", message="mock_recorded")
