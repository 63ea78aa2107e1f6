from __future__ import annotations

import os

from jobflow.integrations.common import DispatchResult, IntegrationDisabledError, IntegrationMisconfiguredError
from jobflow.integrations.side_effects.base import SideEffectDispatcher
from jobflow.integrations.side_effects.in_app_provider import InAppDispatcher
from jobflow.integrations.side_effects.mock_provider import MockDispatcher


class DisabledDispatcher(SideEffectDispatcher):
    name = "disabled"

    def notify(self, **kwargs) -> DispatchResult:
        return DispatchResult(ok=True, code="DISABLED")

    def audit(self, **kwargs) -> DispatchResult:
        return DispatchResult(ok=True, code="DISABLED")


def side_effects_mode(mode: str | None = None) -> str:
    return (mode or os.getenv("SIDE_EFFECTS_MODE") or "in_app").strip().lower()


def build_dispatcher(mode: str | None = None, *, strict: bool = False) -> SideEffectDispatcher:
    resolved = side_effects_mode(mode)
    if resolved == "in_app":
        return InAppDispatcher()
    if resolved == "mock":
        return MockDispatcher()
    if resolved == "disabled":
        if strict:
            raise IntegrationDisabledError("INTEGRATION_DISABLED:side_effects")
        return DisabledDispatcher()
    raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:unknown SIDE_EFFECTS_MODE {resolved!r}")
