from __future__ import annotations

import logging
import os
from typing import Iterable

from flask import current_app, has_app_context

from jobflow.integrations.side_effects.base import SideEffect, SideEffectDispatcher
from jobflow.integrations.side_effects.factory import build_dispatcher
from jobflow.utils.observability import get_request_id

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in ("1", "true", "yes", "on")


def async_dispatch_enabled() -> bool:
    if has_app_context() and "SIDE_EFFECTS_ASYNC" in current_app.config:
        return bool(current_app.config.get("SIDE_EFFECTS_ASYNC"))
    return _env_bool("SIDE_EFFECTS_ASYNC", False)


def get_dispatcher() -> SideEffectDispatcher:
    if has_app_context():
        configured = current_app.config.get("SIDE_EFFECT_DISPATCHER")
        if isinstance(configured, SideEffectDispatcher):
            return configured
    return build_dispatcher()


def dispatch_side_effects(effects: Iterable[SideEffect], *, dispatcher: SideEffectDispatcher | None = None) -> dict:
    """Deliver each effect best-effort; never raises."""
    target = dispatcher or get_dispatcher()
    sent = 0
    failures = []
    for effect in effects or ():
        try:
            result = target.send(effect)
        except Exception as exc:
            logger.exception("side_effect_dispatch_error kind=%s provider=%s", effect.kind, target.name)
            failures.append({"effect": effect.to_dict(), "code": "DISPATCH_EXCEPTION", "message": str(exc)[:300]})
            continue
        if result.ok:
            sent += 1
            continue
        logger.warning(
            "side_effect_dispatch_failed kind=%s provider=%s code=%s message=%s",
            effect.kind,
            target.name,
            result.code,
            result.message,
        )
        failures.append({"effect": effect.to_dict(), "code": result.code, "message": result.message})
    return {
        "ok": not failures,
        "mode": "sync",
        "provider": target.name,
        "sent": sent,
        "failed": len(failures),
        "failures": failures,
    }


def retry_failed_enabled() -> bool:
    if has_app_context() and "SIDE_EFFECTS_RETRY_FAILED" in current_app.config:
        return bool(current_app.config.get("SIDE_EFFECTS_RETRY_FAILED"))
    return _env_bool("SIDE_EFFECTS_RETRY_FAILED", True)


def _requeue_failures(summary: dict) -> dict:
    """Send the failed effects of an inline dispatch to the retrying task."""
    failed = [f["effect"] for f in summary.get("failures") or []]
    summary["retry_queued"] = 0
    if not failed or not retry_failed_enabled():
        return summary
    try:
        from jobflow.tasks.lifecycle_tasks import dispatch_side_effects_task, retry_countdown

        async_result = dispatch_side_effects_task.apply_async(
            kwargs={"effects": failed, "trace_id": get_request_id()},
            countdown=retry_countdown(0),
        )
    except Exception as exc:
        logger.error("side_effect_retry_enqueue_failed count=%s err=%s", len(failed), exc)
        return summary
    summary["retry_queued"] = len(failed)
    summary["retry_task_id"] = str(getattr(async_result, "id", "") or "")
    return summary


def dispatch_after_commit(effects: list[SideEffect], *, dispatcher: SideEffectDispatcher | None = None) -> dict:
    """Hand the effects of a committed transition to the dispatcher.

    An explicit dispatcher always runs inline and its failures are only
    reported. Otherwise, when async dispatch is enabled the batch goes to
    Celery; if enqueueing fails it runs inline. Effects that fail inline on
    the configured dispatcher are queued for retry.
    """
    batch = list(effects or [])
    if not batch:
        return {"ok": True, "mode": "noop", "sent": 0, "failed": 0, "failures": []}
    broker_down = False
    if dispatcher is None and async_dispatch_enabled():
        try:
            from jobflow.tasks.lifecycle_tasks import dispatch_side_effects_task

            async_result = dispatch_side_effects_task.delay(
                effects=[e.to_dict() for e in batch], trace_id=get_request_id()
            )
            return {
                "ok": True,
                "mode": "async",
                "task_id": str(getattr(async_result, "id", "") or ""),
                "queued": len(batch),
                "failed": 0,
                "failures": [],
            }
        except Exception as exc:
            broker_down = True
            logger.warning("side_effect_enqueue_failed count=%s err=%s", len(batch), exc)
    summary = dispatch_side_effects(batch, dispatcher=dispatcher)
    if dispatcher is not None or not summary["failed"]:
        return summary
    if broker_down:
        logger.error("side_effects_dropped count=%s reason=broker_unavailable", summary["failed"])
        summary["retry_queued"] = 0
        return summary
    return _requeue_failures(summary)
