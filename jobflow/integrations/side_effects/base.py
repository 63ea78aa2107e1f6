from __future__ import annotations

from dataclasses import dataclass, field

from jobflow.integrations.common import DispatchResult

KIND_NOTIFY = "notify"
KIND_AUDIT = "audit"


@dataclass(frozen=True)
class SideEffect:
    """A post-commit request for the dispatcher.

    ``notify`` payloads carry ``user_id``, ``type``, ``title``, ``message`` and
    optionally ``order_id``. ``audit`` payloads carry ``actor_id``, ``action``,
    ``target_id``, ``target_type`` and ``details``.
    """

    kind: str
    payload: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "payload": dict(self.payload)}

    @classmethod
    def from_dict(cls, data: dict) -> "SideEffect":
        return cls(kind=str((data or {}).get("kind") or ""), payload=dict((data or {}).get("payload") or {}))

    @classmethod
    def notification(cls, *, user_id: int, type: str, title: str, message: str, order_id: int | None = None):
        return cls(
            KIND_NOTIFY,
            {"user_id": int(user_id), "type": type, "title": title, "message": message, "order_id": order_id},
        )

    @classmethod
    def audit_entry(
        cls,
        *,
        actor_id: int | None,
        action: str,
        target_id,
        target_type: str = "order",
        details: dict | None = None,
    ):
        return cls(
            KIND_AUDIT,
            {
                "actor_id": actor_id,
                "action": action,
                "target_id": str(target_id) if target_id is not None else None,
                "target_type": target_type,
                "details": dict(details or {}),
            },
        )


class SideEffectDispatcher:
    name = "unknown"

    def notify(self, *, user_id: int, type: str, title: str, message: str, order_id: int | None = None) -> DispatchResult:
        raise NotImplementedError

    def audit(
        self,
        *,
        actor_id: int | None,
        action: str,
        target_id: str | None,
        target_type: str = "order",
        details: dict | None = None,
    ) -> DispatchResult:
        raise NotImplementedError

    def send(self, effect: SideEffect) -> DispatchResult:
        data = effect.payload or {}
        if effect.kind == KIND_NOTIFY:
            return self.notify(
                user_id=int(data.get("user_id")),
                type=str(data.get("type") or "general"),
                title=str(data.get("title") or ""),
                message=str(data.get("message") or ""),
                order_id=data.get("order_id"),
            )
        if effect.kind == KIND_AUDIT:
            return self.audit(
                actor_id=data.get("actor_id"),
                action=str(data.get("action") or ""),
                target_id=data.get("target_id"),
                target_type=str(data.get("target_type") or "order"),
                details=data.get("details") or {},
            )
        return DispatchResult(ok=False, code="UNKNOWN_EFFECT", message=f"unknown side effect kind {effect.kind!r}")
