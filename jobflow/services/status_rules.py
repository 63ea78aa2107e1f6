from __future__ import annotations

from dataclasses import dataclass


class OrderStatus:
    PENDING = "pending"
    ACCEPTED = "accepted"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    EDITING = "editing"
    DELIVERED = "delivered"
    REVISION = "revision"
    APPROVED = "approved"
    PAID = "paid"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ON_HOLD = "on_hold"

    ALL = (
        PENDING,
        ACCEPTED,
        ASSIGNED,
        IN_PROGRESS,
        EDITING,
        DELIVERED,
        REVISION,
        APPROVED,
        PAID,
        COMPLETED,
        CANCELLED,
        ON_HOLD,
    )
    INITIAL = PENDING
    TERMINAL = frozenset({COMPLETED, CANCELLED})


class ActorRole:
    CLIENT = "client"
    WRITER = "writer"
    MANAGER = "manager"
    EDITOR = "editor"
    ADMIN = "admin"
    SYSTEM = "system"

    ALL = (CLIENT, WRITER, MANAGER, EDITOR, ADMIN, SYSTEM)


class TransitionCode:
    INVALID_TRANSITION = "INVALID_TRANSITION"
    ALREADY_SUBMITTED = "ALREADY_SUBMITTED"
    ALREADY_PAID = "ALREADY_PAID"
    FORBIDDEN_ROLE = "FORBIDDEN_ROLE"
    WRITER_REQUIRED = "WRITER_REQUIRED"
    REVISION_NOTES_REQUIRED = "REVISION_NOTES_REQUIRED"


_S = OrderStatus
_R = ActorRole

_STAFF = frozenset({_R.MANAGER, _R.ADMIN})
_ADMIN = frozenset({_R.ADMIN})
_SYSTEM = frozenset({_R.SYSTEM})

# Core graph: current -> {requested: roles allowed to request it}.
_CORE: dict[str, dict[str, frozenset[str]]] = {
    _S.PENDING: {_S.ACCEPTED: _STAFF},
    _S.ACCEPTED: {_S.ASSIGNED: _STAFF},
    _S.ASSIGNED: {
        _S.IN_PROGRESS: frozenset({_R.SYSTEM, _R.WRITER}),
        _S.EDITING: _SYSTEM,
        _S.REVISION: _SYSTEM,
    },
    _S.IN_PROGRESS: {_S.EDITING: _SYSTEM},
    _S.EDITING: {_S.DELIVERED: frozenset({_R.EDITOR, _R.SYSTEM})},
    _S.DELIVERED: {
        _S.APPROVED: frozenset({_R.CLIENT}),
        _S.REVISION: frozenset({_R.CLIENT}),
    },
    _S.REVISION: {
        _S.EDITING: _SYSTEM,
        _S.ASSIGNED: _STAFF,
        _S.IN_PROGRESS: frozenset({_R.WRITER, _R.SYSTEM}),
    },
    _S.APPROVED: {_S.PAID: frozenset({_R.SYSTEM, _R.ADMIN})},
    _S.PAID: {_S.COMPLETED: _ADMIN},
    _S.COMPLETED: {},
    _S.CANCELLED: {},
    _S.ON_HOLD: {},
}

# Cancellation and hold are reachable from every live state except paid.
_INTERRUPTIBLE = tuple(s for s in _S.ALL if s not in _S.TERMINAL and s != _S.PAID)
# A held order resumes to the status it was held from.
_RESUMABLE = tuple(s for s in _INTERRUPTIBLE if s != _S.ON_HOLD)


def _build_table() -> dict[str, dict[str, frozenset[str]]]:
    table = {status: dict(edges) for status, edges in _CORE.items()}
    for status in _INTERRUPTIBLE:
        table[status][_S.CANCELLED] = _ADMIN
        if status != _S.ON_HOLD:
            table[status][_S.ON_HOLD] = _STAFF
    for status in _RESUMABLE:
        table[_S.ON_HOLD][status] = _STAFF
    return table


ALLOWED: dict[str, dict[str, frozenset[str]]] = _build_table()

# Transitions whose target demands uploaded artifacts, keyed by (current, requested).
ARTIFACT_GATES = {
    (_S.EDITING, _S.DELIVERED): "final",
    (_S.REVISION, _S.EDITING): "revision",
}

EARNINGS_TRIGGERS = {
    (_S.ACCEPTED, _S.ASSIGNED): "assignment",
    (_S.EDITING, _S.DELIVERED): "submission",
    (_S.APPROVED, _S.PAID): "completion",
}


@dataclass(frozen=True)
class TransitionContext:
    writer_id: int | None = None
    revision_notes: str = ""
    held_from_status: str | None = None
    payment_confirmed: bool = False


@dataclass(frozen=True)
class TransitionError:
    code: str
    message: str


def normalize_status(value: str | None) -> str:
    return (value or "").strip().lower()


def normalize_role(value: str | None) -> str:
    role = (value or "").strip().lower()
    return role if role in _R.ALL else ""


def is_terminal(status: str | None) -> bool:
    return normalize_status(status) in _S.TERMINAL


def valid_next_statuses(current: str | None) -> list[str]:
    return sorted(ALLOWED.get(normalize_status(current), {}).keys())


def allowed_roles(current: str | None, requested: str | None) -> frozenset[str]:
    return ALLOWED.get(normalize_status(current), {}).get(normalize_status(requested), frozenset())


def artifact_gate_for(current: str | None, requested: str | None) -> str | None:
    return ARTIFACT_GATES.get((normalize_status(current), normalize_status(requested)))


def earnings_trigger_for(current: str | None, requested: str | None) -> str | None:
    return EARNINGS_TRIGGERS.get((normalize_status(current), normalize_status(requested)))


def _repeat_error(current: str) -> TransitionError:
    if current == _S.PAID:
        return TransitionError(TransitionCode.ALREADY_PAID, "Payment already confirmed for this order")
    if current == _S.DELIVERED:
        return TransitionError(TransitionCode.ALREADY_SUBMITTED, "Work has already been submitted for this order")
    return TransitionError(TransitionCode.INVALID_TRANSITION, f'Order is already "{current}"')


def validate_transition(
    current: str | None,
    requested: str | None,
    actor_role: str | None,
    context: TransitionContext | None = None,
) -> TransitionError | None:
    """Return ``None`` when the transition is legal, else the denial reason."""
    ctx = context or TransitionContext()
    cur = normalize_status(current)
    req = normalize_status(requested)
    role = normalize_role(actor_role)

    if cur not in ALLOWED:
        return TransitionError(TransitionCode.INVALID_TRANSITION, f"Unknown current status: {cur or '<empty>'}")
    if req not in ALLOWED:
        return TransitionError(TransitionCode.INVALID_TRANSITION, f"Unknown requested status: {req or '<empty>'}")

    if req == cur:
        return _repeat_error(cur)
    if req == _S.PAID and ctx.payment_confirmed:
        return TransitionError(TransitionCode.ALREADY_PAID, "Payment already confirmed for this order")

    edges = ALLOWED[cur]
    if req not in edges:
        nxt = ", ".join(valid_next_statuses(cur)) or "none"
        return TransitionError(
            TransitionCode.INVALID_TRANSITION,
            f'Cannot transition from "{cur}" to "{req}". Valid transitions: {nxt}',
        )
    if role not in allowed_roles(cur, req):
        return TransitionError(
            TransitionCode.FORBIDDEN_ROLE,
            f'Role "{role or "unknown"}" may not move an order from "{cur}" to "{req}"',
        )

    if cur == _S.ACCEPTED and req == _S.ASSIGNED and ctx.writer_id is None:
        return TransitionError(TransitionCode.WRITER_REQUIRED, "A writer must be attached before assignment")
    if cur == _S.DELIVERED and req == _S.REVISION and not (ctx.revision_notes or "").strip():
        return TransitionError(TransitionCode.REVISION_NOTES_REQUIRED, "Revision notes are required")
    if cur == _S.ON_HOLD and req not in (_S.CANCELLED, normalize_status(ctx.held_from_status)):
        return TransitionError(
            TransitionCode.INVALID_TRANSITION,
            f'A held order resumes only to "{normalize_status(ctx.held_from_status) or "unknown"}"',
        )
    return None
