from __future__ import annotations

import json
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation

from flask import current_app, has_app_context
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from jobflow.extensions import db
from jobflow.integrations.side_effects.base import SideEffect, SideEffectDispatcher
from jobflow.models import Balance, EarningsEvent, JobStatusLog, Order, OrderFile
from jobflow.services.dispatch_service import dispatch_after_commit
from jobflow.services.readiness_gate import (
    FileType,
    ReadinessPurpose,
    is_ready,
    missing_requirements,
    normalize_file_type,
)
from jobflow.services.status_rules import (
    ActorRole,
    OrderStatus,
    TransitionCode,
    TransitionContext,
    artifact_gate_for,
    earnings_trigger_for,
    is_terminal,
    normalize_role,
    normalize_status,
    validate_transition,
)
from jobflow.utils.earnings import (
    EarningsCredit,
    OrderTerms,
    ROLE_MANAGER,
    manager_fee_reserve,
    money_major_to_minor,
    money_minor_to_major,
    on_assignment,
    on_completion,
    on_submission,
    platform_profit,
    split_within_amount,
)
from jobflow.utils.observability import get_request_id
from jobflow.utils.pricing import PricingConfig, default_writer_earnings, get_pricing_config, minimum_price

logger = logging.getLogger(__name__)


class ErrorKind:
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    INVALID_TRANSITION = "invalid_transition"
    ARTIFACTS_NOT_READY = "artifacts_not_ready"
    PRICING_VIOLATION = "pricing_violation"
    CONCURRENT_MODIFICATION = "concurrent_modification"
    STORAGE_FAILURE = "storage_failure"
    INVALID_REQUEST = "invalid_request"


class ErrorCode:
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    FORBIDDEN_ACTOR = "FORBIDDEN_ACTOR"
    ORDER_CLOSED = "ORDER_CLOSED"
    ARTIFACTS_NOT_READY = "ARTIFACTS_NOT_READY"
    PRICING_VIOLATION = "PRICING_VIOLATION"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    STORAGE_FAILURE = "STORAGE_FAILURE"
    INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
    INVALID_PRICING_INPUT = "INVALID_PRICING_INPUT"


@dataclass
class LifecycleError:
    kind: str
    code: str
    message: str
    retryable: bool = False
    details: dict | None = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "retryable": bool(self.retryable),
            "details": dict(self.details or {}),
        }


@dataclass
class LifecycleResult:
    ok: bool
    order: dict | None = None
    effects: list[SideEffect] = field(default_factory=list)
    error: LifecycleError | None = None
    credits: list[dict] = field(default_factory=list)
    dispatch: dict | None = None

    def to_dict(self) -> dict:
        out = {"ok": bool(self.ok), "order": self.order}
        if self.credits:
            out["credits"] = list(self.credits)
        if self.error is not None:
            out["error"] = self.error.to_dict()
        return out


@dataclass
class ReadinessResult(LifecycleResult):
    artifact: dict | None = None
    ready: bool = False
    transitioned: bool = False
    missing: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        out = super().to_dict()
        out.update(
            {
                "artifact": self.artifact,
                "ready": bool(self.ready),
                "transitioned": bool(self.transitioned),
                "missing": list(self.missing),
            }
        )
        return out


class _Abort(Exception):
    def __init__(self, error: LifecycleError):
        super().__init__(error.message)
        self.error = error


_TRANSITION_KINDS = {
    TransitionCode.FORBIDDEN_ROLE: ErrorKind.FORBIDDEN,
}

# Upload readiness advances these statuses to editing.
UPLOAD_ADVANCE_FROM = frozenset({OrderStatus.ASSIGNED, OrderStatus.IN_PROGRESS, OrderStatus.REVISION})


def _fail(kind: str, code: str, message: str, *, retryable: bool = False, details: dict | None = None) -> _Abort:
    return _Abort(LifecycleError(kind=kind, code=code, message=message, retryable=retryable, details=details))


def _config_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = current_app.config.get(name, default) if has_app_context() else default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        value = int(default)
    return value if value >= minimum else minimum


def _parse_actor(actor) -> tuple[str, int | None]:
    if isinstance(actor, dict):
        role = normalize_role(str(actor.get("role") or actor.get("type") or ActorRole.SYSTEM))
        actor_id_raw = actor.get("id")
        try:
            actor_id = int(actor_id_raw) if actor_id_raw is not None else None
        except (TypeError, ValueError):
            actor_id = None
        return role, actor_id
    return ActorRole.SYSTEM, None


def _opt_int(value) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _now_for(order: Order | None) -> datetime:
    # Keep per-order log and ledger timestamps non-decreasing.
    now = datetime.utcnow()
    last = getattr(order, "updated_at", None) if order is not None else None
    if last is not None and last > now:
        return last
    return now


def _backoff(attempt: int) -> None:
    base_ms = _config_int("TRANSITION_RETRY_BACKOFF_MS", 25)
    if base_ms <= 0:
        return
    delay_ms = base_ms * (2 ** max(0, attempt - 1)) * random.uniform(0.5, 1.5)
    time.sleep(delay_ms / 1000.0)


def _run_atomic(work, *, op: str, order_id=None, result_cls=LifecycleResult):
    """Run ``work`` as one transaction, retrying version conflicts.

    ``work`` must commit on success and return a result. Business denials
    raise ``_Abort`` and leave nothing written.
    """
    attempts = _config_int("TRANSITION_MAX_ATTEMPTS", 3, minimum=1)
    for attempt in range(1, attempts + 1):
        try:
            return work()
        except _Abort as abort:
            db.session.rollback()
            logger.info(
                "lifecycle_denied op=%s order_id=%s code=%s", op, order_id, abort.error.code
            )
            return result_cls(ok=False, error=abort.error)
        except (StaleDataError, IntegrityError) as exc:
            db.session.rollback()
            logger.warning(
                "lifecycle_conflict op=%s order_id=%s attempt=%s/%s err=%s",
                op,
                order_id,
                attempt,
                attempts,
                exc.__class__.__name__,
            )
            if attempt >= attempts:
                return result_cls(
                    ok=False,
                    error=LifecycleError(
                        kind=ErrorKind.CONCURRENT_MODIFICATION,
                        code=ErrorCode.CONCURRENT_MODIFICATION,
                        message="The order was modified concurrently; please retry",
                        retryable=True,
                        details={"attempts": attempts},
                    ),
                )
            _backoff(attempt)
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("lifecycle_storage_failure op=%s order_id=%s", op, order_id)
            return result_cls(
                ok=False,
                error=LifecycleError(
                    kind=ErrorKind.STORAGE_FAILURE,
                    code=ErrorCode.STORAGE_FAILURE,
                    message="Storage failure; nothing was changed",
                    retryable=True,
                    details={"error": exc.__class__.__name__},
                ),
            )
    raise AssertionError("unreachable")


def _load_order(order_id) -> Order:
    oid = _opt_int(order_id)
    order = None
    if oid is not None:
        order = Order.query.filter_by(id=oid).with_for_update().populate_existing().first()
    if order is None:
        raise _fail(ErrorKind.NOT_FOUND, ErrorCode.ORDER_NOT_FOUND, f"Order {order_id} not found")
    return order


def _lock_balance(user_id: int, role: str, now: datetime) -> Balance:
    balance = (
        Balance.query.filter_by(user_id=int(user_id), role=role)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if balance is None:
        balance = Balance(
            user_id=int(user_id),
            role=role,
            available_minor=0,
            pending_minor=0,
            total_earned_minor=0,
            updated_at=now,
        )
        db.session.add(balance)
    return balance


def _file_rows(order: Order) -> list[tuple[str, int]]:
    rows = (
        db.session.query(OrderFile.file_type, OrderFile.version_number)
        .filter(OrderFile.order_id == int(order.id))
        .all()
    )
    return [(normalize_file_type(t), int(v or 0)) for t, v in rows]


def _gate_file_types(order: Order, purpose: str) -> set[str]:
    rows = _file_rows(order)
    if purpose != ReadinessPurpose.REVISION:
        return {t for t, _ in rows}
    # The final slot must be refilled after the revision request; reports carry over.
    base = int(order.revision_base_version or 0)
    fresh = {t for t, v in rows if v > base}
    reports = {t for t, _ in rows if t in FileType.REPORTS}
    return fresh | reports


def _max_file_version(order: Order) -> int:
    value = (
        db.session.query(func.max(OrderFile.version_number))
        .filter(OrderFile.order_id == int(order.id))
        .scalar()
    )
    return int(value or 0)


def _check_split(order: Order) -> None:
    if not split_within_amount(
        money_minor_to_major(order.amount_minor),
        money_minor_to_major(order.writer_earnings_minor),
        money_minor_to_major(order.manager_earnings_minor),
        money_minor_to_major(order.platform_profit_minor),
    ):
        raise _fail(
            ErrorKind.PRICING_VIOLATION,
            ErrorCode.PRICING_VIOLATION,
            "Writer, manager and platform shares would exceed the order amount",
            details={
                "amount_minor": int(order.amount_minor or 0),
                "writer_earnings_minor": int(order.writer_earnings_minor or 0),
                "manager_earnings_minor": int(order.manager_earnings_minor or 0),
                "platform_profit_minor": int(order.platform_profit_minor or 0),
            },
        )


def _check_fee_headroom(order: Order, pricing: PricingConfig) -> None:
    # The writer share must leave room for manager fees still to be credited.
    reserve = manager_fee_reserve(
        order.unit_count,
        pricing,
        assignment_credited=bool(order.assignment_fee_credited),
        submission_credited=bool(order.submission_fee_credited),
    )
    amount = money_minor_to_major(order.amount_minor)
    committed = (
        money_minor_to_major(order.writer_earnings_minor) + money_minor_to_major(order.manager_earnings_minor) + reserve
    )
    if committed > amount:
        raise _fail(
            ErrorKind.PRICING_VIOLATION,
            ErrorCode.PRICING_VIOLATION,
            "Writer earnings leave no room for the manager fees this order will accrue",
            details={
                "amount": str(amount),
                "writer_earnings": str(money_minor_to_major(order.writer_earnings_minor)),
                "manager_fee_reserve": str(reserve),
            },
        )


def _check_floor(amount: Decimal, pages: int, slides: int, pricing: PricingConfig) -> None:
    floor = minimum_price(pages, slides, pricing)
    if amount < floor:
        raise _fail(
            ErrorKind.PRICING_VIOLATION,
            ErrorCode.PRICING_VIOLATION,
            f"Amount {amount} is below the minimum price {floor} for this order",
            details={"amount": str(amount), "minimum": str(floor), "pages": pages, "slides": slides},
        )


def _check_actor_is_party(order: Order, role: str, actor_id: int | None) -> None:
    if role == ActorRole.CLIENT and (actor_id is None or actor_id != int(order.client_id)):
        raise _fail(ErrorKind.FORBIDDEN, ErrorCode.FORBIDDEN_ACTOR, "Only the order's client may do this")
    if role == ActorRole.WRITER and (actor_id is None or order.writer_id is None or actor_id != int(order.writer_id)):
        raise _fail(ErrorKind.FORBIDDEN, ErrorCode.FORBIDDEN_ACTOR, "Only the assigned writer may do this")


def _post_credits(order: Order, credits: list[EarningsCredit], now: datetime) -> None:
    for credit in credits:
        minor = credit.amount_minor
        if minor <= 0:
            continue
        balance = _lock_balance(credit.beneficiary_id, credit.role, now)
        balance.available_minor = int(balance.available_minor or 0) + minor
        balance.total_earned_minor = int(balance.total_earned_minor or 0) + minor
        balance.updated_at = now
        db.session.add(
            EarningsEvent(
                order_id=int(order.id),
                beneficiary_id=int(credit.beneficiary_id),
                beneficiary_role=credit.role,
                earning_type=credit.earning_type,
                amount_minor=minor,
                created_at=now,
            )
        )


def _upload_purpose(status: str) -> str:
    return ReadinessPurpose.REVISION if status == OrderStatus.REVISION else ReadinessPurpose.FINAL


def _mark_submission_complete(order: Order, purpose: str) -> None:
    if purpose == ReadinessPurpose.REVISION:
        order.revision_submission_complete = True
    else:
        order.final_submission_complete = True


def _advance_to_editing(order: Order, current: str, actor_id: int | None, now: datetime, note: str) -> bool:
    """Move a ready order from a working status to editing as the system actor."""
    if current not in UPLOAD_ADVANCE_FROM:
        return False
    if validate_transition(current, OrderStatus.EDITING, ActorRole.SYSTEM, TransitionContext()) is not None:
        return False
    db.session.add(
        JobStatusLog(
            order_id=int(order.id),
            old_status=current,
            new_status=OrderStatus.EDITING,
            actor_id=actor_id,
            actor_role=ActorRole.SYSTEM,
            note=note,
            created_at=now,
        )
    )
    order.status = OrderStatus.EDITING
    return True


def _apply_status(order: Order, current: str, requested: str, role: str, actor_id: int | None, payload: dict, now: datetime) -> None:
    S = OrderStatus
    if requested == S.ACCEPTED:
        if order.manager_id is None and role == ActorRole.MANAGER:
            order.manager_id = actor_id
    elif requested == S.ASSIGNED:
        writer_id = _opt_int(payload.get("writer_id"))
        if writer_id is not None:
            order.writer_id = writer_id
        manager_id = _opt_int(payload.get("manager_id"))
        if manager_id is not None:
            order.manager_id = manager_id
        elif order.manager_id is None and role == ActorRole.MANAGER:
            order.manager_id = actor_id
    elif requested == S.EDITING:
        if current == S.REVISION:
            order.revision_submission_complete = True
        elif is_ready(_gate_file_types(order, ReadinessPurpose.FINAL), requires_reports=bool(order.requires_reports), purpose=ReadinessPurpose.FINAL):
            order.final_submission_complete = True
    elif requested == S.DELIVERED:
        order.admin_approved = True
        if order.delivered_at is None:
            order.delivered_at = now
    elif requested == S.REVISION and current != S.ON_HOLD:
        order.revision_requested = True
        order.revision_notes = (payload.get("revision_notes") or order.revision_notes or "").strip() or None
        order.revision_submission_complete = False
        order.client_approved = False
        order.revision_base_version = _max_file_version(order)
    elif requested == S.APPROVED:
        order.client_approved = True
    elif requested == S.PAID:
        order.payment_confirmed = True
        order.paid_at = now
    elif requested == S.COMPLETED:
        order.completed_at = now
    elif requested == S.ON_HOLD:
        order.held_from_status = current

    if current == S.ON_HOLD:
        order.held_from_status = None


def _stage_earnings(order: Order, trigger: str | None, pricing: PricingConfig) -> list[EarningsCredit]:
    if trigger == "assignment":
        if order.assignment_fee_credited:
            return []
        credits = on_assignment(OrderTerms.from_order(order), pricing)
        order.assignment_fee_credited = True
    elif trigger == "submission":
        if order.submission_fee_credited:
            return []
        credits = on_submission(OrderTerms.from_order(order), pricing)
        order.submission_fee_credited = True
    elif trigger == "completion":
        terms = OrderTerms.from_order(order)
        credits = on_completion(terms)
        order.platform_profit_minor = money_major_to_minor(platform_profit(terms))
        return credits
    else:
        return []
    for credit in credits:
        if credit.role == ROLE_MANAGER:
            order.manager_earnings_minor = int(order.manager_earnings_minor or 0) + credit.amount_minor
    return credits


_NOTIFICATIONS = {
    OrderStatus.ACCEPTED: [("client_id", "order_accepted", "Order Accepted", "Your order {ref} has been accepted.")],
    OrderStatus.ASSIGNED: [
        ("writer_id", "job_assigned", "Order Assigned", "Order {ref} has been assigned to you."),
        ("client_id", "order_assigned", "Assigned to Writer", "Your order {ref} has been assigned to a writer."),
    ],
    OrderStatus.IN_PROGRESS: [("client_id", "order_in_progress", "Work Started", "Work on order {ref} is in progress.")],
    OrderStatus.EDITING: [("manager_id", "order_ready_for_review", "Ready for Review", "Order {ref} has complete submission files.")],
    OrderStatus.DELIVERED: [("client_id", "order_delivered", "Work Delivered", "Order {ref} has been delivered. Please review it.")],
    OrderStatus.REVISION: [("writer_id", "revision_requested", "Revision Requested", "A revision was requested for order {ref}.")],
    OrderStatus.APPROVED: [("writer_id", "order_approved", "Order Approved", "The client approved order {ref}.")],
    OrderStatus.PAID: [("client_id", "payment_confirmed", "Payment Confirmed", "Payment for order {ref} is confirmed.")],
    OrderStatus.COMPLETED: [("client_id", "order_completed", "Order Completed", "Order {ref} is complete.")],
    OrderStatus.CANCELLED: [
        ("client_id", "order_cancelled", "Order Cancelled", "Order {ref} was cancelled."),
        ("writer_id", "order_cancelled", "Order Cancelled", "Order {ref} was cancelled."),
    ],
    OrderStatus.ON_HOLD: [
        ("client_id", "order_on_hold", "Order On Hold", "Order {ref} was put on hold."),
        ("writer_id", "order_on_hold", "Order On Hold", "Order {ref} was put on hold."),
    ],
}

_CREDIT_TITLES = {
    "assignment_fee": ("manager_assignment_fee", "Assignment Fee Credited"),
    "submission_fee": ("manager_submission_fee", "Submission Fee Credited"),
    "completion_payout": ("payment_received", "Payment Received"),
}


def _transition_effects(
    snapshot: dict,
    current: str,
    requested: str,
    actor_id: int | None,
    role: str,
    credits: list[EarningsCredit],
    note: str = "",
) -> list[SideEffect]:
    ref = snapshot.get("order_number") or f"#{snapshot.get('id')}"
    order_id = snapshot.get("id")
    effects = []
    notified = set()
    for field_name, ntype, title, template in _NOTIFICATIONS.get(requested, []):
        user_id = snapshot.get(field_name)
        if user_id is None or (user_id, ntype) in notified:
            continue
        notified.add((user_id, ntype))
        effects.append(
            SideEffect.notification(
                user_id=int(user_id), type=ntype, title=title, message=template.format(ref=ref), order_id=order_id
            )
        )
    for credit in credits:
        ntype, title = _CREDIT_TITLES.get(credit.earning_type, ("earning_credited", "Earnings Credited"))
        effects.append(
            SideEffect.notification(
                user_id=credit.beneficiary_id,
                type=ntype,
                title=title,
                message=f"You earned {credit.amount} for order {ref}.",
                order_id=order_id,
            )
        )
    effects.append(
        SideEffect.audit_entry(
            actor_id=actor_id,
            action="order.transition",
            target_id=order_id,
            details={
                "order_number": snapshot.get("order_number"),
                "from": current,
                "to": requested,
                "actor_role": role,
                "note": note,
                "credits": [c.to_dict() for c in credits],
                "platform_profit_minor": snapshot.get("platform_profit_minor"),
                "request_id": get_request_id(),
            },
        )
    )
    return effects


def _finish(result, dispatcher: SideEffectDispatcher | None):
    if result.ok and result.effects:
        result.dispatch = dispatch_after_commit(result.effects, dispatcher=dispatcher)
    return result


def transition(
    order_id,
    requested_status: str,
    actor=None,
    payload: dict | None = None,
    *,
    dispatcher: SideEffectDispatcher | None = None,
    pricing: PricingConfig | None = None,
) -> LifecycleResult:
    """Move one order to ``requested_status`` as a single atomic commit.

    Validation, the artifact gate and earnings all run against the row as
    loaded under lock; side effects are dispatched only after the commit.
    """
    cfg = pricing or get_pricing_config()
    data = dict(payload or {})
    role, actor_id = _parse_actor(actor)
    requested = normalize_status(requested_status)

    def work() -> LifecycleResult:
        order = _load_order(order_id)
        current = normalize_status(order.status)

        writer_id = _opt_int(data.get("writer_id"))
        context = TransitionContext(
            writer_id=writer_id if writer_id is not None else order.writer_id,
            revision_notes=str(data.get("revision_notes") or ""),
            held_from_status=order.held_from_status,
            payment_confirmed=bool(order.payment_confirmed),
        )
        denial = validate_transition(current, requested, role, context)
        if denial is not None:
            raise _fail(_TRANSITION_KINDS.get(denial.code, ErrorKind.INVALID_TRANSITION), denial.code, denial.message)
        _check_actor_is_party(order, role, actor_id)

        purpose = artifact_gate_for(current, requested)
        if purpose:
            types = _gate_file_types(order, purpose)
            if not is_ready(types, requires_reports=bool(order.requires_reports), purpose=purpose):
                missing = missing_requirements(types, requires_reports=bool(order.requires_reports), purpose=purpose)
                raise _fail(
                    ErrorKind.ARTIFACTS_NOT_READY,
                    ErrorCode.ARTIFACTS_NOT_READY,
                    f"Missing required files: {', '.join(missing)}",
                    details={"missing": missing, "purpose": purpose},
                )

        now = _now_for(order)
        _apply_status(order, current, requested, role, actor_id, data, now)
        credits = _stage_earnings(order, earnings_trigger_for(current, requested), cfg)
        _check_split(order)
        _post_credits(order, credits, now)

        note = str(data.get("note") or "").strip()[:500]
        db.session.add(
            JobStatusLog(
                order_id=int(order.id),
                old_status=current,
                new_status=requested,
                actor_id=actor_id,
                actor_role=role or ActorRole.SYSTEM,
                note=note or f"{current} -> {requested}",
                created_at=now,
            )
        )
        order.status = requested
        # Files completed while held advance the order on resume.
        advanced = False
        if current == OrderStatus.ON_HOLD and requested in UPLOAD_ADVANCE_FROM:
            resume_purpose = _upload_purpose(requested)
            if is_ready(
                _gate_file_types(order, resume_purpose),
                requires_reports=bool(order.requires_reports),
                purpose=resume_purpose,
            ):
                _mark_submission_complete(order, resume_purpose)
                advanced = _advance_to_editing(order, requested, None, now, "Submission files complete")
        order.updated_at = now
        db.session.flush()
        snapshot = order.to_dict()
        db.session.commit()

        logger.info(
            "order_transition order_id=%s from=%s to=%s role=%s credits=%s advanced=%s",
            snapshot.get("id"),
            current,
            requested,
            role,
            len(credits),
            advanced,
        )
        effects = _transition_effects(snapshot, current, requested, actor_id, role, credits, note)
        if advanced:
            effects += _transition_effects(
                snapshot, requested, OrderStatus.EDITING, None, ActorRole.SYSTEM, [], "Submission files complete"
            )
        return LifecycleResult(
            ok=True,
            order=snapshot,
            effects=effects,
            credits=[c.to_dict() for c in credits],
        )

    return _finish(_run_atomic(work, op="transition", order_id=order_id), dispatcher)


def upload_artifact(
    order_id,
    uploader_id,
    file_type: str,
    metadata: dict | None = None,
    *,
    dispatcher: SideEffectDispatcher | None = None,
) -> ReadinessResult:
    """Append a file record and advance the order on the not-ready -> ready edge."""
    ftype = normalize_file_type(file_type)
    if ftype not in FileType.ALL:
        return ReadinessResult(
            ok=False,
            error=LifecycleError(
                kind=ErrorKind.INVALID_REQUEST,
                code=ErrorCode.INVALID_FILE_TYPE,
                message=f"Invalid file type {file_type!r}",
                details={"allowed": sorted(FileType.ALL)},
            ),
        )
    uploader = _opt_int(uploader_id)
    if uploader is None:
        return ReadinessResult(
            ok=False,
            error=LifecycleError(kind=ErrorKind.INVALID_REQUEST, code="UPLOADER_REQUIRED", message="uploader_id is required"),
        )
    meta = dict(metadata or {})

    def work() -> ReadinessResult:
        order = _load_order(order_id)
        current = normalize_status(order.status)
        if is_terminal(current):
            raise _fail(ErrorKind.INVALID_TRANSITION, ErrorCode.ORDER_CLOSED, f"Order is {current}, uploading disabled")

        working = normalize_status(order.held_from_status) if current == OrderStatus.ON_HOLD else current
        purpose = _upload_purpose(working)
        requires_reports = bool(order.requires_reports)
        was_ready = is_ready(_gate_file_types(order, purpose), requires_reports=requires_reports, purpose=purpose)

        now = _now_for(order)
        row = OrderFile(
            order_id=int(order.id),
            uploaded_by=uploader,
            file_type=ftype,
            file_name=str(meta.get("file_name") or "")[:255] or None,
            file_url=str(meta.get("file_url") or "") or None,
            file_size=_opt_int(meta.get("file_size")),
            mime_type=str(meta.get("mime_type") or "")[:120] or None,
            notes=str(meta.get("notes") or "") or None,
            meta=json.dumps({k: v for k, v in meta.items() if isinstance(v, (str, int, float, bool))}),
            version_number=_max_file_version(order) + 1,
            created_at=now,
        )
        db.session.add(row)
        db.session.flush()

        types = _gate_file_types(order, purpose)
        ready = is_ready(types, requires_reports=requires_reports, purpose=purpose)
        transitioned = False
        if ready and not was_ready:
            _mark_submission_complete(order, purpose)
            transitioned = _advance_to_editing(order, current, uploader, now, "Submission files complete")
        order.updated_at = now
        db.session.flush()
        snapshot = order.to_dict()
        artifact = row.to_dict()
        db.session.commit()

        effects = [
            SideEffect.audit_entry(
                actor_id=uploader,
                action="order.file_uploaded",
                target_id=snapshot.get("id"),
                details={
                    "file_type": ftype,
                    "version_number": artifact.get("version_number"),
                    "ready": ready,
                    "transitioned": transitioned,
                    "request_id": get_request_id(),
                },
            )
        ]
        if transitioned:
            effects = _transition_effects(snapshot, current, OrderStatus.EDITING, uploader, ActorRole.SYSTEM, [], "Submission files complete") + effects
        logger.info(
            "order_file_uploaded order_id=%s file_type=%s version=%s ready=%s transitioned=%s",
            snapshot.get("id"),
            ftype,
            artifact.get("version_number"),
            ready,
            transitioned,
        )
        return ReadinessResult(
            ok=True,
            order=snapshot,
            effects=effects,
            artifact=artifact,
            ready=ready,
            transitioned=transitioned,
            missing=missing_requirements(types, requires_reports=requires_reports, purpose=purpose),
        )

    return _finish(_run_atomic(work, op="upload_artifact", order_id=order_id, result_cls=ReadinessResult), dispatcher)


def _parse_amount(value) -> Decimal:
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise _fail(ErrorKind.INVALID_REQUEST, ErrorCode.INVALID_PRICING_INPUT, f"Invalid amount {value!r}")
    if not parsed.is_finite() or parsed < 0:
        raise _fail(ErrorKind.INVALID_REQUEST, ErrorCode.INVALID_PRICING_INPUT, f"Invalid amount {value!r}")
    return parsed


def _parse_units(value, name: str) -> int:
    parsed = _opt_int(value if value is not None else 0)
    if parsed is None or parsed < 0:
        raise _fail(ErrorKind.INVALID_REQUEST, ErrorCode.INVALID_PRICING_INPUT, f"Invalid {name} {value!r}")
    return parsed


def create_order(
    client_id,
    *,
    amount,
    pages=0,
    slides=0,
    title: str = "",
    writer_earnings=None,
    requires_reports: bool = True,
    deadline: datetime | None = None,
    manager_id=None,
    actor=None,
    dispatcher: SideEffectDispatcher | None = None,
    pricing: PricingConfig | None = None,
) -> LifecycleResult:
    cfg = pricing or get_pricing_config()
    role, actor_id = _parse_actor(actor)

    def work() -> LifecycleResult:
        client = _opt_int(client_id)
        if client is None:
            raise _fail(ErrorKind.INVALID_REQUEST, "CLIENT_REQUIRED", "client_id is required")
        page_count = _parse_units(pages, "pages")
        slide_count = _parse_units(slides, "slides")
        if page_count + slide_count <= 0:
            raise _fail(ErrorKind.INVALID_REQUEST, ErrorCode.INVALID_PRICING_INPUT, "An order needs at least one page or slide")
        total = _parse_amount(amount)
        _check_floor(total, page_count, slide_count, cfg)
        writer_total = (
            _parse_amount(writer_earnings)
            if writer_earnings is not None
            else default_writer_earnings(page_count, slide_count, cfg)
        )

        now = datetime.utcnow()
        order = Order(
            title=(title or "")[:200],
            client_id=client,
            manager_id=_opt_int(manager_id),
            pages=page_count,
            slides=slide_count,
            amount_minor=money_major_to_minor(total),
            writer_earnings_minor=money_major_to_minor(writer_total),
            manager_earnings_minor=0,
            platform_profit_minor=0,
            status=OrderStatus.INITIAL,
            requires_reports=bool(requires_reports),
            deadline=deadline,
            created_at=now,
            updated_at=now,
        )
        _check_split(order)
        _check_fee_headroom(order, cfg)
        db.session.add(order)
        db.session.flush()
        order.order_number = f"JOB-{int(order.id):06d}"
        db.session.add(
            JobStatusLog(
                order_id=int(order.id),
                old_status=None,
                new_status=OrderStatus.INITIAL,
                actor_id=actor_id if actor_id is not None else client,
                actor_role=role or ActorRole.SYSTEM,
                note="Order created",
                created_at=now,
            )
        )
        db.session.flush()
        snapshot = order.to_dict()
        db.session.commit()

        effects = [
            SideEffect.audit_entry(
                actor_id=actor_id if actor_id is not None else client,
                action="order.created",
                target_id=snapshot.get("id"),
                details={
                    "order_number": snapshot.get("order_number"),
                    "amount": str(total),
                    "pages": page_count,
                    "slides": slide_count,
                    "request_id": get_request_id(),
                },
            )
        ]
        if snapshot.get("manager_id") is not None:
            effects.insert(
                0,
                SideEffect.notification(
                    user_id=int(snapshot["manager_id"]),
                    type="order_created",
                    title="New Order",
                    message=f"New order {snapshot.get('order_number')} is waiting for acceptance.",
                    order_id=snapshot.get("id"),
                ),
            )
        logger.info("order_created order_id=%s amount=%s units=%s", snapshot.get("id"), total, order.unit_count)
        return LifecycleResult(ok=True, order=snapshot, effects=effects)

    return _finish(_run_atomic(work, op="create_order"), dispatcher)


def reprice_order(
    order_id,
    actor=None,
    *,
    amount=None,
    pages=None,
    slides=None,
    writer_earnings=None,
    dispatcher: SideEffectDispatcher | None = None,
    pricing: PricingConfig | None = None,
) -> LifecycleResult:
    cfg = pricing or get_pricing_config()
    role, actor_id = _parse_actor(actor)

    def work() -> LifecycleResult:
        if role != ActorRole.ADMIN:
            raise _fail(ErrorKind.FORBIDDEN, TransitionCode.FORBIDDEN_ROLE, "Only admins may reprice orders")
        order = _load_order(order_id)
        current = normalize_status(order.status)
        if is_terminal(current):
            raise _fail(ErrorKind.INVALID_TRANSITION, ErrorCode.ORDER_CLOSED, f"Order is {current}; pricing is frozen")
        if order.payment_confirmed:
            raise _fail(ErrorKind.INVALID_TRANSITION, TransitionCode.ALREADY_PAID, "Payment already confirmed; pricing is frozen")

        before = {
            "amount_minor": int(order.amount_minor or 0),
            "pages": int(order.pages or 0),
            "slides": int(order.slides or 0),
            "writer_earnings_minor": int(order.writer_earnings_minor or 0),
        }
        page_count = _parse_units(pages, "pages") if pages is not None else int(order.pages or 0)
        slide_count = _parse_units(slides, "slides") if slides is not None else int(order.slides or 0)
        if page_count + slide_count <= 0:
            raise _fail(ErrorKind.INVALID_REQUEST, ErrorCode.INVALID_PRICING_INPUT, "An order needs at least one page or slide")
        total = _parse_amount(amount) if amount is not None else money_minor_to_major(order.amount_minor)
        _check_floor(total, page_count, slide_count, cfg)

        order.pages = page_count
        order.slides = slide_count
        order.amount_minor = money_major_to_minor(total)
        if writer_earnings is not None:
            order.writer_earnings_minor = money_major_to_minor(_parse_amount(writer_earnings))
        _check_split(order)
        _check_fee_headroom(order, cfg)
        order.updated_at = _now_for(order)
        db.session.flush()
        snapshot = order.to_dict()
        db.session.commit()

        after = {k: snapshot.get(k) for k in before}
        logger.info("order_repriced order_id=%s before=%s after=%s", snapshot.get("id"), before, after)
        effects = [
            SideEffect.audit_entry(
                actor_id=actor_id,
                action="order.repriced",
                target_id=snapshot.get("id"),
                details={"before": before, "after": after, "request_id": get_request_id()},
            )
        ]
        return LifecycleResult(ok=True, order=snapshot, effects=effects)

    return _finish(_run_atomic(work, op="reprice_order", order_id=order_id), dispatcher)


def _not_found(order_id) -> LifecycleResult:
    return LifecycleResult(
        ok=False,
        error=LifecycleError(kind=ErrorKind.NOT_FOUND, code=ErrorCode.ORDER_NOT_FOUND, message=f"Order {order_id} not found"),
    )


def get_order_snapshot(order_id) -> LifecycleResult:
    oid = _opt_int(order_id)
    order = db.session.get(Order, oid) if oid is not None else None
    if order is None:
        return _not_found(order_id)
    snapshot = order.to_dict()
    files = OrderFile.query.filter_by(order_id=int(order.id)).order_by(OrderFile.version_number.asc()).all()
    events = EarningsEvent.query.filter_by(order_id=int(order.id)).order_by(EarningsEvent.id.asc()).all()
    purpose = ReadinessPurpose.REVISION if order.status == OrderStatus.REVISION else ReadinessPurpose.FINAL
    types = _gate_file_types(order, purpose)
    snapshot["files"] = [f.to_dict() for f in files]
    snapshot["earnings_events"] = [e.to_dict() for e in events]
    snapshot["readiness"] = {
        "purpose": purpose,
        "ready": is_ready(types, requires_reports=bool(order.requires_reports), purpose=purpose),
        "missing": missing_requirements(types, requires_reports=bool(order.requires_reports), purpose=purpose),
    }
    return LifecycleResult(ok=True, order=snapshot)


def get_status_history(order_id) -> LifecycleResult:
    oid = _opt_int(order_id)
    order = db.session.get(Order, oid) if oid is not None else None
    if order is None:
        return _not_found(order_id)
    rows = JobStatusLog.query.filter_by(order_id=int(order.id)).order_by(JobStatusLog.id.asc()).all()
    snapshot = order.to_dict()
    snapshot["history"] = [r.to_dict() for r in rows]
    return LifecycleResult(ok=True, order=snapshot)
