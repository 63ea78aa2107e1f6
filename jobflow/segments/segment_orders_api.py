from __future__ import annotations

from datetime import datetime

from flask import Blueprint, g, jsonify, request

from jobflow.services import lifecycle_service
from jobflow.services.lifecycle_service import ErrorKind, LifecycleError
from jobflow.services.reconciliation_service import persist_report, recompute_balances
from jobflow.services.status_rules import ActorRole
from jobflow.utils.idempotency import lookup_response, release, store_response
from jobflow.utils.jwt_utils import actor_from_claims, decode_token, get_bearer_token

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api")

_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.ARTIFACTS_NOT_READY: 409,
    ErrorKind.PRICING_VIOLATION: 422,
    ErrorKind.CONCURRENT_MODIFICATION: 409,
    ErrorKind.STORAGE_FAILURE: 503,
    ErrorKind.INVALID_REQUEST: 400,
}

_STAFF = (ActorRole.MANAGER, ActorRole.EDITOR, ActorRole.ADMIN, ActorRole.SYSTEM)


def _current_actor() -> dict | None:
    token = get_bearer_token(request.headers.get("Authorization", ""))
    if not token:
        return None
    actor = actor_from_claims(decode_token(token))
    if actor is None or actor["role"] not in ActorRole.ALL:
        return None
    g.auth_user_id = actor["id"]
    g.auth_role = actor["role"]
    return actor


def _error_body(code: str, message: str, *, kind: str = "", details: dict | None = None) -> dict:
    payload = {"ok": False, "error": {"code": code, "message": message}}
    if kind:
        payload["error"]["kind"] = kind
    if details:
        payload["error"]["details"] = details
    rid = (getattr(g, "request_id", "") or "").strip()
    if rid:
        payload["trace_id"] = rid
    return payload


def _unauthorized():
    return jsonify(_error_body("UNAUTHORIZED", "Unauthorized")), 401


def _forbidden(message: str = "Forbidden"):
    return jsonify(_error_body("FORBIDDEN_ACTOR", message, kind=ErrorKind.FORBIDDEN)), 403


def _bad_request(code: str, message: str):
    return jsonify(_error_body(code, message, kind=ErrorKind.INVALID_REQUEST)), 400


def _error_status(error: LifecycleError) -> int:
    return _STATUS_BY_KIND.get(error.kind, 400)


def _result_response(result, status: int = 200) -> tuple[dict, int]:
    if result.ok:
        return result.to_dict(), status
    err = result.error
    body = _error_body(err.code, err.message, kind=err.kind, details=err.details)
    body["error"]["retryable"] = bool(err.retryable)
    return body, _error_status(err)


def _can_view(actor: dict, order: dict) -> bool:
    if actor["role"] in _STAFF:
        return True
    if actor["role"] == ActorRole.CLIENT:
        return order.get("client_id") == actor["id"]
    if actor["role"] == ActorRole.WRITER:
        return order.get("writer_id") == actor["id"]
    return False


def _parse_deadline(raw):
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return False


@orders_bp.post("/orders")
def create_order():
    actor = _current_actor()
    if not actor:
        return _unauthorized()
    payload = request.get_json(silent=True) or {}

    if actor["role"] == ActorRole.CLIENT:
        client_id = actor["id"]
    elif actor["role"] in (ActorRole.MANAGER, ActorRole.ADMIN):
        client_id = payload.get("client_id")
    else:
        return _forbidden("Only clients and staff may create orders")

    if "amount" not in payload:
        return _bad_request("INVALID_PRICING_INPUT", "amount is required")
    deadline = _parse_deadline(payload.get("deadline"))
    if deadline is False:
        return _bad_request("INVALID_REQUEST", "deadline must be an ISO-8601 timestamp")

    writer_earnings = payload.get("writer_earnings")
    if writer_earnings is not None and actor["role"] != ActorRole.ADMIN:
        return _forbidden("Only admins may set writer earnings")

    result = lifecycle_service.create_order(
        client_id,
        amount=payload.get("amount"),
        pages=payload.get("pages", 0),
        slides=payload.get("slides", 0),
        title=str(payload.get("title") or ""),
        writer_earnings=writer_earnings,
        requires_reports=bool(payload.get("requires_reports", True)),
        deadline=deadline,
        manager_id=payload.get("manager_id") if actor["role"] != ActorRole.MANAGER else actor["id"],
        actor=actor,
    )
    body, status = _result_response(result, 201)
    return jsonify(body), status


@orders_bp.get("/orders/<int:order_id>")
def get_order(order_id: int):
    actor = _current_actor()
    if not actor:
        return _unauthorized()
    result = lifecycle_service.get_order_snapshot(order_id)
    if result.ok and not _can_view(actor, result.order):
        return _forbidden()
    body, status = _result_response(result)
    return jsonify(body), status


@orders_bp.get("/orders/<int:order_id>/history")
def get_history(order_id: int):
    actor = _current_actor()
    if not actor:
        return _unauthorized()
    result = lifecycle_service.get_status_history(order_id)
    if result.ok and not _can_view(actor, result.order):
        return _forbidden()
    body, status = _result_response(result)
    return jsonify(body), status


@orders_bp.post("/orders/<int:order_id>/transition")
def transition_order(order_id: int):
    actor = _current_actor()
    if not actor:
        return _unauthorized()
    payload = request.get_json(silent=True) or {}
    requested = str(payload.get("status") or "").strip()
    if not requested:
        return _bad_request("INVALID_REQUEST", "status is required")

    result = lifecycle_service.transition(
        order_id,
        requested,
        actor,
        {
            "writer_id": payload.get("writer_id"),
            "manager_id": payload.get("manager_id"),
            "revision_notes": payload.get("revision_notes"),
            "note": payload.get("note"),
        },
    )
    body, status = _result_response(result)
    return jsonify(body), status


@orders_bp.post("/orders/<int:order_id>/files")
def upload_file(order_id: int):
    actor = _current_actor()
    if not actor:
        return _unauthorized()
    if actor["role"] == ActorRole.CLIENT:
        return _forbidden("Clients may not upload submission files")
    payload = request.get_json(silent=True) or {}
    file_type = str(payload.get("file_type") or "").strip()
    if not file_type:
        return _bad_request("INVALID_FILE_TYPE", "file_type is required")

    if actor["role"] == ActorRole.WRITER:
        snapshot = lifecycle_service.get_order_snapshot(order_id)
        if snapshot.ok and snapshot.order.get("writer_id") != actor["id"]:
            return _forbidden("Only the assigned writer may upload files")

    idem = lookup_response(actor["id"], f"/api/orders/{int(order_id)}/files", payload)
    if idem and idem[0] in ("hit", "conflict"):
        return jsonify(idem[1]), idem[2]
    idem_row = idem[1] if idem and idem[0] == "miss" else None

    metadata = {
        k: payload.get(k)
        for k in ("file_name", "file_url", "file_size", "mime_type", "notes")
        if payload.get(k) is not None
    }
    result = lifecycle_service.upload_artifact(order_id, actor["id"], file_type, metadata)
    body, status = _result_response(result, 201)
    if idem_row is not None:
        if not result.ok and result.error.retryable:
            release(idem_row)
        else:
            store_response(idem_row, body, status)
    return jsonify(body), status


@orders_bp.post("/orders/<int:order_id>/reprice")
def reprice(order_id: int):
    actor = _current_actor()
    if not actor:
        return _unauthorized()
    payload = request.get_json(silent=True) or {}
    result = lifecycle_service.reprice_order(
        order_id,
        actor,
        amount=payload.get("amount"),
        pages=payload.get("pages"),
        slides=payload.get("slides"),
        writer_earnings=payload.get("writer_earnings"),
    )
    body, status = _result_response(result)
    return jsonify(body), status


@orders_bp.post("/admin/reconciliation/run")
def run_reconciliation():
    actor = _current_actor()
    if not actor:
        return _unauthorized()
    if actor["role"] != ActorRole.ADMIN:
        return _forbidden("Admin only")
    payload = request.get_json(silent=True) or {}
    summary = recompute_balances(tolerance_minor=int(payload.get("tolerance_minor") or 0))
    if bool(payload.get("persist", True)):
        summary["report_id"] = int(persist_report(summary, created_by=actor["id"]).id)
    return jsonify(summary), 200
