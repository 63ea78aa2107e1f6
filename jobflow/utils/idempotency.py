from __future__ import annotations

import hashlib
import json
from datetime import datetime
from typing import Any

from flask import has_request_context, request
from sqlalchemy.exc import IntegrityError

from jobflow.extensions import db
from jobflow.models import IdempotencyKey


def _canonical_json(payload: Any) -> str:
    try:
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    except Exception:
        return str(payload)


def _request_method() -> str:
    if has_request_context():
        return str(request.method or "").strip().upper() or "POST"
    return "POST"


def _hash_request(*, method: str, scope: str, payload: Any) -> str:
    raw = f"{method.strip().upper()}|{scope.strip()}|{_canonical_json(payload)}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def get_idempotency_key() -> str | None:
    if not has_request_context():
        return None
    k = request.headers.get("Idempotency-Key") or request.headers.get("X-Idempotency-Key")
    if not k:
        return None
    return k.strip()[:128]


def _reuse_conflict_response() -> tuple[str, dict, int]:
    return (
        "conflict",
        {
            "ok": False,
            "error": {
                "code": "IDEMPOTENCY_KEY_REUSE",
                "message": "This Idempotency-Key was already used with a different request payload.",
            },
        },
        409,
    )


def _replay(row: IdempotencyKey):
    if not row.response_json:
        # Reserved by a request that has not finished yet.
        return (
            "conflict",
            {
                "ok": False,
                "error": {
                    "code": "IDEMPOTENCY_KEY_IN_FLIGHT",
                    "message": "A request with this Idempotency-Key is still being processed.",
                },
            },
            409,
        )
    try:
        return ("hit", json.loads(row.response_json), int(row.status_code or 200))
    except ValueError:
        return ("hit", {"ok": True}, int(row.status_code or 200))


def lookup_response(user_id: int | None, scope: str, payload: Any, *, idempotency_key: str | None = None):
    """Reserve or replay an idempotency key.

    Returns ``None`` when no key was sent, ``("hit", body, status)`` for a
    stored replay, ``("conflict", body, status)`` for key reuse and
    ``("miss", row, 0)`` when the caller owns a fresh reservation.
    """
    scope_key = str(scope or "").strip()[:128]
    k = (idempotency_key or get_idempotency_key() or "").strip()[:128]
    if not k:
        return None

    req_hash = _hash_request(method=_request_method(), scope=scope_key, payload=payload)
    row = IdempotencyKey.query.filter_by(scope=scope_key, key=k).first()
    if row is not None:
        if (row.request_hash or "").strip() and row.request_hash != req_hash:
            return _reuse_conflict_response()
        return _replay(row)

    now = datetime.utcnow()
    row = IdempotencyKey(
        key=k,
        scope=scope_key,
        user_id=int(user_id) if user_id is not None else None,
        request_hash=req_hash,
        response_json=None,
        status_code=200,
        created_at=now,
        updated_at=now,
    )
    db.session.add(row)
    try:
        db.session.commit()
    except IntegrityError:
        # Lost the reservation race; answer as the winner would.
        db.session.rollback()
        row = IdempotencyKey.query.filter_by(scope=scope_key, key=k).first()
        if row is None:
            raise
        if row.request_hash != req_hash:
            return _reuse_conflict_response()
        return _replay(row)
    return ("miss", row, 0)


def store_response(row: IdempotencyKey, response_json: Any, status_code: int) -> None:
    try:
        row.response_json = json.dumps(response_json, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        row.response_json = json.dumps({"ok": True})
    row.status_code = int(status_code or 200)
    row.updated_at = datetime.utcnow()
    db.session.add(row)
    db.session.commit()


def release(row: IdempotencyKey) -> None:
    """Drop a reservation so the client may retry with the same key."""
    try:
        db.session.delete(row)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
