from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import func

from jobflow.extensions import db
from jobflow.models import Balance, EarningsEvent, ReconciliationReport


def _ledger_totals() -> dict[tuple[int, str], int]:
    rows = (
        db.session.query(
            EarningsEvent.beneficiary_id,
            EarningsEvent.beneficiary_role,
            func.coalesce(func.sum(EarningsEvent.amount_minor), 0),
        )
        .group_by(EarningsEvent.beneficiary_id, EarningsEvent.beneficiary_role)
        .all()
    )
    return {(int(user_id), str(role)): int(total or 0) for user_id, role, total in rows}


def recompute_balances(*, tolerance_minor: int = 0) -> dict:
    """Compare every cached balance with the earnings ledger it summarizes.

    Read-only: drift is reported, never repaired.
    """
    ledger = _ledger_totals()
    balances = Balance.query.order_by(Balance.user_id.asc(), Balance.role.asc()).all()
    drift_items = []
    seen = set()

    for balance in balances:
        key = (int(balance.user_id), str(balance.role))
        seen.add(key)
        computed = ledger.get(key, 0)
        stored = int(balance.total_earned_minor or 0)
        held = int(balance.available_minor or 0) + int(balance.pending_minor or 0)
        drift = stored - computed
        if abs(drift) > int(tolerance_minor) or held != stored:
            drift_items.append(
                {
                    "user_id": key[0],
                    "role": key[1],
                    "stored_total_minor": stored,
                    "computed_total_minor": computed,
                    "available_plus_pending_minor": held,
                    "drift_minor": drift,
                }
            )

    for key, computed in sorted(ledger.items()):
        if key in seen or computed == 0:
            continue
        drift_items.append(
            {
                "user_id": key[0],
                "role": key[1],
                "stored_total_minor": None,
                "computed_total_minor": computed,
                "available_plus_pending_minor": None,
                "drift_minor": -computed,
            }
        )

    return {
        "ok": True,
        "scope": "earnings_ledger",
        "balance_count": len(balances),
        "drift_count": len(drift_items),
        "drift_items": drift_items,
        "generated_at": datetime.utcnow().isoformat(),
    }


def persist_report(summary: dict, *, created_by: int | None = None) -> ReconciliationReport:
    report = ReconciliationReport(
        scope=(summary.get("scope") or "earnings_ledger")[:64],
        balance_count=int(summary.get("balance_count") or 0),
        drift_count=int(summary.get("drift_count") or 0),
        summary_json=json.dumps(summary)[:200000],
        created_by=int(created_by) if created_by is not None else None,
        created_at=datetime.utcnow(),
    )
    db.session.add(report)
    db.session.commit()
    return report
