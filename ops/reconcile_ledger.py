from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _bootstrap_app():
    from jobflow import create_app

    app = create_app()
    app.app_context().push()
    return app


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Compare cached balances with the earnings ledger and report drift.")
    parser.add_argument("--tolerance-minor", type=int, default=0, help="Allowed drift per balance in minor units.")
    parser.add_argument("--persist", action="store_true", help="Persist report row in reconciliation_reports.")
    args = parser.parse_args(argv)

    _bootstrap_app()
    from jobflow.services.reconciliation_service import persist_report, recompute_balances

    summary = recompute_balances(tolerance_minor=max(0, int(args.tolerance_minor)))
    if args.persist:
        row = persist_report(summary, created_by=None)
        summary["report_id"] = int(row.id)

    print(json.dumps(summary, indent=2))
    return 0 if int(summary.get("drift_count") or 0) == 0 else 2


if __name__ == "__main__":
    sys.exit(main())
