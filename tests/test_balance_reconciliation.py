from __future__ import annotations

import json
import os
import unittest

from jobflow import create_app
from jobflow.extensions import db
from jobflow.integrations.side_effects.mock_provider import MockDispatcher
from jobflow.models import Balance, ReconciliationReport, TaskRun
from jobflow.services import lifecycle_service as lifecycle
from jobflow.services.readiness_gate import FileType
from jobflow.services.reconciliation_service import persist_report, recompute_balances
from jobflow.services.status_rules import OrderStatus
from jobflow.tasks.lifecycle_tasks import run_balance_reconciliation

CLIENT = {"role": "client", "id": 14}
WRITER = {"role": "writer", "id": 24}
EDITOR = {"role": "editor", "id": 34}
MANAGER = {"role": "manager", "id": 54}


class BalanceReconciliationTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._prev_db_uri = os.getenv("SQLALCHEMY_DATABASE_URI")
        os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite:///:memory:"
        cls.app = create_app()
        cls.app.config.update(TESTING=True, TRANSITION_RETRY_BACKOFF_MS=0, SIDE_EFFECTS_ASYNC=False)

    @classmethod
    def tearDownClass(cls):
        if cls._prev_db_uri is None:
            os.environ.pop("SQLALCHEMY_DATABASE_URI", None)
        else:
            os.environ["SQLALCHEMY_DATABASE_URI"] = cls._prev_db_uri

    def setUp(self):
        self.app.config["SIDE_EFFECT_DISPATCHER"] = MockDispatcher()
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.session.remove()
        db.drop_all()
        db.create_all()

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def _paid_order(self):
        order_id = int(lifecycle.create_order(CLIENT["id"], amount="750", pages=3, requires_reports=False, actor=CLIENT).order["id"])
        steps = [
            (OrderStatus.ACCEPTED, MANAGER, {}),
            (OrderStatus.ASSIGNED, MANAGER, {"writer_id": WRITER["id"]}),
        ]
        for status, actor, payload in steps:
            self.assertTrue(lifecycle.transition(order_id, status, actor, payload).ok)
        self.assertTrue(lifecycle.upload_artifact(order_id, WRITER["id"], FileType.FINAL_DOCUMENT).transitioned)
        for status, actor in ((OrderStatus.DELIVERED, EDITOR), (OrderStatus.APPROVED, CLIENT), (OrderStatus.PAID, None)):
            self.assertTrue(lifecycle.transition(order_id, status, actor).ok)
        return order_id

    def test_ledger_matches_balances_after_lifecycle(self):
        self._paid_order()
        self._paid_order()
        summary = recompute_balances()
        self.assertTrue(summary["ok"])
        self.assertEqual(summary["balance_count"], 2)
        self.assertEqual(summary["drift_count"], 0)
        writer = Balance.query.filter_by(user_id=WRITER["id"], role="writer").one()
        self.assertEqual(writer.total_earned_minor, 2 * 60000)
        manager = Balance.query.filter_by(user_id=MANAGER["id"], role="manager").one()
        # 10 on assignment plus 10 + 2 * 5 on submission, per order.
        self.assertEqual(manager.total_earned_minor, 2 * 3000)

    def test_drift_is_reported_not_repaired(self):
        self._paid_order()
        writer = Balance.query.filter_by(user_id=WRITER["id"], role="writer").one()
        writer.total_earned_minor += 500
        writer.available_minor += 500
        db.session.commit()

        summary = recompute_balances()
        self.assertEqual(summary["drift_count"], 1)
        item = summary["drift_items"][0]
        self.assertEqual(item["user_id"], WRITER["id"])
        self.assertEqual(item["drift_minor"], 500)
        self.assertEqual(recompute_balances(tolerance_minor=500)["drift_count"], 0)
        db.session.expire_all()
        self.assertEqual(Balance.query.filter_by(user_id=WRITER["id"]).one().total_earned_minor, 60500)

    def test_missing_balance_row_counts_as_drift(self):
        self._paid_order()
        Balance.query.filter_by(user_id=MANAGER["id"]).delete()
        db.session.commit()
        summary = recompute_balances()
        self.assertEqual(summary["drift_count"], 1)
        self.assertIsNone(summary["drift_items"][0]["stored_total_minor"])

    def test_persist_report(self):
        self._paid_order()
        summary = recompute_balances()
        row = persist_report(summary, created_by=1)
        stored = db.session.get(ReconciliationReport, int(row.id))
        self.assertEqual(stored.scope, "earnings_ledger")
        self.assertEqual(stored.drift_count, 0)
        self.assertEqual(stored.summary_dict()["balance_count"], 2)

    def test_beat_task_records_run(self):
        self._paid_order()
        result = run_balance_reconciliation.apply(kwargs={"persist": True}).get()
        self.assertEqual(result["drift_count"], 0)
        self.assertIn("report_id", result)
        run = TaskRun.query.filter_by(task_name="run_balance_reconciliation").one()
        self.assertTrue(run.ok)

    def test_flask_cli_command(self):
        self._paid_order()
        runner = self.app.test_cli_runner()
        result = runner.invoke(args=["reconcile-balances"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(json.loads(result.stdout)["drift_count"], 0)


if __name__ == "__main__":
    unittest.main()
