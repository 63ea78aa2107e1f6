from __future__ import annotations

import os
import unittest

from jobflow import create_app
from jobflow.extensions import db
from jobflow.integrations.side_effects.mock_provider import MockDispatcher
from jobflow.models import Balance, EarningsEvent, JobStatusLog, Order
from jobflow.services import lifecycle_service as lifecycle
from jobflow.services.readiness_gate import FileType
from jobflow.services.status_rules import OrderStatus

CLIENT = {"role": "client", "id": 10}
WRITER = {"role": "writer", "id": 20}
EDITOR = {"role": "editor", "id": 30}
MANAGER = {"role": "manager", "id": 50}
ADMIN = {"role": "admin", "id": 1}


class OrderLifecycleFlowTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._saved_env = {
            "SQLALCHEMY_DATABASE_URI": os.getenv("SQLALCHEMY_DATABASE_URI"),
            "SIDE_EFFECTS_MODE": os.getenv("SIDE_EFFECTS_MODE"),
        }
        os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite:///:memory:"
        os.environ["SIDE_EFFECTS_MODE"] = "mock"
        cls.app = create_app()
        cls.app.config.update(TESTING=True, TRANSITION_RETRY_BACKOFF_MS=0, SIDE_EFFECTS_ASYNC=False)

    @classmethod
    def tearDownClass(cls):
        for key, value in cls._saved_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    def setUp(self):
        self.dispatcher = MockDispatcher()
        self.app.config["SIDE_EFFECT_DISPATCHER"] = self.dispatcher
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.session.remove()
        db.drop_all()
        db.create_all()

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def _create(self, **kwargs) -> int:
        params = dict(amount="1250", pages=5, title="Essay", actor=CLIENT)
        params.update(kwargs)
        res = lifecycle.create_order(CLIENT["id"], **params)
        self.assertTrue(res.ok, res.error)
        return int(res.order["id"])

    def _move(self, order_id, status, actor=None, **payload):
        res = lifecycle.transition(order_id, status, actor, payload)
        self.assertTrue(res.ok, res.error)
        return res

    def _upload_complete_set(self, order_id):
        res = None
        for ftype in (FileType.FINAL_DOCUMENT, FileType.PLAGIARISM_REPORT, FileType.AI_REPORT):
            res = lifecycle.upload_artifact(order_id, WRITER["id"], ftype, {"file_name": f"{ftype}.pdf"})
            self.assertTrue(res.ok, res.error)
        return res

    def _to_delivered(self, order_id):
        self._move(order_id, OrderStatus.ACCEPTED, MANAGER)
        self._move(order_id, OrderStatus.ASSIGNED, MANAGER, writer_id=WRITER["id"])
        last = self._upload_complete_set(order_id)
        self.assertTrue(last.transitioned)
        self._move(order_id, OrderStatus.DELIVERED, EDITOR)

    def _balance(self, user_id, role):
        return Balance.query.filter_by(user_id=user_id, role=role).first()

    def test_create_order_applies_price_floor(self):
        res = lifecycle.create_order(CLIENT["id"], amount="1250", pages=5, actor=CLIENT)
        self.assertTrue(res.ok)
        self.assertEqual(res.order["status"], OrderStatus.PENDING)
        self.assertEqual(res.order["amount_minor"], 125000)
        self.assertEqual(res.order["writer_earnings_minor"], 100000)
        self.assertEqual(res.order["order_number"], f"JOB-{res.order['id']:06d}")

        denied = lifecycle.create_order(CLIENT["id"], amount="1000", pages=5, actor=CLIENT)
        self.assertFalse(denied.ok)
        self.assertEqual(denied.error.kind, lifecycle.ErrorKind.PRICING_VIOLATION)
        self.assertEqual(denied.error.code, "PRICING_VIOLATION")
        self.assertEqual(Order.query.count(), 1)

    def test_create_order_rejects_bad_inputs(self):
        for kwargs in ({"amount": "abc", "pages": 1}, {"amount": "-5", "pages": 1}, {"amount": "500", "pages": 0}):
            res = lifecycle.create_order(CLIENT["id"], actor=CLIENT, **kwargs)
            self.assertFalse(res.ok)
            self.assertEqual(res.error.code, "INVALID_PRICING_INPUT")
        res = lifecycle.create_order(CLIENT["id"], amount="300", pages=1, writer_earnings="301", actor=ADMIN)
        self.assertFalse(res.ok)
        self.assertEqual(res.error.code, "PRICING_VIOLATION")
        self.assertEqual(Order.query.count(), 0)

    def test_writer_earnings_must_leave_room_for_manager_fees(self):
        crowded = lifecycle.create_order(
            CLIENT["id"], amount="1250", pages=5, writer_earnings="1250", manager_id=MANAGER["id"], actor=ADMIN
        )
        self.assertFalse(crowded.ok)
        self.assertEqual(crowded.error.code, "PRICING_VIOLATION")
        self.assertEqual(crowded.error.details["manager_fee_reserve"], "40.00")
        self.assertEqual(Order.query.count(), 0)

        # 10 for assignment plus 10 + 5 * 4 for submission.
        order_id = self._create(writer_earnings="1210", manager_id=MANAGER["id"], actor=ADMIN)
        self._to_delivered(order_id)
        order = db.session.get(Order, order_id)
        self.assertEqual(order.manager_earnings_minor, 4000)
        self.assertEqual(order.status, OrderStatus.DELIVERED)

    def test_reprice_rechecks_manager_fee_room(self):
        order_id = self._create()
        res = lifecycle.reprice_order(order_id, ADMIN, writer_earnings="1240")
        self.assertFalse(res.ok)
        self.assertEqual(res.error.code, "PRICING_VIOLATION")
        self.assertEqual(db.session.get(Order, order_id).writer_earnings_minor, 100000)

    def test_create_order_writes_initial_history(self):
        order_id = self._create()
        history = lifecycle.get_status_history(order_id)
        self.assertTrue(history.ok)
        rows = history.order["history"]
        self.assertEqual(len(rows), 1)
        self.assertIsNone(rows[0]["old_status"])
        self.assertEqual(rows[0]["new_status"], OrderStatus.PENDING)

    def test_full_lifecycle_distributes_earnings(self):
        order_id = self._create()
        accepted = self._move(order_id, OrderStatus.ACCEPTED, MANAGER)
        self.assertEqual(accepted.order["manager_id"], MANAGER["id"])

        assigned = self._move(order_id, OrderStatus.ASSIGNED, MANAGER, writer_id=WRITER["id"])
        self.assertEqual(assigned.order["writer_id"], WRITER["id"])
        self.assertEqual(assigned.order["manager_earnings_minor"], 1000)
        self.assertEqual(self._balance(MANAGER["id"], "manager").available_minor, 1000)

        started = self._move(order_id, OrderStatus.IN_PROGRESS, WRITER)
        self.assertEqual(started.order["status"], OrderStatus.IN_PROGRESS)
        last = self._upload_complete_set(order_id)
        self.assertTrue(last.transitioned)
        self.assertEqual(last.order["status"], OrderStatus.EDITING)

        delivered = self._move(order_id, OrderStatus.DELIVERED, EDITOR)
        self.assertTrue(delivered.order["admin_approved"])
        self.assertEqual(delivered.order["manager_earnings_minor"], 4000)
        self.assertEqual(self._balance(MANAGER["id"], "manager").total_earned_minor, 4000)

        self._move(order_id, OrderStatus.APPROVED, CLIENT)
        paid = self._move(order_id, OrderStatus.PAID)
        self.assertTrue(paid.order["payment_confirmed"])
        self.assertEqual(paid.order["platform_profit_minor"], 21000)
        self.assertEqual(self._balance(WRITER["id"], "writer").available_minor, 100000)

        completed = self._move(order_id, OrderStatus.COMPLETED, ADMIN)
        self.assertIsNotNone(completed.order["completed_at"])

        split = paid.order["writer_earnings_minor"] + paid.order["manager_earnings_minor"] + paid.order["platform_profit_minor"]
        self.assertLessEqual(split, paid.order["amount_minor"])
        self.assertEqual(EarningsEvent.query.filter_by(order_id=order_id).count(), 3)

        history = [(r.old_status, r.new_status) for r in JobStatusLog.query.filter_by(order_id=order_id).order_by(JobStatusLog.id)]
        self.assertEqual(
            history,
            [
                (None, "pending"),
                ("pending", "accepted"),
                ("accepted", "assigned"),
                ("assigned", "in_progress"),
                ("in_progress", "editing"),
                ("editing", "delivered"),
                ("delivered", "approved"),
                ("approved", "paid"),
                ("paid", "completed"),
            ],
        )

    def test_payment_confirmation_is_idempotent(self):
        order_id = self._create()
        self._to_delivered(order_id)
        self._move(order_id, OrderStatus.APPROVED, CLIENT)
        self._move(order_id, OrderStatus.PAID)
        before = self._balance(WRITER["id"], "writer").available_minor
        self.assertEqual(before, 100000)

        again = lifecycle.transition(order_id, OrderStatus.PAID, None)
        self.assertFalse(again.ok)
        self.assertEqual(again.error.code, "ALREADY_PAID")
        self.assertEqual(again.error.kind, lifecycle.ErrorKind.INVALID_TRANSITION)
        db.session.expire_all()
        self.assertEqual(self._balance(WRITER["id"], "writer").available_minor, before)
        self.assertEqual(
            EarningsEvent.query.filter_by(order_id=order_id, earning_type="completion_payout").count(), 1
        )

    def test_denied_transition_changes_nothing(self):
        order_id = self._create()
        res = lifecycle.transition(order_id, OrderStatus.DELIVERED, ADMIN)
        self.assertFalse(res.ok)
        self.assertEqual(res.error.code, "INVALID_TRANSITION")
        self.assertEqual(res.effects, [])
        self.assertEqual(self.dispatcher.audits[-1]["action"], "order.created")
        order = db.session.get(Order, order_id)
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(JobStatusLog.query.filter_by(order_id=order_id).count(), 1)

    def test_missing_order_and_wrong_roles(self):
        res = lifecycle.transition(9999, OrderStatus.ACCEPTED, MANAGER)
        self.assertEqual(res.error.kind, lifecycle.ErrorKind.NOT_FOUND)
        self.assertEqual(res.error.code, "ORDER_NOT_FOUND")

        order_id = self._create()
        res = lifecycle.transition(order_id, OrderStatus.ACCEPTED, CLIENT)
        self.assertEqual(res.error.kind, lifecycle.ErrorKind.FORBIDDEN)
        self.assertEqual(res.error.code, "FORBIDDEN_ROLE")

    def test_only_the_orders_client_may_approve(self):
        order_id = self._create()
        self._to_delivered(order_id)
        res = lifecycle.transition(order_id, OrderStatus.APPROVED, {"role": "client", "id": 999})
        self.assertFalse(res.ok)
        self.assertEqual(res.error.code, "FORBIDDEN_ACTOR")
        self.assertEqual(res.error.kind, lifecycle.ErrorKind.FORBIDDEN)

    def test_assignment_requires_writer(self):
        order_id = self._create()
        self._move(order_id, OrderStatus.ACCEPTED, MANAGER)
        res = lifecycle.transition(order_id, OrderStatus.ASSIGNED, MANAGER)
        self.assertEqual(res.error.code, "WRITER_REQUIRED")

    def test_delivery_is_gated_on_artifacts(self):
        order_id = self._create(requires_reports=True)
        self._move(order_id, OrderStatus.ACCEPTED, MANAGER)
        self._move(order_id, OrderStatus.ASSIGNED, MANAGER, writer_id=WRITER["id"])
        lifecycle.upload_artifact(order_id, WRITER["id"], FileType.FINAL_DOCUMENT)
        # Reports missing: upload does not advance and nothing can deliver.
        order = db.session.get(Order, order_id)
        self.assertEqual(order.status, OrderStatus.ASSIGNED)
        self._move(order_id, OrderStatus.EDITING)
        res = lifecycle.transition(order_id, OrderStatus.DELIVERED, EDITOR)
        self.assertFalse(res.ok)
        self.assertEqual(res.error.kind, lifecycle.ErrorKind.ARTIFACTS_NOT_READY)
        self.assertEqual(res.error.details["missing"], ["ai_report", "plagiarism_report"])
        self.assertIsNone(EarningsEvent.query.filter_by(earning_type="submission_fee").first())

    def test_revision_cycle_requires_fresh_final_file(self):
        order_id = self._create()
        self._to_delivered(order_id)
        missing_notes = lifecycle.transition(order_id, OrderStatus.REVISION, CLIENT)
        self.assertEqual(missing_notes.error.code, "REVISION_NOTES_REQUIRED")

        rev = self._move(order_id, OrderStatus.REVISION, CLIENT, revision_notes="Fix the citations")
        self.assertTrue(rev.order["revision_requested"])
        self.assertEqual(rev.order["revision_notes"], "Fix the citations")
        self.assertFalse(rev.order["revision_submission_complete"])

        blocked = lifecycle.transition(order_id, OrderStatus.EDITING, None)
        self.assertEqual(blocked.error.kind, lifecycle.ErrorKind.ARTIFACTS_NOT_READY)
        self.assertEqual(blocked.error.details["missing"], ["revision_or_final"])

        up = lifecycle.upload_artifact(order_id, WRITER["id"], FileType.REVISION)
        self.assertTrue(up.ok)
        self.assertTrue(up.transitioned)
        self.assertEqual(up.order["status"], OrderStatus.EDITING)
        self.assertTrue(up.order["revision_submission_complete"])

        redelivered = self._move(order_id, OrderStatus.DELIVERED, EDITOR)
        # The submission fee is paid only once per order.
        self.assertEqual(redelivered.order["manager_earnings_minor"], 4000)
        self.assertEqual(EarningsEvent.query.filter_by(earning_type="submission_fee").count(), 1)

    def test_hold_and_resume_returns_to_prior_status(self):
        order_id = self._create()
        self._move(order_id, OrderStatus.ACCEPTED, MANAGER)
        held = self._move(order_id, OrderStatus.ON_HOLD, MANAGER)
        self.assertEqual(held.order["held_from_status"], OrderStatus.ACCEPTED)

        wrong = lifecycle.transition(order_id, OrderStatus.PENDING, MANAGER)
        self.assertEqual(wrong.error.code, "INVALID_TRANSITION")

        resumed = self._move(order_id, OrderStatus.ACCEPTED, MANAGER)
        self.assertIsNone(resumed.order["held_from_status"])

    def test_cancelled_order_is_closed(self):
        order_id = self._create()
        self._move(order_id, OrderStatus.CANCELLED, ADMIN)
        res = lifecycle.transition(order_id, OrderStatus.ACCEPTED, ADMIN)
        self.assertEqual(res.error.code, "INVALID_TRANSITION")
        up = lifecycle.upload_artifact(order_id, WRITER["id"], FileType.FINAL_DOCUMENT)
        self.assertEqual(up.error.code, "ORDER_CLOSED")

    def test_transition_emits_notifications_and_audit(self):
        order_id = self._create()
        self._move(order_id, OrderStatus.ACCEPTED, MANAGER)
        types = [n["type"] for n in self.dispatcher.notifications]
        self.assertIn("order_accepted", types)
        audit = self.dispatcher.audits[-1]
        self.assertEqual(audit["action"], "order.transition")
        self.assertEqual(audit["details"]["from"], OrderStatus.PENDING)
        self.assertEqual(audit["details"]["to"], OrderStatus.ACCEPTED)

    def test_reprice_is_admin_only_and_rechecks_floor(self):
        order_id = self._create()
        denied = lifecycle.reprice_order(order_id, MANAGER, amount="2000")
        self.assertEqual(denied.error.code, "FORBIDDEN_ROLE")

        low = lifecycle.reprice_order(order_id, ADMIN, pages=6)
        self.assertEqual(low.error.code, "PRICING_VIOLATION")

        ok = lifecycle.reprice_order(order_id, ADMIN, amount="1500", pages=6)
        self.assertTrue(ok.ok, ok.error)
        self.assertEqual(ok.order["amount_minor"], 150000)
        self.assertEqual(ok.order["pages"], 6)

    def test_reprice_frozen_after_payment(self):
        order_id = self._create()
        self._to_delivered(order_id)
        self._move(order_id, OrderStatus.APPROVED, CLIENT)
        self._move(order_id, OrderStatus.PAID)
        res = lifecycle.reprice_order(order_id, ADMIN, amount="5000")
        self.assertEqual(res.error.code, "ALREADY_PAID")

    def test_snapshot_includes_files_and_ledger(self):
        order_id = self._create(requires_reports=False)
        self._move(order_id, OrderStatus.ACCEPTED, MANAGER)
        self._move(order_id, OrderStatus.ASSIGNED, MANAGER, writer_id=WRITER["id"])
        lifecycle.upload_artifact(order_id, WRITER["id"], FileType.DRAFT)
        snap = lifecycle.get_order_snapshot(order_id)
        self.assertTrue(snap.ok)
        self.assertEqual([f["file_type"] for f in snap.order["files"]], ["draft"])
        self.assertEqual(snap.order["readiness"]["missing"], ["final_document"])
        self.assertEqual(snap.order["earnings_events"][0]["earning_type"], "assignment_fee")
        self.assertFalse(lifecycle.get_order_snapshot(424242).ok)


if __name__ == "__main__":
    unittest.main()
