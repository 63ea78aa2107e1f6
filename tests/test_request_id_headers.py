from __future__ import annotations

import os
import unittest

from jobflow import create_app
from jobflow.extensions import db
from jobflow.integrations.side_effects.in_app_provider import InAppDispatcher
from jobflow.models import AuditLog
from jobflow.utils.jwt_utils import create_access_token


class RequestIdTracingTestCase(unittest.TestCase):
    """Request ids travel from the header into responses, error bodies and audit rows."""

    @classmethod
    def setUpClass(cls):
        cls._prev_db_uri = os.getenv("SQLALCHEMY_DATABASE_URI")
        os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite:///:memory:"
        cls.app = create_app()
        cls.app.config.update(TESTING=True, SIDE_EFFECTS_ASYNC=False, SIDE_EFFECT_DISPATCHER=InAppDispatcher())
        cls.client = cls.app.test_client()
        cls.client_auth = {"Authorization": f"Bearer {create_access_token(17, 'client')}"}

    @classmethod
    def tearDownClass(cls):
        if cls._prev_db_uri is None:
            os.environ.pop("SQLALCHEMY_DATABASE_URI", None)
        else:
            os.environ["SQLALCHEMY_DATABASE_URI"] = cls._prev_db_uri

    def setUp(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.create_all()

    def test_missing_request_id_is_generated(self):
        res = self.client.get("/api/health")
        first = res.headers.get("X-Request-Id")
        second = self.client.get("/api/health").headers.get("X-Request-Id")
        self.assertTrue(first)
        self.assertNotEqual(first, second)

    def test_order_creation_audit_carries_request_id(self):
        res = self.client.post(
            "/api/orders",
            json={"pages": 1, "amount": "250"},
            headers=dict(self.client_auth, **{"X-Request-Id": "order-intake-7"}),
        )
        self.assertEqual(res.status_code, 201)
        self.assertEqual(res.headers.get("X-Request-Id"), "order-intake-7")
        with self.app.app_context():
            audit = AuditLog.query.filter_by(action="order.created").one()
            self.assertEqual(audit.details_dict().get("request_id"), "order-intake-7")

    def test_denied_transition_echoes_request_id_in_body(self):
        res = self.client.post(
            "/api/orders/404/transition",
            json={"status": "accepted"},
            headers=dict(self.client_auth, **{"X-Request-Id": "rid-missing-order"}),
        )
        self.assertEqual(res.status_code, 404)
        body = res.get_json()
        self.assertEqual(body["error"]["code"], "ORDER_NOT_FOUND")
        self.assertEqual(body["trace_id"], "rid-missing-order")

    def test_unauthenticated_error_uses_generated_id(self):
        res = self.client.post("/api/orders", json={"pages": 1, "amount": "250"})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.get_json()["trace_id"], res.headers.get("X-Request-Id"))


if __name__ == "__main__":
    unittest.main()
