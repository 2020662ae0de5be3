from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from campusmart import create_app
from campusmart.extensions import db


class ApiErrorContractTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._prev_db_uri = os.getenv("SQLALCHEMY_DATABASE_URI")
        os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite:///:memory:"
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        with cls.app.app_context():
            db.create_all()
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        if cls._prev_db_uri is None:
            os.environ.pop("SQLALCHEMY_DATABASE_URI", None)
        else:
            os.environ["SQLALCHEMY_DATABASE_URI"] = cls._prev_db_uri

    def _assert_envelope(self, res, status: int) -> dict:
        self.assertEqual(res.status_code, status)
        self.assertTrue(res.is_json)
        body = res.get_json(force=True) or {}
        self.assertFalse(bool(body.get("success", True)))
        self.assertTrue(str(body.get("error") or "").strip())
        self.assertTrue(str(body.get("message") or "").strip())
        self.assertTrue(str(body.get("trace_id") or "").strip())
        return body

    def test_unknown_api_route_returns_json_error_shape(self):
        body = self._assert_envelope(self.client.get("/api/does-not-exist"), 404)
        self.assertEqual(body["error"], "NOT_FOUND")

    def test_wrong_method_returns_json_error_shape(self):
        body = self._assert_envelope(self.client.delete("/api/health"), 405)
        self.assertEqual(body["error"], "METHOD_NOT_ALLOWED")

    def test_unhandled_exception_is_internal_error(self):
        with patch(
            "campusmart.services.order_status_service.list_order_statuses",
            side_effect=RuntimeError("boom"),
        ), patch("campusmart.utils.auth.current_actor") as actor:
            from campusmart.utils.auth import Actor

            actor.return_value = Actor(id=1, role="admin")
            body = self._assert_envelope(self.client.get("/api/admin/order-status"), 500)
        self.assertEqual(body["error"], "INTERNAL_ERROR")
        self.assertNotIn("boom", body["message"])

    def test_domain_error_carries_context(self):
        with patch("campusmart.utils.auth.current_actor") as actor:
            from campusmart.utils.auth import Actor

            actor.return_value = Actor(id=1, role="admin")
            body = self._assert_envelope(
                self.client.put("/api/admin/order-status/42", json={"step": 0, "status": "completed"}),
                400,
            )
        self.assertEqual(body["error"], "OUT_OF_RANGE")
        self.assertEqual(body["context"], {"step": 0})


if __name__ == "__main__":
    unittest.main()
