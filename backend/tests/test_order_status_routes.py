from __future__ import annotations

import os
import time
import unittest

from campusmart import create_app
from campusmart.extensions import db
from campusmart.models import Listing, OrderStatus, User
from campusmart.utils.jwt_utils import create_token


class OrderStatusRoutesTestCase(unittest.TestCase):
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

    def _seed(self) -> dict:
        suffix = int(time.time_ns())
        with self.app.app_context():
            buyer = User(name="Route Buyer", email=f"route-buyer-{suffix}@campusmart.test", role="buyer", phone="0801")
            seller = User(name="Route Seller", email=f"route-seller-{suffix}@campusmart.test", role="seller")
            admin = User(name="Route Admin", email=f"route-admin-{suffix}@campusmart.test", role="admin")
            other_admin = User(name="Route Admin 2", email=f"route-admin2-{suffix}@campusmart.test", role="admin")
            for user in (buyer, seller, admin, other_admin):
                user.set_password("Passw0rd!")
            db.session.add_all([buyer, seller, admin, other_admin])
            db.session.commit()
            listing = Listing(seller_id=int(seller.id), title="Bicycle", price=1000.0, status="active")
            db.session.add(listing)
            db.session.commit()
            return {
                "buyer_id": int(buyer.id),
                "seller_id": int(seller.id),
                "admin_id": int(admin.id),
                "other_admin_id": int(other_admin.id),
                "listing_id": int(listing.id),
                "buyer_headers": {"Authorization": f"Bearer {create_token(int(buyer.id))}"},
                "admin_headers": {"Authorization": f"Bearer {create_token(int(admin.id))}"},
            }

    def _verified_record(self) -> dict:
        ids = self._seed()
        res = self.client.post(
            "/api/payment-proofs",
            json={"listing_id": ids["listing_id"], "image_ref": "uploads/proofs/bike.png"},
            headers=ids["buyer_headers"],
        )
        self.assertEqual(res.status_code, 201, res.get_json())
        proof = res.get_json()["data"]
        res = self.client.post(
            f"/api/payment-proofs/{proof['id']}/decision",
            json={"decision": "verify"},
            headers=ids["admin_headers"],
        )
        self.assertEqual(res.status_code, 200, res.get_json())
        res = self.client.post("/api/admin/order-status/sync", headers=ids["admin_headers"])
        self.assertEqual(res.status_code, 200, res.get_json())
        with self.app.app_context():
            record = OrderStatus.query.filter_by(order_id=int(proof["order_id"])).one()
            ids["record_id"] = int(record.id)
        ids["proof_id"] = int(proof["id"])
        return ids

    def _assert_error(self, res, status: int, code: str):
        self.assertEqual(res.status_code, status, res.get_json())
        body = res.get_json() or {}
        self.assertFalse(body.get("success", True))
        self.assertEqual(body.get("error"), code)
        self.assertTrue(str(body.get("message") or "").strip())
        self.assertTrue(str(body.get("trace_id") or "").strip())

    def test_missing_token_is_unauthorized(self):
        res = self.client.get("/api/admin/order-status")
        self._assert_error(res, 401, "UNAUTHORIZED")
        res = self.client.put("/api/admin/order-status/1", json={"step": 2, "status": "completed", "details": "x"})
        self._assert_error(res, 401, "UNAUTHORIZED")

    def test_invalid_token_is_unauthorized(self):
        res = self.client.get("/api/admin/order-status", headers={"Authorization": "Bearer not-a-jwt"})
        self._assert_error(res, 401, "UNAUTHORIZED")

    def test_non_admin_is_forbidden(self):
        ids = self._seed()
        res = self.client.post("/api/admin/order-status/sync", headers=ids["buyer_headers"])
        self._assert_error(res, 403, "FORBIDDEN")
        res = self.client.post("/api/payment-proofs/1/decision", json={"decision": "verify"}, headers=ids["buyer_headers"])
        self._assert_error(res, 403, "FORBIDDEN")

    def test_sync_then_list_with_statistics(self):
        ids = self._verified_record()
        res = self.client.get("/api/admin/order-status?status=in_progress&limit=5", headers=ids["admin_headers"])
        self.assertEqual(res.status_code, 200)
        data = res.get_json()["data"]
        self.assertTrue(any(row["id"] == ids["record_id"] for row in data["orders"]))
        self.assertEqual(data["pagination"]["limit"], 5)
        self.assertGreaterEqual(data["statistics"]["by_status"]["in_progress"], 1)
        self.assertGreaterEqual(data["statistics"]["by_step"]["2"], 1)
        self.assertEqual(len(data["order_steps"]), 7)
        self.assertEqual(data["order_steps"][5]["name"], "Payment Released")
        for row in data["orders"]:
            self.assertIsNotNone(row["commission_amount"])
            self.assertIsNotNone(row["buyer_price"])

    def test_get_single_record_and_unknown_record(self):
        ids = self._verified_record()
        res = self.client.get(f"/api/admin/order-status/{ids['record_id']}", headers=ids["admin_headers"])
        self.assertEqual(res.status_code, 200)
        data = res.get_json()["data"]
        self.assertEqual(data["current_step"], 2)
        self.assertEqual(data["commission_amount"], 100.0)
        self.assertEqual(data["buyer_price"], 1100.0)

        res = self.client.get("/api/admin/order-status/99999999", headers=ids["admin_headers"])
        self._assert_error(res, 404, "RECORD_NOT_FOUND")
        res = self.client.get("/api/admin/order-status/abc", headers=ids["admin_headers"])
        self._assert_error(res, 400, "INVALID_IDENTIFIER")

    def test_advance_validation_errors_map_to_400(self):
        ids = self._verified_record()
        url = f"/api/admin/order-status/{ids['record_id']}"
        cases = (
            ({"step": 9, "status": "completed", "details": "x"}, "OUT_OF_RANGE"),
            ({"step": 4, "status": "completed", "details": "x"}, "STEP_SKIPPED"),
            ({"step": 3, "status": "completed", "details": "x"}, "PRIOR_STEP_INCOMPLETE"),
            ({"step": 2, "status": "completed", "details": ""}, "MISSING_DETAILS"),
            ({"step": 3, "status": "failed", "details": "x"}, "NOT_CURRENT_STEP"),
        )
        for body, code in cases:
            res = self.client.put(url, json=body, headers=ids["admin_headers"])
            self._assert_error(res, 400, code)

    def test_advance_and_terminal_conflict(self):
        ids = self._verified_record()
        url = f"/api/admin/order-status/{ids['record_id']}"
        res = self.client.put(url, json={"step": 2, "status": "completed", "details": "sold"}, headers=ids["admin_headers"])
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(res.get_json()["data"]["current_step"], 3)

        res = self.client.put(url, json={"step": 2, "status": "completed", "details": "again"}, headers=ids["admin_headers"])
        self._assert_error(res, 409, "STEP_ALREADY_COMPLETED")

        res = self.client.put(url, json={"step": 3, "status": "failed", "details": "buyer vanished"}, headers=ids["admin_headers"])
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["data"]["overall_status"], "failed")

        res = self.client.put(url, json={"step": 3, "status": "completed", "details": "found"}, headers=ids["admin_headers"])
        self._assert_error(res, 409, "ALREADY_TERMINAL")

    def test_decision_errors(self):
        ids = self._verified_record()
        res = self.client.post(
            f"/api/payment-proofs/{ids['proof_id']}/decision",
            json={"decision": "verify"},
            headers=ids["admin_headers"],
        )
        self._assert_error(res, 409, "ALREADY_PROCESSED")
        res = self.client.post(
            "/api/payment-proofs/99999999/decision",
            json={"decision": "verify"},
            headers=ids["admin_headers"],
        )
        self._assert_error(res, 404, "PROOF_NOT_FOUND")

        fresh = self._seed()
        res = self.client.post(
            "/api/payment-proofs",
            json={"listing_id": fresh["listing_id"], "image_ref": "uploads/proofs/x.png", "amount": 1100},
            headers=fresh["buyer_headers"],
        )
        proof_id = res.get_json()["data"]["id"]
        res = self.client.post(
            f"/api/payment-proofs/{proof_id}/decision",
            json={"decision": "reject"},
            headers=ids["admin_headers"],
        )
        self._assert_error(res, 400, "MISSING_REASON")
        res = self.client.post(
            f"/api/payment-proofs/{proof_id}/decision",
            json={"decision": "reject", "rejection_reason": "amount does not match"},
            headers=ids["admin_headers"],
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["data"]["status"], "rejected")

    def test_admin_review_queue(self):
        ids = self._seed()
        self.client.post(
            "/api/payment-proofs",
            json={"listing_id": ids["listing_id"], "image_ref": "uploads/proofs/q.png"},
            headers=ids["buyer_headers"],
        )
        res = self.client.get(
            f"/api/admin/payment-proofs?status=pending_verification&buyer_id={ids['buyer_id']}",
            headers=ids["admin_headers"],
        )
        self.assertEqual(res.status_code, 200)
        data = res.get_json()["data"]
        self.assertEqual(data["pagination"]["total"], 1)
        self.assertEqual(data["items"][0]["status"], "pending_verification")

    def test_assign_admin_and_unassigned_filter(self):
        ids = self._verified_record()
        url = f"/api/admin/order-status/{ids['record_id']}/assign-admin"
        res = self.client.put(url, json={"admin_id": ids["buyer_id"]}, headers=ids["admin_headers"])
        self._assert_error(res, 404, "RECORD_NOT_FOUND")

        res = self.client.put(url, json={"admin_id": ids["other_admin_id"]}, headers=ids["admin_headers"])
        self.assertEqual(res.status_code, 200, res.get_json())
        data = res.get_json()["data"]
        self.assertEqual(data["assigned_admin_id"], ids["other_admin_id"])
        self.assertEqual(data["assigned_by"], ids["admin_id"])

        res = self.client.get(
            f"/api/admin/order-status?admin={ids['other_admin_id']}", headers=ids["admin_headers"]
        )
        self.assertEqual([row["id"] for row in res.get_json()["data"]["orders"]], [ids["record_id"]])
        res = self.client.get("/api/admin/order-status?admin=unassigned&limit=100", headers=ids["admin_headers"])
        self.assertNotIn(ids["record_id"], [row["id"] for row in res.get_json()["data"]["orders"]])

    def test_full_flow_produces_seller_transaction(self):
        ids = self._verified_record()
        url = f"/api/admin/order-status/{ids['record_id']}"
        for step in range(2, 8):
            res = self.client.put(
                url,
                json={"step": step, "status": "completed", "details": f"step {step}"},
                headers=ids["admin_headers"],
            )
            self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(res.get_json()["data"]["overall_status"], "completed")

        res = self.client.get(
            f"/api/admin/seller-transactions?seller_id={ids['seller_id']}", headers=ids["admin_headers"]
        )
        self.assertEqual(res.status_code, 200)
        data = res.get_json()["data"]
        self.assertEqual(data["summary"]["count"], 1)
        self.assertEqual(data["summary"]["gross_amount"], 1100.0)
        self.assertEqual(data["summary"]["commission_amount"], 100.0)
        self.assertEqual(data["summary"]["net_amount"], 1000.0)

        res = self.client.post("/api/admin/reconcile/payouts", json={}, headers=ids["admin_headers"])
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["data"]["summary"]["drift_count"], 0)
        self.assertIsNotNone(res.get_json()["data"]["report_id"])

    def test_commission_settings(self):
        ids = self._seed()
        res = self.client.get("/api/admin/settings", headers=ids["admin_headers"])
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["data"]["default_commission_percent"], 10.0)

        res = self.client.put("/api/admin/settings", json={"commission_percent": 140}, headers=ids["admin_headers"])
        self._assert_error(res, 400, "VALIDATION_FAILED")
        res = self.client.put("/api/admin/settings", json={"commission_percent": "ten"}, headers=ids["admin_headers"])
        self._assert_error(res, 400, "VALIDATION_FAILED")

        res = self.client.put("/api/admin/settings", json={"commission_percent": 7.5}, headers=ids["admin_headers"])
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["data"]["effective_commission_percent"], 7.5)

        res = self.client.put("/api/admin/settings", json={"commission_percent": 10}, headers=ids["admin_headers"])
        self.assertEqual(res.status_code, 200)


if __name__ == "__main__":
    unittest.main()
