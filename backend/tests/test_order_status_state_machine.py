from __future__ import annotations

import os
import time
import unittest
from datetime import datetime
from unittest.mock import patch

from campusmart import create_app
from campusmart.extensions import db
from campusmart.jobs.order_status_sync import sync_verified_payments
from campusmart.models import (
    Listing,
    Order,
    OrderStatus,
    OrderStatusStep,
    PaymentProof,
    PayoutLedgerEntry,
    User,
)
from campusmart.services import order_status_service as machine
from campusmart.services.errors import (
    AlreadyTerminal,
    ConcurrentUpdate,
    MissingDetails,
    NotCurrentStep,
    OutOfRange,
    PayoutLedgerError,
    PriorStepIncomplete,
    StepAlreadyCompleted,
    StepSkipped,
)
from campusmart.utils.auth import Actor

DEFAULT_PCT = 10.0


class OrderStatusStateMachineTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._prev_db_uri = os.getenv("SQLALCHEMY_DATABASE_URI")
        os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite:///:memory:"
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        with cls.app.app_context():
            db.create_all()

    @classmethod
    def tearDownClass(cls):
        if cls._prev_db_uri is None:
            os.environ.pop("SQLALCHEMY_DATABASE_URI", None)
        else:
            os.environ["SQLALCHEMY_DATABASE_URI"] = cls._prev_db_uri

    def _seed_record(self, *, price: float = 1000.0, commission=None, charged: float | None = 1100.0) -> dict:
        suffix = int(time.time_ns())
        buyer = User(name="Ada Buyer", email=f"sm-buyer-{suffix}@campusmart.test", role="buyer", phone="08031111111")
        seller = User(name="Sam Seller", email=f"sm-seller-{suffix}@campusmart.test", role="seller", phone="08032222222")
        admin = User(name="Ola Admin", email=f"sm-admin-{suffix}@campusmart.test", role="admin")
        for user in (buyer, seller, admin):
            user.set_password("Passw0rd!")
        db.session.add_all([buyer, seller, admin])
        db.session.commit()

        listing = Listing(
            seller_id=int(seller.id),
            title="Mini fridge",
            price=price,
            commission=commission,
            status="reserved",
            sold_to=int(buyer.id),
        )
        db.session.add(listing)
        db.session.commit()

        order = Order(
            buyer_id=int(buyer.id),
            seller_id=int(seller.id),
            listing_id=int(listing.id),
            amount=charged,
            status="payment_verified",
        )
        db.session.add(order)
        db.session.commit()

        now = datetime.utcnow()
        proof = PaymentProof(
            order_id=int(order.id),
            buyer_id=int(buyer.id),
            seller_id=int(seller.id),
            listing_id=int(listing.id),
            amount=charged,
            image_ref="uploads/proofs/fridge.png",
            status="verified",
            uploaded_at=now,
            verified_at=now,
            verified_by=int(admin.id),
        )
        db.session.add(proof)
        db.session.commit()
        order.payment_proof_id = int(proof.id)
        db.session.commit()

        sync_verified_payments(default_commission_percent=DEFAULT_PCT)
        record = OrderStatus.query.filter_by(order_id=int(order.id)).one()
        return {
            "record_id": int(record.id),
            "order_id": int(order.id),
            "listing_id": int(listing.id),
            "buyer_id": int(buyer.id),
            "seller_id": int(seller.id),
            "admin": Actor(id=int(admin.id), role="admin"),
        }

    def _advance(self, ids: dict, step, outcome="completed", details="done"):
        return machine.advance_step(
            ids["record_id"],
            step,
            outcome,
            details,
            actor=ids["admin"],
            default_commission_percent=DEFAULT_PCT,
        )

    def _assert_pointer_matches_completed_prefix(self, data: dict):
        completed = 0
        for row in data["steps"]:
            if row["status"] != "completed":
                break
            completed += 1
        self.assertEqual(data["current_step"], min(completed + 1, 7))

    def test_seeded_record_starts_at_step_two(self):
        with self.app.app_context():
            ids = self._seed_record()
            data = machine.get_order_status(ids["record_id"], default_commission_percent=DEFAULT_PCT)
            self.assertEqual(data["current_step"], 2)
            self.assertEqual(data["overall_status"], "in_progress")
            self.assertEqual([row["step"] for row in data["steps"]], [1, 2, 3, 4, 5, 6, 7])
            self.assertEqual(data["steps"][0]["status"], "completed")
            self.assertEqual(data["steps"][0]["completed_by"], ids["admin"].id)
            self.assertTrue(all(row["status"] == "pending" for row in data["steps"][1:]))
            self.assertEqual(data["buyer_name"], "Ada Buyer")
            self.assertEqual(data["listing_title"], "Mini fridge")
            self.assertEqual(data["commission_amount"], 100.0)
            self.assertEqual(data["buyer_price"], 1100.0)
            self._assert_pointer_matches_completed_prefix(data)

    def test_step_out_of_range(self):
        with self.app.app_context():
            ids = self._seed_record()
            for bad in (0, 8, -1, "x"):
                with self.assertRaises(OutOfRange):
                    self._advance(ids, bad)

    def test_skipping_and_prior_incomplete(self):
        with self.app.app_context():
            ids = self._seed_record()
            with self.assertRaises(StepSkipped):
                self._advance(ids, 4)
            with self.assertRaises(PriorStepIncomplete):
                self._advance(ids, 3)
            data = machine.get_order_status(ids["record_id"], default_commission_percent=DEFAULT_PCT)
            self.assertEqual(data["current_step"], 2)

    def test_completing_requires_details(self):
        with self.app.app_context():
            ids = self._seed_record()
            with self.assertRaises(MissingDetails):
                self._advance(ids, 2, details="   ")
            with self.assertRaises(MissingDetails):
                self._advance(ids, 2, details=None)

    def test_completing_a_completed_step_is_rejected(self):
        with self.app.app_context():
            ids = self._seed_record()
            with self.assertRaises(StepAlreadyCompleted):
                self._advance(ids, 1)
            self._advance(ids, 2, details="listing marked sold")
            with self.assertRaises(StepAlreadyCompleted):
                self._advance(ids, 2, details="again")

    def test_step_two_marks_listing_sold_to_buyer(self):
        with self.app.app_context():
            ids = self._seed_record()
            data = self._advance(ids, 2, details="listing marked sold")
            self.assertEqual(data["current_step"], 3)
            listing = db.session.get(Listing, ids["listing_id"])
            self.assertEqual(listing.status, "sold")
            self.assertEqual(int(listing.sold_to), ids["buyer_id"])
            self.assertIsNotNone(listing.sold_at)

    def test_only_current_step_can_fail(self):
        with self.app.app_context():
            ids = self._seed_record()
            with self.assertRaises(NotCurrentStep):
                self._advance(ids, 3, outcome="failed", details="buyer unreachable")
            with self.assertRaises(MissingDetails):
                self._advance(ids, 2, outcome="failed", details="")

    def test_failure_is_terminal(self):
        with self.app.app_context():
            ids = self._seed_record()
            self._advance(ids, 2, details="sold")
            data = self._advance(ids, 3, outcome="failed", details="buyer unreachable for a week")
            self.assertEqual(data["overall_status"], "failed")
            self.assertIsNotNone(data["failed_at"])
            self.assertEqual(data["steps"][2]["status"], "failed")
            self.assertEqual(data["current_step"], 3)

            for step, outcome in ((3, "completed"), (4, "completed"), (3, "failed"), (9, "completed")):
                expected = OutOfRange if step == 9 else AlreadyTerminal
                with self.assertRaises(expected):
                    self._advance(ids, step, outcome=outcome, details="retry")

    def test_full_run_completes_and_writes_one_balanced_ledger_entry(self):
        with self.app.app_context():
            ids = self._seed_record()
            for step in range(2, 8):
                data = self._advance(ids, step, details=f"step {step} done")
                self._assert_pointer_matches_completed_prefix(data)
                if step == 6:
                    self.assertIsNotNone(data["payout"])

            self.assertEqual(data["overall_status"], "completed")
            self.assertEqual(data["current_step"], 7)
            self.assertIsNotNone(data["completed_at"])

            entries = PayoutLedgerEntry.query.filter_by(order_status_id=ids["record_id"]).all()
            self.assertEqual(len(entries), 1)
            entry = entries[0]
            self.assertEqual(entry.gross_amount, 1100.0)
            self.assertEqual(entry.commission_amount, 100.0)
            self.assertEqual(entry.net_amount, 1000.0)
            self.assertAlmostEqual(entry.net_amount + entry.commission_amount, entry.gross_amount, places=2)
            self.assertEqual(int(entry.processed_by), ids["admin"].id)

            with self.assertRaises(AlreadyTerminal):
                self._advance(ids, 7, details="close again")
            self.assertEqual(PayoutLedgerEntry.query.filter_by(order_status_id=ids["record_id"]).count(), 1)

    def test_listing_override_commission_used_at_payout(self):
        with self.app.app_context():
            ids = self._seed_record(price=2000.0, commission=5.0, charged=None)
            for step in range(2, 7):
                self._advance(ids, step, details="ok")
            entry = PayoutLedgerEntry.query.filter_by(order_status_id=ids["record_id"]).one()
            self.assertEqual(entry.commission_percent, 5.0)
            self.assertEqual(entry.commission_amount, 100.0)
            self.assertEqual(entry.gross_amount, 2100.0)
            self.assertEqual(entry.net_amount, 2000.0)

    def test_ledger_failure_rolls_back_payout_step(self):
        with self.app.app_context():
            ids = self._seed_record()
            for step in range(2, 6):
                self._advance(ids, step, details="ok")
            version_before = db.session.get(OrderStatus, ids["record_id"]).version

            with patch(
                "campusmart.services.order_status_service._create_payout_entry",
                side_effect=RuntimeError("ledger unavailable"),
            ):
                with self.assertRaises(PayoutLedgerError):
                    self._advance(ids, 6, details="released")

            db.session.expire_all()
            record = db.session.get(OrderStatus, ids["record_id"])
            self.assertEqual(record.current_step, 6)
            self.assertEqual(record.overall_status, "in_progress")
            self.assertEqual(record.version, version_before)
            step_six = OrderStatusStep.query.filter_by(order_status_id=ids["record_id"], step=6).one()
            self.assertEqual(step_six.status, "pending")
            self.assertEqual(PayoutLedgerEntry.query.filter_by(order_status_id=ids["record_id"]).count(), 0)

            data = self._advance(ids, 6, details="released")
            self.assertEqual(data["current_step"], 7)
            self.assertEqual(PayoutLedgerEntry.query.filter_by(order_status_id=ids["record_id"]).count(), 1)

    def test_payout_commission_resolved_once_across_retries(self):
        with self.app.app_context():
            ids = self._seed_record()
            OrderStatus.query.filter_by(id=ids["record_id"]).update(
                {"commission_percent": None, "commission_amount": None, "buyer_price": None},
                synchronize_session=False,
            )
            db.session.commit()
            for step in range(2, 6):
                self._advance(ids, step, details="ok")

            global_reads = []

            def global_setting_changes_after_first_read():
                global_reads.append(True)
                return 4.0 if len(global_reads) == 1 else 50.0

            real_claim = machine._claim
            lost = []

            def lose_first_claim(record_id, expected_version, now):
                if not lost:
                    lost.append(True)
                    return False
                return real_claim(record_id, expected_version, now)

            with patch.object(machine, "get_global_commission_percent", side_effect=global_setting_changes_after_first_read):
                with patch.object(machine, "_claim", side_effect=lose_first_claim):
                    self._advance(ids, 6, details="released")

            entry = PayoutLedgerEntry.query.filter_by(order_status_id=ids["record_id"]).one()
            self.assertEqual(entry.commission_percent, 4.0)
            self.assertEqual(entry.commission_amount, 40.0)
            self.assertEqual(entry.net_amount, 1060.0)
            record = db.session.get(OrderStatus, ids["record_id"])
            self.assertEqual(record.commission_percent, 4.0)

    def test_racing_completion_of_same_step_has_single_winner(self):
        with self.app.app_context():
            ids = self._seed_record()
            self._advance(ids, 2, details="sold")
            real_claim = machine._claim
            raced = []

            def claim_after_other_admin_wins(record_id, expected_version, now):
                if not raced:
                    raced.append(True)
                    OrderStatusStep.query.filter_by(order_status_id=record_id, step=3).update(
                        {
                            "status": "completed",
                            "details": "called buyer (other admin)",
                            "completed_by": ids["admin"].id,
                            "completed_at": now,
                        },
                        synchronize_session=False,
                    )
                    OrderStatus.query.filter_by(id=record_id).update(
                        {"current_step": 4, "version": expected_version + 1},
                        synchronize_session=False,
                    )
                    db.session.commit()
                    return False
                return real_claim(record_id, expected_version, now)

            with patch(
                "campusmart.services.order_status_service._claim",
                side_effect=claim_after_other_admin_wins,
            ):
                with self.assertRaises(StepAlreadyCompleted):
                    self._advance(ids, 3, details="called buyer")

            data = machine.get_order_status(ids["record_id"], default_commission_percent=DEFAULT_PCT)
            self.assertEqual(data["steps"][2]["details"], "called buyer (other admin)")
            self.assertEqual(data["current_step"], 4)

    def test_racing_complete_and_fail_on_same_step(self):
        with self.app.app_context():
            ids = self._seed_record()
            real_claim = machine._claim
            raced = []

            def claim_after_failure_wins(record_id, expected_version, now):
                if not raced:
                    raced.append(True)
                    OrderStatusStep.query.filter_by(order_status_id=record_id, step=2).update(
                        {"status": "failed", "details": "item damaged"},
                        synchronize_session=False,
                    )
                    OrderStatus.query.filter_by(id=record_id).update(
                        {"overall_status": "failed", "failed_at": now, "version": expected_version + 1},
                        synchronize_session=False,
                    )
                    db.session.commit()
                    return False
                return real_claim(record_id, expected_version, now)

            with patch(
                "campusmart.services.order_status_service._claim",
                side_effect=claim_after_failure_wins,
            ):
                with self.assertRaises(AlreadyTerminal):
                    self._advance(ids, 2, details="sold")

    def test_exhausted_claims_raise_concurrent_update(self):
        with self.app.app_context():
            ids = self._seed_record()
            with patch("campusmart.services.order_status_service._claim", return_value=False) as claim:
                with self.assertRaises(ConcurrentUpdate):
                    self._advance(ids, 2, details="sold")
            self.assertEqual(claim.call_count, machine.MAX_CLAIM_ATTEMPTS)
            step_two = OrderStatusStep.query.filter_by(order_status_id=ids["record_id"], step=2).one()
            self.assertEqual(step_two.status, "pending")

    def test_legacy_record_gets_pricing_derived_on_read(self):
        with self.app.app_context():
            ids = self._seed_record(price=1000.0)
            OrderStatus.query.filter_by(id=ids["record_id"]).update(
                {
                    "listing_price": None,
                    "commission_percent": None,
                    "commission_amount": None,
                    "buyer_price": None,
                    "order_amount": None,
                },
                synchronize_session=False,
            )
            db.session.commit()

            data = machine.get_order_status(ids["record_id"], default_commission_percent=DEFAULT_PCT)
            self.assertEqual(data["listing_price"], 1000.0)
            self.assertEqual(data["commission_percent"], 10.0)
            self.assertEqual(data["commission_amount"], 100.0)
            self.assertEqual(data["buyer_price"], 1100.0)
            stored = db.session.get(OrderStatus, ids["record_id"])
            self.assertIsNone(stored.commission_amount)

    def test_notifications_and_audit_queued_after_step(self):
        with self.app.app_context():
            from campusmart.models import Notification, PlatformEvent

            ids = self._seed_record()
            self._advance(ids, 2, details="sold")
            kinds = [
                row.kind
                for row in Notification.query.filter_by(user_id=ids["seller_id"]).all()
            ]
            self.assertIn("order_step_completed", kinds)
            event = PlatformEvent.query.filter_by(
                idempotency_key=f"order_step_completed:{ids['record_id']}:2"
            ).first()
            self.assertIsNotNone(event)


if __name__ == "__main__":
    unittest.main()
