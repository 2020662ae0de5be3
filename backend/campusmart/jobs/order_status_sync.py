from __future__ import annotations

import json
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from campusmart.extensions import db
from campusmart.models import (
    Listing,
    Order,
    OrderStatus,
    OrderStatusStep,
    OrderStep,
    OverallStatus,
    PaymentProof,
    PaymentProofStatus,
    ReconciliationReport,
    StepStatus,
    User,
)
from campusmart.models.order_status import FIRST_STEP, LAST_STEP
from campusmart.services.settings_service import get_global_commission_percent
from campusmart.utils.commission import compute_pricing, resolve_commission_percent
from campusmart.utils.events import log_event
from campusmart.utils.job_runs import record_job_run

JOB_NAME = "order_status_sync"


def _now():
    return datetime.utcnow()


def _order_for_proof(proof: PaymentProof) -> Order | None:
    if proof.order_id is not None:
        order = db.session.get(Order, int(proof.order_id))
        if order is not None:
            return order
    return Order.query.filter_by(payment_proof_id=int(proof.id)).first()


def _has_record(order_id: int) -> bool:
    return db.session.query(OrderStatus.id).filter(OrderStatus.order_id == order_id).first() is not None


def _build_record(
    proof: PaymentProof,
    order: Order,
    buyer: User,
    seller: User,
    listing: Listing,
    *,
    commission_percent: float,
) -> OrderStatus:
    charged = order.amount if order.amount is not None else proof.amount
    pricing = compute_pricing(listing.price, commission_percent, charged)
    now = _now()

    record = OrderStatus(
        order_id=int(order.id),
        payment_proof_id=int(proof.id),
        buyer_id=int(buyer.id),
        seller_id=int(seller.id),
        listing_id=int(listing.id),
        buyer_name=buyer.name or "",
        buyer_phone=buyer.phone or "",
        buyer_email=buyer.email or "",
        seller_name=seller.name or "",
        seller_phone=seller.phone or "",
        seller_email=seller.email or "",
        listing_title=listing.title or "",
        listing_price=pricing.listing_price,
        commission_percent=pricing.commission_percent,
        commission_amount=pricing.commission_amount,
        buyer_price=pricing.buyer_price,
        order_amount=float(charged) if charged is not None else None,
        current_step=int(OrderStep.ITEM_MARKED_SOLD),
        overall_status=OverallStatus.IN_PROGRESS,
        version=1,
        created_at=now,
        updated_at=now,
    )
    for number in range(FIRST_STEP, LAST_STEP + 1):
        if number == int(OrderStep.PAYMENT_VERIFIED):
            row = OrderStatusStep(
                step=number,
                status=StepStatus.COMPLETED,
                details="Payment verification completed",
                completed_by=int(proof.verified_by) if proof.verified_by is not None else None,
                completed_at=proof.verified_at or proof.uploaded_at or now,
            )
        else:
            row = OrderStatusStep(step=number, status=StepStatus.PENDING, details="")
        record.steps.append(row)
    return record


def sync_verified_payments(
    *,
    default_commission_percent: float,
    trigger: str = "manual",
    actor_id: int | None = None,
) -> dict:
    """Create a fulfillment record for every verified payment that lacks one.

    Safe to run repeatedly and concurrently: the unique order reference on
    ``order_status`` decides races, and a lost race counts as ``existing``.
    Proofs whose order, buyer, seller or listing cannot be found, or whose
    insert is rejected for any other reason, are skipped and reported, never
    fatal.
    """
    started = _now()
    created = 0
    existing = 0
    skipped: list[dict] = []
    created_ids: list[int] = []

    try:
        global_percent = get_global_commission_percent()
        proofs = (
            PaymentProof.query
            .filter(PaymentProof.status == PaymentProofStatus.VERIFIED)
            .order_by(PaymentProof.id.asc())
            .all()
        )
        for proof in proofs:
            order = _order_for_proof(proof)
            if order is None:
                skipped.append({"proof_id": int(proof.id), "reason": "order_not_found"})
                continue
            if _has_record(int(order.id)):
                existing += 1
                continue

            buyer = db.session.get(User, int(proof.buyer_id))
            seller = db.session.get(User, int(proof.seller_id))
            listing = db.session.get(Listing, int(proof.listing_id))
            missing = [
                name
                for name, value in (("buyer", buyer), ("seller", seller), ("listing", listing))
                if value is None
            ]
            if missing:
                skipped.append(
                    {
                        "proof_id": int(proof.id),
                        "order_id": int(order.id),
                        "reason": "unresolvable_" + "_".join(missing),
                    }
                )
                current_app.logger.warning(
                    "order_status_sync_unreconcilable proof_id=%s missing=%s", proof.id, ",".join(missing)
                )
                continue

            pct = resolve_commission_percent(
                listing.commission,
                global_percent,
                default=default_commission_percent,
            )
            record = _build_record(proof, order, buyer, seller, listing, commission_percent=pct)
            proof_id, order_id = int(proof.id), int(order.id)
            try:
                with db.session.begin_nested():
                    db.session.add(record)
                    db.session.flush()
                db.session.commit()
            except IntegrityError as exc:
                db.session.rollback()
                if _has_record(order_id):
                    existing += 1
                else:
                    skipped.append(
                        {"proof_id": proof_id, "order_id": order_id, "reason": "insert_rejected"}
                    )
                    current_app.logger.warning(
                        "order_status_sync_insert_rejected proof_id=%s order_id=%s err=%s",
                        proof_id,
                        order_id,
                        exc.orig,
                    )
                continue
            created += 1
            created_ids.append(int(record.id))
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("order_status_sync_failed trigger=%s", trigger)
        record_job_run(
            job_name=JOB_NAME,
            ok=False,
            started_at=started,
            trigger=trigger,
            items_processed=created,
            error=str(exc),
        )
        raise

    summary = {
        "ok": True,
        "scope": JOB_NAME,
        "created": created,
        "existing": existing,
        "skipped": skipped,
        "created_ids": created_ids,
        "generated_at": _now().isoformat(),
    }
    record_job_run(
        job_name=JOB_NAME,
        ok=True,
        started_at=started,
        trigger=trigger,
        items_processed=created,
    )
    _persist_summary(summary, created_by=actor_id)
    if created:
        log_event(
            "order_status_sync",
            actor_user_id=actor_id,
            subject_type="job",
            subject_id=JOB_NAME,
            metadata={"created": created, "existing": existing, "skipped": len(skipped), "trigger": trigger},
        )
    current_app.logger.info(
        "order_status_sync_done trigger=%s created=%s existing=%s skipped=%s",
        trigger,
        created,
        existing,
        len(skipped),
    )
    return summary


def _persist_summary(summary: dict, *, created_by: int | None) -> None:
    try:
        report = ReconciliationReport(
            scope=JOB_NAME,
            summary_json=json.dumps(summary)[:200000],
            created_count=int(summary.get("created") or 0),
            drift_count=len(summary.get("skipped") or []),
            created_by=int(created_by) if created_by is not None else None,
            created_at=_now(),
        )
        db.session.add(report)
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        current_app.logger.warning("order_status_sync_report_failed err=%s", exc)
