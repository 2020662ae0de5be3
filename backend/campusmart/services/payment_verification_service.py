from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from campusmart.extensions import db
from campusmart.models import Listing, Order, PaymentProof, PaymentProofStatus
from campusmart.services import listing_service
from campusmart.services.errors import (
    AlreadyProcessed,
    DuplicateRecord,
    InvalidDecision,
    InvalidIdentifier,
    MissingReason,
    ProofNotFound,
    RecordNotFound,
    StateConflict,
    ValidationFailed,
)
from campusmart.services.settings_service import get_global_commission_percent
from campusmart.utils.auth import Actor
from campusmart.utils.commission import compute_pricing, resolve_commission_percent
from campusmart.utils.events import log_event
from campusmart.utils.notify import NotificationKind, queue_notification


class Decision:
    VERIFY = "verify"
    REJECT = "reject"

    ALIASES = {
        "verify": VERIFY,
        "verified": VERIFY,
        "approve": VERIFY,
        "reject": REJECT,
        "rejected": REJECT,
    }


class OrderPaymentStatus:
    PENDING = "pending_payment_verification"
    VERIFIED = "payment_verified"
    REJECTED = "payment_rejected"


def _parse_id(value, label: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise InvalidIdentifier(f"{label} must be an integer id")
    if parsed <= 0:
        raise InvalidIdentifier(f"{label} must be a positive id")
    return parsed


def _normalize_decision(value) -> str:
    key = str(value or "").strip().lower()
    decision = Decision.ALIASES.get(key)
    if decision is None:
        raise InvalidDecision("decision must be 'verify' or 'reject'", decision=key)
    return decision


def submit_payment_proof(
    actor: Actor,
    *,
    listing_id,
    image_ref: str,
    amount=None,
    default_commission_percent: float,
) -> PaymentProof:
    """Record a buyer's payment screenshot and the order it pays for."""
    lid = _parse_id(listing_id, "listing_id")
    ref = (image_ref or "").strip()
    if not ref:
        raise ValidationFailed("image_ref is required")

    listing = db.session.get(Listing, lid)
    if listing is None:
        raise RecordNotFound("Listing not found", listing_id=lid)
    if int(listing.seller_id) == int(actor.id):
        raise ValidationFailed("Sellers cannot pay for their own listing")
    if (
        (listing.status or "") == listing_service.ListingStatus.RESERVED
        and listing.sold_to is not None
        and int(listing.sold_to) == int(actor.id)
    ):
        raise DuplicateRecord("A payment proof for this listing is already awaiting review", listing_id=lid)
    if (listing.status or "") != listing_service.ListingStatus.ACTIVE:
        raise StateConflict("Listing is not available", listing_id=lid, status=listing.status)

    if amount is None or (isinstance(amount, str) and not amount.strip()):
        pct = resolve_commission_percent(
            listing.commission,
            get_global_commission_percent(),
            default=default_commission_percent,
        )
        charged = compute_pricing(listing.price, pct).buyer_price
    else:
        try:
            charged = float(amount)
        except (TypeError, ValueError):
            raise ValidationFailed("amount must be a number")
        if charged != charged or charged <= 0:
            raise ValidationFailed("amount must be greater than zero")

    now = datetime.utcnow()
    try:
        if not listing_service.claim_for_buyer(lid, int(actor.id)):
            db.session.rollback()
            raise StateConflict("Listing is not available", listing_id=lid)

        order = Order(
            buyer_id=int(actor.id),
            seller_id=int(listing.seller_id),
            listing_id=lid,
            amount=charged,
            status=OrderPaymentStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        db.session.add(order)
        db.session.flush()

        proof = PaymentProof(
            order_id=int(order.id),
            buyer_id=int(actor.id),
            seller_id=int(listing.seller_id),
            listing_id=lid,
            amount=charged,
            image_ref=ref[:1024],
            status=PaymentProofStatus.PENDING,
            uploaded_at=now,
            updated_at=now,
        )
        db.session.add(proof)
        db.session.flush()
        order.payment_proof_id = int(proof.id)
        db.session.add(order)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    log_event(
        "payment_proof_submitted",
        actor_user_id=int(actor.id),
        subject_type="payment_proof",
        subject_id=int(proof.id),
        idempotency_key=f"payment_proof_submitted:{int(proof.id)}",
        metadata={"order_id": int(proof.order_id), "listing_id": lid, "amount": charged},
    )
    return proof


def decide(proof_id, decision, reason: str | None = None, *, actor: Actor) -> PaymentProof:
    """Verify or reject a pending payment proof.

    The status change is claimed with a conditional UPDATE so that two admins
    deciding the same proof cannot both win. Listing updates, notifications and
    audit rows happen after the commit and never undo the decision.
    """
    pid = _parse_id(proof_id, "proof_id")
    verdict = _normalize_decision(decision)
    reason_text = (reason or "").strip()
    if verdict == Decision.REJECT and not reason_text:
        raise MissingReason("Rejection reason is required")

    proof = db.session.get(PaymentProof, pid)
    if proof is None:
        raise ProofNotFound("Payment proof not found", proof_id=pid)
    if (proof.status or "") != PaymentProofStatus.PENDING:
        raise AlreadyProcessed("Payment proof has already been processed", proof_id=pid, status=proof.status)

    now = datetime.utcnow()
    if verdict == Decision.VERIFY:
        proof_values = {
            "status": PaymentProofStatus.VERIFIED,
            "verified_at": now,
            "verified_by": int(actor.id),
            "rejection_reason": None,
            "updated_at": now,
        }
        order_values = {
            "status": OrderPaymentStatus.VERIFIED,
            "payment_verified_at": now,
            "decided_by": int(actor.id),
            "updated_at": now,
        }
    else:
        proof_values = {
            "status": PaymentProofStatus.REJECTED,
            "verified_at": now,
            "verified_by": int(actor.id),
            "rejection_reason": reason_text[:500],
            "updated_at": now,
        }
        order_values = {
            "status": OrderPaymentStatus.REJECTED,
            "payment_rejection_reason": reason_text[:500],
            "decided_by": int(actor.id),
            "updated_at": now,
        }

    try:
        claimed = (
            PaymentProof.query
            .filter(PaymentProof.id == pid, PaymentProof.status == PaymentProofStatus.PENDING)
            .update(proof_values, synchronize_session=False)
        )
        if claimed != 1:
            db.session.rollback()
            raise AlreadyProcessed("Payment proof has already been processed", proof_id=pid)
        if proof.order_id is not None:
            Order.query.filter(Order.id == int(proof.order_id)).update(order_values, synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    db.session.expire(proof)
    _after_decision(proof, verdict, reason_text, actor)
    return proof


def _after_decision(proof: PaymentProof, verdict: str, reason_text: str, actor: Actor) -> None:
    pid = int(proof.id)
    try:
        if verdict == Decision.VERIFY:
            changed = listing_service.mark_reserved(int(proof.listing_id), int(proof.buyer_id))
        else:
            changed = listing_service.release_reservation(int(proof.listing_id), int(proof.buyer_id))
        if not changed:
            current_app.logger.info(
                "listing_untouched_after_decision proof_id=%s decision=%s listing_id=%s",
                pid,
                verdict,
                proof.listing_id,
            )
    except Exception as exc:
        db.session.rollback()
        current_app.logger.warning(
            "listing_update_after_decision_failed proof_id=%s decision=%s err=%s", pid, verdict, exc
        )

    meta = {"proof_id": pid, "order_id": proof.order_id, "listing_id": int(proof.listing_id)}
    if verdict == Decision.VERIFY:
        queue_notification(
            proof.buyer_id,
            NotificationKind.PAYMENT_VERIFIED,
            "Your payment has been verified. We will contact you to arrange delivery.",
            meta=meta,
        )
        queue_notification(
            proof.seller_id,
            NotificationKind.PAYMENT_VERIFIED,
            "A buyer's payment for your listing has been verified. We will contact you for pickup.",
            meta=meta,
        )
    else:
        queue_notification(
            proof.buyer_id,
            NotificationKind.PAYMENT_REJECTED,
            f"Your payment proof was rejected: {reason_text}",
            meta=meta,
        )

    log_event(
        "payment_proof_verified" if verdict == Decision.VERIFY else "payment_proof_rejected",
        actor_user_id=int(actor.id),
        subject_type="payment_proof",
        subject_id=pid,
        idempotency_key=f"payment_proof_decision:{pid}",
        metadata={**meta, "reason": reason_text or None},
    )


def list_payment_proofs(
    *,
    status: str | None = None,
    buyer_id=None,
    seller_id=None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    query = PaymentProof.query
    wanted = (status or "").strip().lower()
    if wanted and wanted != "all":
        if wanted not in PaymentProofStatus.ALL:
            raise ValidationFailed("Unknown payment proof status", status=wanted)
        query = query.filter(PaymentProof.status == wanted)
    if buyer_id not in (None, ""):
        query = query.filter(PaymentProof.buyer_id == _parse_id(buyer_id, "buyer_id"))
    if seller_id not in (None, ""):
        query = query.filter(PaymentProof.seller_id == _parse_id(seller_id, "seller_id"))

    total = query.count()
    rows = (
        query.order_by(PaymentProof.uploaded_at.desc(), PaymentProof.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "items": [row.to_dict() for row in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit if limit else 0,
        },
    }
