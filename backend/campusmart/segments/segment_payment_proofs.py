from __future__ import annotations

from flask import Blueprint, request

from campusmart.services import payment_verification_service
from campusmart.utils.auth import require_actor, require_admin
from campusmart.utils.http import default_commission_percent, json_body, ok, parse_page_values

payment_proofs_bp = Blueprint("payment_proofs_bp", __name__, url_prefix="/api/payment-proofs")
admin_payment_proofs_bp = Blueprint(
    "admin_payment_proofs_bp", __name__, url_prefix="/api/admin/payment-proofs"
)


@payment_proofs_bp.post("")
@require_actor
def submit_payment_proof(actor):
    payload = json_body()
    proof = payment_verification_service.submit_payment_proof(
        actor,
        listing_id=payload.get("listing_id"),
        image_ref=payload.get("image_ref") or "",
        amount=payload.get("amount"),
        default_commission_percent=default_commission_percent(),
    )
    return ok(proof.to_dict(), 201)


@payment_proofs_bp.post("/<proof_id>/decision")
@require_admin
def decide_payment_proof(actor, proof_id):
    payload = json_body()
    proof = payment_verification_service.decide(
        proof_id,
        payload.get("decision"),
        payload.get("rejection_reason") or payload.get("rejectionReason"),
        actor=actor,
    )
    return ok(proof.to_dict())


@admin_payment_proofs_bp.get("")
@require_admin
def list_payment_proofs(actor):
    page, limit = parse_page_values(default_limit=20, max_limit=100)
    data = payment_verification_service.list_payment_proofs(
        status=request.args.get("status"),
        buyer_id=request.args.get("buyer_id"),
        seller_id=request.args.get("seller_id"),
        page=page,
        limit=limit,
    )
    return ok(data)
