from datetime import datetime

from campusmart.extensions import db


class PaymentProofStatus:
    PENDING = "pending_verification"
    VERIFIED = "verified"
    REJECTED = "rejected"

    ALL = (PENDING, VERIFIED, REJECTED)


class PaymentProof(db.Model):
    __tablename__ = "payment_proofs"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    buyer_id = db.Column(db.Integer, nullable=False, index=True)
    seller_id = db.Column(db.Integer, nullable=False, index=True)
    listing_id = db.Column(db.Integer, nullable=False, index=True)

    amount = db.Column(db.Float, nullable=True)
    image_ref = db.Column(db.String(1024), nullable=False, default="")

    status = db.Column(db.String(32), nullable=False, default=PaymentProofStatus.PENDING, index=True)
    rejection_reason = db.Column(db.String(500), nullable=True)

    uploaded_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    verified_at = db.Column(db.DateTime, nullable=True)
    verified_by = db.Column(db.Integer, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "order_id": int(self.order_id) if self.order_id is not None else None,
            "buyer_id": int(self.buyer_id),
            "seller_id": int(self.seller_id),
            "listing_id": int(self.listing_id),
            "amount": float(self.amount) if self.amount is not None else None,
            "image_ref": self.image_ref or "",
            "status": self.status or PaymentProofStatus.PENDING,
            "rejection_reason": self.rejection_reason or "",
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "verified_by": int(self.verified_by) if self.verified_by is not None else None,
        }
