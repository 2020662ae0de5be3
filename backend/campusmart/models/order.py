from datetime import datetime

from campusmart.extensions import db


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=True, index=True)

    amount = db.Column(db.Float, nullable=True)
    payment_proof_id = db.Column(db.Integer, nullable=True, unique=True, index=True)

    # pending_payment_verification | payment_verified | payment_rejected
    status = db.Column(db.String(40), nullable=False, default="pending_payment_verification", index=True)
    payment_verified_at = db.Column(db.DateTime, nullable=True)
    payment_rejection_reason = db.Column(db.String(500), nullable=True)
    decided_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "buyer_id": int(self.buyer_id),
            "seller_id": int(self.seller_id),
            "listing_id": int(self.listing_id) if self.listing_id is not None else None,
            "amount": float(self.amount) if self.amount is not None else None,
            "payment_proof_id": int(self.payment_proof_id) if self.payment_proof_id is not None else None,
            "status": self.status or "",
            "payment_verified_at": self.payment_verified_at.isoformat() if self.payment_verified_at else None,
            "payment_rejection_reason": self.payment_rejection_reason or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
