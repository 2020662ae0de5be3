from datetime import datetime

from campusmart.extensions import db


class PayoutLedgerEntry(db.Model):
    """Seller payout computed when a fulfillment record releases payment.

    Rows are written once and never updated.
    """

    __tablename__ = "seller_transactions"
    __table_args__ = (
        db.UniqueConstraint("order_status_id", name="uq_seller_transactions_order_status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_status_id = db.Column(db.Integer, db.ForeignKey("order_status.id"), nullable=False)
    order_id = db.Column(db.Integer, nullable=False, index=True)
    seller_id = db.Column(db.Integer, nullable=False, index=True)
    listing_id = db.Column(db.Integer, nullable=True)

    gross_amount = db.Column(db.Float, nullable=False, default=0.0)
    commission_amount = db.Column(db.Float, nullable=False, default=0.0)
    commission_percent = db.Column(db.Float, nullable=False, default=0.0)
    net_amount = db.Column(db.Float, nullable=False, default=0.0)

    payment_method = db.Column(db.String(32), nullable=False, default="admin_release")
    details = db.Column(db.Text, nullable=True)
    processed_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "order_status_id": int(self.order_status_id),
            "order_id": int(self.order_id),
            "seller_id": int(self.seller_id),
            "listing_id": int(self.listing_id) if self.listing_id is not None else None,
            "gross_amount": float(self.gross_amount or 0.0),
            "commission_amount": float(self.commission_amount or 0.0),
            "commission_percent": float(self.commission_percent or 0.0),
            "net_amount": float(self.net_amount or 0.0),
            "payment_method": self.payment_method or "admin_release",
            "details": self.details or "",
            "processed_by": int(self.processed_by) if self.processed_by is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
