from datetime import datetime

from campusmart.extensions import db


class Listing(db.Model):
    __tablename__ = "listings"

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    title = db.Column(db.String(160), nullable=False)
    price = db.Column(db.Float, nullable=False, default=0.0)

    # Per-listing commission override in percent; NULL falls back to the platform setting.
    commission = db.Column(db.Float, nullable=True)

    # active | reserved | sold
    status = db.Column(db.String(24), nullable=False, default="active", index=True)
    sold_to = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    sold_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "seller_id": int(self.seller_id),
            "title": self.title or "",
            "price": float(self.price or 0.0),
            "commission": float(self.commission) if self.commission is not None else None,
            "status": self.status or "active",
            "sold_to": int(self.sold_to) if self.sold_to is not None else None,
            "sold_at": self.sold_at.isoformat() if self.sold_at else None,
        }
