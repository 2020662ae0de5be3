from __future__ import annotations

from datetime import datetime
from enum import IntEnum

from campusmart.extensions import db


class OrderStep(IntEnum):
    PAYMENT_VERIFIED = 1
    ITEM_MARKED_SOLD = 2
    BUYER_CONTACTED = 3
    SELLER_CONTACTED = 4
    DELIVERED = 5
    PAYMENT_RELEASED = 6
    ORDER_CLOSED = 7

    @property
    def label(self) -> str:
        return STEP_CATALOGUE[self]["name"]


STEP_CATALOGUE = {
    OrderStep.PAYMENT_VERIFIED: {
        "name": "Payment Verified",
        "description": "Payment proof has been verified by admin",
    },
    OrderStep.ITEM_MARKED_SOLD: {
        "name": "Item Marked Sold",
        "description": "Item marked as sold in the system",
    },
    OrderStep.BUYER_CONTACTED: {
        "name": "Buyer Contacted",
        "description": "Admin contacted buyer for delivery coordination",
    },
    OrderStep.SELLER_CONTACTED: {
        "name": "Seller Contacted",
        "description": "Admin contacted seller for delivery coordination",
    },
    OrderStep.DELIVERED: {
        "name": "Delivered",
        "description": "Item successfully delivered to buyer",
    },
    OrderStep.PAYMENT_RELEASED: {
        "name": "Payment Released",
        "description": "Payment released to seller (minus commission)",
    },
    OrderStep.ORDER_CLOSED: {
        "name": "Order Closed",
        "description": "Order completed and closed",
    },
}

FIRST_STEP = int(OrderStep.PAYMENT_VERIFIED)
LAST_STEP = int(OrderStep.ORDER_CLOSED)


class StepStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class OverallStatus:
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = (IN_PROGRESS, COMPLETED, FAILED)
    TERMINAL = {COMPLETED, FAILED}


class OrderStatus(db.Model):
    """Fulfillment record: one seven-step workflow per verified order."""

    __tablename__ = "order_status"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_order_status_order_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    payment_proof_id = db.Column(db.Integer, nullable=True, index=True)

    buyer_id = db.Column(db.Integer, nullable=False, index=True)
    seller_id = db.Column(db.Integer, nullable=False, index=True)
    listing_id = db.Column(db.Integer, nullable=False, index=True)

    # Snapshot taken at creation; later listing/user edits never rewrite history.
    buyer_name = db.Column(db.String(120), nullable=True)
    buyer_phone = db.Column(db.String(32), nullable=True)
    buyer_email = db.Column(db.String(255), nullable=True)
    seller_name = db.Column(db.String(120), nullable=True)
    seller_phone = db.Column(db.String(32), nullable=True)
    seller_email = db.Column(db.String(255), nullable=True)
    listing_title = db.Column(db.String(160), nullable=True)

    listing_price = db.Column(db.Float, nullable=True)
    commission_percent = db.Column(db.Float, nullable=True)
    commission_amount = db.Column(db.Float, nullable=True)
    buyer_price = db.Column(db.Float, nullable=True)
    order_amount = db.Column(db.Float, nullable=True)

    current_step = db.Column(db.Integer, nullable=False, default=2, index=True)
    overall_status = db.Column(db.String(24), nullable=False, default=OverallStatus.IN_PROGRESS, index=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    assigned_admin_id = db.Column(db.Integer, nullable=True, index=True)
    assigned_at = db.Column(db.DateTime, nullable=True)
    assigned_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)
    failed_at = db.Column(db.DateTime, nullable=True)

    steps = db.relationship(
        "OrderStatusStep",
        order_by="OrderStatusStep.step",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def is_terminal(self) -> bool:
        return (self.overall_status or "") in OverallStatus.TERMINAL

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "payment_proof_id": int(self.payment_proof_id) if self.payment_proof_id is not None else None,
            "buyer_id": int(self.buyer_id),
            "seller_id": int(self.seller_id),
            "listing_id": int(self.listing_id),
            "buyer_name": self.buyer_name or "",
            "buyer_phone": self.buyer_phone or "",
            "buyer_email": self.buyer_email or "",
            "seller_name": self.seller_name or "",
            "seller_phone": self.seller_phone or "",
            "seller_email": self.seller_email or "",
            "listing_title": self.listing_title or "",
            "listing_price": float(self.listing_price) if self.listing_price is not None else None,
            "commission_percent": float(self.commission_percent) if self.commission_percent is not None else None,
            "commission_amount": float(self.commission_amount) if self.commission_amount is not None else None,
            "buyer_price": float(self.buyer_price) if self.buyer_price is not None else None,
            "order_amount": float(self.order_amount) if self.order_amount is not None else None,
            "current_step": int(self.current_step or FIRST_STEP),
            "overall_status": self.overall_status or OverallStatus.IN_PROGRESS,
            "assigned_admin_id": int(self.assigned_admin_id) if self.assigned_admin_id is not None else None,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "assigned_by": int(self.assigned_by) if self.assigned_by is not None else None,
            "steps": [row.to_dict() for row in sorted(self.steps or [], key=lambda r: int(r.step))],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "failed_at": self.failed_at.isoformat() if self.failed_at else None,
        }


class OrderStatusStep(db.Model):
    __tablename__ = "order_status_steps"
    __table_args__ = (
        db.UniqueConstraint("order_status_id", "step", name="uq_order_status_step"),
        db.CheckConstraint("step >= 1 AND step <= 7", name="ck_order_status_step_range"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_status_id = db.Column(db.Integer, db.ForeignKey("order_status.id"), nullable=False, index=True)
    step = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=StepStatus.PENDING)
    details = db.Column(db.Text, nullable=False, default="")
    completed_by = db.Column(db.Integer, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    @property
    def name(self) -> str:
        return OrderStep(int(self.step)).label

    def to_dict(self) -> dict:
        return {
            "step": int(self.step),
            "name": self.name,
            "status": self.status or StepStatus.PENDING,
            "details": self.details or "",
            "completed_by": int(self.completed_by) if self.completed_by is not None else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
