from campusmart.models.user import User
from campusmart.models.listing import Listing
from campusmart.models.order import Order
from campusmart.models.payment_proof import PaymentProof, PaymentProofStatus
from campusmart.models.order_status import (
    OrderStatus,
    OrderStatusStep,
    OrderStep,
    OverallStatus,
    StepStatus,
    STEP_CATALOGUE,
)
from campusmart.models.payout import PayoutLedgerEntry
from campusmart.models.notification import Notification
from campusmart.models.platform_settings import PlatformSettings
from campusmart.models.platform_event import PlatformEvent
from campusmart.models.job_run import JobRun
from campusmart.models.reconciliation_report import ReconciliationReport

__all__ = [
    "User",
    "Listing",
    "Order",
    "PaymentProof",
    "PaymentProofStatus",
    "OrderStatus",
    "OrderStatusStep",
    "OrderStep",
    "OverallStatus",
    "StepStatus",
    "STEP_CATALOGUE",
    "PayoutLedgerEntry",
    "Notification",
    "PlatformSettings",
    "PlatformEvent",
    "JobRun",
    "ReconciliationReport",
]
