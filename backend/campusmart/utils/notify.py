from __future__ import annotations

from datetime import datetime

from flask import current_app

from campusmart.extensions import db
from campusmart.integrations.messaging.base import MessageResult
from campusmart.integrations.messaging.factory import build_messaging_provider
from campusmart.models import Notification, User


class NotificationKind:
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_REJECTED = "payment_rejected"
    ORDER_STEP_COMPLETED = "order_step_completed"
    ORDER_FAILED = "order_failed"
    PAYOUT_RELEASED = "payout_released"


def queue_notification(user_id: int | None, kind: str, message: str, *, meta: dict | None = None) -> Notification | None:
    """Append a message to the outbox in its own transaction.

    Callers invoke this after their own commit, so a failure here can only
    lose the message, never undo the operation that triggered it.
    """
    if not user_id:
        return None
    try:
        row = Notification(
            user_id=int(user_id),
            kind=(kind or "generic")[:40],
            message=message or "",
            status="queued",
        )
        row.merge_meta(**(meta or {}))
        db.session.add(row)
        db.session.commit()
        return row
    except Exception as exc:
        db.session.rollback()
        current_app.logger.warning("notification_queue_failed user_id=%s kind=%s err=%s", user_id, kind, exc)
        return None


def _claim_for_dispatch(notification_id: int) -> bool:
    claimed = (
        Notification.query
        .filter(Notification.id == notification_id, Notification.status == "queued")
        .update({"status": "sending"}, synchronize_session=False)
    )
    db.session.commit()
    return claimed == 1


def dispatch_queued_notifications(*, limit: int = 100, provider=None) -> dict:
    """Send queued rows; each row is claimed first so overlapping runs never send it twice."""
    provider = provider or build_messaging_provider()
    candidate_ids = [
        int(row_id)
        for (row_id,) in db.session.query(Notification.id)
        .filter(Notification.status == "queued")
        .order_by(Notification.created_at.asc(), Notification.id.asc())
        .limit(max(1, int(limit)))
        .all()
    ]
    scanned = 0
    sent = 0
    failed = 0
    for notification_id in candidate_ids:
        if not _claim_for_dispatch(notification_id):
            continue
        scanned += 1
        row = db.session.get(Notification, notification_id)
        user = db.session.get(User, int(row.user_id))
        target = ""
        if user is not None:
            target = (user.phone or user.email or "").strip()
        row.attempts = int(row.attempts or 0) + 1
        row.provider = provider.name
        if not target:
            row.status = "failed"
            row.merge_meta(error="NO_CONTACT")
            failed += 1
        else:
            try:
                result = provider.send(to=target, message=row.message or "", reference=f"notification:{int(row.id)}")
            except Exception as exc:
                current_app.logger.warning("notification_send_error id=%s err=%s", notification_id, exc)
                result = MessageResult(ok=False, code="SEND_ERROR", message=str(exc)[:200])
            if result.ok:
                row.status = "sent"
                row.sent_at = datetime.utcnow()
                sent += 1
            else:
                row.status = "failed"
                row.merge_meta(error=result.code or "SEND_FAILED", detail=result.message)
                failed += 1
        db.session.add(row)
        db.session.commit()
    if failed:
        current_app.logger.warning("notification_dispatch_partial sent=%s failed=%s", sent, failed)
    return {"ok": True, "scanned": scanned, "sent": sent, "failed": failed}
