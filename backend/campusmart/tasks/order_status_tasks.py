from __future__ import annotations

import json
import os
import time
from datetime import datetime

from celery import shared_task
from flask import current_app


def _task_log(task_name: str, *, status: str, started_at: float, trace_id: str = "", **extra):
    duration_ms = int(max(0.0, (time.perf_counter() - float(started_at))) * 1000.0)
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": duration_ms,
        "trace_id": str(trace_id or ""),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra or {})
    current_app.logger.info(json.dumps(payload, default=str))


def _retry_countdown(retries: int) -> int:
    # Exponential backoff with cap.
    return int(min(900, max(5, 5 * (2 ** int(max(0, retries))))))


def _env_limit(name: str, default: int) -> int:
    try:
        value = int((os.getenv(name) or str(default)).strip() or default)
    except ValueError:
        value = default
    return max(1, min(value, 500))


@shared_task(
    bind=True,
    name="campusmart.tasks.order_status_tasks.sync_order_status",
    max_retries=3,
)
def sync_order_status(self, *, trace_id: str = ""):
    started = time.perf_counter()
    from campusmart.jobs.order_status_sync import sync_verified_payments

    try:
        result = sync_verified_payments(
            default_commission_percent=float(current_app.config["DEFAULT_COMMISSION_PERCENT"]),
            trigger="beat",
        )
        _task_log(
            "sync_order_status",
            status="ok",
            started_at=started,
            trace_id=trace_id,
            created=result.get("created"),
            existing=result.get("existing"),
            skipped=len(result.get("skipped") or []),
        )
        return {"ok": True, "created": int(result.get("created") or 0)}
    except Exception as exc:
        if int(self.request.retries or 0) < int(self.max_retries or 0):
            countdown = _retry_countdown(int(self.request.retries or 0))
            _task_log(
                "sync_order_status",
                status="retrying",
                started_at=started,
                trace_id=trace_id,
                detail=str(exc),
                countdown=countdown,
            )
            raise self.retry(exc=exc, countdown=countdown)
        _task_log(
            "sync_order_status",
            status="failed",
            started_at=started,
            trace_id=trace_id,
            detail=str(exc),
        )
        raise


@shared_task(
    bind=True,
    name="campusmart.tasks.order_status_tasks.dispatch_notifications",
    max_retries=5,
)
def dispatch_notifications(self, *, trace_id: str = ""):
    started = time.perf_counter()
    from campusmart.utils.notify import dispatch_queued_notifications

    limit = _env_limit("NOTIFICATION_DISPATCH_LIMIT", 100)
    try:
        result = dispatch_queued_notifications(limit=limit)
        _task_log(
            "dispatch_notifications",
            status="ok",
            started_at=started,
            trace_id=trace_id,
            limit=limit,
            sent=result.get("sent"),
            failed=result.get("failed"),
        )
        return result
    except Exception as exc:
        if int(self.request.retries or 0) < int(self.max_retries or 0):
            countdown = _retry_countdown(int(self.request.retries or 0))
            _task_log(
                "dispatch_notifications",
                status="retrying",
                started_at=started,
                trace_id=trace_id,
                detail=str(exc),
                countdown=countdown,
            )
            raise self.retry(exc=exc, countdown=countdown)
        _task_log(
            "dispatch_notifications",
            status="failed",
            started_at=started,
            trace_id=trace_id,
            detail=str(exc),
        )
        raise
