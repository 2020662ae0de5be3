from __future__ import annotations

from datetime import datetime

from flask import current_app

from campusmart.extensions import db
from campusmart.models import JobRun


def record_job_run(
    *,
    job_name: str,
    ok: bool,
    started_at: datetime,
    trigger: str = "manual",
    items_processed: int = 0,
    error: str | None = None,
) -> JobRun | None:
    duration_ms = max(0, int((datetime.utcnow() - started_at).total_seconds() * 1000))
    try:
        row = JobRun(
            job_name=(job_name or "unknown").strip()[:64],
            trigger=(trigger or "manual").strip()[:24],
            ran_at=datetime.utcnow(),
            ok=bool(ok),
            items_processed=int(items_processed or 0),
            duration_ms=duration_ms,
            error=(error or "")[:1000] or None,
        )
        db.session.add(row)
        db.session.commit()
        return row
    except Exception as exc:
        db.session.rollback()
        current_app.logger.warning("job_run_record_failed job=%s err=%s", job_name, exc)
        return None
