from __future__ import annotations

from datetime import datetime

from campusmart.extensions import db
from campusmart.models import PlatformSettings
from campusmart.services.errors import ValidationFailed
from campusmart.utils.commission import MAX_COMMISSION_PERCENT, MIN_COMMISSION_PERCENT


def _settings_row() -> PlatformSettings | None:
    return PlatformSettings.query.order_by(PlatformSettings.id.asc()).first()


def get_global_commission_percent() -> float | None:
    row = _settings_row()
    if row is None or row.commission_percent is None:
        return None
    return float(row.commission_percent)


def set_global_commission_percent(value, *, actor_id: int) -> PlatformSettings:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        raise ValidationFailed("commission_percent must be a number between 0 and 100")
    if parsed != parsed or parsed < MIN_COMMISSION_PERCENT or parsed > MAX_COMMISSION_PERCENT:
        raise ValidationFailed("commission_percent must be a number between 0 and 100")

    row = _settings_row()
    if row is None:
        row = PlatformSettings()
    row.commission_percent = parsed
    row.updated_by = int(actor_id)
    row.updated_at = datetime.utcnow()
    db.session.add(row)
    db.session.commit()
    return row
