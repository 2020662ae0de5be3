from __future__ import annotations

from flask import Blueprint

from campusmart.services.settings_service import get_global_commission_percent, set_global_commission_percent
from campusmart.utils.auth import require_admin
from campusmart.utils.events import log_event
from campusmart.utils.http import default_commission_percent, json_body, ok

admin_settings_bp = Blueprint("admin_settings_bp", __name__, url_prefix="/api/admin/settings")


def _settings_payload() -> dict:
    configured = get_global_commission_percent()
    return {
        "commission_percent": configured,
        "default_commission_percent": default_commission_percent(),
        "effective_commission_percent": configured if configured is not None else default_commission_percent(),
    }


@admin_settings_bp.get("")
@require_admin
def get_settings(actor):
    return ok(_settings_payload())


@admin_settings_bp.put("")
@require_admin
def update_settings(actor):
    payload = json_body()
    before = get_global_commission_percent()
    row = set_global_commission_percent(payload.get("commission_percent"), actor_id=actor.id)
    log_event(
        "platform_commission_updated",
        actor_user_id=actor.id,
        subject_type="platform_settings",
        subject_id=int(row.id),
        metadata={"before": before, "after": row.commission_percent},
    )
    return ok(_settings_payload())
