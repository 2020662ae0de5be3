from __future__ import annotations

from flask import Blueprint, request

from campusmart.jobs.order_status_sync import sync_verified_payments
from campusmart.services import order_status_service
from campusmart.utils.auth import require_admin
from campusmart.utils.http import default_commission_percent, json_body, ok, parse_page_values

order_status_bp = Blueprint("order_status_bp", __name__, url_prefix="/api/admin/order-status")


@order_status_bp.post("/sync")
@require_admin
def sync_order_status(actor):
    summary = sync_verified_payments(
        default_commission_percent=default_commission_percent(),
        trigger="http",
        actor_id=actor.id,
    )
    return ok(
        {
            "created": summary["created"],
            "existing": summary["existing"],
            "skipped": summary["skipped"],
        }
    )


@order_status_bp.get("")
@require_admin
def list_order_statuses(actor):
    page, limit = parse_page_values(default_limit=20, max_limit=100)
    data = order_status_service.list_order_statuses(
        status=request.args.get("status"),
        step=request.args.get("step"),
        admin=request.args.get("admin"),
        page=page,
        limit=limit,
        default_commission_percent=default_commission_percent(),
    )
    return ok(data)


@order_status_bp.get("/<record_id>")
@require_admin
def get_order_status(actor, record_id):
    data = order_status_service.get_order_status(
        record_id,
        default_commission_percent=default_commission_percent(),
    )
    return ok(data)


@order_status_bp.put("/<record_id>")
@require_admin
def advance_order_step(actor, record_id):
    payload = json_body()
    data = order_status_service.advance_step(
        record_id,
        payload.get("step"),
        payload.get("status"),
        payload.get("details"),
        actor=actor,
        default_commission_percent=default_commission_percent(),
    )
    return ok(data)


@order_status_bp.put("/<record_id>/assign-admin")
@require_admin
def assign_admin(actor, record_id):
    payload = json_body()
    record = order_status_service.assign_admin(record_id, payload.get("admin_id"), actor=actor)
    return ok(record.to_dict())
