from __future__ import annotations

from flask import Blueprint, request

from campusmart.models import ReconciliationReport
from campusmart.services import order_status_service
from campusmart.services.payout_audit_service import audit_payout_ledger, persist_report
from campusmart.utils.auth import require_admin
from campusmart.utils.http import json_body, ok, parse_page_values

payouts_bp = Blueprint("payouts_bp", __name__, url_prefix="/api/admin")


@payouts_bp.get("/seller-transactions")
@require_admin
def list_seller_transactions(actor):
    page, limit = parse_page_values(default_limit=20, max_limit=100)
    data = order_status_service.list_payout_entries(
        seller_id=request.args.get("seller_id"),
        page=page,
        limit=limit,
    )
    return ok(data)


@payouts_bp.post("/reconcile/payouts")
@require_admin
def reconcile_payouts(actor):
    payload = json_body()
    summary = audit_payout_ledger()
    report_id = None
    if bool(payload.get("persist", True)):
        report = persist_report(summary, created_by=actor.id)
        report_id = int(report.id)
    return ok({"report_id": report_id, "summary": summary})


@payouts_bp.get("/reconcile/latest")
@require_admin
def latest_report(actor):
    scope = (request.args.get("scope") or "").strip()
    query = ReconciliationReport.query
    if scope:
        query = query.filter_by(scope=scope)
    row = query.order_by(ReconciliationReport.created_at.desc(), ReconciliationReport.id.desc()).first()
    return ok({"report": row.to_dict() if row else None})
