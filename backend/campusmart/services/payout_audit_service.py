from __future__ import annotations

import json
from datetime import datetime

from campusmart.extensions import db
from campusmart.models import (
    OrderStatus,
    OrderStatusStep,
    OrderStep,
    PayoutLedgerEntry,
    ReconciliationReport,
    StepStatus,
)
from campusmart.utils.commission import quantize_money

SCOPE = "payout_ledger"


def audit_payout_ledger(*, tolerance: float = 0.01) -> dict:
    """Cross-check step 6 completions against seller payout entries."""
    released_ids = {
        int(row.order_status_id)
        for row in OrderStatusStep.query.filter(
            OrderStatusStep.step == int(OrderStep.PAYMENT_RELEASED),
            OrderStatusStep.status == StepStatus.COMPLETED,
        ).all()
    }
    entries = PayoutLedgerEntry.query.order_by(PayoutLedgerEntry.id.asc()).all()
    entry_record_ids = {int(entry.order_status_id) for entry in entries}

    drift_items = []
    for record_id in sorted(released_ids - entry_record_ids):
        record = db.session.get(OrderStatus, record_id)
        drift_items.append(
            {
                "kind": "missing_ledger_entry",
                "order_status_id": record_id,
                "order_id": int(record.order_id) if record else None,
            }
        )

    for entry in entries:
        gross = quantize_money(entry.gross_amount)
        parts = quantize_money(entry.net_amount) + quantize_money(entry.commission_amount)
        delta = float(gross - parts)
        if abs(delta) > float(tolerance):
            drift_items.append(
                {
                    "kind": "unbalanced_entry",
                    "entry_id": int(entry.id),
                    "order_status_id": int(entry.order_status_id),
                    "gross_amount": float(gross),
                    "net_plus_commission": float(parts),
                    "drift": round(delta, 2),
                }
            )
        if int(entry.order_status_id) not in released_ids:
            drift_items.append(
                {
                    "kind": "orphan_ledger_entry",
                    "entry_id": int(entry.id),
                    "order_status_id": int(entry.order_status_id),
                }
            )

    return {
        "ok": True,
        "scope": SCOPE,
        "released_count": len(released_ids),
        "entry_count": len(entries),
        "drift_count": len(drift_items),
        "drift_items": drift_items,
        "generated_at": datetime.utcnow().isoformat(),
    }


def persist_report(summary: dict, *, created_by: int | None = None) -> ReconciliationReport:
    report = ReconciliationReport(
        scope=(summary.get("scope") or SCOPE)[:64],
        summary_json=json.dumps(summary)[:200000],
        created_count=0,
        drift_count=int(summary.get("drift_count") or 0),
        created_by=int(created_by) if created_by is not None else None,
        created_at=datetime.utcnow(),
    )
    db.session.add(report)
    db.session.commit()
    return report
