from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from campusmart.extensions import db
from campusmart.models import (
    Listing,
    OrderStatus,
    OrderStatusStep,
    OrderStep,
    OverallStatus,
    PayoutLedgerEntry,
    StepStatus,
    STEP_CATALOGUE,
    User,
)
from campusmart.models.order_status import FIRST_STEP, LAST_STEP
from campusmart.services import listing_service
from campusmart.services.errors import (
    AlreadyTerminal,
    ConcurrentUpdate,
    InvalidIdentifier,
    MissingDetails,
    NotCurrentStep,
    OutOfRange,
    PayoutLedgerError,
    PriorStepIncomplete,
    RecordNotFound,
    StepAlreadyCompleted,
    StepSkipped,
    ValidationFailed,
)
from campusmart.services.settings_service import get_global_commission_percent
from campusmart.utils.auth import Actor
from campusmart.utils.commission import compute_pricing, money_float, resolve_commission_percent
from campusmart.utils.events import log_event
from campusmart.utils.notify import NotificationKind, queue_notification

MAX_CLAIM_ATTEMPTS = 3


class Outcome:
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = (COMPLETED, FAILED)


def _parse_record_id(value) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise InvalidIdentifier("Invalid order status id")
    if parsed <= 0:
        raise InvalidIdentifier("Invalid order status id")
    return parsed


def _parse_step(value) -> OrderStep:
    try:
        raw = int(value)
    except (TypeError, ValueError):
        raise OutOfRange("Invalid step number. Must be between 1 and 7", step=value)
    if raw < FIRST_STEP or raw > LAST_STEP:
        raise OutOfRange("Invalid step number. Must be between 1 and 7", step=raw)
    return OrderStep(raw)


def _parse_outcome(value) -> str:
    outcome = str(value or "").strip().lower()
    if outcome not in Outcome.ALL:
        raise ValidationFailed("status must be 'completed' or 'failed'", status=outcome)
    return outcome


def _load_record(record_id: int, *, lock: bool = False) -> OrderStatus:
    query = OrderStatus.query.populate_existing()
    if lock:
        query = query.with_for_update()
    record = query.filter(OrderStatus.id == record_id).first()
    if record is None:
        raise RecordNotFound("Order status not found", record_id=record_id)
    return record


def _load_steps(record_id: int) -> dict[int, OrderStatusStep]:
    rows = (
        OrderStatusStep.query.populate_existing()
        .filter(OrderStatusStep.order_status_id == record_id)
        .all()
    )
    return {int(row.step): row for row in rows}


def _contiguous_completed(steps: dict[int, OrderStatusStep]) -> int:
    count = 0
    for number in range(FIRST_STEP, LAST_STEP + 1):
        row = steps.get(number)
        if row is None or row.status != StepStatus.COMPLETED:
            break
        count += 1
    return count


def _validate_transition(
    record: OrderStatus,
    steps: dict[int, OrderStatusStep],
    step: OrderStep,
    outcome: str,
    details: str,
) -> None:
    if record.is_terminal():
        raise AlreadyTerminal(
            f"Order is already {record.overall_status}",
            record_id=int(record.id),
            overall_status=record.overall_status,
        )
    current = int(record.current_step or FIRST_STEP)
    number = int(step)

    if outcome == Outcome.COMPLETED:
        if number > current + 1:
            raise StepSkipped(
                f"Cannot skip steps. Current step is {current}",
                step=number,
                current_step=current,
            )
        for prior in range(FIRST_STEP, number):
            row = steps.get(prior)
            if row is None or row.status != StepStatus.COMPLETED:
                raise PriorStepIncomplete(
                    f"Step {prior} must be completed before step {number}",
                    step=number,
                    incomplete_step=prior,
                )
        row = steps.get(number)
        if row is not None and row.status == StepStatus.COMPLETED:
            raise StepAlreadyCompleted(f"Step {number} is already completed", step=number)
        if not details:
            raise MissingDetails("Details are required to complete a step", step=number)
        return

    if number != current:
        raise NotCurrentStep(
            f"Only the current step ({current}) can be marked as failed",
            step=number,
            current_step=current,
        )
    if not details:
        raise MissingDetails("Details are required to fail a step", step=number)


def _claim(record_id: int, expected_version: int, now: datetime) -> bool:
    """Bump the record version if nobody else has touched it since it was read."""
    updated = (
        OrderStatus.query
        .filter(
            OrderStatus.id == record_id,
            OrderStatus.version == expected_version,
            OrderStatus.overall_status == OverallStatus.IN_PROGRESS,
        )
        .update({"version": expected_version + 1, "updated_at": now}, synchronize_session=False)
    )
    return updated == 1


def _resolve_percent(record: OrderStatus, platform_percent: float) -> float:
    listing_override = None
    if record.commission_percent is None:
        info = listing_service.get_price_and_commission(record.listing_id)
        if info:
            listing_override = info.get("commission_percent")
    return resolve_commission_percent(
        record.commission_percent,
        listing_override,
        default=platform_percent,
    )


def _create_payout_entry(
    record: OrderStatus,
    *,
    actor: Actor,
    details: str,
    platform_percent: float,
    now: datetime,
) -> PayoutLedgerEntry:
    listing_price = record.listing_price
    if listing_price is None:
        info = listing_service.get_price_and_commission(record.listing_id)
        listing_price = info["price"] if info else 0.0
    pct = _resolve_percent(record, platform_percent)
    pricing = compute_pricing(listing_price, pct, record.order_amount)

    if record.commission_percent is None:
        record.commission_percent = pricing.commission_percent
    if record.commission_amount is None:
        record.commission_amount = pricing.commission_amount
    if record.buyer_price is None:
        record.buyer_price = pricing.buyer_price

    entry = PayoutLedgerEntry(
        order_status_id=int(record.id),
        order_id=int(record.order_id),
        seller_id=int(record.seller_id),
        listing_id=int(record.listing_id) if record.listing_id is not None else None,
        gross_amount=pricing.order_amount,
        commission_amount=pricing.commission_amount,
        commission_percent=pricing.commission_percent,
        net_amount=pricing.seller_net,
        payment_method="admin_release",
        details=details,
        processed_by=int(actor.id),
        created_at=now,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def advance_step(
    record_id,
    step,
    outcome,
    details: str | None,
    *,
    actor: Actor,
    default_commission_percent: float,
) -> dict:
    """Complete or fail one step of a fulfillment record.

    Validation and mutation run against a freshly read row and are committed
    only if the version claim succeeds; a lost claim re-reads and re-validates.
    At step 6 the payout ledger entry is written in the same transaction and
    any failure there rolls the whole step back.
    """
    rid = _parse_record_id(record_id)
    target = _parse_step(step)
    verdict = _parse_outcome(outcome)
    text = (details or "").strip()

    platform_percent = None
    if verdict == Outcome.COMPLETED and target == OrderStep.PAYMENT_RELEASED:
        # Resolved once; retries below reuse it.
        platform_percent = resolve_commission_percent(
            get_global_commission_percent(),
            default=default_commission_percent,
        )

    payout = None
    record = None
    for attempt in range(1, MAX_CLAIM_ATTEMPTS + 1):
        record = _load_record(rid, lock=True)
        steps = _load_steps(rid)
        try:
            _validate_transition(record, steps, target, verdict, text)
        except Exception:
            db.session.rollback()
            raise

        now = datetime.utcnow()
        expected_version = int(record.version or 1)
        if not _claim(rid, expected_version, now):
            db.session.rollback()
            current_app.logger.info(
                "order_status_claim_lost record_id=%s step=%s attempt=%s", rid, int(target), attempt
            )
            continue

        row = steps.get(int(target))
        if row is None:
            row = OrderStatusStep(order_status_id=rid, step=int(target))
            steps[int(target)] = row
        row.details = text
        row.completed_by = int(actor.id)
        row.completed_at = now

        if verdict == Outcome.COMPLETED:
            row.status = StepStatus.COMPLETED
            done = _contiguous_completed(steps)
            record.current_step = min(done + 1, LAST_STEP)
            if done == LAST_STEP:
                record.overall_status = OverallStatus.COMPLETED
                record.completed_at = now
        else:
            row.status = StepStatus.FAILED
            record.overall_status = OverallStatus.FAILED
            record.failed_at = now
        record.updated_at = now
        db.session.add(row)
        db.session.add(record)

        if verdict == Outcome.COMPLETED and target == OrderStep.PAYMENT_RELEASED:
            try:
                payout = _create_payout_entry(
                    record,
                    actor=actor,
                    details=text,
                    platform_percent=platform_percent,
                    now=now,
                )
            except Exception as exc:
                db.session.rollback()
                current_app.logger.error("payout_ledger_failed record_id=%s err=%s", rid, exc)
                raise PayoutLedgerError(
                    "Failed to record seller payout; step was not completed", record_id=rid
                ) from exc

        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        break
    else:
        raise ConcurrentUpdate(
            "Order status was modified concurrently; refetch and retry", record_id=rid
        )

    _after_transition(record, target, verdict, text, actor, payout)
    return get_order_status(rid, default_commission_percent=default_commission_percent)


def _after_transition(
    record: OrderStatus,
    step: OrderStep,
    outcome: str,
    details: str,
    actor: Actor,
    payout: PayoutLedgerEntry | None,
) -> None:
    rid = int(record.id)
    if outcome == Outcome.COMPLETED and step == OrderStep.ITEM_MARKED_SOLD:
        try:
            if not listing_service.set_sold(int(record.listing_id), int(record.buyer_id)):
                current_app.logger.warning(
                    "listing_mark_sold_skipped record_id=%s listing_id=%s", rid, record.listing_id
                )
        except Exception as exc:
            db.session.rollback()
            current_app.logger.warning(
                "listing_mark_sold_failed record_id=%s listing_id=%s err=%s", rid, record.listing_id, exc
            )

    meta = {"record_id": rid, "order_id": int(record.order_id), "step": int(step)}
    title = record.listing_title or "your item"
    if outcome == Outcome.FAILED:
        message = f"Order for {title} could not be completed at '{step.label}': {details}"
        queue_notification(record.buyer_id, NotificationKind.ORDER_FAILED, message, meta=meta)
        queue_notification(record.seller_id, NotificationKind.ORDER_FAILED, message, meta=meta)
        log_event(
            "order_failed",
            actor_user_id=int(actor.id),
            subject_type="order_status",
            subject_id=rid,
            severity="WARN",
            idempotency_key=f"order_failed:{rid}",
            metadata={**meta, "details": details},
        )
        return

    message = f"Order for {title}: '{step.label}' completed."
    queue_notification(record.buyer_id, NotificationKind.ORDER_STEP_COMPLETED, message, meta=meta)
    queue_notification(record.seller_id, NotificationKind.ORDER_STEP_COMPLETED, message, meta=meta)
    log_event(
        "order_step_completed",
        actor_user_id=int(actor.id),
        subject_type="order_status",
        subject_id=rid,
        idempotency_key=f"order_step_completed:{rid}:{int(step)}",
        metadata={**meta, "details": details},
    )

    if payout is not None:
        queue_notification(
            record.seller_id,
            NotificationKind.PAYOUT_RELEASED,
            f"Payout of {payout.net_amount:.2f} released for {title} "
            f"({payout.commission_amount:.2f} commission deducted).",
            meta={**meta, "payout_id": int(payout.id)},
        )
        log_event(
            "payout_ledger_entry_created",
            actor_user_id=int(actor.id),
            subject_type="seller_transaction",
            subject_id=int(payout.id),
            idempotency_key=f"payout_ledger_entry:{rid}",
            metadata={
                "record_id": rid,
                "gross_amount": payout.gross_amount,
                "commission_amount": payout.commission_amount,
                "net_amount": payout.net_amount,
            },
        )


def _project(
    record: OrderStatus,
    *,
    default_commission_percent: float,
    global_percent: float | None = None,
    listings: dict | None = None,
) -> dict:
    data = record.to_dict()

    listing_price = record.listing_price
    listing_commission = None
    listing = None
    if listings is not None:
        listing = listings.get(int(record.listing_id))
    elif record.listing_price is None or record.commission_percent is None:
        listing = db.session.get(Listing, int(record.listing_id))
    if listing is not None:
        listing_commission = listing.commission
        if listing_price is None:
            listing_price = listing.price

    # Rows created before pricing was snapshotted get it derived on read.
    pct = resolve_commission_percent(
        record.commission_percent,
        listing_commission,
        global_percent,
        default=default_commission_percent,
    )
    if listing_price is not None and (record.commission_amount is None or record.buyer_price is None):
        pricing = compute_pricing(listing_price, pct, record.order_amount)
        if data["commission_amount"] is None:
            data["commission_amount"] = pricing.commission_amount
        if data["buyer_price"] is None:
            data["buyer_price"] = pricing.buyer_price
    if data["listing_price"] is None and listing_price is not None:
        data["listing_price"] = money_float(listing_price)
    if data["commission_percent"] is None:
        data["commission_percent"] = pct
    if data["order_amount"] is None:
        data["order_amount"] = data["buyer_price"]

    current = int(record.current_step or FIRST_STEP)
    data["current_step_name"] = OrderStep(current).label
    return data


def get_order_status(record_id, *, default_commission_percent: float) -> dict:
    rid = _parse_record_id(record_id)
    record = db.session.get(OrderStatus, rid)
    if record is None:
        raise RecordNotFound("Order status not found", record_id=rid)
    data = _project(
        record,
        default_commission_percent=default_commission_percent,
        global_percent=get_global_commission_percent(),
    )
    entry = PayoutLedgerEntry.query.filter_by(order_status_id=rid).first()
    data["payout"] = entry.to_dict() if entry else None
    return data


def step_catalogue() -> list[dict]:
    return [
        {"step": int(step), "name": meta["name"], "description": meta["description"]}
        for step, meta in sorted(STEP_CATALOGUE.items())
    ]


def list_order_statuses(
    *,
    status: str | None = None,
    step=None,
    admin: str | None = None,
    page: int = 1,
    limit: int = 20,
    default_commission_percent: float,
) -> dict:
    query = OrderStatus.query

    wanted_status = (status or "").strip().lower()
    if wanted_status and wanted_status != "all":
        if wanted_status not in OverallStatus.ALL:
            raise ValidationFailed("Unknown overall status", status=wanted_status)
        query = query.filter(OrderStatus.overall_status == wanted_status)

    wanted_step = str(step or "").strip().lower()
    if wanted_step and wanted_step != "all":
        query = query.filter(OrderStatus.current_step == int(_parse_step(wanted_step)))

    wanted_admin = (admin or "").strip().lower()
    if wanted_admin and wanted_admin != "all":
        if wanted_admin == "unassigned":
            query = query.filter(OrderStatus.assigned_admin_id.is_(None))
        else:
            try:
                admin_id = int(wanted_admin)
            except ValueError:
                raise InvalidIdentifier("admin must be an admin id, 'unassigned' or 'all'")
            query = query.filter(OrderStatus.assigned_admin_id == admin_id)

    total = query.count()
    rows = (
        query.order_by(OrderStatus.created_at.desc(), OrderStatus.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    listing_ids = {int(row.listing_id) for row in rows}
    listings = {}
    if listing_ids:
        listings = {int(l.id): l for l in Listing.query.filter(Listing.id.in_(listing_ids)).all()}

    global_percent = get_global_commission_percent()

    status_counts = {name: 0 for name in OverallStatus.ALL}
    for name, count in (
        db.session.query(OrderStatus.overall_status, func.count(OrderStatus.id))
        .group_by(OrderStatus.overall_status)
        .all()
    ):
        status_counts[name or OverallStatus.IN_PROGRESS] = int(count)

    step_counts = {str(number): 0 for number in range(FIRST_STEP, LAST_STEP + 1)}
    for number, count in (
        db.session.query(OrderStatus.current_step, func.count(OrderStatus.id))
        .group_by(OrderStatus.current_step)
        .all()
    ):
        step_counts[str(int(number or FIRST_STEP))] = int(count)

    return {
        "orders": [
            _project(
                row,
                default_commission_percent=default_commission_percent,
                global_percent=global_percent,
                listings=listings,
            )
            for row in rows
        ],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit if limit else 0,
        },
        "statistics": {
            "by_status": status_counts,
            "by_step": step_counts,
            "total": sum(status_counts.values()),
        },
        "order_steps": step_catalogue(),
    }


def assign_admin(record_id, assignee_id, *, actor: Actor) -> OrderStatus:
    rid = _parse_record_id(record_id)
    try:
        aid = int(assignee_id)
    except (TypeError, ValueError):
        raise InvalidIdentifier("admin_id must be an integer id")

    record = db.session.get(OrderStatus, rid)
    if record is None:
        raise RecordNotFound("Order status not found", record_id=rid)
    assignee = db.session.get(User, aid)
    if assignee is None or not assignee.is_admin():
        raise RecordNotFound("Admin not found", admin_id=aid)

    now = datetime.utcnow()
    record.assigned_admin_id = aid
    record.assigned_at = now
    record.assigned_by = int(actor.id)
    record.updated_at = now
    try:
        db.session.add(record)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    log_event(
        "order_status_admin_assigned",
        actor_user_id=int(actor.id),
        subject_type="order_status",
        subject_id=rid,
        metadata={"assigned_admin_id": aid},
    )
    return record


def list_payout_entries(*, seller_id=None, page: int = 1, limit: int = 20) -> dict:
    query = PayoutLedgerEntry.query
    if seller_id not in (None, ""):
        try:
            sid = int(seller_id)
        except (TypeError, ValueError):
            raise InvalidIdentifier("seller_id must be an integer id")
        query = query.filter(PayoutLedgerEntry.seller_id == sid)

    total = query.count()
    rows = (
        query.order_by(PayoutLedgerEntry.created_at.desc(), PayoutLedgerEntry.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    gross, commission, net = query.with_entities(
        func.coalesce(func.sum(PayoutLedgerEntry.gross_amount), 0.0),
        func.coalesce(func.sum(PayoutLedgerEntry.commission_amount), 0.0),
        func.coalesce(func.sum(PayoutLedgerEntry.net_amount), 0.0),
    ).one()
    return {
        "transactions": [row.to_dict() for row in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit if limit else 0,
        },
        "summary": {
            "count": total,
            "gross_amount": money_float(gross),
            "commission_amount": money_float(commission),
            "net_amount": money_float(net),
        },
    }
