from __future__ import annotations

from datetime import datetime

from sqlalchemy import and_, or_

from campusmart.extensions import db
from campusmart.models import Listing


class ListingStatus:
    ACTIVE = "active"
    RESERVED = "reserved"
    SOLD = "sold"


def get_price_and_commission(listing_id: int | None) -> dict | None:
    if not listing_id:
        return None
    listing = db.session.get(Listing, int(listing_id))
    if listing is None:
        return None
    return {
        "price": float(listing.price or 0.0),
        "commission_percent": float(listing.commission) if listing.commission is not None else None,
    }


def claim_for_buyer(listing_id: int, buyer_id: int) -> bool:
    """Move an active listing to reserved for ``buyer_id`` inside the caller's transaction.

    Only one buyer can win; the caller commits or rolls back.
    """
    claimed = (
        Listing.query
        .filter(Listing.id == int(listing_id), Listing.status == ListingStatus.ACTIVE)
        .update(
            {"status": ListingStatus.RESERVED, "sold_to": int(buyer_id), "updated_at": datetime.utcnow()},
            synchronize_session=False,
        )
    )
    return claimed == 1


def mark_reserved(listing_id: int, buyer_id: int) -> bool:
    """Keep the listing off the market for the buyer whose payment was verified."""
    updated = (
        Listing.query
        .filter(
            Listing.id == int(listing_id),
            or_(
                Listing.status == ListingStatus.ACTIVE,
                and_(Listing.status == ListingStatus.RESERVED, Listing.sold_to == int(buyer_id)),
            ),
        )
        .update(
            {"status": ListingStatus.RESERVED, "sold_to": int(buyer_id), "updated_at": datetime.utcnow()},
            synchronize_session=False,
        )
    )
    db.session.commit()
    return updated == 1


def release_reservation(listing_id: int, buyer_id: int) -> bool:
    """Put the listing back on the market, but only if ``buyer_id`` holds the reservation."""
    released = (
        Listing.query
        .filter(
            Listing.id == int(listing_id),
            Listing.status == ListingStatus.RESERVED,
            Listing.sold_to == int(buyer_id),
        )
        .update(
            {"status": ListingStatus.ACTIVE, "sold_to": None, "sold_at": None, "updated_at": datetime.utcnow()},
            synchronize_session=False,
        )
    )
    db.session.commit()
    return released == 1


def set_sold(listing_id: int, buyer_id: int) -> bool:
    listing = db.session.get(Listing, int(listing_id))
    if listing is None:
        return False
    now = datetime.utcnow()
    listing.status = ListingStatus.SOLD
    listing.sold_to = int(buyer_id)
    listing.sold_at = now
    listing.updated_at = now
    db.session.add(listing)
    db.session.commit()
    return True
