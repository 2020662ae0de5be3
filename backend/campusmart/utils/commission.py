from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

# Every money value leaves this module quantized to cents with this mode.
MONEY_ROUNDING = ROUND_HALF_UP
MONEY_QUANT = Decimal("0.01")

FALLBACK_COMMISSION_PERCENT = 10.0
MIN_COMMISSION_PERCENT = 0.0
MAX_COMMISSION_PERCENT = 100.0


@dataclass(frozen=True)
class PricingBreakdown:
    listing_price: float
    commission_percent: float
    commission_amount: float
    buyer_price: float
    order_amount: float
    seller_net: float

    def to_dict(self) -> dict:
        return {
            "listing_price": self.listing_price,
            "commission_percent": self.commission_percent,
            "commission_amount": self.commission_amount,
            "buyer_price": self.buyer_price,
            "order_amount": self.order_amount,
            "seller_net": self.seller_net,
        }


def _to_decimal(value) -> Decimal:
    try:
        parsed = Decimal(str(value if value is not None else 0))
    except Exception:
        parsed = Decimal("0")
    if not parsed.is_finite():
        return Decimal("0")
    return parsed


def quantize_money(value) -> Decimal:
    return _to_decimal(value).quantize(MONEY_QUANT, rounding=MONEY_ROUNDING)


def money_float(value) -> float:
    return float(quantize_money(value))


def clamp_percent(value) -> float:
    pct = float(_to_decimal(value))
    if pct < MIN_COMMISSION_PERCENT:
        return MIN_COMMISSION_PERCENT
    if pct > MAX_COMMISSION_PERCENT:
        return MAX_COMMISSION_PERCENT
    return pct


def resolve_commission_percent(*candidates, default: float = FALLBACK_COMMISSION_PERCENT) -> float:
    """First non-null candidate wins; ``default`` is the configured platform value."""
    for candidate in candidates:
        if candidate is None:
            continue
        if isinstance(candidate, str) and not candidate.strip():
            continue
        return clamp_percent(candidate)
    return clamp_percent(default)


def compute_pricing(listing_price, commission_percent, order_amount=None) -> PricingBreakdown:
    """Split a sale into platform commission and seller payout.

    The buyer pays ``listing_price`` plus the commission. The seller receives
    whatever was actually charged minus the commission; when the charged amount
    was never recorded the computed buyer price stands in for it.
    """
    price = _to_decimal(listing_price)
    if price < 0:
        price = Decimal("0")
    pct = _to_decimal(clamp_percent(commission_percent))

    commission = (price * pct / Decimal("100")).quantize(MONEY_QUANT, rounding=MONEY_ROUNDING)
    buyer_price = (price + commission).quantize(MONEY_QUANT, rounding=MONEY_ROUNDING)

    if order_amount is None:
        charged = buyer_price
    else:
        charged = quantize_money(order_amount)
        if charged < 0:
            charged = Decimal("0.00")
    seller_net = (charged - commission).quantize(MONEY_QUANT, rounding=MONEY_ROUNDING)

    return PricingBreakdown(
        listing_price=float(price.quantize(MONEY_QUANT, rounding=MONEY_ROUNDING)),
        commission_percent=float(pct),
        commission_amount=float(commission),
        buyer_price=float(buyer_price),
        order_amount=float(charged),
        seller_net=float(seller_net),
    )
