"""Pricing engine.

Pure functions over resolved cart lines and explicit configuration objects.
Nothing in here touches the database: wallet, tax and shipping settings are
loaded by the caller and passed in.

All arithmetic is done on ``Decimal`` without intermediate rounding. The only
rounding points are ``money`` (persisted order amounts) and
``to_minor_units`` (the integer amount sent to the payment gateway).
"""

from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence, Tuple

from storefront.services.errors import InsufficientWalletBalance, ValidationError

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if value is None:
        return ZERO
    # str() keeps floats coming back from SQLite from dragging binary noise in
    return Decimal(str(value))


def money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(value) -> int:
    """Amount in paise/cents as expected by payment gateways."""
    return int((to_decimal(value) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class RewardTier:
    min_spend: Decimal
    points_awarded: int


@dataclass(frozen=True)
class WalletSettings:
    rupees_per_point: Decimal = Decimal("1")
    reward_rules: Tuple[RewardTier, ...] = ()
    # Orders falling short of a tier by at most this much still earn it
    near_miss_tolerance: Decimal = Decimal("5")


@dataclass(frozen=True)
class TaxSettings:
    rate: Decimal = Decimal("0.03")


@dataclass(frozen=True)
class ShippingSettings:
    flat_rate: Decimal = ZERO
    free_above: Optional[Decimal] = None


@dataclass(frozen=True)
class CouponTerms:
    code: str
    discount_percentage: Decimal
    is_active: bool = True


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    coupon_discount: Decimal
    wallet_discount: Decimal
    tax: Decimal
    shipping: Decimal
    points_redeemed: int = 0
    coupon_code: Optional[str] = None

    @property
    def total_discount(self) -> Decimal:
        return self.coupon_discount + self.wallet_discount

    @property
    def taxable_amount(self) -> Decimal:
        return max(ZERO, self.subtotal - self.total_discount)

    @property
    def grand_total(self) -> Decimal:
        return self.subtotal - self.total_discount + self.shipping + self.tax


def subtotal_of(lines: Iterable) -> Decimal:
    return sum((to_decimal(line.unit_price) * line.quantity for line in lines), ZERO)


def coupon_discount(subtotal: Decimal, coupon: Optional[CouponTerms]) -> Decimal:
    # Unknown or inactive codes give no discount rather than an error
    if coupon is None or not coupon.is_active:
        return ZERO
    return subtotal * to_decimal(coupon.discount_percentage) / 100


def wallet_discount(
    points_to_redeem: int,
    wallet_balance: int,
    remaining: Decimal,
    wallet: WalletSettings,
) -> Tuple[Decimal, int]:
    """Return (discount, points actually spent) for a redemption request.

    The discount is capped at what is left to pay after the coupon; only the
    whole points needed to cover the capped discount are spent.
    """
    points_to_redeem = int(points_to_redeem or 0)
    if points_to_redeem < 0:
        raise ValidationError("Points to redeem cannot be negative.")
    if points_to_redeem > wallet_balance:
        raise InsufficientWalletBalance(
            f"Cannot redeem {points_to_redeem} points, wallet holds {wallet_balance}.",
            requested=points_to_redeem,
            balance=wallet_balance,
        )
    if points_to_redeem == 0 or remaining <= ZERO:
        return ZERO, 0

    rate = to_decimal(wallet.rupees_per_point)
    discount = min(points_to_redeem * rate, remaining)
    spent = int((discount / rate).to_integral_value(rounding=ROUND_CEILING))
    return discount, min(spent, points_to_redeem)


def shipping_for(lines: Sequence, subtotal: Decimal, shipping: ShippingSettings) -> Decimal:
    if not any(not line.is_service for line in lines):
        return ZERO
    if shipping.free_above is not None and subtotal > to_decimal(shipping.free_above):
        return ZERO
    return to_decimal(shipping.flat_rate)


def price_cart(
    lines: Sequence,
    *,
    coupon: Optional[CouponTerms] = None,
    points_to_redeem: int = 0,
    wallet_balance: int = 0,
    wallet: WalletSettings = WalletSettings(),
    tax: TaxSettings = TaxSettings(),
    shipping: ShippingSettings = ShippingSettings(),
) -> PriceBreakdown:
    """Price resolved cart lines.

    ``lines`` only need ``unit_price``, ``quantity`` and ``is_service``; the
    unit price must already be the authoritative catalog price.
    """
    subtotal = subtotal_of(lines)
    by_coupon = coupon_discount(subtotal, coupon)
    by_wallet, points = wallet_discount(points_to_redeem, wallet_balance, subtotal - by_coupon, wallet)

    taxable = max(ZERO, subtotal - by_coupon - by_wallet)
    return PriceBreakdown(
        subtotal=subtotal,
        coupon_discount=by_coupon,
        wallet_discount=by_wallet,
        tax=taxable * to_decimal(tax.rate),
        shipping=shipping_for(lines, subtotal, shipping),
        points_redeemed=points,
        coupon_code=coupon.code if coupon is not None and by_coupon > ZERO else None,
    )


def reward_points_for(total, wallet: WalletSettings) -> int:
    """Points earned for an order total: the highest tier reached, or missed
    by no more than the configured tolerance."""
    total = to_decimal(total)
    tolerance = to_decimal(wallet.near_miss_tolerance)
    qualifying = [
        tier for tier in wallet.reward_rules if total >= to_decimal(tier.min_spend) - tolerance
    ]
    if not qualifying:
        return 0
    return max(qualifying, key=lambda tier: to_decimal(tier.min_spend)).points_awarded
