# storefront/services/settings_store.py
# Read-side providers for coupon, wallet, tax and shipping configuration.
# The pricing engine never queries these itself; checkout loads them once and
# passes the resulting value objects in.
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from storefront.config import Settings, settings as default_settings
from storefront.models.coupon import Coupon
from storefront.models.tax import TaxConfig
from storefront.models.wallet import WalletConfig
from storefront.services.errors import ValidationError
from storefront.services.pricing import (
    CouponTerms,
    RewardTier,
    ShippingSettings,
    TaxSettings,
    WalletSettings,
    to_decimal,
)

logger = logging.getLogger(__name__)

DEFAULT_TAX_RATE = Decimal("0.03")


def find_active_coupon(db: Session, code: Optional[str], strict: bool = False) -> Optional[CouponTerms]:
    if not code or not code.strip():
        return None
    normalized = code.strip().upper()
    coupon = (
        db.query(Coupon)
        .filter(func.upper(Coupon.code) == normalized, Coupon.is_active.is_(True))
        .first()
    )
    if coupon is None:
        if strict:
            raise ValidationError(f"Coupon {normalized} is invalid or no longer active.", coupon_code=normalized)
        logger.info("Ignoring unknown or inactive coupon %s", normalized)
        return None
    return CouponTerms(
        code=coupon.code.upper(),
        discount_percentage=to_decimal(coupon.discount_percentage),
        is_active=coupon.is_active,
    )


def get_wallet_config(db: Session) -> Optional[WalletConfig]:
    return (
        db.query(WalletConfig)
        .options(selectinload(WalletConfig.reward_rules))
        .order_by(WalletConfig.id)
        .first()
    )


def load_wallet_settings(db: Session, cfg: Settings = default_settings) -> WalletSettings:
    config = get_wallet_config(db)
    if config is None:
        # No row yet: one point is worth one rupee and nothing is awarded
        return WalletSettings(near_miss_tolerance=to_decimal(cfg.REWARD_NEAR_MISS_TOLERANCE))
    return WalletSettings(
        rupees_per_point=to_decimal(config.rupees_per_point),
        reward_rules=tuple(
            RewardTier(min_spend=to_decimal(rule.min_spend), points_awarded=rule.points_awarded)
            for rule in config.reward_rules
        ),
        near_miss_tolerance=to_decimal(cfg.REWARD_NEAR_MISS_TOLERANCE),
    )


def load_tax_settings(db: Session) -> TaxSettings:
    config = db.query(TaxConfig).order_by(TaxConfig.id).first()
    if config is None or config.rate is None:
        return TaxSettings(rate=DEFAULT_TAX_RATE)
    return TaxSettings(rate=to_decimal(config.rate))


def shipping_settings(cfg: Settings = default_settings) -> ShippingSettings:
    free_above = cfg.SHIPPING_FREE_ABOVE
    return ShippingSettings(
        flat_rate=to_decimal(cfg.SHIPPING_FLAT_RATE),
        free_above=to_decimal(free_above) if free_above is not None else None,
    )
