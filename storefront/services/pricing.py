import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Tuple, Union

from storefront.core.errors import InvalidPromoError, PromoExhaustedError, ValidationError
from storefront.core.unit_of_work import TransactionScope
from storefront.models.database import Component, PromoCode, utcnow

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

Number = Union[Decimal, int, float, str]


def to_money(value: Number) -> Decimal:
    """Quantize any numeric input to cents, rounding half up"""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class PromoResult:
    code: str
    discount: Decimal
    discounted_total: Decimal


class PricingAggregator:
    """Order and configuration totals, catalog discount prices and promo codes."""

    def compute_subtotal(self, items: Iterable[Tuple[Number, int]]) -> Decimal:
        subtotal = Decimal("0")
        for unit_price, quantity in items:
            price = to_money(unit_price)
            if price < 0:
                raise ValidationError(f"Negative unit price: {price}", {"price": "must be >= 0"})
            if quantity < 0:
                raise ValidationError(
                    f"Negative quantity: {quantity}", {"quantity": "must be >= 0"}
                )
            subtotal += price * quantity
        return to_money(subtotal)

    def effective_price(self, component: Component, now: Optional[datetime] = None) -> Decimal:
        """Catalog price, or the discount price while it has not expired"""
        now = now or utcnow()
        if component.discount_price is not None:
            if component.discount_expires_at is None or now <= component.discount_expires_at:
                return to_money(component.discount_price)
        return to_money(component.price)

    def evaluate_promo(
        self, promo: Optional[PromoCode], code: str, subtotal: Decimal, now: Optional[datetime] = None
    ) -> PromoResult:
        """Validate a promo code against a subtotal without redeeming it.

        Checks run in a fixed order: exists and active, not expired,
        minimum order value, remaining usage.
        """
        now = now or utcnow()
        subtotal = to_money(subtotal)
        if promo is None:
            raise InvalidPromoError(code, "not_found")
        if not promo.is_active:
            raise InvalidPromoError(code, "inactive")
        if not now < promo.expires_at:
            raise InvalidPromoError(code, "expired")
        if subtotal < to_money(promo.min_order_value or 0):
            raise InvalidPromoError(code, "below_minimum")
        if promo.max_usage is not None and promo.usage_count >= promo.max_usage:
            raise PromoExhaustedError(code)

        discount = to_money(subtotal * Decimal(promo.discount_percentage) / Decimal(100))
        if promo.max_discount_amount is not None:
            discount = min(discount, to_money(promo.max_discount_amount))
        discount = max(Decimal("0.00"), min(discount, subtotal))
        return PromoResult(code=promo.code, discount=discount, discounted_total=subtotal - discount)

    def preview_promo(
        self, tx: TransactionScope, code: str, subtotal: Number, now: Optional[datetime] = None
    ) -> PromoResult:
        """Price preview for checkout; never touches usage_count."""
        return self.evaluate_promo(tx.promo_codes.find_by_code(code), code, to_money(subtotal), now)

    def apply_promo(
        self, tx: TransactionScope, code: str, subtotal: Number, now: Optional[datetime] = None
    ) -> PromoResult:
        """Redeem a promo code inside the caller's transaction.

        The usage counter is bumped with a guarded UPDATE; if a concurrent
        redemption took the last use first, the code is reported exhausted.
        """
        promo = tx.promo_codes.find_by_code(code)
        result = self.evaluate_promo(promo, code, to_money(subtotal), now)
        if not tx.promo_codes.increment_usage(promo.id):
            logger.warning(f"Promo code {code} ran out of uses during redemption")
            raise PromoExhaustedError(code)
        logger.info(f"Redeemed promo code {code}: discount {result.discount}")
        return result
