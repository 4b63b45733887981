"""
Collaborators around the pure engine: resolving coupon codes and automatic
promotions into engine records, and bookkeeping of redemptions.
"""

import logging
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from .engine import DiscountEngine
from .exceptions import CouponError, CouponRejection
from .matching import match
from .models import Discount, DiscountRedemption
from .types import DiscountKind, PricingContext, Scope

logger = logging.getLogger(__name__)


def _active_in_store(store, now=None):
    now = now or timezone.now()
    return (
        Discount.objects.filter(store=store, is_active=True)
        .filter(Q(starts_at__isnull=True) | Q(starts_at__lte=now))
        .filter(Q(ends_at__isnull=True) | Q(ends_at__gte=now))
        .order_by("priority", "id")
    )


def is_club_member(email) -> bool:
    if not email:
        return False
    return (
        get_user_model()
        .objects.filter(email__iexact=email.strip(), is_club_member=True, is_active=True)
        .exists()
    )


def has_previous_orders(email) -> bool:
    if not email:
        return False
    email = email.strip()
    if DiscountRedemption.objects.filter(email__iexact=email).exists():
        return True
    return (
        get_user_model()
        .objects.filter(email__iexact=email, carts__is_converted=True)
        .exists()
    )


class CouponService:
    @staticmethod
    def _reject(code, store, reason, message):
        logger.info("Coupon %s rejected in store %s: %s", code, store, reason)
        raise CouponError(reason, message)

    @classmethod
    def get_coupon(cls, store, code):
        code = Discount.normalize_code(code)
        if not code:
            return None
        return Discount.objects.filter(store=store, code=code).first()

    @classmethod
    def validate_coupon(
        cls,
        store,
        code,
        cart_total,
        email=None,
        cart_lines=None,
        applied=(),
        now=None,
    ):
        """
        Check a shopper-entered code and return its engine record.

        Usage limits, scheduling, first-order and per-customer rules live
        here, never in the engine. `applied` holds the engine records of
        coupons already on the cart, for the combination rules. Raises
        CouponError with a machine-readable reason.
        """
        now = now or timezone.now()
        normalized = Discount.normalize_code(code)
        coupon = cls.get_coupon(store, normalized)

        if coupon is None:
            cls._reject(normalized, store, CouponRejection.NOT_FOUND, "Coupon code not found.")
        if not coupon.is_active:
            cls._reject(normalized, store, CouponRejection.INACTIVE, "This coupon is not active.")
        if coupon.starts_at and now < coupon.starts_at:
            cls._reject(
                normalized, store, CouponRejection.NOT_STARTED, "This coupon is not valid yet."
            )
        if coupon.ends_at and now > coupon.ends_at:
            cls._reject(normalized, store, CouponRejection.EXPIRED, "This coupon has expired.")
        if coupon.usage_exhausted:
            cls._reject(
                normalized,
                store,
                CouponRejection.USAGE_LIMIT_REACHED,
                "This coupon has reached its usage limit.",
            )

        if email and coupon.per_customer_limit is not None:
            used = coupon.redemptions.filter(email__iexact=email.strip()).count()
            if used >= coupon.per_customer_limit:
                cls._reject(
                    normalized,
                    store,
                    CouponRejection.CUSTOMER_LIMIT_REACHED,
                    "You have already used this coupon.",
                )

        if coupon.first_order_only and has_previous_orders(email):
            cls._reject(
                normalized,
                store,
                CouponRejection.FIRST_ORDER_ONLY,
                "This coupon is only valid on a first order.",
            )

        definition = coupon.to_definition()
        applied_coupons = [d for d in applied if d.is_coupon]

        if any(d.id == definition.id or d.code == definition.code for d in applied_coupons):
            cls._reject(
                normalized,
                store,
                CouponRejection.ALREADY_APPLIED,
                "This coupon is already applied.",
            )
        if applied_coupons and (
            not definition.stackable or any(not d.stackable for d in applied_coupons)
        ):
            blocking = next((d for d in applied_coupons if not d.stackable), None)
            other = blocking.code if blocking else "other coupons"
            cls._reject(
                normalized,
                store,
                CouponRejection.NOT_COMBINABLE,
                f"This coupon cannot be combined with {other}.",
            )

        if definition.scope is Scope.MEMBER and not is_club_member(email):
            cls._reject(
                normalized,
                store,
                CouponRejection.MEMBERS_ONLY,
                "This coupon is for club members only.",
            )

        cls._check_thresholds(normalized, store, definition, cart_total, cart_lines, email)
        return definition

    @classmethod
    def _check_thresholds(cls, code, store, definition, cart_total, cart_lines, email):
        if cart_lines is None:
            subtotal = Decimal(cart_total or 0)
            quantity = None
        else:
            context = PricingContext(is_member=is_club_member(email))
            result = match(definition, cart_lines, context)
            if not result.items:
                cls._reject(
                    code,
                    store,
                    CouponRejection.NO_ELIGIBLE_ITEMS,
                    "None of the items in your cart qualify for this coupon.",
                )
            subtotal = result.matched_subtotal
            quantity = result.matched_quantity

        if definition.minimum_amount is not None and subtotal < definition.minimum_amount:
            cls._reject(
                code,
                store,
                CouponRejection.MINIMUM_NOT_MET,
                f"This coupon requires a minimum order of {definition.minimum_amount}.",
            )
        if (
            quantity is not None
            and definition.minimum_quantity is not None
            and quantity < definition.minimum_quantity
        ):
            cls._reject(
                code,
                store,
                CouponRejection.MINIMUM_NOT_MET,
                f"This coupon requires at least {definition.minimum_quantity} items.",
            )


class AutomaticDiscountService:
    @classmethod
    def get_automatic_discounts(
        cls, store, cart_lines=None, cart_total=None, email=None, now=None
    ) -> list:
        """
        Active, in-date promotions without a code, in priority order.

        The cart arguments are accepted for callers that have them, but
        item-level eligibility is left to the engine. Promotions switched
        on by coupon codes are returned by get_triggered_gift_discounts.
        """
        return [
            row.to_definition()
            for row in _active_in_store(store, now).filter(code__isnull=True)
            if not row.trigger_coupon_codes
        ]

    @classmethod
    def get_triggered_gift_discounts(cls, store, coupon_codes, now=None) -> list:
        codes = {Discount.normalize_code(c) for c in coupon_codes if c}
        if not codes:
            return []
        triggered = []
        rows = _active_in_store(store, now).filter(
            code__isnull=True, kind=DiscountKind.GIFT_PRODUCT.value
        )
        for row in rows:
            triggers = {Discount.normalize_code(c) for c in row.trigger_coupon_codes or []}
            if triggers & codes:
                triggered.append(row.to_definition())
        return triggered

    @classmethod
    def product_price_preview(cls, store, product, price=None, now=None):
        if price is None:
            price = product.lowest_price()
        return DiscountEngine.product_price_preview(
            cls.get_automatic_discounts(store, now=now),
            str(product.pk),
            product.category_ids(),
            price,
        )


class RedemptionService:
    @staticmethod
    @transaction.atomic
    def record_redemption(discount_id, email="", order_reference="", amount=Decimal("0")):
        """
        Count one use of a discount once its order is final. The increment
        is a single conditional UPDATE, so concurrent checkouts cannot push
        used_count past usage_limit.
        """
        updated = (
            Discount.objects.filter(pk=discount_id)
            .filter(Q(usage_limit__isnull=True) | Q(used_count__lt=F("usage_limit")))
            .update(used_count=F("used_count") + 1)
        )
        if not updated:
            logger.warning(
                "Redemption of discount %s refused: usage limit reached", discount_id
            )
            raise CouponError(
                CouponRejection.USAGE_LIMIT_REACHED,
                "This coupon has reached its usage limit.",
            )

        redemption = DiscountRedemption.objects.create(
            discount_id=discount_id,
            email=(email or "").strip().lower(),
            order_reference=order_reference,
            amount=amount,
        )
        logger.info(
            "Discount %s redeemed (order %s, amount %s)",
            discount_id,
            order_reference or "-",
            amount,
        )
        return redemption

    @classmethod
    @transaction.atomic
    def record_result(cls, result, email="", order_reference=""):
        """
        Record every applied discount of a final EngineResult, all or
        nothing: one discount hitting its limit rolls back the others.
        """
        return [
            cls.record_redemption(
                int(record.discount_id),
                email=email,
                order_reference=order_reference,
                amount=record.amount,
            )
            for record in result.applied
        ]
