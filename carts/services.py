import logging
from decimal import Decimal

from django.db import transaction

from catalog.models import Product
from discounts.conf import discount_setting
from discounts.engine import DiscountEngine
from discounts.exceptions import CouponError
from discounts.services import AutomaticDiscountService, CouponService, is_club_member
from discounts.types import CartLine, PricingContext

from .models import Cart, CartItem

logger = logging.getLogger(__name__)


class GiftReconciler:
    """
    Keeps gift lines in step with the latest pricing result.

    Each (discount id, product id) pair is either NoGift or GiftPresent:
    a pair listed in result.gift_triggers without a line gets one inserted,
    a gift line whose pair is no longer listed is removed. The tag on the
    line is the join key, so running it twice changes nothing.
    """

    @staticmethod
    @transaction.atomic
    def reconcile(cart: Cart, result):
        wanted = {
            (discount_id, product_id)
            for discount_id, product_ids in result.gift_triggers
            for product_id in product_ids
        }
        present = {}
        for item in cart.items.filter(is_gift=True).select_related("variant"):
            present[(item.gift_discount_id, str(item.variant.product_id))] = item

        removed = []
        for key, item in present.items():
            if key not in wanted:
                removed.append(key)
                item.delete()

        added = []
        for discount_id, product_ids in result.gift_triggers:
            for product_id in product_ids:
                key = (discount_id, product_id)
                if key in present:
                    continue
                product = Product.objects.filter(pk=product_id, is_active=True).first()
                variant = product.default_variant() if product else None
                if variant is None:
                    logger.warning(
                        "Gift product %s of discount %s has no variant; skipped",
                        product_id,
                        discount_id,
                    )
                    continue
                CartItem.objects.create(
                    cart=cart,
                    variant=variant,
                    quantity=1,
                    unit_price=Decimal("0"),
                    is_gift=True,
                    gift_discount_id=discount_id,
                )
                added.append(key)

        if added or removed:
            logger.info(
                "Cart %s gift lines reconciled: added=%s removed=%s",
                cart.pk,
                sorted(added),
                sorted(removed),
            )
        return added, removed


class CartService:
    @staticmethod
    def snapshot(cart: Cart) -> list:
        """Reduce cart rows to the fields the engine needs, in cart order."""
        lines = []
        items = cart.items.select_related("variant", "variant__product").prefetch_related(
            "variant__product__categories"
        )
        for item in items:
            product = item.variant.product
            lines.append(
                CartLine(
                    id=str(item.pk),
                    product_id=str(product.pk),
                    variant_id=str(item.variant_id),
                    category_ids=tuple(str(c.pk) for c in product.categories.all()),
                    price=item.unit_price,
                    quantity=item.quantity,
                    is_gift=item.is_gift,
                    gift_discount_id=item.gift_discount_id or None,
                )
            )
        return lines

    @classmethod
    def resolve_coupons(cls, store, coupon_codes, lines, email=None):
        """
        Engine records for the entered codes that currently validate, each
        checked against the ones kept before it. Rejected codes are skipped.
        """
        coupons = []
        total = sum((line.subtotal for line in lines if not line.is_gift), Decimal("0"))
        for code in coupon_codes:
            try:
                coupons.append(
                    CouponService.validate_coupon(
                        store, code, total, email=email, cart_lines=lines, applied=coupons
                    )
                )
            except CouponError as exc:
                # rejection is surfaced when the code is entered, not on every reprice
                logger.debug("Skipping coupon %s while pricing cart: %s", code, exc.reason)
        return coupons

    @classmethod
    def candidates(cls, store, lines, coupon_codes=(), email=None) -> list:
        """
        Engine input in evaluation order: automatic promotions, then gift
        promotions triggered by the accepted codes, then the coupons
        themselves in the order they were entered.
        """
        coupons = cls.resolve_coupons(store, coupon_codes, lines, email)
        return (
            AutomaticDiscountService.get_automatic_discounts(store, lines, email=email)
            + AutomaticDiscountService.get_triggered_gift_discounts(
                store, [coupon.code for coupon in coupons]
            )
            + coupons
        )

    @classmethod
    def price(
        cls,
        cart: Cart,
        store=None,
        coupon_codes=(),
        email=None,
        shipping_amount=Decimal("0"),
        reconcile_gifts=True,
    ):
        store = store or discount_setting("DEFAULT_STORE")
        email = email or cart.user.email
        lines = cls.snapshot(cart)
        context = PricingContext(
            is_member=bool(cart.user.is_club_member) or is_club_member(email),
            shipping_amount=Decimal(shipping_amount or 0),
        )
        result = DiscountEngine.calculate_discounts(
            lines,
            cls.candidates(store, lines, coupon_codes, email),
            context,
            grouping=discount_setting("GROUPING_STRATEGY"),
        )
        if reconcile_gifts:
            GiftReconciler.reconcile(cart, result)
        return result

    @classmethod
    def revalidate_coupons(cls, cart: Cart, store=None, coupon_codes=(), email=None):
        """
        Re-check entered codes against the current cart, e.g. after an item
        was removed. Returns (kept_codes, [(code, reason), ...]).
        """
        store = store or discount_setting("DEFAULT_STORE")
        email = email or cart.user.email
        lines = cls.snapshot(cart)
        total = sum((line.subtotal for line in lines if not line.is_gift), Decimal("0"))

        kept, kept_definitions, dropped = [], [], []
        for code in coupon_codes:
            try:
                definition = CouponService.validate_coupon(
                    store,
                    code,
                    total,
                    email=email,
                    cart_lines=lines,
                    applied=kept_definitions,
                )
            except CouponError as exc:
                dropped.append((code, exc.reason))
                continue
            kept.append(definition.code)
            kept_definitions.append(definition)

        if dropped:
            logger.info("Cart %s dropped coupons after change: %s", cart.pk, dropped)
        return kept, dropped
