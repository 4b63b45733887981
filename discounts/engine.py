from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .calculators import compute_amount, describe
from .matching import line_matches, match
from .types import (
    HUNDRED,
    ZERO,
    AppliedDiscount,
    CartLine,
    DiscountKind,
    EngineResult,
    GroupingStrategy,
    PricingContext,
    Scope,
    money,
)


@dataclass(frozen=True)
class PricePreview:
    discount_id: str
    title: Optional[str]
    price: Decimal
    discounted_price: Decimal


class StackingResolver:
    """
    Single deterministic pass over the candidate list:
    eligibility, then the one-non-stackable rule, then evaluation in input
    order against a running remaining-payable total.
    """

    @classmethod
    def _eligible(cls, discounts, lines, context):
        seen_ids = set()
        eligible = []
        for discount in discounts:
            # the same promotion offered twice only counts once
            if discount.id in seen_ids:
                continue
            seen_ids.add(discount.id)
            result = match(discount, lines, context)
            if result.eligible:
                eligible.append((discount, result))
        return eligible

    @classmethod
    def _enforce_stacking(cls, eligible):
        kept = []
        has_non_stackable = False
        for discount, result in eligible:
            if not discount.stackable:
                if has_non_stackable:
                    continue
                has_non_stackable = True
            kept.append((discount, result))
        return kept

    @classmethod
    def resolve(
        cls,
        discounts,
        lines,
        context: PricingContext,
        grouping: GroupingStrategy = GroupingStrategy.CART_ORDER,
    ) -> EngineResult:
        original_total = money(
            sum((line.subtotal for line in lines if not line.is_gift), ZERO)
        )
        remaining = original_total
        free_shipping = False
        applied = []
        gift_triggers = []

        candidates = cls._enforce_stacking(cls._eligible(discounts, lines, context))

        for discount, result in candidates:
            effect = compute_amount(discount, result, remaining, grouping)
            if effect.is_empty:
                continue

            remaining -= effect.amount
            free_shipping = free_shipping or effect.free_shipping
            if effect.gift_product_ids:
                gift_triggers.append((discount.id, effect.gift_product_ids))

            applied.append(
                AppliedDiscount(
                    discount_id=discount.id,
                    kind=discount.kind,
                    amount=effect.amount,
                    description=describe(discount),
                    code=discount.code,
                    title=discount.title,
                    stackable=discount.stackable,
                    free_shipping=effect.free_shipping,
                    gift_product_ids=effect.gift_product_ids,
                    affected_line_ids=tuple(line.id for line in result.items),
                )
            )

        shipping_amount = money(context.shipping_amount)
        shipping_discount = shipping_amount if free_shipping else money(ZERO)
        remaining = max(remaining, money(ZERO))

        return EngineResult(
            original_total=original_total,
            discount_total=original_total - remaining,
            remaining_total=remaining,
            shipping_amount=shipping_amount,
            shipping_discount=shipping_discount,
            final_total=remaining + shipping_amount - shipping_discount,
            free_shipping=free_shipping,
            applied=tuple(applied),
            gift_triggers=tuple(gift_triggers),
        )


class DiscountEngine:
    """
    Entry point for pricing a cart.

    A pure calculator: same lines, discounts and context give the same
    result, and nothing is read from or written to the outside world.
    Discounts are evaluated strictly in the order given; callers put
    automatic promotions before coupon codes.
    """

    @classmethod
    def calculate_discounts(
        cls,
        cart_lines,
        discounts,
        context: Optional[PricingContext] = None,
        grouping=GroupingStrategy.CART_ORDER,
    ) -> EngineResult:
        return StackingResolver.resolve(
            list(discounts),
            tuple(cart_lines),
            context or PricingContext(),
            GroupingStrategy(grouping),
        )

    @classmethod
    def product_price_preview(
        cls, discounts, product_id: str, category_ids, price: Decimal
    ) -> Optional[PricePreview]:
        """
        Catalogue price after the first automatic percentage or fixed
        discount covering the product. Member-only promotions are skipped
        since the shopper is unknown at display time.
        """
        price = Decimal(price)
        if price <= 0:
            return None

        line = CartLine(
            id="preview",
            product_id=product_id,
            price=price,
            quantity=1,
            category_ids=tuple(category_ids or ()),
        )
        for discount in discounts:
            if discount.is_coupon or discount.scope is Scope.MEMBER:
                continue
            if discount.kind is DiscountKind.PERCENTAGE:
                rate = min(max(discount.value, ZERO), HUNDRED) / HUNDRED
                discounted = price * (1 - rate)
            elif discount.kind is DiscountKind.FIXED_AMOUNT:
                discounted = price - max(discount.value, ZERO)
            else:
                continue
            if line_matches(discount, line):
                return PricePreview(
                    discount_id=discount.id,
                    title=discount.title,
                    price=money(price),
                    discounted_price=money(discounted),
                )
        return None


def calculate_discounts(cart_lines, discounts, context=None, grouping=GroupingStrategy.CART_ORDER):
    return DiscountEngine.calculate_discounts(cart_lines, discounts, context, grouping)
