"""
Eligibility matching: which cart lines a discount covers, and whether its
entry conditions hold for them. Never mutates the cart or the discount.
"""

from decimal import Decimal

from .types import (
    BuyXGetY,
    BuyXPayY,
    CartLine,
    Discount,
    DiscountKind,
    GiftProduct,
    MatchResult,
    PricingContext,
    QuantityTiers,
    Scope,
    SpendXPayY,
)


def line_matches(discount: Discount, line: CartLine) -> bool:
    # gift cards pay against the order total, whatever the scope says
    if discount.kind is DiscountKind.GIFT_CARD:
        return True

    categories = set(line.category_ids)

    # exclusions always win over inclusion
    if line.product_id in discount.exclude_product_ids:
        return False
    if categories & discount.exclude_category_ids:
        return False

    if discount.scope in (Scope.ALL, Scope.MEMBER):
        return True
    if discount.scope is Scope.PRODUCT:
        return line.product_id in discount.product_ids
    if discount.scope is Scope.CATEGORY:
        return bool(categories & discount.category_ids)
    return False


def _meets_kind_conditions(discount: Discount, subtotal: Decimal, quantity: int) -> bool:
    """Entry conditions that only make sense for one kind of discount."""
    kind = discount.kind

    if kind is DiscountKind.BUY_X_PAY_Y:
        terms = discount.terms_for(BuyXPayY)
        return bool(terms and terms.buy_quantity > 0 and quantity >= terms.buy_quantity)

    if kind is DiscountKind.BUY_X_GET_Y:
        terms = discount.terms_for(BuyXGetY)
        return bool(
            terms
            and terms.buy_quantity > 0
            and terms.get_quantity > 0
            and quantity >= terms.group_size
        )

    if kind is DiscountKind.SPEND_X_PAY_Y:
        terms = discount.terms_for(SpendXPayY)
        return bool(terms and terms.spend_amount > 0 and subtotal >= terms.spend_amount)

    if kind is DiscountKind.QUANTITY_TIERED:
        terms = discount.terms_for(QuantityTiers)
        return bool(terms and terms.reached(quantity) is not None)

    if kind is DiscountKind.GIFT_PRODUCT:
        terms = discount.terms_for(GiftProduct)
        return bool(terms and (terms.gift_product_ids or terms.gift_same_product))

    return True


def match(discount: Discount, lines, context: PricingContext = PricingContext()) -> MatchResult:
    """
    Select the lines a discount applies to and decide eligibility.

    Gift lines added by an earlier pricing run never take part, so a gift
    cannot keep its own trigger alive. Thresholds are measured against the
    matched lines only, never the whole cart.
    """
    items = tuple(
        line for line in lines if not line.is_gift and line_matches(discount, line)
    )
    subtotal = sum((line.subtotal for line in items), Decimal("0"))
    quantity = sum(line.quantity for line in items)

    eligible = bool(items)
    if discount.scope is Scope.MEMBER and not context.is_member:
        eligible = False
    if discount.minimum_amount is not None and subtotal < discount.minimum_amount:
        eligible = False
    if discount.minimum_quantity is not None and quantity < discount.minimum_quantity:
        eligible = False
    if eligible:
        eligible = _meets_kind_conditions(discount, subtotal, quantity)

    return MatchResult(
        items=items,
        matched_subtotal=subtotal,
        matched_quantity=quantity,
        eligible=eligible,
    )
