from decimal import ROUND_FLOOR, Decimal

from .types import (
    HUNDRED,
    ZERO,
    BuyXGetY,
    BuyXPayY,
    Discount,
    DiscountKind,
    Effect,
    GiftProduct,
    GroupingStrategy,
    MatchResult,
    QuantityTiers,
    SpendXPayY,
    money,
)


def _percent(value) -> Decimal:
    return min(max(Decimal(value), ZERO), HUNDRED)


def _units(items, grouping: GroupingStrategy) -> list:
    """Expand matched lines into unit prices, ordered for grouping."""
    units = []
    for line in items:
        units.extend([line.price] * max(line.quantity, 0))
    if grouping is GroupingStrategy.CHEAPEST_FIRST:
        units.sort()
    elif grouping is GroupingStrategy.MOST_EXPENSIVE_FIRST:
        units.sort(reverse=True)
    return units


def _complete_groups(units: list, size: int) -> list:
    if size <= 0:
        return []
    return [units[i : i + size] for i in range(0, len(units) - size + 1, size)]


def _buy_x_pay_y(terms: BuyXPayY, match: MatchResult, grouping) -> Decimal:
    pay = max(terms.pay_amount, ZERO)
    amount = ZERO
    for group in _complete_groups(_units(match.items, grouping), terms.buy_quantity):
        amount += max(sum(group, ZERO) - pay, ZERO)
    return amount


def _buy_x_get_y(terms: BuyXGetY, match: MatchResult, grouping) -> Decimal:
    rate = _percent(terms.get_discount_percent) / HUNDRED
    amount = ZERO
    for group in _complete_groups(_units(match.items, grouping), terms.group_size):
        # sorted() is stable, so equal prices keep cart order
        cheapest = sorted(group)[: terms.get_quantity]
        amount += sum(cheapest, ZERO) * rate
    return amount


def _spend_x_pay_y(terms: SpendXPayY, match: MatchResult) -> Decimal:
    if terms.spend_amount <= 0:
        return ZERO
    multiples = (match.matched_subtotal / terms.spend_amount).to_integral_value(
        rounding=ROUND_FLOOR
    )
    amount = multiples * max(terms.spend_amount - terms.pay_amount, ZERO)
    return min(amount, match.matched_subtotal)


def _gift_product_ids(terms: GiftProduct, match: MatchResult) -> tuple:
    if terms.gift_same_product:
        source = [line.product_id for line in match.items]
    else:
        source = list(terms.gift_product_ids)
    ids = []
    for product_id in source:
        if product_id not in ids:
            ids.append(product_id)
    return tuple(ids)


def compute_amount(
    discount: Discount,
    match: MatchResult,
    remaining_payable: Decimal,
    grouping: GroupingStrategy = GroupingStrategy.CART_ORDER,
) -> Effect:
    """
    Effect of one discount in isolation, measured on its matched lines.

    The monetary amount is floored at zero and capped at the remaining
    payable total, so no discount can push the order below zero.
    """
    kind = discount.kind
    remaining = max(remaining_payable, ZERO)
    amount = ZERO
    free_shipping = False
    gift_ids = ()

    if kind is DiscountKind.PERCENTAGE:
        amount = match.matched_subtotal * _percent(discount.value) / HUNDRED

    elif kind is DiscountKind.FIXED_AMOUNT:
        amount = min(max(discount.value, ZERO), match.matched_subtotal)

    elif kind is DiscountKind.FREE_SHIPPING:
        free_shipping = True

    elif kind is DiscountKind.GIFT_CARD:
        amount = min(max(discount.value, ZERO), remaining)

    elif kind is DiscountKind.GIFT_PRODUCT:
        terms = discount.terms_for(GiftProduct)
        if terms:
            gift_ids = _gift_product_ids(terms, match)

    elif kind is DiscountKind.BUY_X_PAY_Y:
        terms = discount.terms_for(BuyXPayY)
        if terms:
            amount = _buy_x_pay_y(terms, match, grouping)

    elif kind is DiscountKind.BUY_X_GET_Y:
        terms = discount.terms_for(BuyXGetY)
        if terms:
            amount = _buy_x_get_y(terms, match, grouping)

    elif kind is DiscountKind.SPEND_X_PAY_Y:
        terms = discount.terms_for(SpendXPayY)
        if terms:
            amount = _spend_x_pay_y(terms, match)

    elif kind is DiscountKind.QUANTITY_TIERED:
        terms = discount.terms_for(QuantityTiers)
        tier = terms.reached(match.matched_quantity) if terms else None
        if tier is not None:
            amount = match.matched_subtotal * _percent(tier.discount_percent) / HUNDRED

    return Effect(
        amount=money(min(amount, remaining)),
        free_shipping=free_shipping,
        gift_product_ids=gift_ids,
    )


def _fmt(value) -> str:
    value = Decimal(value)
    if value == value.to_integral_value():
        return str(value.quantize(Decimal("1")))
    return str(value.quantize(Decimal("0.01")))


def describe(discount: Discount) -> str:
    """Short English label for a discount, used in the savings breakdown."""
    kind = discount.kind
    terms = discount.terms

    if kind is DiscountKind.PERCENTAGE:
        return f"{_fmt(discount.value)}% off"
    if kind is DiscountKind.FIXED_AMOUNT:
        return f"{_fmt(discount.value)} off"
    if kind is DiscountKind.FREE_SHIPPING:
        return "Free shipping"
    if kind is DiscountKind.GIFT_CARD:
        return "Gift card"
    if kind is DiscountKind.GIFT_PRODUCT:
        return "Free gift"
    if kind is DiscountKind.BUY_X_PAY_Y and isinstance(terms, BuyXPayY):
        return f"Buy {terms.buy_quantity} pay {_fmt(terms.pay_amount)}"
    if kind is DiscountKind.BUY_X_GET_Y and isinstance(terms, BuyXGetY):
        if _percent(terms.get_discount_percent) == HUNDRED:
            return f"Buy {terms.buy_quantity} get {terms.get_quantity} free"
        return (
            f"Buy {terms.buy_quantity} get {terms.get_quantity} "
            f"at {_fmt(terms.get_discount_percent)}% off"
        )
    if kind is DiscountKind.SPEND_X_PAY_Y and isinstance(terms, SpendXPayY):
        return f"Spend {_fmt(terms.spend_amount)} pay {_fmt(terms.pay_amount)}"
    if kind is DiscountKind.QUANTITY_TIERED and isinstance(terms, QuantityTiers):
        if terms.tiers:
            first = min(terms.tiers, key=lambda tier: tier.min_quantity)
            return f"Buy {first.min_quantity}+ get {_fmt(first.discount_percent)}% off"
        return "Quantity discount"
    return "Discount"
