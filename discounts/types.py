from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional, Tuple, Union

ZERO = Decimal("0")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def money(value) -> Decimal:
    """Quantize to cents, flooring negatives at zero."""
    value = Decimal(value)
    if value <= 0:
        return Decimal("0.00")
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class DiscountKind(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FREE_SHIPPING = "free_shipping"
    GIFT_CARD = "gift_card"
    GIFT_PRODUCT = "gift_product"
    BUY_X_PAY_Y = "buy_x_pay_y"
    BUY_X_GET_Y = "buy_x_get_y"
    SPEND_X_PAY_Y = "spend_x_pay_y"
    QUANTITY_TIERED = "quantity_tiered"


class Scope(str, Enum):
    ALL = "all"
    PRODUCT = "product"
    CATEGORY = "category"
    MEMBER = "member"


class GroupingStrategy(str, Enum):
    """Order in which matched units are packed into buy_x_* groups."""

    CART_ORDER = "cart_order"
    CHEAPEST_FIRST = "cheapest_first"
    MOST_EXPENSIVE_FIRST = "most_expensive_first"


# ------------------------------
#  KIND TERMS
# ------------------------------
@dataclass(frozen=True)
class BuyXPayY:
    buy_quantity: int
    pay_amount: Decimal


@dataclass(frozen=True)
class BuyXGetY:
    buy_quantity: int
    get_quantity: int
    get_discount_percent: Decimal = HUNDRED

    @property
    def group_size(self) -> int:
        return self.buy_quantity + self.get_quantity


@dataclass(frozen=True)
class SpendXPayY:
    spend_amount: Decimal
    pay_amount: Decimal


@dataclass(frozen=True)
class QuantityTier:
    min_quantity: int
    discount_percent: Decimal


@dataclass(frozen=True)
class QuantityTiers:
    tiers: Tuple[QuantityTier, ...]

    def reached(self, quantity: int) -> Optional[QuantityTier]:
        """Highest tier whose min_quantity the given quantity reaches."""
        best = None
        for tier in self.tiers:
            if tier.min_quantity <= quantity and (
                best is None or tier.min_quantity > best.min_quantity
            ):
                best = tier
        return best


@dataclass(frozen=True)
class GiftProduct:
    gift_product_ids: Tuple[str, ...] = ()
    gift_same_product: bool = False


Terms = Union[BuyXPayY, BuyXGetY, SpendXPayY, QuantityTiers, GiftProduct]

TERMS_BY_KIND = {
    DiscountKind.BUY_X_PAY_Y: BuyXPayY,
    DiscountKind.BUY_X_GET_Y: BuyXGetY,
    DiscountKind.SPEND_X_PAY_Y: SpendXPayY,
    DiscountKind.QUANTITY_TIERED: QuantityTiers,
    DiscountKind.GIFT_PRODUCT: GiftProduct,
}


# ------------------------------
#  INPUTS
# ------------------------------
@dataclass(frozen=True)
class Discount:
    """
    One automatic promotion or redeemed coupon, as resolved by the caller.

    Simple kinds (percentage, fixed_amount, free_shipping, gift_card) read
    `value`; conditional kinds carry their shape in `terms`.
    """

    id: str
    kind: DiscountKind
    value: Decimal = ZERO
    code: Optional[str] = None
    title: Optional[str] = None
    scope: Scope = Scope.ALL
    product_ids: frozenset = frozenset()
    category_ids: frozenset = frozenset()
    exclude_product_ids: frozenset = frozenset()
    exclude_category_ids: frozenset = frozenset()
    stackable: bool = True
    minimum_amount: Optional[Decimal] = None
    minimum_quantity: Optional[int] = None
    terms: Optional[Terms] = None

    @property
    def is_coupon(self) -> bool:
        return bool(self.code)

    def terms_for(self, kind_class):
        """Return `terms` when it has the expected shape, else None."""
        return self.terms if isinstance(self.terms, kind_class) else None


@dataclass(frozen=True)
class CartLine:
    id: str
    product_id: str
    price: Decimal
    quantity: int
    variant_id: Optional[str] = None
    category_ids: Tuple[str, ...] = ()
    is_gift: bool = False
    gift_discount_id: Optional[str] = None

    def __post_init__(self):
        # floats and strings go through str() so 19.99 stays 19.99
        if not isinstance(self.price, Decimal):
            object.__setattr__(self, "price", Decimal(str(self.price)))

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class PricingContext:
    is_member: bool = False
    shipping_amount: Decimal = ZERO


# ------------------------------
#  OUTPUTS
# ------------------------------
@dataclass(frozen=True)
class MatchResult:
    items: Tuple[CartLine, ...]
    matched_subtotal: Decimal
    matched_quantity: int
    eligible: bool


@dataclass(frozen=True)
class Effect:
    amount: Decimal = Decimal("0.00")
    free_shipping: bool = False
    gift_product_ids: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return self.amount <= 0 and not self.free_shipping and not self.gift_product_ids


@dataclass(frozen=True)
class AppliedDiscount:
    discount_id: str
    kind: DiscountKind
    amount: Decimal
    description: str
    code: Optional[str] = None
    title: Optional[str] = None
    stackable: bool = True
    free_shipping: bool = False
    gift_product_ids: Tuple[str, ...] = ()
    affected_line_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class EngineResult:
    original_total: Decimal
    discount_total: Decimal
    remaining_total: Decimal
    shipping_amount: Decimal
    shipping_discount: Decimal
    final_total: Decimal
    free_shipping: bool
    applied: Tuple[AppliedDiscount, ...] = ()
    gift_triggers: Tuple[Tuple[str, Tuple[str, ...]], ...] = field(default=())

    @property
    def gift_product_ids(self) -> Tuple[str, ...]:
        seen = []
        for _, product_ids in self.gift_triggers:
            for product_id in product_ids:
                if product_id not in seen:
                    seen.append(product_id)
        return tuple(seen)
