from decimal import Decimal, InvalidOperation
from django.core.exceptions import ValidationError
from django.db import models

from .types import (
    BuyXGetY,
    BuyXPayY,
    Discount as DiscountDefinition,
    DiscountKind,
    GiftProduct,
    QuantityTier,
    QuantityTiers,
    Scope,
    SpendXPayY,
)


def _ids(values) -> frozenset:
    return frozenset(str(v) for v in (values or []))


def _amount(value, default=None):
    """Non-negative Decimal, or `default` when missing/unparseable."""
    if value is None or value == "":
        return default
    try:
        return max(Decimal(str(value)), Decimal("0"))
    except (InvalidOperation, ValueError):
        return default


def _count(value) -> int:
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError):
        return 0


class Discount(models.Model):
    KIND_CHOICES = [
        (DiscountKind.PERCENTAGE.value, "Percentage off"),
        (DiscountKind.FIXED_AMOUNT.value, "Fixed amount off"),
        (DiscountKind.FREE_SHIPPING.value, "Free shipping"),
        (DiscountKind.GIFT_CARD.value, "Gift card"),
        (DiscountKind.GIFT_PRODUCT.value, "Gift product"),
        (DiscountKind.BUY_X_PAY_Y.value, "Buy X pay Y"),
        (DiscountKind.BUY_X_GET_Y.value, "Buy X get Y"),
        (DiscountKind.SPEND_X_PAY_Y.value, "Spend X pay Y"),
        (DiscountKind.QUANTITY_TIERED.value, "Quantity tiers"),
    ]

    SCOPE_CHOICES = [
        (Scope.ALL.value, "All products"),
        (Scope.PRODUCT.value, "Specific products"),
        (Scope.CATEGORY.value, "Specific categories"),
        (Scope.MEMBER.value, "Club members"),
    ]

    store = models.SlugField(max_length=100, default="default", db_index=True)
    title = models.CharField(max_length=255)
    code = models.CharField(
        max_length=50,
        blank=True,
        null=True,
        help_text="Coupon code. Empty = automatic promotion",
    )
    kind = models.CharField(max_length=30, choices=KIND_CHOICES)
    value = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0"),
        help_text="If percentage, 10 = 10%. Gift cards: the balance.",
    )

    # What it applies to (exclusions always win)
    scope = models.CharField(max_length=20, choices=SCOPE_CHOICES, default="all")
    product_ids = models.JSONField(default=list, blank=True)
    category_ids = models.JSONField(default=list, blank=True)
    exclude_product_ids = models.JSONField(default=list, blank=True)
    exclude_category_ids = models.JSONField(default=list, blank=True)

    # Priority + stacking
    priority = models.IntegerField(default=100, help_text="Lower = applied earlier")
    stackable = models.BooleanField(
        default=True, help_text="Can it be combined with others?"
    )

    # Entry thresholds, measured on the matching items only
    minimum_amount = models.DecimalField(
        max_digits=10, decimal_places=2, null=True, blank=True
    )
    minimum_quantity = models.PositiveIntegerField(null=True, blank=True)

    # Conditional shapes
    buy_quantity = models.PositiveIntegerField(null=True, blank=True)
    get_quantity = models.PositiveIntegerField(null=True, blank=True)
    get_discount_percent = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal("100"),
        help_text="buy_x_get_y: percent off the Y items. 100 = free",
    )
    pay_amount = models.DecimalField(
        max_digits=10, decimal_places=2, null=True, blank=True
    )
    spend_amount = models.DecimalField(
        max_digits=10, decimal_places=2, null=True, blank=True
    )
    # [{"min_quantity": 2, "discount_percent": "10"}, ...]
    quantity_tiers = models.JSONField(default=list, blank=True)
    gift_product_ids = models.JSONField(default=list, blank=True)
    gift_same_product = models.BooleanField(default=False)
    # gift_product promotions switched on by entering one of these coupon codes
    trigger_coupon_codes = models.JSONField(default=list, blank=True)

    # Admin controls / scheduling
    is_active = models.BooleanField(default=True)
    starts_at = models.DateTimeField(null=True, blank=True)
    ends_at = models.DateTimeField(null=True, blank=True)

    # Coupon restrictions (checked by CouponService, never by the engine)
    usage_limit = models.PositiveIntegerField(null=True, blank=True)
    used_count = models.PositiveIntegerField(default=0)
    per_customer_limit = models.PositiveIntegerField(null=True, blank=True)
    first_order_only = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["priority", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["store", "code"], name="uniq_discount_code_per_store"
            )
        ]

    def __str__(self):
        label = self.code or "automatic"
        return f"{self.title} ({self.kind}, {label})"

    def clean(self):
        errors = {}
        if self.kind == DiscountKind.PERCENTAGE.value and not (0 < (self.value or 0) <= 100):
            errors["value"] = "Percentage must be between 1 and 100."
        if self.starts_at and self.ends_at and self.ends_at < self.starts_at:
            errors["ends_at"] = "End date must be after the start date."
        if (
            self.usage_limit is not None
            and self.per_customer_limit is not None
            and self.per_customer_limit > self.usage_limit
        ):
            errors["per_customer_limit"] = "Cannot exceed the overall usage limit."
        if errors:
            raise ValidationError(errors)

    def save(self, *args, **kwargs):
        self.code = self.normalize_code(self.code) or None
        super().save(*args, **kwargs)

    @staticmethod
    def normalize_code(code) -> str:
        return (code or "").strip().upper()

    @property
    def is_coupon(self) -> bool:
        return bool(self.code)

    @property
    def usage_exhausted(self) -> bool:
        return self.usage_limit is not None and self.used_count >= self.usage_limit

    # ---------- Engine conversion ----------
    def _terms(self):
        kind = DiscountKind(self.kind)
        if kind is DiscountKind.BUY_X_PAY_Y:
            return BuyXPayY(
                buy_quantity=_count(self.buy_quantity),
                pay_amount=_amount(self.pay_amount, Decimal("0")),
            )
        if kind is DiscountKind.BUY_X_GET_Y:
            return BuyXGetY(
                buy_quantity=_count(self.buy_quantity),
                get_quantity=_count(self.get_quantity),
                get_discount_percent=_amount(self.get_discount_percent, Decimal("100")),
            )
        if kind is DiscountKind.SPEND_X_PAY_Y:
            return SpendXPayY(
                spend_amount=_amount(self.spend_amount, Decimal("0")),
                pay_amount=_amount(self.pay_amount, Decimal("0")),
            )
        if kind is DiscountKind.QUANTITY_TIERED:
            tiers = []
            for raw in self.quantity_tiers or []:
                if not isinstance(raw, dict):
                    continue
                tiers.append(
                    QuantityTier(
                        min_quantity=_count(raw.get("min_quantity")),
                        discount_percent=_amount(raw.get("discount_percent"), Decimal("0")),
                    )
                )
            return QuantityTiers(tiers=tuple(tiers))
        if kind is DiscountKind.GIFT_PRODUCT:
            return GiftProduct(
                gift_product_ids=tuple(str(v) for v in (self.gift_product_ids or [])),
                gift_same_product=self.gift_same_product,
            )
        return None

    def to_definition(self) -> DiscountDefinition:
        """
        Read-only engine record for this row. Malformed numbers are clamped
        rather than rejected, the engine treats them as ineligible.
        """
        kind = DiscountKind(self.kind)
        scope = Scope.ALL if kind is DiscountKind.GIFT_CARD else Scope(self.scope)
        return DiscountDefinition(
            id=str(self.pk),
            kind=kind,
            value=_amount(self.value, Decimal("0")),
            code=self.code or None,
            title=self.title,
            scope=scope,
            product_ids=_ids(self.product_ids),
            category_ids=_ids(self.category_ids),
            exclude_product_ids=_ids(self.exclude_product_ids),
            exclude_category_ids=_ids(self.exclude_category_ids),
            stackable=self.stackable,
            minimum_amount=_amount(self.minimum_amount),
            minimum_quantity=self.minimum_quantity,
            terms=self._terms(),
        )


class DiscountRedemption(models.Model):
    discount = models.ForeignKey(
        Discount, on_delete=models.CASCADE, related_name="redemptions"
    )
    email = models.EmailField(blank=True)
    order_reference = models.CharField(max_length=64, blank=True)
    amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.discount} redeemed by {self.email or 'guest'}"
