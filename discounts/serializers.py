from decimal import Decimal
from django.shortcuts import get_object_or_404
from rest_framework import serializers

from carts.models import Cart
from carts.services import CartService
from .conf import discount_setting
from .models import Discount
from .types import DiscountKind, Scope


class DiscountSerializer(serializers.ModelSerializer):
    code = serializers.CharField(
        max_length=50, required=False, allow_blank=True, allow_null=True
    )

    class Meta:
        model = Discount
        fields = [
            "id",
            "store",
            "title",
            "code",
            "kind",
            "value",
            "scope",
            "product_ids",
            "category_ids",
            "exclude_product_ids",
            "exclude_category_ids",
            "priority",
            "stackable",
            "minimum_amount",
            "minimum_quantity",
            "buy_quantity",
            "get_quantity",
            "get_discount_percent",
            "pay_amount",
            "spend_amount",
            "quantity_tiers",
            "gift_product_ids",
            "gift_same_product",
            "trigger_coupon_codes",
            "is_active",
            "starts_at",
            "ends_at",
            "usage_limit",
            "used_count",
            "per_customer_limit",
            "first_order_only",
            "created_at",
        ]
        read_only_fields = ["used_count", "created_at"]
        # code uniqueness per store is checked in validate()
        validators = []

    def _value(self, attrs, name):
        if name in attrs:
            return attrs[name]
        if self.instance is not None:
            return getattr(self.instance, name)
        return None

    def validate_code(self, value):
        return Discount.normalize_code(value) or None

    def validate_quantity_tiers(self, value):
        if not isinstance(value, list):
            raise serializers.ValidationError("Tiers must be a list.")
        for tier in value:
            if not isinstance(tier, dict):
                raise serializers.ValidationError("Each tier must be an object.")
            try:
                min_quantity = int(tier.get("min_quantity"))
                percent = Decimal(str(tier.get("discount_percent")))
            except (TypeError, ValueError, ArithmeticError):
                raise serializers.ValidationError(
                    "Each tier needs min_quantity and discount_percent."
                )
            if min_quantity <= 0:
                raise serializers.ValidationError("Tier min_quantity must be greater than 0.")
            if percent <= 0 or percent > 100:
                raise serializers.ValidationError(
                    "Tier discount_percent must be between 1 and 100."
                )
        return value

    def validate(self, attrs):
        get = lambda name: self._value(attrs, name)  # noqa: E731
        kind = get("kind")
        errors = {}

        if kind == DiscountKind.PERCENTAGE.value:
            value = get("value") or 0
            if value <= 0 or value > 100:
                errors["value"] = "Percentage must be between 1 and 100."
        elif kind in (DiscountKind.FIXED_AMOUNT.value, DiscountKind.GIFT_CARD.value):
            if (get("value") or 0) <= 0:
                errors["value"] = "Amount must be greater than 0."
        elif kind == DiscountKind.BUY_X_PAY_Y.value:
            if not get("buy_quantity"):
                errors["buy_quantity"] = "Buy quantity must be greater than 0."
            if not get("pay_amount") or get("pay_amount") <= 0:
                errors["pay_amount"] = "Pay amount must be greater than 0."
        elif kind == DiscountKind.BUY_X_GET_Y.value:
            if not get("buy_quantity"):
                errors["buy_quantity"] = "Buy quantity must be greater than 0."
            if not get("get_quantity"):
                errors["get_quantity"] = "Get quantity must be greater than 0."
        elif kind == DiscountKind.GIFT_PRODUCT.value:
            if not get("gift_product_ids") and not get("gift_same_product"):
                errors["gift_product_ids"] = "Choose at least one gift product."
            if (
                not get("minimum_amount")
                and not get("minimum_quantity")
                and not get("trigger_coupon_codes")
                and not get("code")
            ):
                errors["minimum_amount"] = (
                    "Set a minimum amount, a minimum quantity or trigger coupon codes."
                )
        elif kind == DiscountKind.QUANTITY_TIERED.value:
            if not get("quantity_tiers"):
                errors["quantity_tiers"] = "Define at least one tier."
        elif kind == DiscountKind.SPEND_X_PAY_Y.value:
            spend, pay = get("spend_amount"), get("pay_amount")
            if not spend or spend <= 0:
                errors["spend_amount"] = "Spend amount must be greater than 0."
            if not pay or pay <= 0:
                errors["pay_amount"] = "Pay amount must be greater than 0."
            elif spend and pay >= spend:
                errors["pay_amount"] = "Pay amount must be less than the spend amount."

        scope = get("scope")
        if scope == Scope.CATEGORY.value and not get("category_ids"):
            errors["category_ids"] = "Choose at least one category."
        if scope == Scope.PRODUCT.value and not get("product_ids"):
            errors["product_ids"] = "Choose at least one product."

        code = get("code")
        if code:
            store = get("store") or discount_setting("DEFAULT_STORE")
            clash = Discount.objects.filter(store=store, code=code)
            if self.instance is not None:
                clash = clash.exclude(pk=self.instance.pk)
            if clash.exists():
                errors["code"] = "A discount with this code already exists in this store."

        starts_at, ends_at = get("starts_at"), get("ends_at")
        if starts_at and ends_at and ends_at < starts_at:
            errors["ends_at"] = "End date must be after the start date."

        if errors:
            raise serializers.ValidationError(errors)
        return attrs


class CartRequestMixin:
    def validate_cart_id(self, value):
        request = self.context["request"]
        user = request.user
        cart = get_object_or_404(Cart, pk=value)
        # ensure user owns the cart or is admin
        if cart.user != user and not (
            user.is_staff
            or getattr(user, "is_admin", False)
            or getattr(user, "is_employee", False)
        ):
            raise serializers.ValidationError(
                "You cannot apply discounts to another user's cart."
            )
        self._cart = cart
        return value


class ApplyDiscountRequestSerializer(CartRequestMixin, serializers.Serializer):
    cart_id = serializers.IntegerField()
    store = serializers.SlugField(required=False)
    coupon_codes = serializers.ListField(
        child=serializers.CharField(max_length=50), required=False, default=list
    )
    shipping_amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=Decimal("0"), required=False, default=Decimal("0")
    )

    def create(self, validated_data):
        return CartService.price(
            self._cart,
            store=validated_data.get("store") or discount_setting("DEFAULT_STORE"),
            coupon_codes=[c for c in validated_data["coupon_codes"] if c.strip()],
            shipping_amount=validated_data["shipping_amount"],
        )


class ValidateCouponRequestSerializer(CartRequestMixin, serializers.Serializer):
    cart_id = serializers.IntegerField()
    code = serializers.CharField(max_length=50)
    store = serializers.SlugField(required=False)
    applied_codes = serializers.ListField(
        child=serializers.CharField(max_length=50), required=False, default=list
    )

    @property
    def cart(self):
        return self._cart


class AppliedDiscountSerializer(serializers.Serializer):
    id = serializers.CharField(source="discount_id")
    code = serializers.CharField(allow_null=True)
    title = serializers.CharField(allow_null=True)
    kind = serializers.CharField(source="kind.value")
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    description = serializers.CharField()
    free_shipping = serializers.BooleanField()
    gift_product_ids = serializers.ListField(child=serializers.CharField())
    affected_line_ids = serializers.ListField(child=serializers.CharField())


class DiscountedCartSerializer(serializers.Serializer):
    original_total = serializers.DecimalField(max_digits=10, decimal_places=2)
    discount_total = serializers.DecimalField(max_digits=10, decimal_places=2)
    remaining_total = serializers.DecimalField(max_digits=10, decimal_places=2)
    shipping_amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    shipping_discount = serializers.DecimalField(max_digits=10, decimal_places=2)
    final_total = serializers.DecimalField(max_digits=10, decimal_places=2)
    free_shipping = serializers.BooleanField()
    applied_discounts = AppliedDiscountSerializer(many=True, source="applied")
    gift_product_ids = serializers.ListField(child=serializers.CharField())

    @classmethod
    def from_result(cls, result):
        return cls(result)


class CouponSummarySerializer(serializers.Serializer):
    id = serializers.CharField()
    code = serializers.CharField()
    title = serializers.CharField(allow_null=True)
    kind = serializers.CharField(source="kind.value")
    stackable = serializers.BooleanField()
