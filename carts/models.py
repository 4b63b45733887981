from decimal import Decimal
from django.db import models
from django.conf import settings

from catalog.models import ProductVariant


class Cart(models.Model):
    """
    Cart is only for registered users.
    One active cart per user in most systems (enforced at service layer).
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="carts"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    # Set once the cart has been turned into an order
    is_converted = models.BooleanField(default=False)

    def __str__(self):
        return f"Cart #{self.pk} for {self.user.phone}"

    def items_total(self) -> Decimal:
        return sum(
            (item.subtotal for item in self.items.all() if not item.is_gift),
            Decimal("0"),
        )

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items.all() if not item.is_gift)


class CartItem(models.Model):
    """
    Single line inside the cart.

    Gift lines are inserted at zero price by gift reconciliation and carry
    the id of the discount that added them, so the next pricing run can
    remove them once that discount stops applying.
    """

    cart = models.ForeignKey(Cart, on_delete=models.CASCADE, related_name="items")
    variant = models.ForeignKey(
        ProductVariant, on_delete=models.CASCADE, related_name="cart_items"
    )
    quantity = models.PositiveIntegerField(default=1)

    # snapshot of price at the time it was added (so later price changes don’t affect existing carts)
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)

    is_gift = models.BooleanField(default=False)
    gift_discount_id = models.CharField(max_length=64, blank=True, default="")

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["cart", "variant", "is_gift", "gift_discount_id"],
                name="uniq_cart_item_per_variant",
            )
        ]
        ordering = ["pk"]

    def __str__(self):
        prefix = "Gift " if self.is_gift else ""
        return f"{prefix}{self.quantity} x {self.variant} in cart {self.cart_id}"

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity

    def clean(self):
        if self.quantity <= 0:
            raise ValueError("Quantity must be positive.")
        if self.unit_price < 0:
            raise ValueError("Unit price cannot be negative.")
        if self.is_gift:
            if not self.gift_discount_id:
                raise ValueError("Gift lines must record the discount that added them.")
            if self.unit_price != 0:
                raise ValueError("Gift lines are always free.")
        elif self.gift_discount_id:
            raise ValueError("Only gift lines may carry a gift discount id.")
        # Basic stock checks (best-effort; transactional checks should occur on checkout)
        if not self.is_gift and self.variant.stock < self.quantity:
            raise ValueError("Insufficient stock for variant.")

    def save(self, *args, **kwargs):
        # Default unit_price to current sale_price if not provided
        if self.unit_price is None:
            self.unit_price = Decimal("0") if self.is_gift else self.variant.sale_price
        self.clean()
        super().save(*args, **kwargs)
