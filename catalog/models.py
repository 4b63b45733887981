from decimal import Decimal
from django.db import models
from django.core.validators import MinValueValidator


# ------------------------------
#  CATEGORY
# ------------------------------
class Category(models.Model):
    name = models.CharField(max_length=255)
    parent = models.ForeignKey(
        "self", null=True, blank=True, on_delete=models.SET_NULL, related_name="children"
    )

    class Meta:
        verbose_name_plural = "categories"

    def __str__(self):
        return self.name


# ------------------------------
#  PRODUCT
# ------------------------------
class Product(models.Model):
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    image_url = models.URLField(blank=True)
    # A product may sit in several categories; discounts match on any of them
    categories = models.ManyToManyField(Category, blank=True, related_name="products")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name

    def category_ids(self) -> tuple:
        return tuple(str(pk) for pk in self.categories.values_list("pk", flat=True))

    def default_variant(self):
        """Variant used when the product is handed out as a gift line."""
        in_stock = self.variants.filter(stock__gt=0).order_by("sale_price", "pk").first()
        return in_stock or self.variants.order_by("sale_price", "pk").first()

    def lowest_price(self) -> Decimal:
        prices = [v.sale_price for v in self.variants.all()]
        return min(prices) if prices else Decimal("0")


# ------------------------------
#  PRODUCT VARIANT
# ------------------------------
class ProductVariant(models.Model):
    product = models.ForeignKey(
        Product, on_delete=models.CASCADE, related_name="variants"
    )
    name = models.CharField(max_length=255)
    sale_price = models.DecimalField(
        max_digits=10, decimal_places=2, validators=[MinValueValidator(0)]
    )
    stock = models.PositiveIntegerField(default=0)
    sku = models.CharField(max_length=100, unique=True)

    def __str__(self):
        return f"{self.product.name} - {self.name}"
