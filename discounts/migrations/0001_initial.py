import django.db.models.deletion
from decimal import Decimal
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Discount",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("store", models.SlugField(default="default", max_length=100)),
                ("title", models.CharField(max_length=255)),
                (
                    "code",
                    models.CharField(
                        blank=True,
                        help_text="Coupon code. Empty = automatic promotion",
                        max_length=50,
                        null=True,
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("percentage", "Percentage off"),
                            ("fixed_amount", "Fixed amount off"),
                            ("free_shipping", "Free shipping"),
                            ("gift_card", "Gift card"),
                            ("gift_product", "Gift product"),
                            ("buy_x_pay_y", "Buy X pay Y"),
                            ("buy_x_get_y", "Buy X get Y"),
                            ("spend_x_pay_y", "Spend X pay Y"),
                            ("quantity_tiered", "Quantity tiers"),
                        ],
                        max_length=30,
                    ),
                ),
                (
                    "value",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0"),
                        help_text="If percentage, 10 = 10%. Gift cards: the balance.",
                        max_digits=10,
                    ),
                ),
                (
                    "scope",
                    models.CharField(
                        choices=[
                            ("all", "All products"),
                            ("product", "Specific products"),
                            ("category", "Specific categories"),
                            ("member", "Club members"),
                        ],
                        default="all",
                        max_length=20,
                    ),
                ),
                ("product_ids", models.JSONField(blank=True, default=list)),
                ("category_ids", models.JSONField(blank=True, default=list)),
                ("exclude_product_ids", models.JSONField(blank=True, default=list)),
                ("exclude_category_ids", models.JSONField(blank=True, default=list)),
                ("priority", models.IntegerField(default=100, help_text="Lower = applied earlier")),
                ("stackable", models.BooleanField(default=True, help_text="Can it be combined with others?")),
                ("minimum_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ("minimum_quantity", models.PositiveIntegerField(blank=True, null=True)),
                ("buy_quantity", models.PositiveIntegerField(blank=True, null=True)),
                ("get_quantity", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "get_discount_percent",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("100"),
                        help_text="buy_x_get_y: percent off the Y items. 100 = free",
                        max_digits=5,
                    ),
                ),
                ("pay_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ("spend_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ("quantity_tiers", models.JSONField(blank=True, default=list)),
                ("gift_product_ids", models.JSONField(blank=True, default=list)),
                ("gift_same_product", models.BooleanField(default=False)),
                ("trigger_coupon_codes", models.JSONField(blank=True, default=list)),
                ("is_active", models.BooleanField(default=True)),
                ("starts_at", models.DateTimeField(blank=True, null=True)),
                ("ends_at", models.DateTimeField(blank=True, null=True)),
                ("usage_limit", models.PositiveIntegerField(blank=True, null=True)),
                ("used_count", models.PositiveIntegerField(default=0)),
                ("per_customer_limit", models.PositiveIntegerField(blank=True, null=True)),
                ("first_order_only", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["priority", "id"],
            },
        ),
        migrations.AddConstraint(
            model_name="discount",
            constraint=models.UniqueConstraint(
                fields=("store", "code"), name="uniq_discount_code_per_store"
            ),
        ),
        migrations.CreateModel(
            name="DiscountRedemption",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("email", models.EmailField(blank=True, max_length=254)),
                ("order_reference", models.CharField(blank=True, max_length=64)),
                ("amount", models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=10)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "discount",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="redemptions",
                        to="discounts.discount",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
