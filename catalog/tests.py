from decimal import Decimal
from django.test import TestCase

from catalog.models import Category, Product, ProductVariant


class CatalogTests(TestCase):
    def setUp(self):
        self.product = Product.objects.create(name="Mug")

    def test_category_ids_are_strings(self):
        kitchen = Category.objects.create(name="Kitchen")
        sale = Category.objects.create(name="Sale")
        self.product.categories.add(kitchen, sale)
        self.assertEqual(
            sorted(self.product.category_ids()), sorted([str(kitchen.pk), str(sale.pk)])
        )

    def test_default_variant_prefers_cheapest_in_stock(self):
        self.assertIsNone(self.product.default_variant())
        sold_out = ProductVariant.objects.create(
            product=self.product, name="Small", sale_price=Decimal("5.00"), stock=0, sku="MUG-S"
        )
        self.assertEqual(self.product.default_variant(), sold_out)

        in_stock = ProductVariant.objects.create(
            product=self.product, name="Large", sale_price=Decimal("9.00"), stock=4, sku="MUG-L"
        )
        self.assertEqual(self.product.default_variant(), in_stock)
        self.assertEqual(self.product.lowest_price(), Decimal("5.00"))

    def test_lowest_price_without_variants(self):
        self.assertEqual(self.product.lowest_price(), Decimal("0"))
