from datetime import timedelta
from decimal import Decimal
from django.test import TestCase, override_settings
from django.utils import timezone

from accounts.models import User
from carts.models import CartItem
from carts.services import CartService, GiftReconciler
from catalog.models import Category, Product, ProductVariant
from discounts.exceptions import CouponRejection
from discounts.models import Discount


class CartValidationTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(phone="07700000001", password="pass")
        self.cart = self.user.carts.first()
        self.product = Product.objects.create(name="Test Product")
        self.variant = ProductVariant.objects.create(
            product=self.product,
            name="Default",
            sale_price=Decimal("10.00"),
            stock=5,
            sku="SKU-CART",
        )

    def test_signup_creates_cart(self):
        self.assertEqual(self.user.carts.count(), 1)

    def test_variant_stock_validation(self):
        with self.assertRaises(ValueError):
            CartItem.objects.create(cart=self.cart, variant=self.variant, quantity=10)

    def test_unit_price_defaults_to_sale_price(self):
        item = CartItem.objects.create(cart=self.cart, variant=self.variant, quantity=2)
        self.assertEqual(item.unit_price, Decimal("10.00"))
        self.assertEqual(self.cart.items_total(), Decimal("20.00"))

    def test_gift_line_rules(self):
        with self.assertRaises(ValueError):
            CartItem.objects.create(
                cart=self.cart, variant=self.variant, is_gift=True, unit_price=Decimal("0")
            )
        with self.assertRaises(ValueError):
            CartItem.objects.create(
                cart=self.cart,
                variant=self.variant,
                is_gift=True,
                gift_discount_id="1",
                unit_price=Decimal("3"),
            )
        with self.assertRaises(ValueError):
            CartItem.objects.create(
                cart=self.cart, variant=self.variant, gift_discount_id="1"
            )

    def test_gift_lines_do_not_count_towards_totals(self):
        CartItem.objects.create(cart=self.cart, variant=self.variant, quantity=1)
        CartItem.objects.create(
            cart=self.cart,
            variant=self.variant,
            is_gift=True,
            gift_discount_id="7",
            unit_price=Decimal("0"),
        )
        self.assertEqual(self.cart.items_total(), Decimal("10.00"))
        self.assertEqual(self.cart.total_quantity, 1)


class CartPricingTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(
            phone="07700000002", password="pass", email="Shopper@Example.com"
        )
        self.cart = self.user.carts.first()
        self.category = Category.objects.create(name="Shirts")
        self.product = Product.objects.create(name="Shirt")
        self.product.categories.add(self.category)
        self.variant = ProductVariant.objects.create(
            product=self.product, name="M", sale_price=Decimal("50.00"), stock=10, sku="SHIRT-M"
        )
        self.gift = Product.objects.create(name="Socks")
        self.gift_variant = ProductVariant.objects.create(
            product=self.gift, name="One size", sale_price=Decimal("5.00"), stock=3, sku="SOCKS"
        )
        self.item = CartItem.objects.create(cart=self.cart, variant=self.variant, quantity=2)

    def gift_lines(self):
        return list(self.cart.items.filter(is_gift=True))

    def test_snapshot_carries_engine_fields(self):
        (line,) = CartService.snapshot(self.cart)
        self.assertEqual(line.id, str(self.item.pk))
        self.assertEqual(line.product_id, str(self.product.pk))
        self.assertEqual(line.variant_id, str(self.variant.pk))
        self.assertEqual(line.category_ids, (str(self.category.pk),))
        self.assertEqual(line.subtotal, Decimal("100.00"))
        self.assertFalse(line.is_gift)

    def test_price_applies_category_promotion(self):
        Discount.objects.create(
            title="Shirts 10%",
            kind="percentage",
            value=10,
            scope="category",
            category_ids=[self.category.pk],
        )
        result = CartService.price(self.cart)
        self.assertEqual(result.discount_total, Decimal("10.00"))
        self.assertEqual(result.final_total, Decimal("90.00"))

    def test_member_promotion_needs_club_membership(self):
        Discount.objects.create(title="Members", kind="percentage", value=20, scope="member")
        self.assertEqual(CartService.price(self.cart).applied, ())

        self.user.join_club()
        self.cart.refresh_from_db()
        result = CartService.price(self.cart)
        self.assertEqual(result.applied[0].amount, Decimal("20.00"))

    def test_gift_line_follows_threshold(self):
        promo = Discount.objects.create(
            title="Free socks over 100",
            kind="gift_product",
            minimum_amount=100,
            gift_product_ids=[self.gift.pk],
        )

        CartService.price(self.cart)
        (gift,) = self.gift_lines()
        self.assertEqual(gift.variant, self.gift_variant)
        self.assertEqual(gift.unit_price, Decimal("0"))
        self.assertEqual(gift.gift_discount_id, str(promo.pk))

        # pricing again must not duplicate the gift
        result = CartService.price(self.cart)
        self.assertEqual(len(self.gift_lines()), 1)
        self.assertEqual(result.original_total, Decimal("100.00"))

        self.item.quantity = 1
        self.item.save()
        CartService.price(self.cart)
        self.assertEqual(self.gift_lines(), [])

    def test_coupon_code_triggers_gift_promotion(self):
        Discount.objects.create(title="Welcome", code="WELCOME", kind="percentage", value=5)
        Discount.objects.create(
            title="Welcome gift",
            kind="gift_product",
            gift_product_ids=[self.gift.pk],
            trigger_coupon_codes=["WELCOME"],
        )

        result = CartService.price(self.cart, coupon_codes=["welcome"])
        self.assertEqual(result.gift_product_ids, (str(self.gift.pk),))
        self.assertEqual(len(self.gift_lines()), 1)

        CartService.price(self.cart)
        self.assertEqual(self.gift_lines(), [])

    def test_rejected_code_does_not_trigger_gift(self):
        Discount.objects.create(
            title="Welcome",
            code="WELCOME",
            kind="percentage",
            value=5,
            ends_at=timezone.now() - timedelta(days=1),
        )
        Discount.objects.create(
            title="Welcome gift",
            kind="gift_product",
            gift_product_ids=[self.gift.pk],
            trigger_coupon_codes=["WELCOME"],
        )

        result = CartService.price(self.cart, coupon_codes=["welcome", "NOSUCHCODE"])
        self.assertEqual(result.gift_product_ids, ())
        self.assertEqual(result.applied, ())
        self.assertEqual(self.gift_lines(), [])

    def test_reconcile_skips_gift_without_variant(self):
        bare = Product.objects.create(name="No variants")
        Discount.objects.create(
            title="Broken gift",
            kind="gift_product",
            minimum_quantity=1,
            gift_product_ids=[bare.pk],
        )
        result = CartService.price(self.cart, reconcile_gifts=False)
        added, removed = GiftReconciler.reconcile(self.cart, result)
        self.assertEqual((added, removed), ([], []))
        self.assertEqual(self.gift_lines(), [])

    def test_invalid_coupons_are_skipped_when_pricing(self):
        Discount.objects.create(
            title="Big spender", code="BIG", kind="fixed_amount", value=30, minimum_amount=500
        )
        result = CartService.price(self.cart, coupon_codes=["BIG", "UNKNOWN"])
        self.assertEqual(result.applied, ())

    def test_revalidate_drops_coupon_below_minimum(self):
        Discount.objects.create(
            title="Min 100", code="MIN100", kind="fixed_amount", value=15, minimum_amount=100
        )
        kept, dropped = CartService.revalidate_coupons(self.cart, coupon_codes=["min100"])
        self.assertEqual((kept, dropped), (["MIN100"], []))

        self.item.quantity = 1
        self.item.save()
        kept, dropped = CartService.revalidate_coupons(self.cart, coupon_codes=["min100"])
        self.assertEqual(kept, [])
        self.assertEqual(dropped, [("min100", CouponRejection.MINIMUM_NOT_MET)])

    def test_grouping_strategy_setting(self):
        cheap = ProductVariant.objects.create(
            product=self.gift, name="Pack", sale_price=Decimal("10.00"), stock=5, sku="SOCKS-PACK"
        )
        self.item.quantity = 1
        self.item.unit_price = Decimal("100.00")
        self.item.save()
        CartItem.objects.create(cart=self.cart, variant=cheap, quantity=2)
        Discount.objects.create(
            title="Any 2 for 50", kind="buy_x_pay_y", buy_quantity=2, pay_amount=50
        )

        self.assertEqual(CartService.price(self.cart).discount_total, Decimal("60.00"))
        with override_settings(DISCOUNTS={"GROUPING_STRATEGY": "cheapest_first"}):
            self.assertEqual(CartService.price(self.cart).discount_total, Decimal("0.00"))
