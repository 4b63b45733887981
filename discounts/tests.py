from datetime import timedelta
from decimal import Decimal
from django.core.exceptions import ValidationError
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from accounts.models import User
from carts.models import CartItem
from catalog.models import Product, ProductVariant
from discounts.engine import DiscountEngine, calculate_discounts
from discounts.exceptions import CouponError, CouponRejection
from discounts.matching import match
from discounts.models import Discount as DiscountRow, DiscountRedemption
from discounts.services import (
    AutomaticDiscountService,
    CouponService,
    RedemptionService,
)
from discounts.types import (
    BuyXGetY,
    BuyXPayY,
    CartLine,
    Discount,
    DiscountKind,
    GiftProduct,
    GroupingStrategy,
    PricingContext,
    QuantityTier,
    QuantityTiers,
    Scope,
    SpendXPayY,
)


def line(line_id, price, qty=1, product="p1", categories=(), is_gift=False):
    return CartLine(
        id=line_id,
        product_id=product,
        price=Decimal(price),
        quantity=qty,
        category_ids=tuple(categories),
        is_gift=is_gift,
    )


def discount(discount_id="d1", kind=DiscountKind.PERCENTAGE, value="0", **kwargs):
    for name in ("product_ids", "category_ids", "exclude_product_ids", "exclude_category_ids"):
        if name in kwargs:
            kwargs[name] = frozenset(kwargs[name])
    return Discount(id=discount_id, kind=kind, value=Decimal(value), **kwargs)


class EligibilityMatcherTests(SimpleTestCase):
    def test_exclusions_override_inclusion(self):
        lines = [line("a", "40", product="p1", categories=["shoes"]), line("b", "60", product="p2")]
        d = discount(
            scope=Scope.PRODUCT,
            product_ids=["p1", "p2"],
            exclude_product_ids=["p1"],
        )
        result = match(d, lines)
        self.assertEqual([i.id for i in result.items], ["b"])
        self.assertEqual(result.matched_subtotal, Decimal("60"))

        by_category = discount(exclude_category_ids=["shoes"])
        self.assertEqual(match(by_category, lines).matched_subtotal, Decimal("60"))

    def test_category_scope_matches_any_line_category(self):
        lines = [
            line("a", "10", categories=["sale", "shirts"]),
            line("b", "20", categories=["pants"]),
        ]
        d = discount(scope=Scope.CATEGORY, category_ids=["shirts"])
        self.assertEqual([i.id for i in match(d, lines).items], ["a"])

    def test_thresholds_use_matched_subset_not_whole_cart(self):
        lines = [line("a", "30", product="p1"), line("b", "200", product="p2")]
        d = discount(scope=Scope.PRODUCT, product_ids=["p1"], minimum_amount=Decimal("50"))
        result = match(d, lines)
        self.assertFalse(result.eligible)
        self.assertEqual(result.matched_subtotal, Decimal("30"))

    def test_minimum_quantity(self):
        d = discount(minimum_quantity=3)
        self.assertFalse(match(d, [line("a", "10", qty=2)]).eligible)
        self.assertTrue(match(d, [line("a", "10", qty=3)]).eligible)

    def test_member_scope_needs_membership(self):
        d = discount(scope=Scope.MEMBER)
        lines = [line("a", "10")]
        self.assertFalse(match(d, lines, PricingContext(is_member=False)).eligible)
        self.assertTrue(match(d, lines, PricingContext(is_member=True)).eligible)

    def test_empty_cart_is_never_eligible(self):
        self.assertFalse(match(discount(), []).eligible)

    def test_gift_lines_are_ignored(self):
        d = discount()
        result = match(d, [line("gift", "0", is_gift=True)])
        self.assertFalse(result.eligible)
        self.assertEqual(result.items, ())

    def test_quantity_tiered_without_reached_tier_is_ineligible(self):
        d = discount(
            kind=DiscountKind.QUANTITY_TIERED,
            terms=QuantityTiers(tiers=(QuantityTier(3, Decimal("10")),)),
        )
        self.assertFalse(match(d, [line("a", "10", qty=2)]).eligible)
        self.assertTrue(match(d, [line("a", "10", qty=3)]).eligible)

    def test_conditional_kind_without_terms_is_ineligible(self):
        d = discount(kind=DiscountKind.BUY_X_PAY_Y)
        self.assertFalse(match(d, [line("a", "10", qty=5)]).eligible)


class AmountCalculationTests(SimpleTestCase):
    def calc(self, lines, discounts, **kwargs):
        return calculate_discounts(lines, discounts, **kwargs)

    def test_percentage_single_item(self):
        result = self.calc(
            [line("a", "100", qty=2)],
            [discount(value="10", stackable=True)],
        )
        self.assertEqual(len(result.applied), 1)
        self.assertEqual(result.applied[0].amount, Decimal("20.00"))
        self.assertEqual(result.remaining_total, Decimal("180.00"))

    def test_percentage_value_is_clamped(self):
        result = self.calc([line("a", "40")], [discount(value="150")])
        self.assertEqual(result.applied[0].amount, Decimal("40.00"))
        self.assertEqual(result.remaining_total, Decimal("0.00"))

    def test_float_prices_are_accepted(self):
        lines = [CartLine(id="a", product_id="p1", price=19.99, quantity=3)]
        result = self.calc(lines, [discount(value="10")])
        self.assertEqual(lines[0].price, Decimal("19.99"))
        self.assertEqual(result.original_total, Decimal("59.97"))
        self.assertEqual(result.applied[0].amount, Decimal("6.00"))

    def test_minimum_not_met(self):
        result = self.calc(
            [line("a", "80")],
            [discount(kind=DiscountKind.FIXED_AMOUNT, value="50", minimum_amount=Decimal("100"))],
        )
        self.assertEqual(result.applied, ())
        self.assertEqual(result.discount_total, Decimal("0.00"))

    def test_fixed_amount_is_limited_to_matched_subtotal(self):
        lines = [line("a", "30", product="p1"), line("b", "100", product="p2")]
        d = discount(
            kind=DiscountKind.FIXED_AMOUNT,
            value="50",
            scope=Scope.PRODUCT,
            product_ids=["p1"],
        )
        self.assertEqual(self.calc(lines, [d]).applied[0].amount, Decimal("30.00"))

    def test_buy_x_pay_y_leaves_incomplete_group_alone(self):
        d = discount(
            kind=DiscountKind.BUY_X_PAY_Y,
            terms=BuyXPayY(buy_quantity=2, pay_amount=Decimal("80")),
        )
        result = self.calc([line("a", "50", qty=3)], [d])
        self.assertEqual(result.applied[0].amount, Decimal("20.00"))

    def test_buy_x_pay_y_grouping_strategies(self):
        lines = [line("a", "100"), line("b", "10", qty=2, product="p2")]
        d = discount(
            kind=DiscountKind.BUY_X_PAY_Y,
            terms=BuyXPayY(buy_quantity=2, pay_amount=Decimal("50")),
        )
        # cart order: [100, 10] forms the only complete group
        self.assertEqual(self.calc(lines, [d]).applied[0].amount, Decimal("60.00"))
        cheapest = self.calc(lines, [d], grouping=GroupingStrategy.CHEAPEST_FIRST)
        self.assertEqual(cheapest.applied, ())
        priciest = self.calc(lines, [d], grouping="most_expensive_first")
        self.assertEqual(priciest.applied[0].amount, Decimal("60.00"))

    def test_buy_x_get_y_discounts_cheapest_in_group(self):
        lines = [line("a", "30"), line("b", "10", product="p2"), line("c", "20", product="p3")]
        free = discount(
            kind=DiscountKind.BUY_X_GET_Y,
            terms=BuyXGetY(buy_quantity=2, get_quantity=1),
        )
        self.assertEqual(self.calc(lines, [free]).applied[0].amount, Decimal("10.00"))

        half = discount(
            kind=DiscountKind.BUY_X_GET_Y,
            terms=BuyXGetY(buy_quantity=2, get_quantity=1, get_discount_percent=Decimal("50")),
        )
        result = self.calc(lines, [half])
        self.assertEqual(result.applied[0].amount, Decimal("5.00"))
        self.assertEqual(result.applied[0].description, "Buy 2 get 1 at 50% off")

    def test_buy_x_get_y_needs_a_full_group(self):
        d = discount(
            kind=DiscountKind.BUY_X_GET_Y,
            terms=BuyXGetY(buy_quantity=2, get_quantity=1),
        )
        self.assertEqual(self.calc([line("a", "10", qty=2)], [d]).applied, ())

    def test_spend_x_pay_y_triggers_per_multiple(self):
        d = discount(
            kind=DiscountKind.SPEND_X_PAY_Y,
            terms=SpendXPayY(spend_amount=Decimal("200"), pay_amount=Decimal("150")),
        )
        result = self.calc([line("a", "150", qty=3)], [d])
        self.assertEqual(result.applied[0].amount, Decimal("100.00"))

    def test_quantity_tiered_uses_highest_reached_tier(self):
        d = discount(
            kind=DiscountKind.QUANTITY_TIERED,
            terms=QuantityTiers(
                tiers=(
                    QuantityTier(2, Decimal("10")),
                    QuantityTier(5, Decimal("20")),
                )
            ),
        )
        self.assertEqual(
            self.calc([line("a", "10", qty=5)], [d]).applied[0].amount, Decimal("10.00")
        )
        self.assertEqual(
            self.calc([line("a", "10", qty=4)], [d]).applied[0].amount, Decimal("4.00")
        )

    def test_free_shipping_reports_saving(self):
        result = self.calc(
            [line("a", "100")],
            [discount(kind=DiscountKind.FREE_SHIPPING)],
            context=PricingContext(shipping_amount=Decimal("25")),
        )
        self.assertTrue(result.free_shipping)
        self.assertEqual(result.applied[0].amount, Decimal("0.00"))
        self.assertEqual(result.shipping_discount, Decimal("25.00"))
        self.assertEqual(result.final_total, Decimal("100.00"))

    def test_shipping_is_charged_without_free_shipping(self):
        result = self.calc(
            [line("a", "100")],
            [],
            context=PricingContext(shipping_amount=Decimal("25")),
        )
        self.assertFalse(result.free_shipping)
        self.assertEqual(result.final_total, Decimal("125.00"))

    def test_gift_card_is_capped_at_remaining_payable(self):
        result = self.calc(
            [line("a", "100")],
            [
                discount("fixed", kind=DiscountKind.FIXED_AMOUNT, value="70"),
                discount("card", kind=DiscountKind.GIFT_CARD, value="100"),
            ],
        )
        amounts = {r.discount_id: r.amount for r in result.applied}
        self.assertEqual(amounts["card"], Decimal("30.00"))
        self.assertEqual(result.remaining_total, Decimal("0.00"))

    def test_gift_product_returns_configured_ids(self):
        d = discount(
            kind=DiscountKind.GIFT_PRODUCT,
            minimum_amount=Decimal("100"),
            terms=GiftProduct(gift_product_ids=("g1", "g2")),
        )
        result = self.calc([line("a", "120")], [d])
        self.assertEqual(result.applied[0].gift_product_ids, ("g1", "g2"))
        self.assertEqual(result.gift_triggers, (("d1", ("g1", "g2")),))
        self.assertEqual(result.discount_total, Decimal("0.00"))

        shrunk = self.calc([line("a", "90")], [d])
        self.assertEqual(shrunk.gift_triggers, ())

    def test_gift_same_product_uses_matched_products(self):
        d = discount(
            kind=DiscountKind.GIFT_PRODUCT,
            scope=Scope.PRODUCT,
            product_ids=["p2"],
            terms=GiftProduct(gift_same_product=True),
        )
        lines = [line("a", "10", product="p1"), line("b", "10", product="p2")]
        self.assertEqual(self.calc(lines, [d]).gift_product_ids, ("p2",))

    def test_gift_lines_do_not_count_towards_totals(self):
        lines = [line("a", "50"), line("gift", "0", product="g1", is_gift=True)]
        result = self.calc(lines, [discount(value="10")])
        self.assertEqual(result.original_total, Decimal("50.00"))
        self.assertEqual(result.applied[0].affected_line_ids, ("a",))


class StackingResolverTests(SimpleTestCase):
    def test_only_first_non_stackable_is_kept(self):
        lines = [line("a", "100")]
        result = calculate_discounts(
            lines,
            [
                discount("A", value="10", stackable=False),
                discount("B", value="20", stackable=False),
            ],
        )
        self.assertEqual([r.discount_id for r in result.applied], ["A"])

    def test_ineligible_non_stackable_does_not_block_the_next(self):
        lines = [line("a", "100")]
        result = calculate_discounts(
            lines,
            [
                discount("A", value="10", stackable=False, minimum_amount=Decimal("500")),
                discount("B", value="20", stackable=False),
            ],
        )
        self.assertEqual([r.discount_id for r in result.applied], ["B"])

    def test_stackables_apply_in_order_against_remaining(self):
        lines = [line("a", "100")]
        result = calculate_discounts(
            lines,
            [
                discount("auto", kind=DiscountKind.FIXED_AMOUNT, value="50"),
                discount("coupon", value="10", code="SAVE10"),
            ],
        )
        self.assertEqual([r.discount_id for r in result.applied], ["auto", "coupon"])
        # percentage is measured on the matched subtotal, then capped
        self.assertEqual(result.applied[1].amount, Decimal("10.00"))
        self.assertEqual(result.remaining_total, Decimal("40.00"))

    def test_amounts_never_exceed_cart_total(self):
        lines = [line("a", "30"), line("b", "20", product="p2")]
        result = calculate_discounts(
            lines,
            [
                discount("x", kind=DiscountKind.FIXED_AMOUNT, value="45"),
                discount("y", kind=DiscountKind.FIXED_AMOUNT, value="45"),
                discount("z", value="100"),
            ],
        )
        self.assertTrue(all(r.amount >= 0 for r in result.applied))
        self.assertEqual(sum(r.amount for r in result.applied), Decimal("50.00"))
        self.assertEqual([r.discount_id for r in result.applied], ["x", "y"])
        self.assertEqual(result.remaining_total, Decimal("0.00"))

    def test_repeated_discount_id_counts_once(self):
        d = discount(kind=DiscountKind.FIXED_AMOUNT, value="5")
        result = calculate_discounts([line("a", "100")], [d, d])
        self.assertEqual(len(result.applied), 1)

    def test_result_is_deterministic(self):
        lines = [line("a", "19.99", qty=3), line("b", "5.50", product="p2", categories=["c"])]
        discounts = [
            discount("q", kind=DiscountKind.QUANTITY_TIERED,
                     terms=QuantityTiers(tiers=(QuantityTier(2, Decimal("7.5")),))),
            discount("s", value="12.5", scope=Scope.CATEGORY, category_ids=["c"]),
            discount("f", kind=DiscountKind.FREE_SHIPPING, stackable=False),
        ]
        context = PricingContext(shipping_amount=Decimal("9.90"))
        first = DiscountEngine.calculate_discounts(lines, discounts, context)
        for _ in range(5):
            self.assertEqual(DiscountEngine.calculate_discounts(lines, discounts, context), first)

    def test_threshold_has_no_hysteresis(self):
        d = discount(kind=DiscountKind.FIXED_AMOUNT, value="10", minimum_amount=Decimal("100"))
        grown = calculate_discounts([line("a", "50", qty=2)], [d])
        shrunk = calculate_discounts([line("a", "50", qty=1)], [d])
        regrown = calculate_discounts([line("a", "50", qty=2)], [d])
        self.assertEqual(len(grown.applied), 1)
        self.assertEqual(shrunk.applied, ())
        self.assertEqual(regrown, grown)


class PricePreviewTests(SimpleTestCase):
    def test_first_matching_automatic_discount_wins(self):
        discounts = [
            discount("coupon", value="50", code="HALF"),
            discount("member", value="40", scope=Scope.MEMBER),
            discount("ship", kind=DiscountKind.FREE_SHIPPING),
            discount("cat", value="25", scope=Scope.CATEGORY, category_ids=["sale"]),
            discount("all", value="10"),
        ]
        preview = DiscountEngine.product_price_preview(discounts, "p1", ["sale"], Decimal("80"))
        self.assertEqual(preview.discount_id, "cat")
        self.assertEqual(preview.discounted_price, Decimal("60.00"))

        other = DiscountEngine.product_price_preview(discounts, "p1", [], Decimal("80"))
        self.assertEqual(other.discount_id, "all")

    def test_excluded_product_gets_no_preview(self):
        discounts = [discount(value="10", exclude_product_ids=["p1"])]
        self.assertIsNone(
            DiscountEngine.product_price_preview(discounts, "p1", [], Decimal("80"))
        )


class DiscountRowTests(TestCase):
    def test_code_is_normalized_and_definition_built(self):
        row = DiscountRow.objects.create(
            title="Summer",
            code="  summer10 ",
            kind="buy_x_get_y",
            buy_quantity=2,
            get_quantity=1,
            product_ids=[1, 2],
        )
        self.assertEqual(row.code, "SUMMER10")
        definition = row.to_definition()
        self.assertEqual(definition.id, str(row.pk))
        self.assertEqual(definition.product_ids, frozenset({"1", "2"}))
        self.assertEqual(
            definition.terms,
            BuyXGetY(buy_quantity=2, get_quantity=1, get_discount_percent=Decimal("100")),
        )

    def test_blank_code_means_automatic(self):
        row = DiscountRow.objects.create(title="Auto", code="", kind="percentage", value=5)
        self.assertIsNone(row.code)
        self.assertFalse(row.to_definition().is_coupon)

    def test_malformed_tiers_are_clamped(self):
        row = DiscountRow.objects.create(
            title="Tiers",
            kind="quantity_tiered",
            quantity_tiers=[
                {"min_quantity": "3", "discount_percent": "-5"},
                "junk",
                {"min_quantity": None, "discount_percent": "abc"},
            ],
        )
        tiers = row.to_definition().terms.tiers
        self.assertEqual(tiers[0], QuantityTier(3, Decimal("0")))
        self.assertEqual(tiers[1], QuantityTier(0, Decimal("0")))

    def test_gift_card_always_covers_whole_order(self):
        row = DiscountRow.objects.create(
            title="Card", code="GC-1", kind="gift_card", value=50, scope="product"
        )
        self.assertEqual(row.to_definition().scope, Scope.ALL)

    def test_clean_rejects_inconsistent_rows(self):
        now = timezone.now()
        row = DiscountRow(
            title="Broken",
            kind="percentage",
            value=Decimal("150"),
            starts_at=now,
            ends_at=now - timedelta(days=1),
            usage_limit=1,
            per_customer_limit=2,
        )
        with self.assertRaises(ValidationError) as ctx:
            row.clean()
        self.assertEqual(
            set(ctx.exception.message_dict), {"value", "ends_at", "per_customer_limit"}
        )


class CouponServiceTests(TestCase):
    def setUp(self):
        self.lines = [line("1", "40", qty=2, product="10")]
        self.coupon = DiscountRow.objects.create(
            title="Ten off", code="SAVE10", kind="fixed_amount", value=10
        )

    def assertRejected(self, reason, *args, **kwargs):
        with self.assertRaises(CouponError) as ctx:
            CouponService.validate_coupon(*args, **kwargs)
        self.assertEqual(ctx.exception.reason, reason)

    def test_valid_code_is_case_insensitive(self):
        definition = CouponService.validate_coupon("default", " save10", Decimal("80"))
        self.assertEqual(definition.code, "SAVE10")
        self.assertEqual(definition.kind, DiscountKind.FIXED_AMOUNT)

    def test_unknown_code_and_other_store(self):
        self.assertRejected(CouponRejection.NOT_FOUND, "default", "NOPE", Decimal("80"))
        self.assertRejected(CouponRejection.NOT_FOUND, "other-store", "SAVE10", Decimal("80"))

    def test_schedule_and_activation(self):
        now = timezone.now()
        self.coupon.ends_at = now - timedelta(days=1)
        self.coupon.save()
        self.assertRejected(CouponRejection.EXPIRED, "default", "SAVE10", Decimal("80"))

        self.coupon.ends_at = None
        self.coupon.starts_at = now + timedelta(days=1)
        self.coupon.save()
        self.assertRejected(CouponRejection.NOT_STARTED, "default", "SAVE10", Decimal("80"))

        self.coupon.starts_at = None
        self.coupon.is_active = False
        self.coupon.save()
        self.assertRejected(CouponRejection.INACTIVE, "default", "SAVE10", Decimal("80"))

    def test_usage_limits(self):
        self.coupon.usage_limit = 1
        self.coupon.used_count = 1
        self.coupon.save()
        self.assertRejected(CouponRejection.USAGE_LIMIT_REACHED, "default", "SAVE10", Decimal("80"))

    def test_per_customer_limit(self):
        self.coupon.per_customer_limit = 1
        self.coupon.save()
        DiscountRedemption.objects.create(discount=self.coupon, email="a@example.com")
        self.assertRejected(
            CouponRejection.CUSTOMER_LIMIT_REACHED,
            "default",
            "SAVE10",
            Decimal("80"),
            email="A@example.com",
        )
        CouponService.validate_coupon("default", "SAVE10", Decimal("80"), email="b@example.com")

    def test_first_order_only(self):
        self.coupon.first_order_only = True
        self.coupon.save()
        user = User.objects.create_user(phone="07700000011", email="buyer@example.com")
        CouponService.validate_coupon("default", "SAVE10", Decimal("80"), email="buyer@example.com")
        cart = user.carts.first()
        cart.is_converted = True
        cart.save()
        self.assertRejected(
            CouponRejection.FIRST_ORDER_ONLY,
            "default",
            "SAVE10",
            Decimal("80"),
            email="buyer@example.com",
        )

    def test_minimum_uses_matching_items(self):
        self.coupon.minimum_amount = Decimal("100")
        self.coupon.save()
        self.assertRejected(
            CouponRejection.MINIMUM_NOT_MET,
            "default",
            "SAVE10",
            Decimal("80"),
            cart_lines=self.lines,
        )
        self.assertRejected(CouponRejection.MINIMUM_NOT_MET, "default", "SAVE10", Decimal("80"))

    def test_no_eligible_items(self):
        self.coupon.scope = "product"
        self.coupon.product_ids = [99]
        self.coupon.save()
        self.assertRejected(
            CouponRejection.NO_ELIGIBLE_ITEMS,
            "default",
            "SAVE10",
            Decimal("80"),
            cart_lines=self.lines,
        )

    def test_member_coupon_needs_club_membership(self):
        DiscountRow.objects.create(
            title="Members", code="CLUB20", kind="percentage", value=20, scope="member"
        )
        user = User.objects.create_user(phone="07700000012", email="member@example.com")
        self.assertRejected(
            CouponRejection.MEMBERS_ONLY,
            "default",
            "CLUB20",
            Decimal("80"),
            email="member@example.com",
            cart_lines=self.lines,
        )
        self.assertRejected(
            CouponRejection.MEMBERS_ONLY, "default", "CLUB20", Decimal("80")
        )

        user.join_club()
        definition = CouponService.validate_coupon(
            "default",
            "CLUB20",
            Decimal("80"),
            email="member@example.com",
            cart_lines=self.lines,
        )
        self.assertEqual(definition.scope, Scope.MEMBER)

    def test_combination_rules(self):
        exclusive = DiscountRow.objects.create(
            title="Exclusive", code="SOLO", kind="percentage", value=20, stackable=False
        )
        applied = [exclusive.to_definition()]
        self.assertRejected(
            CouponRejection.NOT_COMBINABLE,
            "default",
            "SAVE10",
            Decimal("80"),
            applied=applied,
        )
        self.assertRejected(
            CouponRejection.ALREADY_APPLIED,
            "default",
            "SOLO",
            Decimal("80"),
            applied=applied,
        )
        self.coupon.stackable = False
        self.coupon.save()
        other = DiscountRow.objects.create(
            title="Other", code="OTHER", kind="percentage", value=5
        )
        self.assertRejected(
            CouponRejection.NOT_COMBINABLE,
            "default",
            "SAVE10",
            Decimal("80"),
            applied=[other.to_definition()],
        )


class AutomaticDiscountServiceTests(TestCase):
    def test_active_promotions_in_priority_order(self):
        now = timezone.now()
        late = DiscountRow.objects.create(title="Late", kind="percentage", value=5, priority=50)
        early = DiscountRow.objects.create(title="Early", kind="free_shipping", priority=10)
        DiscountRow.objects.create(title="Coupon", code="CODE", kind="percentage", value=5)
        DiscountRow.objects.create(title="Off", kind="percentage", value=5, is_active=False)
        DiscountRow.objects.create(
            title="Ended", kind="percentage", value=5, ends_at=now - timedelta(hours=1)
        )
        DiscountRow.objects.create(title="Elsewhere", store="other", kind="percentage", value=5)
        DiscountRow.objects.create(
            title="Triggered",
            kind="gift_product",
            gift_product_ids=[1],
            trigger_coupon_codes=["CODE"],
        )

        ids = [d.id for d in AutomaticDiscountService.get_automatic_discounts("default")]
        self.assertEqual(ids, [str(early.pk), str(late.pk)])

    def test_triggered_gift_discounts(self):
        gift = DiscountRow.objects.create(
            title="Gift",
            kind="gift_product",
            gift_product_ids=[7],
            trigger_coupon_codes=["welcome"],
        )
        DiscountRow.objects.create(
            title="Unrelated",
            kind="gift_product",
            gift_product_ids=[8],
            trigger_coupon_codes=["OTHER"],
        )
        triggered = AutomaticDiscountService.get_triggered_gift_discounts(
            "default", ["Welcome", "WELCOME"]
        )
        self.assertEqual([d.id for d in triggered], [str(gift.pk)])
        self.assertEqual(
            AutomaticDiscountService.get_triggered_gift_discounts("default", []), []
        )

    def test_product_price_preview(self):
        product = Product.objects.create(name="Mug")
        ProductVariant.objects.create(product=product, name="Blue", sale_price=Decimal("40"), sku="MUG-1")
        DiscountRow.objects.create(title="Quarter", kind="percentage", value=25)
        preview = AutomaticDiscountService.product_price_preview("default", product)
        self.assertEqual(preview.discounted_price, Decimal("30.00"))


class RedemptionServiceTests(TestCase):
    def test_increments_until_limit(self):
        coupon = DiscountRow.objects.create(
            title="Once", code="ONCE", kind="percentage", value=10, usage_limit=1
        )
        redemption = RedemptionService.record_redemption(
            coupon.pk, email="Shopper@Example.com", order_reference="ORD-1", amount=Decimal("5")
        )
        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 1)
        self.assertEqual(redemption.email, "shopper@example.com")

        with self.assertRaises(CouponError):
            RedemptionService.record_redemption(coupon.pk, order_reference="ORD-2")
        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 1)
        self.assertEqual(DiscountRedemption.objects.count(), 1)

    def test_record_result_counts_every_applied_discount(self):
        auto = DiscountRow.objects.create(title="Auto", kind="percentage", value=10)
        coupon = DiscountRow.objects.create(
            title="Five", code="FIVE", kind="fixed_amount", value=5
        )
        result = calculate_discounts(
            [line("1", "100")], [auto.to_definition(), coupon.to_definition()]
        )
        redemptions = RedemptionService.record_result(
            result, email="c@example.com", order_reference="ORD-9"
        )
        self.assertEqual([r.amount for r in redemptions], [Decimal("10.00"), Decimal("5.00")])
        for row in (auto, coupon):
            row.refresh_from_db()
            self.assertEqual(row.used_count, 1)

    def test_record_result_is_all_or_nothing(self):
        auto = DiscountRow.objects.create(title="Auto", kind="percentage", value=10)
        once = DiscountRow.objects.create(
            title="Once",
            code="ONCE",
            kind="fixed_amount",
            value=5,
            usage_limit=1,
            used_count=1,
        )
        result = calculate_discounts(
            [line("1", "100")], [auto.to_definition(), once.to_definition()]
        )
        self.assertEqual(len(result.applied), 2)

        with self.assertRaises(CouponError):
            RedemptionService.record_result(result, order_reference="ORD-10")
        auto.refresh_from_db()
        once.refresh_from_db()
        self.assertEqual(auto.used_count, 0)
        self.assertEqual(once.used_count, 1)
        self.assertFalse(DiscountRedemption.objects.exists())


class DiscountApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.customer = User.objects.create_user(phone="07700000004", password="pass")
        self.staff = User.objects.create_user(
            phone="07700000099", password="pass", role="employee", is_staff=True
        )
        self.product = Product.objects.create(name="Disc Product")
        self.variant = ProductVariant.objects.create(
            product=self.product,
            name="Disc Variant",
            sale_price=Decimal("100.00"),
            stock=10,
            sku="SKU-DISC",
        )
        self.cart = self.customer.carts.first()
        CartItem.objects.create(
            cart=self.cart, variant=self.variant, quantity=2, unit_price=Decimal("100.00")
        )

    def test_apply_prices_cart_with_automatic_and_coupon(self):
        DiscountRow.objects.create(title="Auto ten", kind="percentage", value=10)
        DiscountRow.objects.create(title="Fifty off", code="FIFTY", kind="fixed_amount", value=50)
        DiscountRow.objects.create(title="Ship", code="SHIP", kind="free_shipping")
        self.client.force_authenticate(self.customer)

        res = self.client.post(
            "/api/discounts/apply/",
            {"cart_id": self.cart.pk, "coupon_codes": ["fifty", "ship"], "shipping_amount": "15"},
            format="json",
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(Decimal(res.data["original_total"]), Decimal("200"))
        self.assertEqual(Decimal(res.data["discount_total"]), Decimal("70"))
        self.assertEqual(Decimal(res.data["final_total"]), Decimal("130"))
        self.assertTrue(res.data["free_shipping"])
        self.assertEqual(
            [d["kind"] for d in res.data["applied_discounts"]],
            ["percentage", "fixed_amount", "free_shipping"],
        )

    def test_apply_rejects_foreign_cart(self):
        other = User.objects.create_user(phone="07700000005", password="pass")
        self.client.force_authenticate(other)
        res = self.client.post("/api/discounts/apply/", {"cart_id": self.cart.pk}, format="json")
        self.assertEqual(res.status_code, 400)

    def test_validate_coupon_reports_reason(self):
        DiscountRow.objects.create(
            title="Big", code="BIG", kind="fixed_amount", value=20, minimum_amount=500
        )
        self.client.force_authenticate(self.customer)
        res = self.client.post(
            "/api/discounts/validate-coupon/",
            {"cart_id": self.cart.pk, "code": "big"},
            format="json",
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.data["code"], CouponRejection.MINIMUM_NOT_MET)

        missing = self.client.post(
            "/api/discounts/validate-coupon/",
            {"cart_id": self.cart.pk, "code": "nope"},
            format="json",
        )
        self.assertEqual(missing.data["code"], CouponRejection.NOT_FOUND)

    def test_validate_coupon_ignores_stale_applied_codes(self):
        DiscountRow.objects.create(
            title="Gone",
            code="GONE",
            kind="percentage",
            value=50,
            stackable=False,
            ends_at=timezone.now() - timedelta(days=1),
        )
        DiscountRow.objects.create(title="Ten", code="TEN", kind="fixed_amount", value=10)
        DiscountRow.objects.create(
            title="Solo", code="SOLO", kind="percentage", value=5, stackable=False
        )
        self.client.force_authenticate(self.customer)

        res = self.client.post(
            "/api/discounts/validate-coupon/",
            {"cart_id": self.cart.pk, "code": "ten", "applied_codes": ["gone"]},
            format="json",
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["code"], "TEN")

        res = self.client.post(
            "/api/discounts/validate-coupon/",
            {"cart_id": self.cart.pk, "code": "ten", "applied_codes": ["solo"]},
            format="json",
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.data["code"], CouponRejection.NOT_COMBINABLE)

    def test_admin_crud_is_staff_only(self):
        payload = {
            "title": "Spend",
            "kind": "spend_x_pay_y",
            "spend_amount": "200.00",
            "pay_amount": "150.00",
        }
        self.client.force_authenticate(self.customer)
        self.assertEqual(
            self.client.post("/api/discounts/admin/", payload, format="json").status_code, 403
        )

        self.client.force_authenticate(self.staff)
        res = self.client.post("/api/discounts/admin/", payload, format="json")
        self.assertEqual(res.status_code, 201)

        bad = dict(payload, pay_amount="250.00")
        res = self.client.post("/api/discounts/admin/", bad, format="json")
        self.assertEqual(res.status_code, 400)
        self.assertIn("pay_amount", res.data)

    def test_admin_validates_percentage_and_scope(self):
        self.client.force_authenticate(self.staff)
        res = self.client.post(
            "/api/discounts/admin/",
            {"title": "Too much", "kind": "percentage", "value": "120", "scope": "category"},
            format="json",
        )
        self.assertEqual(res.status_code, 400)
        self.assertIn("value", res.data)
        self.assertIn("category_ids", res.data)

    def test_admin_rejects_duplicate_code_in_store(self):
        DiscountRow.objects.create(title="Existing", code="DUPE", kind="percentage", value=5)
        self.client.force_authenticate(self.staff)
        payload = {"title": "Again", "code": "dupe", "kind": "percentage", "value": "5"}
        res = self.client.post("/api/discounts/admin/", payload, format="json")
        self.assertEqual(res.status_code, 400)
        self.assertIn("code", res.data)

        elsewhere = self.client.post(
            "/api/discounts/admin/", dict(payload, store="outlet"), format="json"
        )
        self.assertEqual(elsewhere.status_code, 201)
        self.assertEqual(elsewhere.data["code"], "DUPE")
