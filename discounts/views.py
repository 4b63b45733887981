from decimal import Decimal
from rest_framework import viewsets, status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import IsAdminOrEmployee
from carts.services import CartService
from .conf import discount_setting
from .exceptions import CouponError
from .models import Discount
from .serializers import (
    ApplyDiscountRequestSerializer,
    CouponSummarySerializer,
    DiscountedCartSerializer,
    DiscountSerializer,
    ValidateCouponRequestSerializer,
)
from .services import CouponService


class DiscountViewSet(viewsets.ModelViewSet):
    """
    Admin-only CRUD for discounts.
    """

    queryset = Discount.objects.all().order_by("priority", "-created_at")
    serializer_class = DiscountSerializer
    permission_classes = [IsAuthenticated, IsAdminOrEmployee]

    def get_queryset(self):
        queryset = super().get_queryset()
        store = self.request.query_params.get("store")
        if store:
            queryset = queryset.filter(store=store)
        return queryset


class ApplyDiscountsView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        req_serializer = ApplyDiscountRequestSerializer(
            data=request.data, context={"request": request}
        )
        req_serializer.is_valid(raise_exception=True)
        result = req_serializer.save()
        res_serializer = DiscountedCartSerializer.from_result(result)
        return Response(res_serializer.data, status=status.HTTP_200_OK)


class ValidateCouponView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        req_serializer = ValidateCouponRequestSerializer(
            data=request.data, context={"request": request}
        )
        req_serializer.is_valid(raise_exception=True)
        data = req_serializer.validated_data
        cart = req_serializer.cart
        store = data.get("store") or discount_setting("DEFAULT_STORE")
        lines = CartService.snapshot(cart)
        total = sum((line.subtotal for line in lines if not line.is_gift), Decimal("0"))
        email = cart.user.email

        # stale codes are dropped here, they don't block a new one
        applied = CartService.resolve_coupons(store, data["applied_codes"], lines, email)

        try:
            coupon = CouponService.validate_coupon(
                store, data["code"], total, email=email, cart_lines=lines, applied=applied
            )
        except CouponError as exc:
            return Response(
                {"code": exc.reason, "detail": exc.message},
                status=status.HTTP_400_BAD_REQUEST,
            )
        return Response(CouponSummarySerializer(coupon).data, status=status.HTTP_200_OK)
