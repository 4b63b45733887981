from django.contrib.auth.models import AnonymousUser
from django.test import TestCase
from rest_framework.test import APIClient, APIRequestFactory
from rest_framework_simplejwt.tokens import RefreshToken

from accounts.models import User
from accounts.permissions import IsAdminOrEmployee
from discounts.services import is_club_member


class UserManagerTests(TestCase):
    def test_create_user_strips_privileges(self):
        user = User.objects.create_user(
            phone=" 07701234567 ",
            password="secret123",
            email="Someone@Example.COM",
            is_superuser=True,
            is_staff=True,
        )
        self.assertEqual(user.phone, "07701234567")
        self.assertEqual(user.email, "someone@example.com")
        self.assertFalse(user.is_superuser)
        self.assertFalse(user.is_staff)
        self.assertTrue(user.is_customer)
        self.assertEqual(user.carts.count(), 1)

    def test_employee_may_be_staff(self):
        user = User.objects.create_user(phone="07701234568", role="employee", is_staff=True)
        self.assertTrue(user.is_staff)
        self.assertFalse(user.has_usable_password())

    def test_unknown_role_falls_back_to_customer(self):
        user = User.objects.create_user(phone="07701234569", role="admin")
        self.assertEqual(user.role, "customer")


class ClubMembershipTests(TestCase):
    def test_join_club_marks_member_once(self):
        user = User.objects.create_user(phone="07701230000", email="club@example.com")
        self.assertFalse(is_club_member("club@example.com"))

        user.join_club()
        since = user.club_member_since
        self.assertIsNotNone(since)
        self.assertTrue(is_club_member(" CLUB@example.com "))

        user.join_club()
        self.assertEqual(user.club_member_since, since)

    def test_inactive_member_does_not_count(self):
        user = User.objects.create_user(phone="07701230001", email="gone@example.com")
        user.join_club()
        user.is_active = False
        user.save()
        self.assertFalse(is_club_member("gone@example.com"))
        self.assertFalse(is_club_member(None))


class StaffPermissionTests(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.permission = IsAdminOrEmployee()

    def allowed(self, user):
        request = self.factory.get("/api/discounts/admin/")
        request.user = user
        return self.permission.has_permission(request, None)

    def test_roles(self):
        customer = User.objects.create_user(phone="07700000010")
        employee = User.objects.create_user(phone="07700000011", role="employee")
        admin = User.objects.create_superuser(phone="07700000012", password="pass")

        self.assertFalse(self.allowed(AnonymousUser()))
        self.assertFalse(self.allowed(customer))
        self.assertTrue(self.allowed(employee))
        self.assertTrue(self.allowed(admin))


class JwtAuthTests(TestCase):
    def test_token_grants_access_to_discount_api(self):
        User.objects.create_user(phone="07700000020", password="secret123")
        client = APIClient()

        res = client.post(
            "/api/auth/token/",
            {"phone": "07700000020", "password": "secret123"},
            format="json",
        )
        self.assertEqual(res.status_code, 200)
        self.assertIn("refresh", res.data)

        client.credentials(HTTP_AUTHORIZATION=f"Bearer {res.data['access']}")
        res = client.post("/api/discounts/validate-coupon/", {"code": "X"}, format="json")
        # authenticated, so the payload is validated rather than refused
        self.assertEqual(res.status_code, 400)

    def test_refresh_token_for_user(self):
        user = User.objects.create_user(phone="07700000021")
        refresh = RefreshToken.for_user(user)
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
        res = client.get("/api/discounts/admin/")
        self.assertEqual(res.status_code, 403)

        client.credentials()
        self.assertEqual(client.get("/api/discounts/admin/").status_code, 401)
