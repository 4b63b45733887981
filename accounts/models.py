from django.db import models
from django.db.models.signals import post_save
from django.dispatch import receiver
from django.contrib.auth.models import (
    AbstractBaseUser,
    BaseUserManager,
    PermissionsMixin,
)
from django.core.validators import RegexValidator
from django.utils import timezone

from carts.models import Cart

phone_validator = RegexValidator(
    regex=r"^\+?\d{7,15}$",
    message="Enter a valid phone number (digits only, optional leading +).",
)


# ----------------------------------------
# USER MANAGER
# ----------------------------------------
class UserManager(BaseUserManager):
    def create_user(self, phone, password=None, role="customer", **extra_fields):
        if not phone:
            raise ValueError("Users must have a phone number")
        phone = str(phone).strip()
        # Strip privilege-related fields to avoid elevation through serializers
        extra_fields.pop("is_superuser", None)
        if role != "employee":
            extra_fields.pop("is_staff", None)
        if extra_fields.get("email"):
            extra_fields["email"] = self.normalize_email(extra_fields["email"]).lower()
        role = role if role in {"customer", "employee"} else "customer"
        user = self.model(phone=phone, role=role, **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_superuser(self, phone, password=None, **extra_fields):
        if not phone:
            raise ValueError("Superusers must have a phone number")
        phone = str(phone).strip()
        extra_fields.setdefault("role", "admin")
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("is_active", True)
        user = self.model(phone=phone, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user


# ----------------------------------------
# USER MODEL
# ----------------------------------------
class User(AbstractBaseUser, PermissionsMixin):
    ROLE_CHOICES = [
        ("admin", "Admin"),
        ("employee", "Employee"),
        ("customer", "Customer"),
    ]

    phone = models.CharField(max_length=16, unique=True, validators=[phone_validator])
    email = models.EmailField(blank=True, null=True, unique=True)
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default="customer")

    # Club membership unlocks member-scoped promotions
    is_club_member = models.BooleanField(default=False)
    club_member_since = models.DateTimeField(null=True, blank=True)

    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)
    is_superuser = models.BooleanField(default=False)

    date_joined = models.DateTimeField(default=timezone.now)

    USERNAME_FIELD = "phone"
    REQUIRED_FIELDS = []

    objects = UserManager()

    def __str__(self):
        return f"{self.phone} ({self.role})"

    @property
    def is_admin(self):
        return self.role == "admin"

    @property
    def is_employee(self):
        return self.role == "employee"

    @property
    def is_customer(self):
        return self.role == "customer"

    def join_club(self):
        if not self.is_club_member:
            self.is_club_member = True
            self.club_member_since = timezone.now()
            self.save(update_fields=["is_club_member", "club_member_since"])


@receiver(post_save, sender=User)
def create_user_cart(sender, instance, created, *args, **kwargs):
    if created:
        Cart.objects.create(user=instance)
