from django.contrib import admin

from .models import User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ("phone", "email", "role", "is_club_member", "is_active")
    list_filter = ("role", "is_club_member", "is_active")
    search_fields = ("phone", "email")
