from django.conf import settings

DEFAULTS = {
    "DEFAULT_STORE": "default",
    "GROUPING_STRATEGY": "cart_order",
}


def discount_setting(name):
    """Read one key of the DISCOUNTS settings dict, falling back to DEFAULTS."""
    overrides = getattr(settings, "DISCOUNTS", None) or {}
    return overrides.get(name, DEFAULTS[name])
