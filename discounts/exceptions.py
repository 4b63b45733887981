class DiscountError(Exception):
    pass


class CouponError(DiscountError):
    """
    A coupon code that cannot be applied right now.

    `reason` is machine-readable (see CouponRejection); the message is
    meant for the shopper.
    """

    def __init__(self, reason, message):
        super().__init__(message)
        self.reason = reason
        self.message = message


class CouponRejection:
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    NOT_STARTED = "not_started"
    EXPIRED = "expired"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    CUSTOMER_LIMIT_REACHED = "customer_limit_reached"
    FIRST_ORDER_ONLY = "first_order_only"
    MINIMUM_NOT_MET = "minimum_not_met"
    NO_ELIGIBLE_ITEMS = "no_eligible_items"
    NOT_COMBINABLE = "not_combinable"
    MEMBERS_ONLY = "members_only"
    ALREADY_APPLIED = "already_applied"
