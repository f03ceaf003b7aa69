"""
Central constants for the Virtual Armory application.
"""
from __future__ import annotations

TIER_FREE = "free"
TIER_MONTHLY = "monthly"
TIER_YEARLY = "yearly"
TIER_LIFETIME = "lifetime"
TIER_PREMIUM_LIFETIME = "premium_lifetime"
TIER_PROMOTION = "promotion"
TIER_ADMIN_GRANT = "admin_grant"

# Paid tiers sold through checkout, in display order
PAID_TIERS = (TIER_MONTHLY, TIER_YEARLY, TIER_LIFETIME, TIER_PREMIUM_LIFETIME)
LIFETIME_TIERS = frozenset({TIER_LIFETIME, TIER_PREMIUM_LIFETIME})

# Tiers an admin may grant from the user screen
GRANTABLE_TIERS = (TIER_MONTHLY, TIER_YEARLY, TIER_LIFETIME, TIER_PREMIUM_LIFETIME, TIER_ADMIN_GRANT)

TIER_PRICES_CENTS = {
    TIER_MONTHLY: 500,
    TIER_YEARLY: 3000,
    TIER_LIFETIME: 10000,
    TIER_PREMIUM_LIFETIME: 100000,
}

TIER_LABELS = {
    TIER_FREE: "Free",
    TIER_MONTHLY: "Monthly",
    TIER_YEARLY: "Yearly",
    TIER_LIFETIME: "Lifetime",
    TIER_PREMIUM_LIFETIME: "Premium Lifetime",
    TIER_PROMOTION: "Promotion",
    TIER_ADMIN_GRANT: "Admin Grant",
}

STATUS_ACTIVE = "active"
STATUS_EXPIRED = "expired"
STATUS_CANCELED = "canceled"
STATUS_PENDING_CANCELLATION = "pending_cancellation"

# Free tier caps
FREE_TIER_GUN_LIMIT = 2
FREE_TIER_AMMO_LIMIT = 4
