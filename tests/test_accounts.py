"""Unit tests for account rules, input validation and permission matching."""
from datetime import datetime, timedelta

import pytest

from app.armory import accounts
from app.armory.constants import (
    STATUS_ACTIVE,
    STATUS_EXPIRED,
    TIER_ADMIN_GRANT,
    TIER_FREE,
    TIER_LIFETIME,
    TIER_MONTHLY,
    TIER_PREMIUM_LIFETIME,
    TIER_PROMOTION,
    TIER_YEARLY,
)
from app.armory.models import User
from app.armory.rbac import permission_matches
from app.armory.security import generate_token, is_safe_next
from app.armory.validation import is_valid_email, password_error

NOW = datetime(2024, 5, 15, 12, 0, 0)


def _user(**kw):
    defaults = {"email": "u@example.com", "password_hash": "x", "subscription_tier": TIER_FREE, "login_attempts": 0}
    defaults.update(kw)
    return User(**defaults)


class TestAddMonths:
    def test_simple(self):
        assert accounts.add_months(NOW, 1) == datetime(2024, 6, 15, 12, 0, 0)

    def test_year_rollover(self):
        assert accounts.add_months(datetime(2024, 11, 30), 3) == datetime(2025, 2, 28)

    def test_clamps_to_month_end(self):
        assert accounts.add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)

    def test_twelve_months(self):
        assert accounts.add_months(NOW, 12) == datetime(2025, 5, 15, 12, 0, 0)


class TestActiveSubscription:
    def test_free_is_never_active(self):
        assert not accounts.has_active_subscription(_user(), now=NOW)

    def test_lifetime_always_active(self):
        assert accounts.has_active_subscription(_user(subscription_tier=TIER_LIFETIME), now=NOW)
        assert accounts.has_active_subscription(_user(subscription_tier=TIER_PREMIUM_LIFETIME, subscription_status=None), now=NOW)

    def test_monthly_respects_end_date(self):
        u = _user(subscription_tier=TIER_MONTHLY, subscription_status=STATUS_ACTIVE, subscription_end_date=NOW + timedelta(days=1))
        assert accounts.has_active_subscription(u, now=NOW)
        u.subscription_end_date = NOW - timedelta(seconds=1)
        assert not accounts.has_active_subscription(u, now=NOW)

    def test_status_must_be_active(self):
        u = _user(subscription_tier=TIER_YEARLY, subscription_status="canceled", subscription_end_date=NOW + timedelta(days=10))
        assert not accounts.has_active_subscription(u, now=NOW)


class TestUpgradePaths:
    @pytest.mark.parametrize(
        "current,target,allowed",
        [
            (TIER_FREE, TIER_MONTHLY, True),
            (TIER_MONTHLY, TIER_MONTHLY, False),
            (TIER_MONTHLY, TIER_YEARLY, True),
            (TIER_YEARLY, TIER_MONTHLY, False),
            (TIER_YEARLY, TIER_LIFETIME, True),
            (TIER_LIFETIME, TIER_YEARLY, False),
            (TIER_LIFETIME, TIER_PREMIUM_LIFETIME, True),
            (TIER_PREMIUM_LIFETIME, TIER_PREMIUM_LIFETIME, False),
            (TIER_PROMOTION, TIER_MONTHLY, True),
        ],
    )
    def test_can_subscribe(self, current, target, allowed):
        assert accounts.can_subscribe_to_tier(_user(subscription_tier=current), target) is allowed


class TestExpiredPromotion:
    def test_lapsed_promotion_downgrades(self):
        u = _user(subscription_tier=TIER_PROMOTION, subscription_status=STATUS_ACTIVE, subscription_end_date=NOW - timedelta(days=1))
        assert accounts.check_expired_promotion_subscription(u, now=NOW) is True
        assert u.subscription_tier == TIER_FREE
        assert u.subscription_status == STATUS_EXPIRED
        assert u.subscription_end_date is None

    def test_running_promotion_untouched(self):
        u = _user(subscription_tier=TIER_PROMOTION, subscription_status=STATUS_ACTIVE, subscription_end_date=NOW + timedelta(days=1))
        assert accounts.check_expired_promotion_subscription(u, now=NOW) is False
        assert u.subscription_tier == TIER_PROMOTION

    def test_lifetime_untouched(self):
        u = _user(subscription_tier=TIER_LIFETIME, subscription_status=STATUS_ACTIVE, subscription_end_date=None)
        assert accounts.check_expired_promotion_subscription(u, now=NOW) is False


class TestLockout:
    def test_counts_and_locks(self):
        u = _user()
        for _ in range(accounts.MAX_LOGIN_ATTEMPTS):
            accounts.record_failed_login(u, now=NOW)
        assert accounts.is_locked_out(u, now=NOW + timedelta(minutes=1))
        assert not accounts.is_locked_out(u, now=NOW + timedelta(minutes=15))

    def test_old_attempts_reset_counter(self):
        u = _user(login_attempts=4, last_login_attempt=NOW - timedelta(minutes=20))
        accounts.record_failed_login(u, now=NOW)
        assert u.login_attempts == 1

    def test_success_clears(self):
        u = _user(login_attempts=3, last_login_attempt=NOW)
        accounts.record_successful_login(u, now=NOW)
        assert u.login_attempts == 0
        assert u.last_login == NOW


class TestTokens:
    def test_verification_token_expires_in_an_hour(self):
        u = _user()
        token = accounts.issue_verification_token(u, now=NOW)
        assert u.verification_token == token
        assert not accounts.token_expired(u.verification_token_expiry, now=NOW + timedelta(minutes=59))
        assert accounts.token_expired(u.verification_token_expiry, now=NOW + timedelta(minutes=61))

    def test_missing_expiry_counts_as_expired(self):
        assert accounts.token_expired(None, now=NOW)

    def test_tokens_are_unique_and_url_safe(self):
        a, b = generate_token(), generate_token()
        assert a != b
        assert len(a) == 44
        assert "+" not in a and "/" not in a

    def test_verify_email_promotes_pending_email(self):
        u = _user(pending_email="new@example.com", verification_token="t")
        accounts.verify_email(u)
        assert u.email == "new@example.com"
        assert u.pending_email is None
        assert u.verified is True
        assert u.verification_token is None


class TestValidation:
    @pytest.mark.parametrize("email", ["a@b.co", "first.last+tag@sub.example.org"])
    def test_valid_emails(self, email):
        assert is_valid_email(email)

    @pytest.mark.parametrize("email", ["", None, "plain", "a@b", "a@b.c", "a b@c.com"])
    def test_invalid_emails(self, email):
        assert not is_valid_email(email)

    def test_password_rules_in_order(self):
        assert password_error("Ab1!") == "Password must be at least 8 characters long"
        assert password_error("abcdefg1!") == "Password must contain at least one uppercase letter"
        assert password_error("ABCDEFG1!") == "Password must contain at least one lowercase letter"
        assert password_error("Abcdefgh!") == "Password must contain at least one number"
        assert password_error("Abcdefg12") == "Password must contain at least one special character"
        assert password_error("Abcdefg1!") is None

    def test_safe_next(self):
        assert is_safe_next("/owner")
        assert not is_safe_next("//evil.example.com")
        assert not is_safe_next("https://evil.example.com")
        assert not is_safe_next("/\\evil.example.com")
        assert not is_safe_next("/\\/evil.example.com")
        assert is_safe_next("/owner/profile?tab=1")
        assert not is_safe_next(None)


class TestPermissionMatching:
    def test_exact(self):
        assert permission_matches("calibers.read", "calibers.read")
        assert not permission_matches("calibers.read", "calibers.update")

    def test_resource_wildcard(self):
        assert permission_matches("calibers.*", "calibers.delete")
        assert not permission_matches("calibers.*", "brands.read")

    def test_global_wildcard(self):
        assert permission_matches("*", "anything.at_all")


def test_grant_admin_days_and_lifetime():
    class _Session:
        def __init__(self):
            self.added = []

        def add(self, obj):
            self.added.append(obj)

    s = _Session()
    admin = User(id=1, email="admin@example.com", password_hash="x")
    u = _user(id=2)
    accounts.grant_subscription(
        s, u, admin, subscription_type=TIER_ADMIN_GRANT, grant_reason="beta", duration_days=10, is_lifetime=False, now=NOW
    )
    assert u.subscription_end_date == NOW + timedelta(days=10)
    assert u.is_admin_granted is True
    assert u.granted_by_id == 1
    assert u.is_lifetime is False
    assert len(s.added) == 1

    accounts.grant_subscription(
        s, u, admin, subscription_type=TIER_YEARLY, grant_reason=None, duration_days=None, is_lifetime=False, now=NOW
    )
    assert u.subscription_end_date == datetime(2025, 5, 15, 12, 0, 0)

    accounts.grant_subscription(
        s, u, admin, subscription_type=TIER_LIFETIME, grant_reason=None, duration_days=None, is_lifetime=False, now=NOW
    )
    assert u.is_lifetime is True
    assert u.subscription_end_date is None
