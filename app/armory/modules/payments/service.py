from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.armory import accounts
from app.armory.audit import record_event
from app.armory.constants import (
    LIFETIME_TIERS,
    PAID_TIERS,
    STATUS_ACTIVE,
    STATUS_CANCELED,
    STATUS_PENDING_CANCELLATION,
    TIER_LABELS,
    TIER_LIFETIME,
    TIER_MONTHLY,
    TIER_PREMIUM_LIFETIME,
    TIER_PRICES_CENTS,
    TIER_YEARLY,
)
from app.armory.models import User
from app.armory.modules.payments.models import Payment
from app.armory.modules.payments.stripe_client import StripeClient, StripeError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

ONE_TIME_TIER_BY_AMOUNT = {
    TIER_PRICES_CENTS[TIER_LIFETIME]: TIER_LIFETIME,
    TIER_PRICES_CENTS[TIER_PREMIUM_LIFETIME]: TIER_PREMIUM_LIFETIME,
}
RECURRING_TIER_BY_AMOUNT = {
    TIER_PRICES_CENTS[TIER_MONTHLY]: TIER_MONTHLY,
    TIER_PRICES_CENTS[TIER_YEARLY]: TIER_YEARLY,
}
INTERVALS = {TIER_MONTHLY: "month", TIER_YEARLY: "year"}


class PaymentsNotConfigured(StripeError):
    pass


class WebhookMonitor:
    """Counters for the admin health page."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.received = 0
            self.processed = 0
            self.ignored = 0
            self.failed = 0
            self.last_event_type: str | None = None
            self.last_error: str | None = None
            self.last_received_at: datetime | None = None

    def record(self, *, event_type: str | None, outcome: str, error: str | None = None) -> None:
        with self._lock:
            self.received += 1
            self.last_event_type = event_type
            self.last_received_at = datetime.utcnow()
            if outcome == "processed":
                self.processed += 1
            elif outcome == "ignored":
                self.ignored += 1
            else:
                self.failed += 1
                self.last_error = error

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "received": self.received,
                "processed": self.processed,
                "ignored": self.ignored,
                "failed": self.failed,
                "last_event_type": self.last_event_type,
                "last_error": self.last_error,
                "last_received_at": self.last_received_at,
            }


def client_from_config(config: dict) -> StripeClient:
    if not config.get("STRIPE_SECRET_KEY"):
        raise PaymentsNotConfigured("STRIPE_SECRET_KEY is not set")
    return StripeClient(api_key=config["STRIPE_SECRET_KEY"])


def pricing_tiers(user: User | None) -> list[dict[str, Any]]:
    tiers = []
    for tier in PAID_TIERS:
        tiers.append(
            {
                "key": tier,
                "label": TIER_LABELS[tier],
                "price": TIER_PRICES_CENTS[tier] / 100.0,
                "recurring": INTERVALS.get(tier),
                "current": bool(user and user.subscription_tier == tier),
                "available": user is None or accounts.can_subscribe_to_tier(user, tier),
            }
        )
    return tiers


def _from_timestamp(ts: Any) -> datetime | None:
    try:
        return datetime.utcfromtimestamp(int(ts)) if ts else None
    except (TypeError, ValueError):
        return None


# ---------- Checkout ----------
def start_checkout(s: "Session", user: User, tier: str, client: StripeClient, config: dict) -> str:
    """Create customer/price/session; returns the hosted checkout URL."""
    product = (config.get("STRIPE_PRODUCTS") or {}).get(tier)
    if not product:
        raise PaymentsNotConfigured(f"No Stripe product configured for tier {tier}")

    if not user.stripe_customer_id:
        customer = client.create_customer(email=user.email, user_id=user.id)
        user.stripe_customer_id = customer["id"]
        s.commit()

    price = client.create_price(
        product=product,
        unit_amount=TIER_PRICES_CENTS[tier],
        interval=INTERVALS.get(tier),
    )
    base = config["APP_BASE_URL"]
    session = client.create_checkout_session(
        customer=user.stripe_customer_id,
        price=price["id"],
        mode="payment" if tier in LIFETIME_TIERS else "subscription",
        success_url=f"{base}/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{base}/payment/cancel",
        client_reference_id=str(user.id),
        metadata={"tier": tier, "user_id": str(user.id)},
    )
    record_event(
        s,
        actor=user,
        action="payment.checkout_started",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"tier": tier, "session_id": session.get("id")},
    )
    s.commit()
    return session["url"]


def cancel_subscription(s: "Session", user: User, client: StripeClient | None) -> datetime | None:
    """Cancel at period end; the user keeps access until the end date."""
    if client is not None and user.stripe_subscription_id:
        sub = client.cancel_at_period_end(user.stripe_subscription_id)
        end = _from_timestamp(sub.get("current_period_end"))
        if end:
            user.subscription_end_date = end
    user.subscription_status = STATUS_PENDING_CANCELLATION
    user.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="subscription.cancel", entity_type="User", entity_id=str(user.id))
    return user.subscription_end_date


# ---------- Webhook ----------
def _record_payment(
    s: "Session",
    user: User,
    *,
    amount: int,
    currency: str,
    payment_type: str,
    description: str,
    stripe_id: str | None,
) -> Payment | None:
    if stripe_id and s.query(Payment).filter(Payment.stripe_id == stripe_id).one_or_none():
        return None  # webhook redelivery
    payment = Payment(
        user_id=user.id,
        amount=amount,
        currency=(currency or "usd").lower(),
        payment_type=payment_type,
        status="succeeded",
        description=description,
        stripe_id=stripe_id,
    )
    s.add(payment)
    return payment


def _user_for_session(s: "Session", obj: dict) -> User | None:
    ref = obj.get("client_reference_id")
    if ref and str(ref).isdigit():
        user = s.get(User, int(ref))
        if user:
            return user
    customer = obj.get("customer")
    if customer:
        return s.query(User).filter(User.stripe_customer_id == customer).one_or_none()
    return None


def _user_for_subscription(s: "Session", obj: dict) -> User | None:
    sub_id = obj.get("subscription") if obj.get("object") == "invoice" else obj.get("id")
    if sub_id:
        user = s.query(User).filter(User.stripe_subscription_id == sub_id).one_or_none()
        if user:
            return user
    customer = obj.get("customer")
    if customer:
        return s.query(User).filter(User.stripe_customer_id == customer).one_or_none()
    return None


def _checkout_completed(s: "Session", obj: dict, client: StripeClient | None) -> bool:
    user = _user_for_session(s, obj)
    if not user:
        logger.warning("checkout.session.completed for unknown user (session=%s)", obj.get("id"))
        return False
    amount = int(obj.get("amount_total") or 0)
    metadata = obj.get("metadata") or {}
    if obj.get("customer") and not user.stripe_customer_id:
        user.stripe_customer_id = obj["customer"]

    if obj.get("mode") == "payment":
        tier = ONE_TIME_TIER_BY_AMOUNT.get(amount) or metadata.get("tier") or TIER_LIFETIME
        user.subscription_tier = tier
        user.subscription_status = STATUS_ACTIVE
        user.subscription_end_date = None
        user.is_lifetime = True
        _record_payment(
            s,
            user,
            amount=amount,
            currency=obj.get("currency") or "usd",
            payment_type="one-time",
            description="Lifetime subscription",
            stripe_id=obj.get("payment_intent") or obj.get("id"),
        )
    else:
        tier = RECURRING_TIER_BY_AMOUNT.get(amount) or metadata.get("tier") or TIER_MONTHLY
        user.subscription_tier = tier
        user.subscription_status = STATUS_ACTIVE
        user.stripe_subscription_id = obj.get("subscription") or user.stripe_subscription_id
        end = None
        if client is not None and user.stripe_subscription_id:
            try:
                end = _from_timestamp(client.get_subscription(user.stripe_subscription_id).get("current_period_end"))
            except StripeError as e:
                logger.error("Could not fetch subscription %s: %s", user.stripe_subscription_id, e)
        if end is None:
            start = datetime.utcnow()
            end = accounts.add_months(start, 12 if tier == TIER_YEARLY else 1)
        user.subscription_end_date = end
    user.is_admin_granted = False
    user.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="payment.checkout_completed",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"tier": user.subscription_tier, "amount": amount},
    )
    return True


def _invoice_paid(s: "Session", obj: dict) -> bool:
    user = _user_for_subscription(s, obj)
    if not user:
        logger.warning("invoice.payment_succeeded for unknown customer %s", obj.get("customer"))
        return False
    amount = int(obj.get("amount_paid") or 0)
    tier = RECURRING_TIER_BY_AMOUNT.get(amount) or user.subscription_tier
    _record_payment(
        s,
        user,
        amount=amount,
        currency=obj.get("currency") or "usd",
        payment_type="subscription",
        description=f"{TIER_LABELS.get(tier, tier).title()} subscription",
        stripe_id=obj.get("id"),
    )
    if tier in RECURRING_TIER_BY_AMOUNT.values():
        user.subscription_tier = tier
    user.subscription_status = STATUS_ACTIVE
    lines = ((obj.get("lines") or {}).get("data")) or []
    period_end = _from_timestamp((lines[0].get("period") or {}).get("end")) if lines else None
    if period_end:
        user.subscription_end_date = period_end
    user.updated_at = datetime.utcnow()
    return True


def _subscription_updated(s: "Session", obj: dict) -> bool:
    user = _user_for_subscription(s, obj)
    if not user:
        return False
    if obj.get("cancel_at_period_end"):
        user.subscription_status = STATUS_PENDING_CANCELLATION
    elif obj.get("status"):
        user.subscription_status = obj["status"]
    end = _from_timestamp(obj.get("current_period_end"))
    if end:
        user.subscription_end_date = end
    user.updated_at = datetime.utcnow()
    return True


def _subscription_deleted(s: "Session", obj: dict) -> bool:
    user = _user_for_subscription(s, obj)
    if not user:
        return False
    user.subscription_status = STATUS_CANCELED
    user.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="subscription.deleted", entity_type="User", entity_id=str(user.id))
    return True


def handle_event(s: "Session", event: dict, client: StripeClient | None = None) -> str:
    """Apply a verified webhook event. Returns "processed" or "ignored"."""
    event_type = event.get("type")
    obj = ((event.get("data") or {}).get("object")) or {}
    handlers = {
        "checkout.session.completed": lambda: _checkout_completed(s, obj, client),
        "invoice.payment_succeeded": lambda: _invoice_paid(s, obj),
        "customer.subscription.updated": lambda: _subscription_updated(s, obj),
        "customer.subscription.deleted": lambda: _subscription_deleted(s, obj),
    }
    handler = handlers.get(event_type or "")
    if handler is None:
        logger.info("Ignoring Stripe event type %s", event_type)
        return "ignored"
    return "processed" if handler() else "ignored"


def user_payments(s: "Session", user: User) -> list[Payment]:
    return s.query(Payment).filter(Payment.user_id == user.id).order_by(Payment.created_at.desc(), Payment.id.desc()).all()
