from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any


class StripeError(RuntimeError):
    pass


class StripeRateLimited(StripeError):
    pass


class StripeSignatureError(StripeError):
    pass


def _flatten(params: dict[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """Encode nested dicts/lists the way Stripe's form API expects (a[b][0]=c)."""
    out: list[tuple[str, str]] = []
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            out.extend(_flatten(value, name))
        elif isinstance(value, (list, tuple)):
            for i, item in enumerate(value):
                if isinstance(item, dict):
                    out.extend(_flatten(item, f"{name}[{i}]"))
                else:
                    out.append((f"{name}[{i}]", str(item)))
        elif isinstance(value, bool):
            out.append((name, "true" if value else "false"))
        else:
            out.append((name, str(value)))
    return out


@dataclass(frozen=True)
class StripeClient:
    api_key: str
    base_url: str = "https://api.stripe.com"
    timeout_seconds: int = 30

    def _auth_header(self) -> str:
        token = f"{self.api_key}:".encode("utf-8")
        return "Basic " + base64.b64encode(token).decode("ascii")

    def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        retries: int = 2,
    ) -> dict[str, Any]:
        url = self.base_url.rstrip("/") + path
        data = None
        encoded = urllib.parse.urlencode(_flatten(params or {}))
        if method == "GET":
            if encoded:
                url += "?" + encoded
        else:
            data = encoded.encode("utf-8")

        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                req = urllib.request.Request(url, data=data, method=method)
                req.add_header("Authorization", self._auth_header())
                req.add_header("Accept", "application/json")
                if data is not None:
                    req.add_header("Content-Type", "application/x-www-form-urlencoded")
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    raw = resp.read()
                    try:
                        return json.loads(raw.decode("utf-8"))
                    except Exception as e:
                        raise StripeError(f"Invalid JSON from Stripe ({path})") from e
            except urllib.error.HTTPError as e:
                if e.code == 429:
                    time.sleep(min(2 * (attempt + 1), 10))
                    last_err = StripeRateLimited("Rate limited (429)")
                    continue
                try:
                    body = e.read().decode("utf-8", errors="ignore")
                except Exception:
                    body = ""
                raise StripeError(f"HTTP {e.code} from Stripe: {body[:300]}") from e
            except OSError as e:  # URLError and socket errors
                last_err = e
                time.sleep(min(1 * (attempt + 1), 5))
                continue
        raise StripeError(f"Stripe request failed after retries: {last_err}")

    def create_customer(self, *, email: str, user_id: int) -> dict[str, Any]:
        return self.request_json("POST", "/v1/customers", params={"email": email, "metadata": {"user_id": user_id}})

    def create_price(self, *, product: str, unit_amount: int, currency: str = "usd", interval: str | None = None) -> dict[str, Any]:
        params: dict[str, Any] = {"product": product, "unit_amount": unit_amount, "currency": currency}
        if interval:
            params["recurring"] = {"interval": interval}
        return self.request_json("POST", "/v1/prices", params=params)

    def create_checkout_session(
        self,
        *,
        customer: str,
        price: str,
        mode: str,
        success_url: str,
        cancel_url: str,
        client_reference_id: str,
        metadata: dict[str, str],
    ) -> dict[str, Any]:
        return self.request_json(
            "POST",
            "/v1/checkout/sessions",
            params={
                "customer": customer,
                "mode": mode,
                "line_items": [{"price": price, "quantity": 1}],
                "success_url": success_url,
                "cancel_url": cancel_url,
                "client_reference_id": client_reference_id,
                "metadata": metadata,
            },
        )

    def get_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self.request_json("GET", f"/v1/subscriptions/{urllib.parse.quote(subscription_id)}")

    def cancel_at_period_end(self, subscription_id: str) -> dict[str, Any]:
        return self.request_json(
            "POST",
            f"/v1/subscriptions/{urllib.parse.quote(subscription_id)}",
            params={"cancel_at_period_end": True},
        )


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def construct_event(payload: bytes, sig_header: str | None, secret: str, *, tolerance: int = 300, now: int | None = None) -> dict[str, Any]:
    """Verify a `Stripe-Signature: t=...,v1=...` header and decode the event."""
    if not secret:
        raise StripeSignatureError("Webhook secret is not configured")
    if not sig_header:
        raise StripeSignatureError("Missing Stripe-Signature header")

    timestamp: int | None = None
    signatures: list[str] = []
    for part in sig_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise StripeSignatureError("Invalid timestamp in Stripe-Signature") from None
        elif key == "v1":
            signatures.append(value)
    if timestamp is None or not signatures:
        raise StripeSignatureError("Malformed Stripe-Signature header")

    expected = compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise StripeSignatureError("No signatures found matching the expected signature")
    if abs((now or int(time.time())) - timestamp) > tolerance:
        raise StripeSignatureError("Timestamp outside the tolerance zone")

    try:
        event = json.loads(payload.decode("utf-8"))
    except Exception as e:
        raise StripeSignatureError("Invalid JSON payload") from e
    if not isinstance(event, dict):
        raise StripeSignatureError("Invalid event payload")
    return event
