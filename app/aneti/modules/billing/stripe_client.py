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


class BillingError(RuntimeError):
    pass


class WebhookSignatureError(BillingError):
    pass


class BillingNotFound(BillingError):
    pass


STRIPE_API_VERSION = "2024-06-20"
WEBHOOK_TOLERANCE_SECONDS = 300


def _flatten(params: dict[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """Stripe form encoding: nested dicts -> a[b]=..., lists -> a[0]=..."""
    out: list[tuple[str, str]] = []
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            out.extend(_flatten(value, name))
        elif isinstance(value, (list, tuple)):
            for i, item in enumerate(value):
                item_name = f"{name}[{i}]"
                if isinstance(item, dict):
                    out.extend(_flatten(item, item_name))
                else:
                    out.append((item_name, str(item)))
        elif isinstance(value, bool):
            out.append((name, "true" if value else "false"))
        else:
            out.append((name, str(value)))
    return out


@dataclass(frozen=True)
class StripeClient:
    secret_key: str
    base_url: str = "https://api.stripe.com"
    timeout_seconds: int = 30

    def _auth_header(self) -> str:
        token = f"{self.secret_key}:".encode("utf-8")
        return "Basic " + base64.b64encode(token).decode("ascii")

    def request_json(self, method: str, path: str, *, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Single attempt; failures surface as BillingError and are never retried here."""
        if not self.secret_key:
            raise BillingError("Stripe is not configured (STRIPE_SECRET_KEY missing).")
        url = self.base_url.rstrip("/") + path
        data: bytes | None = None
        encoded = urllib.parse.urlencode(_flatten(params or {}))
        if method == "GET":
            if encoded:
                url += "?" + encoded
        else:
            data = encoded.encode("utf-8")

        req = urllib.request.Request(url, data=data, method=method)
        req.add_header("Authorization", self._auth_header())
        req.add_header("Accept", "application/json")
        req.add_header("Stripe-Version", STRIPE_API_VERSION)
        if data is not None:
            req.add_header("Content-Type", "application/x-www-form-urlencoded")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            try:
                body = e.read().decode("utf-8", errors="ignore")
            except Exception:
                body = ""
            err_cls = BillingNotFound if e.code == 404 else BillingError
            raise err_cls(f"HTTP {e.code} from Stripe ({path}): {body[:300]}") from e
        except Exception as e:
            raise BillingError(f"Stripe request failed ({path}): {e}") from e
        try:
            j = json.loads(raw.decode("utf-8"))
        except Exception as e:
            raise BillingError(f"Invalid JSON from Stripe ({path})") from e
        if not isinstance(j, dict):
            raise BillingError(f"Unexpected response from Stripe ({path})")
        return j

    def create_product(self, *, name: str, description: str | None = None, metadata: dict[str, str] | None = None) -> dict[str, Any]:
        return self.request_json(
            "POST", "/v1/products", params={"name": name, "description": description or None, "metadata": metadata}
        )

    def create_price(
        self, *, product_id: str, unit_amount: int, currency: str, interval: str, metadata: dict[str, str] | None = None
    ) -> dict[str, Any]:
        return self.request_json(
            "POST",
            "/v1/prices",
            params={
                "product": product_id,
                "unit_amount": unit_amount,
                "currency": currency,
                "recurring": {"interval": interval},
                "metadata": metadata,
            },
        )

    def create_customer(self, *, email: str, name: str, metadata: dict[str, str] | None = None) -> dict[str, Any]:
        return self.request_json("POST", "/v1/customers", params={"email": email, "name": name, "metadata": metadata})

    def create_subscription(self, *, customer_id: str, price_id: str, metadata: dict[str, str] | None = None) -> dict[str, Any]:
        return self.request_json(
            "POST",
            "/v1/subscriptions",
            params={
                "customer": customer_id,
                "items": [{"price": price_id}],
                "payment_behavior": "default_incomplete",
                "payment_settings": {"save_default_payment_method": "on_subscription"},
                "expand": ["latest_invoice.payment_intent"],
                "metadata": metadata,
            },
        )

    def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        ident = urllib.parse.quote(subscription_id, safe="")
        return self.request_json("GET", f"/v1/subscriptions/{ident}")


def verify_webhook_signature(
    payload: bytes,
    sig_header: str | None,
    secret: str,
    *,
    tolerance: int = WEBHOOK_TOLERANCE_SECONDS,
    now: float | None = None,
) -> dict[str, Any]:
    """
    Check a `Stripe-Signature: t=...,v1=...` header (HMAC-SHA256 over "t.payload")
    and return the decoded event.
    """
    if not sig_header:
        raise WebhookSignatureError("Missing Stripe-Signature header")
    timestamp: int | None = None
    signatures: list[str] = []
    for part in sig_header.split(","):
        k, _, v = part.strip().partition("=")
        if k == "t":
            try:
                timestamp = int(v)
            except ValueError:
                raise WebhookSignatureError("Malformed signature timestamp") from None
        elif k == "v1":
            signatures.append(v)
    if timestamp is None or not signatures:
        raise WebhookSignatureError("Malformed Stripe-Signature header")

    signed = f"{timestamp}.".encode("utf-8") + payload
    expected = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise WebhookSignatureError("Signature mismatch")
    current = time.time() if now is None else now
    if tolerance and abs(current - timestamp) > tolerance:
        raise WebhookSignatureError("Signature timestamp outside tolerance")
    return parse_event(payload)


def parse_event(payload: bytes) -> dict[str, Any]:
    try:
        event = json.loads(payload.decode("utf-8"))
    except Exception as e:
        raise BillingError("Invalid webhook payload") from e
    if not isinstance(event, dict):
        raise BillingError("Invalid webhook payload")
    return event
