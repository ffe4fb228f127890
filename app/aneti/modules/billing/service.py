from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from app.aneti.constants import PAYMENT_FAILED, PAYMENT_PAID
from app.aneti.errors import ValidationFailed
from app.aneti.modules.applications.models import Application
from app.aneti.modules.applications.service import update_payment_status_by_subscription
from app.aneti.modules.billing.stripe_client import BillingError, BillingNotFound, StripeClient
from app.aneti.modules.membership_plans.models import BillingRefs

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.aneti.modules.membership_plans.models import MembershipPlan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionBootstrap:
    customer_id: str
    subscription_id: str
    client_secret: str | None
    status: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "customerId": self.customer_id,
            "subscriptionId": self.subscription_id,
            "clientSecret": self.client_secret,
            "status": self.status,
        }


def client_from_config(config: dict) -> StripeClient:
    return StripeClient(
        secret_key=(config.get("STRIPE_SECRET_KEY") or "").strip(),
        base_url=(config.get("STRIPE_API_BASE") or "https://api.stripe.com").strip(),
    )


def billing_client_for(app) -> StripeClient:
    """Client installed on app.extensions (tests), else one built from config."""
    client = app.extensions.get("billing_client")
    if client is not None:
        return client
    return client_from_config(app.config)


def price_interval(plan: "MembershipPlan") -> str:
    return "month" if plan.billing_period == "monthly" else "year"


def _require_id(obj: dict[str, Any], what: str) -> str:
    ident = obj.get("id")
    if not ident or not isinstance(ident, str):
        raise BillingError(f"Stripe returned a {what} without an id")
    return ident


def ensure_plan_billing(s: "Session", plan: "MembershipPlan", *, client: StripeClient, currency: str = "brl") -> BillingRefs:
    """
    Product + recurring price for the plan, created once and memoised on the plan row.
    The product id is committed as soon as it exists; a retry after a failed
    price call reuses it.
    """
    refs = plan.billing_refs
    if refs is not None:
        return refs

    product_id = plan.billing_product_id
    if not product_id:
        product = client.create_product(
            name=f"ANETI - Plano {plan.name}",
            description=plan.description,
            metadata={"plan_id": str(plan.id)},
        )
        product_id = _require_id(product, "product")
        logger.info("Created billing product %s for plan %s", product_id, plan.id)
        plan.billing_product_id = product_id
        s.commit()

    price = client.create_price(
        product_id=product_id,
        unit_amount=plan.price,
        currency=(plan.currency or currency).lower(),
        interval=price_interval(plan),
        metadata={"plan_id": str(plan.id)},
    )
    price_id = _require_id(price, "price")
    logger.info("Created billing price %s for plan %s", price_id, plan.id)

    refs = BillingRefs(product_id=product_id, price_id=price_id)
    plan.billing_refs = refs
    s.commit()
    return refs


def ensure_subscription(
    s: "Session",
    plan: "MembershipPlan",
    email: str,
    full_name: str,
    *,
    client: StripeClient,
    currency: str = "brl",
) -> SubscriptionBootstrap:
    """
    Start an incomplete subscription for a paid plan. Every call creates a new
    customer and subscription; only the product/price pair is reused.
    """
    if plan.is_free:
        raise ValidationFailed(f"O plano {plan.name} não requer pagamento.")
    refs = ensure_plan_billing(s, plan, client=client, currency=currency)

    customer = client.create_customer(email=email, name=full_name, metadata={"plan_id": str(plan.id)})
    customer_id = _require_id(customer, "customer")

    sub = client.create_subscription(customer_id=customer_id, price_id=refs.price_id, metadata={"plan_id": str(plan.id)})
    subscription_id = _require_id(sub, "subscription")

    client_secret = None
    invoice = sub.get("latest_invoice")
    if isinstance(invoice, dict):
        intent = invoice.get("payment_intent")
        if isinstance(intent, dict):
            client_secret = intent.get("client_secret")
    if not client_secret:
        logger.warning("Subscription %s returned no payment intent client secret", subscription_id)

    logger.info("Started subscription %s (customer %s) for plan %s", subscription_id, customer_id, plan.id)
    return SubscriptionBootstrap(
        customer_id=customer_id,
        subscription_id=subscription_id,
        client_secret=client_secret,
        status=sub.get("status"),
    )


CLOSED_SUBSCRIPTION_STATUSES = frozenset({"canceled", "incomplete_expired"})


def verified_subscription_id(
    plan: "MembershipPlan",
    subscription_id: str | None,
    *,
    client: StripeClient,
    customer_id: str | None = None,
) -> str | None:
    """
    Confirm a client-supplied subscription id with the provider before it is
    bound to an application. It must exist, be open, and have been started for
    this plan (and this customer, when one is given). Free plans take none.
    """
    if plan.is_free or not subscription_id:
        return None
    try:
        sub = client.retrieve_subscription(subscription_id)
    except BillingNotFound:
        raise ValidationFailed("Assinatura de pagamento não encontrada. Inicie o pagamento novamente.") from None

    if str((sub.get("metadata") or {}).get("plan_id") or "") != str(plan.id):
        logger.warning("Subscription %s was not started for plan %s", subscription_id, plan.id)
        raise ValidationFailed("A assinatura informada não corresponde ao plano selecionado.")
    customer = sub.get("customer")
    if isinstance(customer, dict):
        customer = customer.get("id")
    if customer_id and customer != customer_id:
        raise ValidationFailed("A assinatura informada pertence a outro cliente.")
    if sub.get("status") in CLOSED_SUBSCRIPTION_STATUSES:
        raise ValidationFailed("A assinatura informada foi cancelada ou expirou. Inicie o pagamento novamente.")
    return subscription_id


PAYMENT_EVENTS = {
    "invoice.paid": PAYMENT_PAID,
    "invoice.payment_succeeded": PAYMENT_PAID,
    "invoice.payment_failed": PAYMENT_FAILED,
}


def handle_webhook_event(s: "Session", event: dict[str, Any]) -> str:
    """
    Apply a billing event. Returns a short outcome label for logging/response:
    "updated", "unknown_subscription" or "ignored".
    """
    event_type = event.get("type") or ""
    event_id = event.get("id")
    obj = ((event.get("data") or {}).get("object")) or {}

    if event_type in PAYMENT_EVENTS:
        subscription_id = obj.get("subscription")
        if not subscription_id:
            logger.info("Billing event %s (%s) has no subscription; ignored", event_id, event_type)
            return "ignored"
        application = update_payment_status_by_subscription(
            s, str(subscription_id), PAYMENT_EVENTS[event_type], event_id=event_id
        )
        return "updated" if application is not None else "unknown_subscription"

    if event_type in ("customer.subscription.updated", "customer.subscription.deleted"):
        subscription_id = obj.get("id")
        application = s.scalars(
            select(Application).where(Application.billing_subscription_id == subscription_id)
        ).one_or_none() if subscription_id else None
        if application is None:
            logger.warning("Billing event %s for unknown subscription %s dropped", event_id, subscription_id)
            return "unknown_subscription"
        status = "canceled" if event_type.endswith("deleted") else (obj.get("status") or None)
        application.user.subscription_status = status
        return "updated"

    logger.debug("Billing event %s (%s) ignored", event_id, event_type)
    return "ignored"
