from __future__ import annotations

import logging
from typing import Dict, List

import stripe
from rest_framework.exceptions import NotFound, PermissionDenied

from ..exceptions import PaymentProcessorError
from .customers import resolve_customer
from .processor import configure_stripe, is_missing_resource

logger = logging.getLogger(__name__)


def _card_summary(method) -> Dict:
    card = getattr(method, "card", None)
    return {
        "id": method.id,
        "brand": getattr(card, "brand", ""),
        "last4": getattr(card, "last4", ""),
        "exp_month": getattr(card, "exp_month", None),
        "exp_year": getattr(card, "exp_year", None),
    }


def list_saved_cards(user) -> List[Dict]:
    if not user.stripe_customer_id:
        return []
    configure_stripe()
    try:
        methods = stripe.PaymentMethod.list(customer=user.stripe_customer_id, type="card")
    except stripe.InvalidRequestError as exc:
        if is_missing_resource(exc):
            logger.warning("Stripe customer %s for user %s no longer exists.", user.stripe_customer_id, user.pk)
            return []
        raise
    return [_card_summary(method) for method in methods.data]


def create_setup_intent(user) -> Dict:
    """Start saving a card for later off-session charges."""
    try:
        resolution = resolve_customer(user)
        intent = stripe.SetupIntent.create(
            customer=resolution.customer_id,
            payment_method_types=["card"],
            usage="off_session",
        )
    except stripe.StripeError as exc:
        logger.exception("Could not create setup intent for user %s: %s", user.pk, exc)
        raise PaymentProcessorError() from exc
    payload = {
        "client_secret": intent.client_secret,
        "setup_intent_id": intent.id,
        "customer_id": resolution.customer_id,
    }
    if resolution.warning:
        payload["warnings"] = [resolution.warning]
    return payload


def detach_saved_card(user, payment_method_id: str) -> None:
    if not user.stripe_customer_id:
        raise PermissionDenied("This payment method does not belong to you.")
    configure_stripe()
    try:
        method = stripe.PaymentMethod.retrieve(payment_method_id)
    except stripe.InvalidRequestError as exc:
        if is_missing_resource(exc):
            raise NotFound("Payment method not found.")
        raise

    owner = getattr(method, "customer", None)
    if isinstance(owner, str):
        owner_id = owner
    else:
        owner_id = getattr(owner, "id", None)
    if owner_id != user.stripe_customer_id:
        logger.warning("User %s tried to detach payment method %s owned by %s", user.pk, payment_method_id, owner_id)
        raise PermissionDenied("This payment method does not belong to you.")

    try:
        stripe.PaymentMethod.detach(payment_method_id)
    except stripe.StripeError as exc:
        logger.exception("Failed to detach payment method %s: %s", payment_method_id, exc)
        raise PaymentProcessorError() from exc
    logger.info("Detached payment method %s for user %s", payment_method_id, user.pk)
