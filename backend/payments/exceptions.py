"""
Error taxonomy for checkout and Stripe reconciliation.

The APIException subclasses are raised by the services and rendered by DRF's
exception handler; ReconciliationWarning never reaches a client.
"""
from rest_framework import status
from rest_framework.exceptions import APIException


class InvalidRequest(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid request."
    default_code = "invalid_request"


class BookingPersistError(APIException):
    """The booking could not be stored; nothing was charged, so retrying is safe."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "We couldn't save your booking. Please try again."
    default_code = "booking_persist_error"


class PaymentDeclined(APIException):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = "Your card was declined."
    default_code = "payment_declined"


class PaymentProcessorError(APIException):
    """Stripe failed for a reason other than a decline. Check booking/ledger state before retrying."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Payment could not be processed right now. Please try again later."
    default_code = "payment_processor_error"


class PaymentInProgress(APIException):
    """Stripe may still settle the booking's current payment intent."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = "A payment for this booking is already being processed."
    default_code = "payment_in_progress"


class WebhookAuthError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Webhook signature missing or invalid."
    default_code = "webhook_auth_error"


class ReconciliationWarning(Exception):
    """A recognised webhook event lacks the linkage needed to apply it."""


class SubscriptionConflict(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "You already have an active subscription."
    default_code = "subscription_conflict"
