import json
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
import stripe
from django.core import mail
from rest_framework.test import APIClient

from accounts.models import User
from bookings.models import Booking, ReceiptNotification
from payments.models import Payment
from payments.services import webhooks
from properties.models import Property
from subscriptions.models import SubscriptionPlan, UserSubscription

PERIOD_START = 1893456000  # 2030-01-01
PERIOD_END = 1896134400  # 2030-02-01
RENEWED_END = 1898553600  # 2030-03-01


@pytest.fixture
def user(db):
    return User.objects.create_user(
        username="traveller@example.com",
        email="traveller@example.com",
        password="examplepass",
        first_name="Tess",
        last_name="Traveller",
        stripe_customer_id="cus_123",
    )


@pytest.fixture
def booking(user):
    listing = Property.objects.create(
        title="Riverside Villa",
        location="Siem Reap",
        host_name="Dara",
        price_per_night=Decimal("65.00"),
    )
    return Booking.objects.create(
        user=user,
        property=listing,
        check_in_date=date(2026, 11, 1),
        check_out_date=date(2026, 11, 3),
        num_guests=2,
        total_price=Decimal("150.00"),
        platform_revenue=Decimal("15.00"),
        stripe_payment_intent="pi_123",
    )


@pytest.fixture
def plan(db):
    return SubscriptionPlan.objects.create(name="Premium", stripe_price_id="price_premium", price=Decimal("9.99"))


@pytest.fixture
def verified(monkeypatch):
    monkeypatch.setattr(
        stripe.Webhook,
        "construct_event",
        staticmethod(lambda payload, sig_header, secret: json.loads(payload)),
    )


@pytest.fixture
def client():
    return APIClient()


def _post(client, event, signature="t=1,v1=valid"):
    extra = {"HTTP_STRIPE_SIGNATURE": signature} if signature else {}
    return client.post(
        "/api/webhooks/stripe/",
        data=json.dumps(event),
        content_type="application/json",
        **extra,
    )


def _event(event_type, obj):
    return {"id": "evt_1", "object": "event", "type": event_type, "data": {"object": obj}}


def _payment_succeeded(booking, *, metadata=None, **overrides):
    obj = {
        "id": "pi_123",
        "object": "payment_intent",
        "amount": 15000,
        "amount_received": 15000,
        "currency": "usd",
        "latest_charge": "ch_123",
        "metadata": metadata if metadata is not None else {"booking_id": str(booking.pk), "user_id": str(booking.user_id)},
    }
    obj.update(overrides)
    return _event("payment_intent.succeeded", obj)


def _subscription(status="active", cancel_at_period_end=False, current_period_end=PERIOD_END):
    return {
        "id": "sub_123",
        "object": "subscription",
        "customer": "cus_123",
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "current_period_start": PERIOD_START,
        "current_period_end": current_period_end,
        "items": {"data": [{"price": {"id": "price_premium"}}]},
    }


def test_payment_succeeded_confirms_booking_and_records_ledger(
    verified, client, booking, django_capture_on_commit_callbacks
):
    with django_capture_on_commit_callbacks(execute=True):
        response = _post(client, _payment_succeeded(booking))

    assert response.status_code == 200
    assert response.json() == {"received": True, "action": "applied"}
    booking.refresh_from_db()
    assert booking.status == Booking.CONFIRMED
    payment = Payment.objects.get()
    assert payment.stripe_charge_id == "ch_123"
    assert payment.amount == Decimal("150.00")
    assert payment.kind == Payment.KIND_BOOKING
    assert payment.booking == booking
    assert payment.user == booking.user

    assert len(mail.outbox) == 1
    message = mail.outbox[0]
    assert message.subject == "Booking Confirmed: Riverside Villa"
    assert message.to == ["traveller@example.com"]
    assert "Nights: 2 nights" in message.body
    assert "Total paid: $150.00" in message.body
    assert booking.receipt.status == ReceiptNotification.SENT


def test_duplicate_delivery_records_once_and_emails_once(
    verified, client, booking, django_capture_on_commit_callbacks
):
    event = _payment_succeeded(booking)
    with django_capture_on_commit_callbacks(execute=True):
        first = _post(client, event)
    with django_capture_on_commit_callbacks(execute=True):
        second = _post(client, event)

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["action"] == "duplicate"
    assert Payment.objects.count() == 1
    assert ReceiptNotification.objects.count() == 1
    assert len(mail.outbox) == 1


def test_charge_id_falls_back_to_payment_intent(verified, client, booking, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        response = _post(client, _payment_succeeded(booking, latest_charge=None))

    assert response.status_code == 200
    assert Payment.objects.get().stripe_charge_id == "pi_123"


def test_missing_booking_metadata_is_acknowledged_without_changes(verified, client, booking):
    response = _post(client, _payment_succeeded(booking, metadata={}))

    assert response.status_code == 200
    assert response.json()["action"] == "ignored"
    booking.refresh_from_db()
    assert booking.status == Booking.PENDING
    assert Payment.objects.count() == 0


def test_unknown_booking_is_acknowledged(verified, client, booking):
    response = _post(client, _payment_succeeded(booking, metadata={"booking_id": "987654"}))

    assert response.status_code == 200
    assert response.json()["action"] == "ignored"
    assert Payment.objects.count() == 0


def test_mismatched_user_metadata_is_not_applied(verified, client, booking):
    response = _post(client, _payment_succeeded(booking, metadata={"booking_id": str(booking.pk), "user_id": "999"}))

    assert response.json()["action"] == "ignored"
    booking.refresh_from_db()
    assert booking.status == Booking.PENDING


def test_owner_is_taken_from_booking_when_metadata_lacks_user(
    verified, client, booking, django_capture_on_commit_callbacks
):
    with django_capture_on_commit_callbacks(execute=True):
        response = _post(client, _payment_succeeded(booking, metadata={"booking_id": str(booking.pk)}))

    assert response.status_code == 200
    assert Payment.objects.get().user_id == booking.user_id


def test_payment_for_cancelled_booking_is_recorded_but_not_confirmed(verified, client, booking):
    Booking.objects.filter(pk=booking.pk).update(status=Booking.CANCELLED)

    response = _post(client, _payment_succeeded(booking))

    assert response.status_code == 200
    booking.refresh_from_db()
    assert booking.status == Booking.CANCELLED
    assert Payment.objects.filter(booking=booking).count() == 1
    assert ReceiptNotification.objects.count() == 0


def test_subscription_payment_intent_is_left_to_invoice_events(verified, client, booking):
    response = _post(client, _payment_succeeded(booking, invoice="in_123"))

    assert response.json()["action"] == "ignored"
    assert Payment.objects.count() == 0


def test_email_failure_does_not_fail_webhook(
    monkeypatch, verified, client, booking, django_capture_on_commit_callbacks
):
    def smtp_down(**kwargs):
        raise ConnectionRefusedError("smtp unavailable")

    monkeypatch.setattr("bookings.tasks.send_booking_receipt_email", smtp_down)

    with django_capture_on_commit_callbacks(execute=True):
        response = _post(client, _payment_succeeded(booking))

    assert response.status_code == 200
    booking.refresh_from_db()
    assert booking.status == Booking.CONFIRMED
    receipt = ReceiptNotification.objects.get(booking=booking)
    assert receipt.status == ReceiptNotification.FAILED
    assert receipt.attempts == 1
    assert "smtp unavailable" in receipt.last_error


def test_tampered_signature_is_rejected_without_touching_the_database(
    monkeypatch, client, booking, django_assert_num_queries
):
    def reject(payload, sig_header, secret):
        raise stripe.SignatureVerificationError("No signatures found matching the expected signature", sig_header)

    monkeypatch.setattr(stripe.Webhook, "construct_event", staticmethod(reject))

    with django_assert_num_queries(0):
        response = _post(client, _payment_succeeded(booking), signature="t=1,v1=forged")

    assert response.status_code == 400
    booking.refresh_from_db()
    assert booking.status == Booking.PENDING
    assert Payment.objects.count() == 0


def test_missing_signature_is_rejected(verified, client, booking):
    response = _post(client, _payment_succeeded(booking), signature=None)

    assert response.status_code == 400


def test_unconfigured_secret_is_rejected(settings, verified, client, booking):
    settings.STRIPE_WEBHOOK_SECRET = ""

    response = _post(client, _payment_succeeded(booking))

    assert response.status_code == 400


def test_unhandled_event_type_is_acknowledged(verified, client, db):
    response = _post(client, _event("customer.created", {"id": "cus_123"}))

    assert response.status_code == 200
    assert response.json()["action"] == "ignored"


def test_unexpected_handler_failure_returns_server_error(monkeypatch, verified, client, db):
    def explode(event):
        raise RuntimeError("boom")

    monkeypatch.setitem(webhooks._HANDLERS, webhooks.UnhandledEvent, explode)

    response = _post(client, _event("customer.created", {"id": "cus_123"}))

    assert response.status_code == 500


def test_subscription_lifecycle(verified, client, user, plan):
    response = _post(client, _event("customer.subscription.created", _subscription()))
    assert response.status_code == 200
    subscription = UserSubscription.objects.get(stripe_subscription_id="sub_123")
    assert subscription.status == UserSubscription.ACTIVE
    assert subscription.plan == plan
    assert subscription.user == user
    assert subscription.end_date == datetime(2030, 2, 1, tzinfo=timezone.utc)

    _post(client, _event("customer.subscription.updated", _subscription(cancel_at_period_end=True)))
    subscription.refresh_from_db()
    assert subscription.status == UserSubscription.CANCELLING
    assert subscription.is_entitled

    _post(client, _event("customer.subscription.deleted", _subscription(status="canceled")))
    subscription.refresh_from_db()
    assert subscription.status == UserSubscription.INACTIVE
    assert subscription.is_entitled is False


def test_activation_deactivates_previous_subscriptions(verified, client, user, plan):
    old = UserSubscription.objects.create(user=user, plan=plan, stripe_subscription_id="sub_old")

    _post(client, _event("customer.subscription.updated", _subscription()))

    old.refresh_from_db()
    assert old.status == UserSubscription.INACTIVE
    assert UserSubscription.objects.filter(user=user, status=UserSubscription.ACTIVE).count() == 1


def test_item_level_period_is_used_when_subscription_has_none(verified, client, user, plan):
    obj = _subscription(current_period_end=None)
    obj.pop("current_period_start")
    obj["items"]["data"][0].update(current_period_start=PERIOD_START, current_period_end=PERIOD_END)

    _post(client, _event("customer.subscription.created", obj))

    subscription = UserSubscription.objects.get(stripe_subscription_id="sub_123")
    assert subscription.end_date == datetime(2030, 2, 1, tzinfo=timezone.utc)


def test_cancellation_for_unknown_subscription_is_acknowledged(verified, client, user, plan):
    response = _post(client, _event("customer.subscription.updated", _subscription(cancel_at_period_end=True)))

    assert response.status_code == 200
    assert response.json()["action"] == "ignored"
    assert UserSubscription.objects.count() == 0


def test_subscription_for_unknown_customer_is_acknowledged(verified, client, plan):
    response = _post(client, _event("customer.subscription.created", _subscription()))

    assert response.status_code == 200
    assert response.json()["action"] == "ignored"
    assert UserSubscription.objects.count() == 0


def test_invoice_paid_records_subscription_payment_and_renewal(verified, client, user, plan):
    subscription = UserSubscription.objects.create(
        user=user,
        plan=plan,
        stripe_subscription_id="sub_123",
        end_date=datetime(2030, 2, 1, tzinfo=timezone.utc),
    )
    invoice = {
        "id": "in_123",
        "object": "invoice",
        "customer": "cus_123",
        "charge": "ch_inv",
        "subscription": "sub_123",
        "billing_reason": "subscription_cycle",
        "amount_paid": 999,
        "currency": "usd",
        "lines": {"data": [{"period": {"start": PERIOD_END, "end": RENEWED_END}}]},
    }

    response = _post(client, _event("invoice.paid", invoice))
    _post(client, _event("invoice.paid", invoice))

    assert response.status_code == 200
    payment = Payment.objects.get()
    assert payment.kind == Payment.KIND_SUBSCRIPTION
    assert payment.amount == Decimal("9.99")
    assert payment.subscription == subscription
    assert payment.booking is None
    subscription.refresh_from_db()
    assert subscription.end_date == datetime(2030, 3, 1, tzinfo=timezone.utc)


def test_invoice_without_charge_uses_invoice_id(verified, client, user, plan):
    invoice = {
        "id": "in_456",
        "object": "invoice",
        "customer": "cus_123",
        "billing_reason": "subscription_create",
        "amount_paid": 999,
        "currency": "usd",
        "parent": {"subscription_details": {"subscription": "sub_123"}},
    }

    _post(client, _event("invoice.paid", invoice))

    assert Payment.objects.get().stripe_charge_id == "in_456"


def test_invoice_payment_failed_deactivates_subscription(verified, client, user, plan):
    subscription = UserSubscription.objects.create(user=user, plan=plan, stripe_subscription_id="sub_123")

    response = _post(
        client,
        _event("invoice.payment_failed", {"id": "in_789", "object": "invoice", "subscription": "sub_123"}),
    )

    assert response.status_code == 200
    subscription.refresh_from_db()
    assert subscription.status == UserSubscription.INACTIVE


def test_parse_event_maps_types_to_variants():
    assert isinstance(webhooks.parse_event({"type": "charge.refunded"}), webhooks.UnhandledEvent)
    parsed = webhooks.parse_event(_event("customer.subscription.deleted", {"id": "sub_1"}))
    assert parsed == webhooks.SubscriptionDeleted(type="customer.subscription.deleted", subscription_id="sub_1")


def test_second_charge_for_confirmed_booking_is_still_recorded(
    verified, client, booking, django_capture_on_commit_callbacks
):
    with django_capture_on_commit_callbacks(execute=True):
        _post(client, _payment_succeeded(booking))
    with django_capture_on_commit_callbacks(execute=True):
        response = _post(client, _payment_succeeded(booking, id="pi_456", latest_charge="ch_456"))

    assert response.json()["action"] == "applied"
    assert sorted(Payment.objects.values_list("stripe_charge_id", flat=True)) == ["ch_123", "ch_456"]
    assert ReceiptNotification.objects.count() == 1
    assert len(mail.outbox) == 1


def test_invoice_paid_before_subscription_created_is_linked_later(verified, client, user, plan):
    invoice = {
        "id": "in_first",
        "object": "invoice",
        "customer": "cus_123",
        "charge": "ch_first",
        "subscription": "sub_123",
        "billing_reason": "subscription_create",
        "amount_paid": 999,
        "currency": "usd",
    }

    _post(client, _event("invoice.paid", invoice))
    assert Payment.objects.get().subscription is None

    _post(client, _event("customer.subscription.created", _subscription()))

    payment = Payment.objects.get()
    assert payment.subscription == UserSubscription.objects.get(stripe_subscription_id="sub_123")
    assert payment.stripe_subscription_id == "sub_123"
