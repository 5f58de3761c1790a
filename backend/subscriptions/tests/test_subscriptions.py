from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe
from django.utils import timezone as django_timezone
from rest_framework.test import APIClient

from accounts.models import User
from subscriptions.models import SubscriptionPlan, UserSubscription

PERIOD_START = 1893456000  # 2030-01-01
PERIOD_END = 1896134400  # 2030-02-01


@pytest.fixture
def user(db):
    return User.objects.create_user(
        username="member@example.com",
        email="member@example.com",
        password="examplepass",
        stripe_customer_id="cus_123",
    )


@pytest.fixture
def plan(db):
    return SubscriptionPlan.objects.create(name="Premium", stripe_price_id="price_premium", price=Decimal("9.99"))


@pytest.fixture
def auth_client(user):
    client = APIClient()
    client.force_authenticate(user)
    return client


@pytest.fixture
def known_customer(monkeypatch):
    monkeypatch.setattr(
        stripe.Customer,
        "retrieve",
        staticmethod(lambda customer_id: SimpleNamespace(id=customer_id, deleted=False)),
    )


def test_plans_are_public(plan):
    SubscriptionPlan.objects.create(name="Legacy", stripe_price_id="price_legacy", price=Decimal("4.99"), is_active=False)

    response = APIClient().get("/api/subscriptions/plans/")

    assert response.status_code == 200
    assert [item["name"] for item in response.json()] == ["Premium"]


def test_status_without_subscription(auth_client):
    response = auth_client.get("/api/subscriptions/")

    assert response.status_code == 200
    assert response.json() == {"is_premium": False, "status": "inactive", "plan": None, "end_date": None}


def test_cancelling_subscription_keeps_premium_until_end_date(auth_client, user, plan):
    UserSubscription.objects.create(
        user=user,
        plan=plan,
        stripe_subscription_id="sub_123",
        status=UserSubscription.CANCELLING,
        start_date=django_timezone.now() - timedelta(days=20),
        end_date=django_timezone.now() + timedelta(days=10),
    )

    body = auth_client.get("/api/subscriptions/").json()

    assert body["is_premium"] is True
    assert body["status"] == "cancelling"
    assert body["plan"] == "Premium"


def test_lapsed_cancelling_subscription_is_not_premium(user, plan):
    subscription = UserSubscription.objects.create(
        user=user,
        plan=plan,
        stripe_subscription_id="sub_123",
        status=UserSubscription.CANCELLING,
        end_date=django_timezone.now() - timedelta(days=1),
    )

    assert subscription.is_entitled is False


def test_create_subscription_returns_client_secret(monkeypatch, known_customer, auth_client, plan):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return {
            "id": "sub_new",
            "status": "incomplete",
            "latest_invoice": {"id": "in_1", "confirmation_secret": {"client_secret": "in_1_secret"}},
        }

    monkeypatch.setattr(stripe.Subscription, "list", staticmethod(lambda **kwargs: SimpleNamespace(data=[])))
    monkeypatch.setattr(stripe.Subscription, "create", staticmethod(fake_create))

    response = auth_client.post("/api/subscriptions/", {"plan_id": plan.pk}, format="json")

    assert response.status_code == 201
    assert response.json() == {"subscription_id": "sub_new", "status": "incomplete", "client_secret": "in_1_secret"}
    assert captured["customer"] == "cus_123"
    assert captured["items"] == [{"price": "price_premium"}]
    # The local row is created by the subscription webhook.
    assert UserSubscription.objects.count() == 0


def test_existing_stripe_subscription_blocks_and_heals_local_record(monkeypatch, known_customer, auth_client, user, plan):
    remote = {
        "id": "sub_live",
        "cancel_at_period_end": False,
        "items": {
            "data": [
                {
                    "price": {"id": "price_premium"},
                    "current_period_start": PERIOD_START,
                    "current_period_end": PERIOD_END,
                }
            ]
        },
    }
    created = []
    monkeypatch.setattr(stripe.Subscription, "list", staticmethod(lambda **kwargs: SimpleNamespace(data=[remote])))
    monkeypatch.setattr(stripe.Subscription, "create", staticmethod(lambda **kwargs: created.append(kwargs)))

    response = auth_client.post("/api/subscriptions/", {"plan_id": plan.pk}, format="json")

    assert response.status_code == 409
    assert created == []
    healed = UserSubscription.objects.get(stripe_subscription_id="sub_live")
    assert healed.user == user
    assert healed.status == UserSubscription.ACTIVE
    assert healed.end_date == datetime(2030, 2, 1, tzinfo=timezone.utc)


def test_cancel_at_period_end(monkeypatch, auth_client, user, plan):
    subscription = UserSubscription.objects.create(user=user, plan=plan, stripe_subscription_id="sub_123")
    captured = {}

    def fake_modify(subscription_id, **kwargs):
        captured["id"] = subscription_id
        captured.update(kwargs)
        return {"id": subscription_id, "cancel_at_period_end": True, "current_period_end": PERIOD_END}

    monkeypatch.setattr(stripe.Subscription, "modify", staticmethod(fake_modify))

    response = auth_client.post("/api/subscriptions/cancel/")

    assert response.status_code == 200
    assert response.json()["status"] == "cancelling"
    assert response.json()["is_premium"] is True
    assert captured == {"id": "sub_123", "cancel_at_period_end": True}
    subscription.refresh_from_db()
    assert subscription.status == UserSubscription.CANCELLING
    assert subscription.end_date == datetime(2030, 2, 1, tzinfo=timezone.utc)


def test_cancel_without_active_subscription(auth_client):
    response = auth_client.post("/api/subscriptions/cancel/")

    assert response.status_code == 404
