from types import SimpleNamespace

import pytest
import stripe
from django.db import DatabaseError
from django.db.models.query import QuerySet

from accounts.models import User
from payments.services.customers import resolve_customer


@pytest.fixture
def user(db):
    return User.objects.create_user(
        username="traveller@example.com",
        email="traveller@example.com",
        password="examplepass",
        first_name="Tess",
        last_name="Traveller",
    )


@pytest.fixture
def fake_stripe(monkeypatch):
    calls = {"create": [], "retrieve": []}

    def fake_create(**kwargs):
        calls["create"].append(kwargs)
        return SimpleNamespace(id=f"cus_new_{len(calls['create'])}")

    def fake_retrieve(customer_id):
        calls["retrieve"].append(customer_id)
        return SimpleNamespace(id=customer_id, deleted=False)

    monkeypatch.setattr(stripe.Customer, "create", staticmethod(fake_create))
    monkeypatch.setattr(stripe.Customer, "retrieve", staticmethod(fake_retrieve))
    return calls


def test_first_resolution_creates_and_stores_customer(fake_stripe, user):
    resolution = resolve_customer(user)

    assert resolution.customer_id == "cus_new_1"
    assert resolution.created is True
    assert resolution.persisted is True
    assert resolution.warning is None
    user.refresh_from_db()
    assert user.stripe_customer_id == "cus_new_1"
    kwargs = fake_stripe["create"][0]
    assert kwargs["email"] == "traveller@example.com"
    assert kwargs["name"] == "Tess Traveller"
    assert kwargs["metadata"] == {"user_id": str(user.pk)}


def test_cached_customer_is_reused_without_creation(fake_stripe, user):
    resolve_customer(user)
    user.refresh_from_db()

    resolution = resolve_customer(user)

    assert resolution.customer_id == "cus_new_1"
    assert resolution.created is False
    assert len(fake_stripe["create"]) == 1
    assert fake_stripe["retrieve"] == ["cus_new_1"]


def test_missing_customer_is_recreated(monkeypatch, fake_stripe, user):
    user.stripe_customer_id = "cus_gone"
    user.save(update_fields=["stripe_customer_id"])

    def missing(customer_id):
        raise stripe.InvalidRequestError(
            f"No such customer: '{customer_id}'", "id", code="resource_missing"
        )

    monkeypatch.setattr(stripe.Customer, "retrieve", staticmethod(missing))

    resolution = resolve_customer(user)

    assert resolution.created is True
    user.refresh_from_db()
    assert user.stripe_customer_id == resolution.customer_id != "cus_gone"


def test_deleted_customer_is_recreated(monkeypatch, fake_stripe, user):
    user.stripe_customer_id = "cus_deleted"
    user.save(update_fields=["stripe_customer_id"])
    monkeypatch.setattr(
        stripe.Customer,
        "retrieve",
        staticmethod(lambda customer_id: SimpleNamespace(id=customer_id, deleted=True)),
    )

    resolution = resolve_customer(user)

    assert resolution.created is True
    assert resolution.customer_id == "cus_new_1"


def test_other_lookup_errors_propagate(monkeypatch, fake_stripe, user):
    user.stripe_customer_id = "cus_cached"
    user.save(update_fields=["stripe_customer_id"])

    def unavailable(customer_id):
        raise stripe.APIConnectionError("Stripe is unreachable")

    monkeypatch.setattr(stripe.Customer, "retrieve", staticmethod(unavailable))

    with pytest.raises(stripe.APIConnectionError):
        resolve_customer(user)
    assert fake_stripe["create"] == []
    user.refresh_from_db()
    assert user.stripe_customer_id == "cus_cached"


def test_persistence_failure_still_returns_new_customer(monkeypatch, fake_stripe, user):
    def broken_update(self, **kwargs):
        raise DatabaseError("database is locked")

    monkeypatch.setattr(QuerySet, "update", broken_update)

    resolution = resolve_customer(user)

    assert resolution.customer_id == "cus_new_1"
    assert resolution.persisted is False
    assert "cus_new_1" in resolution.warning


def test_missing_secret_key_is_a_configuration_error(settings, fake_stripe, user):
    settings.STRIPE_SECRET_KEY = ""

    with pytest.raises(RuntimeError):
        resolve_customer(user)
