from django.contrib import admin
from django.urls import include, path
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenRefreshView

from accounts.api import LoginView, MeView, RegisterView
from bookings.api import BookingViewSet
from payments.api import (
    PaymentIntentView,
    PaymentMethodDetailView,
    PaymentMethodListView,
    PaymentMethodSetupView,
    StripeWebhookView,
)
from properties.api import PropertyViewSet
from reports.api import CustomerListView, OverviewView
from subscriptions.api import SubscriptionCancelView, SubscriptionPlanListView, SubscriptionView

router = DefaultRouter()
router.register(r"properties", PropertyViewSet, basename="property")
router.register(r"bookings", BookingViewSet, basename="booking")

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/auth/register/", RegisterView.as_view(), name="auth-register"),
    path("api/auth/login/", LoginView.as_view(), name="auth-login"),
    path("api/auth/refresh/", TokenRefreshView.as_view(), name="auth-refresh"),
    path("api/auth/me/", MeView.as_view(), name="auth-me"),
    path("api/", include(router.urls)),
    path("api/payments/intents/", PaymentIntentView.as_view(), name="payment-intent"),
    path("api/payments/methods/", PaymentMethodListView.as_view(), name="payment-methods"),
    path(
        "api/payments/methods/setup/",
        PaymentMethodSetupView.as_view(),
        name="payment-method-setup",
    ),
    path(
        "api/payments/methods/<str:payment_method_id>/",
        PaymentMethodDetailView.as_view(),
        name="payment-method-detail",
    ),
    path("api/subscriptions/plans/", SubscriptionPlanListView.as_view(), name="subscription-plans"),
    path("api/subscriptions/", SubscriptionView.as_view(), name="subscription"),
    path(
        "api/subscriptions/cancel/",
        SubscriptionCancelView.as_view(),
        name="subscription-cancel",
    ),
    path("api/webhooks/stripe/", StripeWebhookView.as_view(), name="stripe-webhook"),
    path("api/reports/overview/", OverviewView.as_view(), name="reports-overview"),
    path("api/reports/customers/", CustomerListView.as_view(), name="reports-customers"),
]
