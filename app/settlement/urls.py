"""
URL configuration for the settlement API.

Mounted at /api/v1/settlement/ by config.urls.
"""

from django.urls import path

from settlement import views
from settlement.webhooks.views import stripe_webhook

app_name = "settlement"

urlpatterns = [
    # Orders
    path("orders/", views.OrderAuthorizeView.as_view(), name="order-authorize"),
    path("orders/confirm/", views.OrderConfirmView.as_view(), name="order-confirm"),
    path("orders/<uuid:order_id>/", views.OrderDetailView.as_view(), name="order-detail"),
    path(
        "orders/<uuid:order_id>/cancel/",
        views.OrderCancelView.as_view(),
        name="order-cancel",
    ),
    path(
        "orders/<uuid:order_id>/refund-quote/",
        views.RefundQuoteView.as_view(),
        name="order-refund-quote",
    ),
    path(
        "orders/<uuid:order_id>/refund/",
        views.RefundView.as_view(),
        name="order-refund",
    ),
    # Completion
    path(
        "bookings/<uuid:booking_id>/completion/",
        views.CompletionIssueView.as_view(),
        name="completion-issue",
    ),
    path(
        "completions/<uuid:completion_id>/regenerate/",
        views.CompletionRegenerateView.as_view(),
        name="completion-regenerate",
    ),
    path(
        "completions/<uuid:completion_id>/verify/",
        views.CompletionVerifyView.as_view(),
        name="completion-verify",
    ),
    # Earnings
    path("earnings/", views.EarningsView.as_view(), name="earnings"),
    path("payouts/", views.PayoutListCreateView.as_view(), name="payouts"),
    # Webhooks
    path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
]
