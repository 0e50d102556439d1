"""
URL configuration for the settlement service.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/                  - JWT token endpoints
        token/                     - Obtain access/refresh pair
        token/refresh/             - Refresh access token
    /api/v1/settlement/            - Settlement endpoints
        orders/                    - Authorize an order (POST)
        orders/confirm/            - Confirm capture and create booking (POST)
        orders/{id}/               - Order status (GET)
        orders/{id}/cancel/        - Cancel a pending order (POST)
        orders/{id}/refund-quote/  - Refund breakdown for now (GET)
        orders/{id}/refund/        - Cancel booking and refund (POST)
        bookings/{id}/completion/  - Issue completion code (POST)
        completions/{id}/regenerate/ - Issue a fresh code (POST)
        completions/{id}/verify/   - Verify code and release funds (POST)
        earnings/                  - Ledger balances (GET)
        payouts/                   - List / request payouts (GET, POST)
        webhooks/stripe/           - Stripe webhook endpoint (POST)
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from core.views import health_check

api_v1_patterns = [
    path("auth/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("settlement/", include("settlement.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

admin.site.site_header = "Settlement Admin"
admin.site.site_title = "Settlement Admin"
admin.site.index_title = "Payments, bookings and payouts"
