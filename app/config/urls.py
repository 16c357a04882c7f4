"""
Root URL configuration.

URL Structure:
    /                                   - ReDoc API documentation
    /schema/                            - OpenAPI schema
    /admin/                             - Django admin (payment review queue)
    /health/                            - Health check endpoint
    /api/v1/payments/                   - Payment endpoints
        checkout/                       - Start a checkout (POST)
        intents/{id}/                   - Payment intent status (GET)
        intents/{id}/confirm/           - Synchronous confirm/capture (POST)
        intents/{id}/refund/            - Refund a settled intent (POST, staff)
        intents/{id}/reject/            - Administrative rejection (POST, staff)
        entitlements/{sub}/{feature}/   - Feature access check (GET)
        webhooks/{provider}/            - Provider webhooks (POST, signed)
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

api_v1_patterns = [
    path("payments/", include("payments.urls")),
]

urlpatterns = [
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    path("admin/", admin.site.urls),
    path("health/", health_check, name="health_check"),
    path("api/v1/", include(api_v1_patterns)),
]

admin.site.site_header = "Payments Admin"
admin.site.site_title = "Payments Admin"
admin.site.index_title = "Payment operations"
