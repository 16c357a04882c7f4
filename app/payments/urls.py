"""
URL configuration for the payments app.

Routes:
    - POST checkout/ - Start a checkout
    - GET intents/<id>/ - Intent status
    - POST intents/<id>/confirm/ - Synchronous confirm/capture
    - POST intents/<id>/refund/ - Refund (staff)
    - POST intents/<id>/reject/ - Reject (staff)
    - GET entitlements/<subscription_id>/<feature_key>/ - Access check
    - POST webhooks/<provider>/ - Provider webhook endpoint

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.
"""

from django.urls import path

from payments import views
from payments.webhooks.views import provider_webhook

app_name = "payments"

urlpatterns = [
    path("checkout/", views.CheckoutView.as_view(), name="checkout"),
    path("intents/<uuid:intent_id>/", views.PaymentIntentDetailView.as_view(), name="intent_detail"),
    path("intents/<uuid:intent_id>/confirm/", views.ConfirmPaymentView.as_view(), name="intent_confirm"),
    path("intents/<uuid:intent_id>/refund/", views.RefundPaymentView.as_view(), name="intent_refund"),
    path("intents/<uuid:intent_id>/reject/", views.RejectPaymentView.as_view(), name="intent_reject"),
    path(
        "entitlements/<uuid:subscription_id>/<str:feature_key>/",
        views.EntitlementCheckView.as_view(),
        name="entitlement_check",
    ),
    # Webhook endpoints
    path("webhooks/<str:provider>/", provider_webhook, name="provider_webhook"),
]
