"""
Webhook handling for provider payment events.

Deliveries are verified against the provider's signature scheme,
normalized, deduplicated on (provider, event id) and handed to the
settlement engine synchronously.

Usage:
    # In urls.py
    from payments.webhooks.views import provider_webhook

    urlpatterns = [
        path("webhooks/<str:provider>/", provider_webhook, name="provider_webhook"),
    ]
"""

from payments.webhooks.ingestor import IngestResult, WebhookIngestor
from payments.webhooks.parsers import WebhookNotification, parse_notifications
from payments.webhooks.signatures import SignatureVerifier, get_verifier

__all__ = [
    "IngestResult",
    "SignatureVerifier",
    "WebhookIngestor",
    "WebhookNotification",
    "get_verifier",
    "parse_notifications",
]
