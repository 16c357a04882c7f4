"""
Webhook endpoint views.

The views only adapt Django's HttpRequest to WebhookIngestor.handle(): the
raw body is read before any parsing, because signatures are computed over
the exact bytes the provider sent.

Usage:
    # In urls.py
    from payments.webhooks.views import provider_webhook

    urlpatterns = [
        path("webhooks/<str:provider>/", provider_webhook, name="provider_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from core.helpers import get_client_ip
from payments.webhooks.ingestor import WebhookIngestor

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def provider_webhook(request: HttpRequest, provider: str) -> HttpResponse:
    """
    Receive a provider webhook.

    Security:
    - Signature verification happens before the payload is parsed
    - CSRF exemption required for external webhooks
    - Only POST requests accepted

    Returns:
        HttpResponse with status:
        - 200: Event accepted (applied, ignored, unmatched or duplicate)
        - 400: Body is not a usable payload
        - 401: Signature verification failed
        - 404: Unknown provider
    """
    payload = request.body
    result = WebhookIngestor().handle(provider, payload, request.headers)

    logger.info(
        f"Webhook handled: {result.detail}",
        extra={
            "provider": provider,
            "status_code": result.status_code,
            "client_ip": get_client_ip(request),
        },
    )

    if result.is_json:
        return JsonResponse(result.body, status=result.status_code)
    return HttpResponse(result.body, status=result.status_code, content_type="text/plain")
