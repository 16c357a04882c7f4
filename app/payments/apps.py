"""
Payments app configuration.

This app provides the payment core:
- Payment intents and their state machine
- Provider adapters (WalletA, WalletB, GlobalWallet)
- Webhook ingestion and reconciliation
- Subscription entitlements
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
