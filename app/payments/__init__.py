"""
Payments app: checkout, settlement and entitlements.

This app handles:
- Checkout against WalletA, WalletB and GlobalWallet
- Settlement of provider outcomes from webhooks, confirm calls and polling
- Refunds of settled intents
- Reconciliation of stuck intents and drifted owners
- Plan entitlements and metered usage

Related apps:
    - bookings: Booking is one of the two paid-for owners
    - core: base models, service results and exceptions

Usage:
    from payments.services import CheckoutService

    result = CheckoutService().initiate(
        owner=booking,
        purpose="booking_payment",
        amount_minor=50000,
        currency="PHP",
        provider="wallet_a",
    )
"""
