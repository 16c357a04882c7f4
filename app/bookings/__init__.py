"""
Bookings app.

Owns the Booking entity: a client's reservation of a provider's service.
Only the payment-facing surface lives here (authoritative price, payment
status and the payment-in-progress marker); scheduling, messaging and
work logs belong to other parts of the marketplace.
"""
