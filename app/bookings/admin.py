from django.contrib import admin

from bookings.models import Booking


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ["id", "client", "title", "price_minor", "currency", "status", "payment_status"]
    list_filter = ["status", "payment_status"]
    search_fields = ["id", "title", "client__email"]
    # Payment fields are owned by the payments app
    readonly_fields = ["payment_status", "payment_intent_in_progress", "paid_at", "version"]
