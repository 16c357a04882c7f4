"""
Reusable model mixins.

Mixins:
    UUIDPrimaryKeyMixin: UUID as primary key
    VersionedMixin: Optimistic-lock version counter

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin

    class Subscription(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
        ...

Note:
    Always list mixins before BaseModel in inheritance.
"""

from __future__ import annotations

import uuid

from django.db import models
from django.db.models import F


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    Payment identifiers are handed to external providers and end up in
    redirect URLs, so they must not be guessable or reveal record counts.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class VersionedMixin(models.Model):
    """
    Version counter for optimistic concurrency control.

    Every save() on an existing row increments ``version`` atomically in
    the database. Conditional updates (see payments.locks.compare_and_swap)
    filter on the version the caller read, so a concurrent writer that got
    there first makes the update match zero rows instead of silently
    overwriting.

    Fields:
        version: Incremented on each save/conditional update
    """

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        is_update = self.pk is not None and not self._state.adding
        if is_update and not kwargs.get("force_insert", False):
            self.version = F("version") + 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None and "version" not in update_fields:
                kwargs["update_fields"] = [*update_fields, "version"]
            super().save(*args, **kwargs)
            self.refresh_from_db(fields=["version"])
            return
        super().save(*args, **kwargs)
