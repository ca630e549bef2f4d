"""
Reusable Model Mixins
"""

import uuid
from django.db import models


class ImmutableRecordError(Exception):
    """Raised when an append-only record is updated or deleted."""
    pass


# =============================================================================
# MODEL MIXINS
# =============================================================================

class UUIDPrimaryKeyMixin(models.Model):
    """
    Mixin that provides UUID as primary key instead of auto-increment integer.

    The key is assigned on instantiation, so unsaved instances are already
    addressable (the in-memory store relies on this).
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record"
    )

    class Meta:
        abstract = True


class TimestampMixin(models.Model):
    """
    Mixin that provides created_at and updated_at timestamp fields.
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="When this record was created"
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When this record was last updated"
    )

    class Meta:
        abstract = True


class OrganizationMixin(models.Model):
    """
    Mixin for multi-tenant models that belong to an organization.
    """

    organization_id = models.UUIDField(
        db_index=True,
        help_text="Organization this record belongs to"
    )

    class Meta:
        abstract = True


class ActiveMixin(models.Model):
    """
    Mixin for models that can be activated/deactivated.
    """

    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether this record is active"
    )

    class Meta:
        abstract = True


class AppendOnlyMixin(models.Model):
    """
    Mixin for audit-style tables: rows may be inserted, never updated or deleted.

    Subclasses may point ``append_only_error`` at a domain exception.
    """

    append_only_error = ImmutableRecordError

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise self.append_only_error(
                f"{self.__class__.__name__} {self.pk} is append-only"
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise self.append_only_error(
            f"{self.__class__.__name__} {self.pk} is append-only"
        )
