# Shared Common Library for the Maintenance Platform
# This package contains model mixins, inter-service clients and metrics
# used by the platform's Django services.

__version__ = "1.0.0"

from .mixins import (
    ImmutableRecordError,
    UUIDPrimaryKeyMixin,
    TimestampMixin,
    OrganizationMixin,
    ActiveMixin,
    AppendOnlyMixin,
)

__all__ = [
    # Version
    '__version__',

    # Mixins
    'ImmutableRecordError',
    'UUIDPrimaryKeyMixin',
    'TimestampMixin',
    'OrganizationMixin',
    'ActiveMixin',
    'AppendOnlyMixin',
]
