"""
Persistence port for the PM engine.
"""

from .base import MaintenanceStore
from .django_store import DjangoMaintenanceStore
from .memory import InMemoryMaintenanceStore

__all__ = [
    'MaintenanceStore',
    'DjangoMaintenanceStore',
    'InMemoryMaintenanceStore',
]
