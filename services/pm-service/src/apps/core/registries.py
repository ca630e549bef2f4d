"""
External Collaborator Ports

Read-only views of the asset registry, the telemetry feed and the role
directory, with static implementations for tests and local runs and
implementations backed by the inter-service HTTP clients.
"""

import uuid
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple

from django.db import models

from shared.common.clients import ServiceClientFactory
from apps.core.exceptions import AssetNotFoundError

logger = logging.getLogger(__name__)


class AssetCriticality(models.TextChoices):
    LOW = 'LOW', 'Low'
    MEDIUM = 'MEDIUM', 'Medium'
    HIGH = 'HIGH', 'High'
    IMPORTANT = 'IMPORTANT', 'Important'


class Role(models.TextChoices):
    TECHNICIAN = 'TECHNICIAN', 'Technician'
    MANAGER = 'MANAGER', 'Manager'
    ADMIN = 'ADMIN', 'Admin'


@dataclass(frozen=True)
class AssetInfo:
    id: uuid.UUID
    criticality: str
    organization_id: uuid.UUID
    name: str = ''


# =============================================================================
# PORTS
# =============================================================================

class AssetRegistry(ABC):

    @abstractmethod
    def get_asset(self, asset_id: uuid.UUID) -> AssetInfo:
        """Raises AssetNotFoundError for unknown assets."""


class TelemetryFeed(ABC):

    @abstractmethod
    def current_value(self, asset_id: uuid.UUID, sensor_field: str) -> Optional[Decimal]:
        """Latest sensor value, or None when nothing is available."""


class RoleDirectory(ABC):

    @abstractmethod
    def users_with_role(self, organization_id: uuid.UUID, role: str) -> List[uuid.UUID]: ...


# =============================================================================
# STATIC IMPLEMENTATIONS
# =============================================================================

class StaticAssetRegistry(AssetRegistry):

    def __init__(self, assets: List[AssetInfo] = None):
        self._assets: Dict[uuid.UUID, AssetInfo] = {}
        for asset in assets or []:
            self.add(asset)

    def add(self, asset: AssetInfo) -> AssetInfo:
        self._assets[asset.id] = asset
        return asset

    def get_asset(self, asset_id):
        try:
            return self._assets[asset_id]
        except KeyError:
            raise AssetNotFoundError(f"Asset {asset_id} not found")


class StaticTelemetryFeed(TelemetryFeed):

    def __init__(self):
        self._values: Dict[Tuple[uuid.UUID, str], Decimal] = {}

    def set_value(self, asset_id: uuid.UUID, sensor_field: str, value) -> None:
        self._values[(asset_id, sensor_field)] = Decimal(str(value))

    def clear(self, asset_id: uuid.UUID, sensor_field: str) -> None:
        self._values.pop((asset_id, sensor_field), None)

    def current_value(self, asset_id, sensor_field):
        return self._values.get((asset_id, sensor_field))


class StaticRoleDirectory(RoleDirectory):

    def __init__(self):
        self._members: Dict[Tuple[uuid.UUID, str], List[uuid.UUID]] = {}

    def add_member(self, organization_id: uuid.UUID, user_id: uuid.UUID, role: str) -> None:
        members = self._members.setdefault((organization_id, role), [])
        if user_id not in members:
            members.append(user_id)

    def users_with_role(self, organization_id, role):
        return list(self._members.get((organization_id, role), []))


# =============================================================================
# SERVICE CLIENT IMPLEMENTATIONS
# =============================================================================

class ServiceAssetRegistry(AssetRegistry):
    """Asset registry backed by the asset service."""

    def __init__(self, client=None):
        self.client = client or ServiceClientFactory.get_client('asset')

    def get_asset(self, asset_id):
        data = self.client.get_asset(str(asset_id))
        if data is None:
            raise AssetNotFoundError(f"Asset {asset_id} not found")
        return AssetInfo(
            id=uuid.UUID(str(data['id'])),
            criticality=str(data.get('criticality') or AssetCriticality.MEDIUM).upper(),
            organization_id=uuid.UUID(str(data['organization_id'])),
            name=data.get('name', ''),
        )


class ServiceTelemetryFeed(TelemetryFeed):
    """Telemetry feed backed by the telemetry service."""

    def __init__(self, client=None):
        self.client = client or ServiceClientFactory.get_client('telemetry')

    def current_value(self, asset_id, sensor_field):
        data = self.client.get_current_value(str(asset_id), sensor_field)
        if not data or data.get('value') is None:
            return None
        try:
            value = Decimal(str(data['value']))
        except InvalidOperation:
            value = None
        if value is None or not value.is_finite():
            logger.warning(
                f"Non-numeric value for {sensor_field} on asset {asset_id}: {data['value']!r}"
            )
            return None
        return value


class ServiceRoleDirectory(RoleDirectory):
    """Role directory backed by the organization service."""

    def __init__(self, client=None):
        self.client = client or ServiceClientFactory.get_client('organization')

    def users_with_role(self, organization_id, role):
        members = self.client.get_members_with_role(str(organization_id), role)
        return [uuid.UUID(str(member['user_id'])) for member in members]
