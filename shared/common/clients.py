"""
Service Clients for Inter-Service Communication
"""

import time
import httpx
import logging
from typing import Dict, Any, Optional, List
from django.conf import settings

logger = logging.getLogger(__name__)


# =============================================================================
# CIRCUIT BREAKER
# =============================================================================

class CircuitBreakerError(Exception):
    """Exception raised when circuit breaker is open"""
    pass


class CircuitBreaker:
    """
    Circuit breaker implementation for handling service failures.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        timeout: int = 30
    ):
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.timeout = timeout
        self.failure_count = 0
        self.success_count = 0
        self.state = 'closed'  # closed, open, half_open
        self.last_failure_time = None

    def _should_try_reset(self) -> bool:
        if self.last_failure_time is None:
            return True
        return time.monotonic() - self.last_failure_time >= self.timeout

    def record_success(self):
        if self.state == 'half_open':
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._reset()

    def record_failure(self):
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        if self.failure_count >= self.failure_threshold:
            self.state = 'open'
            logger.warning(f"Circuit breaker opened after {self.failure_count} failures")

    def _reset(self):
        self.state = 'closed'
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = None
        logger.info("Circuit breaker reset to closed state")

    def can_execute(self) -> bool:
        if self.state == 'closed':
            return True
        if self.state == 'open':
            if self._should_try_reset():
                self.state = 'half_open'
                return True
            return False
        return True  # half_open


# =============================================================================
# BASE SERVICE CLIENT
# =============================================================================

class BaseServiceClient:
    """
    Base class for service-to-service HTTP communication.

    Synchronous: the maintenance engine runs inside short store transactions
    and has no event loop of its own.
    """

    def __init__(
        self,
        service_name: str,
        base_url: str = None,
        transport: httpx.BaseTransport = None
    ):
        self.service_name = service_name
        self.base_url = base_url or self._get_service_url(service_name)
        self.timeout = httpx.Timeout(10.0, connect=5.0)
        self.auth_token = getattr(settings, 'SERVICE_AUTH_TOKEN', '')
        self.circuit_breaker = CircuitBreaker()
        self._transport = transport

    def _get_service_url(self, service_name: str) -> str:
        """Get service URL from settings"""
        service_urls = getattr(settings, 'SERVICE_URLS', {})
        return service_urls.get(service_name, f'http://{service_name}:8000')

    def _get_headers(self, extra_headers: Dict = None) -> Dict:
        """Build request headers"""
        headers = {
            'Content-Type': 'application/json',
            'Accept': 'application/json',
            'X-Service-Auth': self.auth_token,
            'X-Source-Service': getattr(settings, 'SERVICE_NAME', 'unknown'),
        }
        if extra_headers:
            headers.update(extra_headers)
        return headers

    def _request(
        self,
        method: str,
        path: str,
        params: Dict = None,
        headers: Dict = None
    ) -> Optional[Dict]:
        """Make HTTP request to service. A 404 yields None."""
        if not self.circuit_breaker.can_execute():
            raise CircuitBreakerError(f"Circuit breaker open for {self.service_name}")

        url = f"{self.base_url}{path}"

        with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = client.request(
                    method=method,
                    url=url,
                    params=params,
                    headers=self._get_headers(headers)
                )
                if response.status_code == 404:
                    self.circuit_breaker.record_success()
                    return None
                response.raise_for_status()
                self.circuit_breaker.record_success()
                return response.json()
            except httpx.HTTPStatusError as e:
                logger.error(
                    f"HTTP error calling {self.service_name}: {e.response.status_code}",
                    extra={'url': url, 'status_code': e.response.status_code}
                )
                if e.response.status_code >= 500:
                    self.circuit_breaker.record_failure()
                raise
            except httpx.RequestError as e:
                logger.error(f"Request error calling {self.service_name}: {e}")
                self.circuit_breaker.record_failure()
                raise

    def get(self, path: str, params: Dict = None, headers: Dict = None) -> Optional[Dict]:
        return self._request('GET', path, params=params, headers=headers)


# =============================================================================
# SPECIFIC SERVICE CLIENTS
# =============================================================================

class AssetServiceClient(BaseServiceClient):
    """Client for the asset registry."""

    def __init__(self, **kwargs):
        super().__init__('asset-service', **kwargs)

    def get_asset(self, asset_id: str) -> Optional[Dict]:
        return self.get(f'/api/v1/assets/{asset_id}/')


class OrganizationServiceClient(BaseServiceClient):
    """Client for organization membership and roles."""

    def __init__(self, **kwargs):
        super().__init__('organization-service', **kwargs)

    def get_members_with_role(self, org_id: str, role: str) -> List[Dict]:
        response = self.get(
            f'/api/v1/organizations/{org_id}/members/',
            params={'role': role}
        )
        if response is None:
            return []
        return response.get('results', [])


class TelemetryServiceClient(BaseServiceClient):
    """Client for the condition/telemetry feed."""

    def __init__(self, **kwargs):
        super().__init__('telemetry-service', **kwargs)

    def get_current_value(self, asset_id: str, sensor_field: str) -> Optional[Dict]:
        return self.get(f'/api/v1/assets/{asset_id}/sensors/{sensor_field}/current/')


# =============================================================================
# CLIENT FACTORY
# =============================================================================

class ServiceClientFactory:
    """Factory for creating service clients"""

    _clients = {
        'asset': AssetServiceClient,
        'organization': OrganizationServiceClient,
        'telemetry': TelemetryServiceClient,
    }

    @classmethod
    def get_client(cls, service_name: str, **kwargs) -> BaseServiceClient:
        """Get a service client by name"""
        client_class = cls._clients.get(service_name)
        if not client_class:
            raise ValueError(f"Unknown service: {service_name}")
        return client_class(**kwargs)
