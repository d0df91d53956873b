# card_identity/services/service_protocol.py
"""
Service Protocol Module

Defines the abstract base class (protocol) for long-lived services in card_identity.

Key Features:
- Standardized service lifecycle management
- Built-in health monitoring and metrics reporting
- Consistent logging and error handling patterns
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict


class Service(ABC):
    """
    Abstract base class defining the protocol for card_identity services.

    Attributes:
        name (str): Read-only property returning the service name for logging and identification
    """

    @abstractmethod
    def initialize(self, **kwargs) -> None:
        """
        Initialize service with optional configuration overrides.

        Called once after construction, before the service takes traffic.
        """
        pass

    @abstractmethod
    def health_check(self) -> Dict[str, Any]:
        """
        Return health status and counters.

        Returns:
            Dictionary with at least:
            - status: healthy, degraded or unhealthy
            - timestamp: time of the check in ISO format
            - metrics: service-specific counters
        """
        pass

    @abstractmethod
    def shutdown(self) -> None:
        """Release resources. The service may be initialized again afterwards."""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Service name for logging and identification.

        Service names follow the pattern "domain-purpose-version", e.g. "card-identity-v1".
        """
        pass
