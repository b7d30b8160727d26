"""
Core interfaces for the Market Appliance credential manager.

This module defines the abstract interfaces that components must implement
to ensure consistent behavior across the client.
"""

from abc import ABC, abstractmethod
from typing import Any

from .models import TokenPair


class ITokenStorage(ABC):
    """Interface for the on-disk token pair."""

    @abstractmethod
    def load(self) -> TokenPair:
        """Return the last parsed or persisted pair (zero value if none)."""
        pass

    @abstractmethod
    def persist(self, tokens: TokenPair) -> None:
        """Atomically replace the stored pair."""
        pass


class IAuthorityClient(ABC):
    """Interface for the remote authority issuing appliance tokens."""

    @abstractmethod
    async def register(self, otp: str) -> TokenPair:
        """Exchange a one-time code for a token pair."""
        pass

    @abstractmethod
    async def verify(self, access_token: str) -> None:
        """Check that the authority accepts an access token."""
        pass

    @abstractmethod
    async def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new token pair."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        pass


class IConfigurationManager(ABC):
    """Interface for configuration management."""

    @abstractmethod
    def get_market_uri(self) -> str:
        """Get the authority base URI."""
        pass

    @abstractmethod
    def get_repo_path(self) -> str:
        """Get the worker working directory."""
        pass

    @abstractmethod
    def get_config(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        pass
