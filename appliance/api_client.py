"""
HTTP client for the Market authority.

This module provides the three stateless appliance calls the credential
manager needs: register with a one-time code, verify an access token and
exchange a refresh token for a new pair. Every call is bounded by a timeout.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Callable, Optional
from urllib.parse import quote

from aiohttp import ClientSession, ClientTimeout, ClientError

from shared.exceptions import (
    NetworkError, BadStatusError, TokenParseError, TokenValidationError, ErrorCode
)
from shared.interfaces import IAuthorityClient
from shared.logging_config import mask_token
from shared.models import TokenPair, TokenResponse, utcnow

logger = logging.getLogger(__name__)


def register_uri(server: str, otp: str) -> str:
    return f"{server}/appliance/register/{quote(otp, safe='')}"


def verify_uri(server: str) -> str:
    return f"{server}/appliance/verify"


def refresh_uri(server: str) -> str:
    return f"{server}/appliance/refresh"


class MarketAuthClient(IAuthorityClient):
    """
    HTTP client for the appliance endpoints of the Market authority.

    Holds no token state; callers pass the token each call needs.
    """

    def __init__(
        self,
        market_uri: str,
        timeout: float = 30.0,
        clock: Callable[[], datetime] = utcnow
    ):
        self.market_uri = market_uri.rstrip('/')
        self.timeout = ClientTimeout(total=timeout)
        self._clock = clock
        self._session: Optional[ClientSession] = None

        logger.info(f"Market auth client initialized for: {self.market_uri}")

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> ClientSession:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            self._session = ClientSession(
                timeout=self.timeout,
                headers={'User-Agent': 'MarketAppliance/1.0'}
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def register(self, otp: str) -> TokenPair:
        """
        Register this worker as an appliance using a one-time code.

        Args:
            otp: One-time code issued by the Market

        Returns:
            Freshly issued token pair

        Raises:
            NetworkError: If the authority can't be reached
            BadStatusError: On any non-200 response
            TokenParseError: On a malformed response body
        """
        logger.info("Registering appliance with the market")
        return await self._request_tokens('POST', register_uri(self.market_uri, otp), headers=None,
                                          operation="register")

    async def verify(self, access_token: str) -> None:
        """
        Verify an access token against the authority.

        Raises:
            TokenValidationError: On any non-200 response
            NetworkError: If the authority can't be reached
        """
        session = await self._ensure_session()
        headers = {'Authorization': f'Bearer {access_token}'}

        try:
            async with session.get(verify_uri(self.market_uri), headers=headers) as response:
                if response.status != 200:
                    raise TokenValidationError(
                        f"token validation error (status {response.status})",
                        status=response.status
                    )
        except (ClientError, asyncio.TimeoutError, OSError) as e:
            raise self._network_error("get verify", e)

        logger.debug(f"Access token {mask_token(access_token)} verified")

    async def refresh(self, refresh_token: str) -> TokenPair:
        """
        Exchange a refresh token for a new token pair.

        Raises:
            NetworkError: If the authority can't be reached
            BadStatusError: On any non-200 response
            TokenParseError: On a malformed response body
        """
        headers = {'Authorization': f'Bearer {refresh_token}'}
        return await self._request_tokens('POST', refresh_uri(self.market_uri), headers=headers,
                                          operation="refresh")

    async def _request_tokens(self, method: str, url: str, headers: Optional[dict],
                              operation: str) -> TokenPair:
        session = await self._ensure_session()

        try:
            async with session.request(method, url, headers=headers) as response:
                if response.status != 200:
                    raise BadStatusError(
                        f"invalid backend token response code: {response.status}",
                        status=response.status,
                        error_code=(ErrorCode.AUTH_REGISTRATION_FAILED if operation == "register"
                                    else ErrorCode.AUTH_REFRESH_FAILED)
                    )
                body = await response.read()
                received_at = self._clock()
        except (ClientError, asyncio.TimeoutError, OSError) as e:
            raise self._network_error(f"{operation} request", e)

        return self._to_token_pair(body, received_at)

    def _to_token_pair(self, body: bytes, received_at: datetime) -> TokenPair:
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise TokenParseError(f"unmarshal tokens: {e}", ErrorCode.PARSE_INVALID_JSON, cause=e)

        response = TokenResponse.from_payload(payload)
        tokens = response.to_token_pair(received_at)

        logger.debug(
            f"Got tokens from backend. expire at {tokens.expires_at.isoformat()} "
            f"({response.ttl} seconds from now)"
        )
        return tokens

    @staticmethod
    def _network_error(action: str, error: Exception) -> NetworkError:
        if isinstance(error, asyncio.TimeoutError):
            return NetworkError(f"{action}: timed out", ErrorCode.NETWORK_TIMEOUT, cause=error)
        return NetworkError(f"{action}: {error}", ErrorCode.NETWORK_CONNECTION_FAILED, cause=error)
