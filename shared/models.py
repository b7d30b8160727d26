"""
Core data models for the Market Appliance credential manager.

This module defines the token pair held in memory and on disk, and the wire
shape the authority answers register and refresh calls with.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from shared.exceptions import TokenParseError, ErrorCode

ZERO_TIME = datetime.min.replace(tzinfo=timezone.utc)

# fromisoformat on 3.10 takes exactly 3 or 6 fractional digits
_FRACTION = re.compile(r"\.(\d+)")


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """
    Parse an RFC 3339 timestamp, including the nanosecond form Go writes.

    Fractional seconds are cut or padded to microseconds and a trailing
    ``Z`` is read as UTC.

    Raises:
        ValueError: If the value is not a valid timestamp
    """
    value = value.replace('Z', '+00:00')
    value = _FRACTION.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), value, count=1)
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class TokenPair:
    """The current access/refresh token pair and its absolute expiry."""
    access: str = ""
    refresh: str = ""
    expires_at: datetime = field(default=ZERO_TIME)

    def is_empty(self) -> bool:
        return not self.access and not self.refresh

    def time_until_expiry(self, now: datetime) -> timedelta:
        return self.expires_at - now

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the persisted file layout."""
        return {
            'access': self.access,
            'refresh': self.refresh,
            'expires': self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "TokenPair":
        """
        Build a pair from the persisted file layout.

        Raises:
            TokenParseError: If a field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise TokenParseError("tokens file must contain a JSON object")

        access = data.get('access')
        refresh = data.get('refresh')
        expires = data.get('expires')
        if not isinstance(access, str) or not isinstance(refresh, str):
            raise TokenParseError("tokens file is missing access or refresh token")
        if not isinstance(expires, str):
            raise TokenParseError("tokens file is missing the expiry timestamp")

        try:
            expires_at = parse_timestamp(expires)
        except ValueError as e:
            raise TokenParseError(f"invalid expiry timestamp: {expires}", cause=e)

        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)

        return cls(access=access, refresh=refresh, expires_at=expires_at)


@dataclass(frozen=True)
class TokenResponse:
    """Token pair as returned by the authority; ttl is relative to receipt."""
    access: str
    refresh: str
    ttl: int

    @classmethod
    def from_payload(cls, payload: Any) -> "TokenResponse":
        """
        Validate a decoded JSON body from register or refresh.

        Raises:
            TokenParseError: If the body does not have the expected shape
        """
        if not isinstance(payload, dict):
            raise TokenParseError("token response is not a JSON object", ErrorCode.PARSE_INVALID_FORMAT)

        access = payload.get('access')
        refresh = payload.get('refresh')
        ttl = payload.get('ttl')
        if not isinstance(access, str) or not isinstance(refresh, str):
            raise TokenParseError("token response is missing access or refresh token")
        # bool is an int subclass
        if isinstance(ttl, bool) or not isinstance(ttl, int) or ttl < 0:
            raise TokenParseError(f"token response has an invalid ttl: {ttl!r}")

        return cls(access=access, refresh=refresh, ttl=ttl)

    def to_token_pair(self, received_at: datetime) -> TokenPair:
        """
        Derive the absolute expiry from the moment the response was received.

        Raises:
            TokenParseError: If the ttl puts the expiry out of datetime range
        """
        try:
            expires_at = received_at + timedelta(seconds=self.ttl)
        except OverflowError as e:
            raise TokenParseError(f"token response ttl out of range: {self.ttl}", cause=e)

        return TokenPair(access=self.access, refresh=self.refresh, expires_at=expires_at)
