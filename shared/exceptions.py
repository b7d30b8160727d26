"""
Exception hierarchy for the Market Appliance credential manager.

This module defines structured exceptions with error codes, context information,
and recovery suggestions for consistent error handling across the client.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for the Market Appliance client."""

    # Authentication Errors (1000-1099)
    AUTH_TOKEN_REJECTED = "AUTH_1001"
    AUTH_REGISTRATION_FAILED = "AUTH_1002"
    AUTH_REFRESH_FAILED = "AUTH_1003"

    # Network and Communication Errors (2000-2099)
    NETWORK_CONNECTION_FAILED = "NETWORK_2001"
    NETWORK_TIMEOUT = "NETWORK_2002"
    NETWORK_BAD_STATUS = "NETWORK_2003"

    # Token Storage Errors (3000-3099)
    STORAGE_DIRECTORY_MISSING = "STORAGE_3001"
    STORAGE_OPEN_FAILED = "STORAGE_3002"
    STORAGE_WRITE_FAILED = "STORAGE_3003"
    STORAGE_SHORT_WRITE = "STORAGE_3004"

    # Parse Errors (4000-4099)
    PARSE_INVALID_JSON = "PARSE_4001"
    PARSE_INVALID_FORMAT = "PARSE_4002"

    # Configuration Errors (8000-8099)
    CONFIG_INVALID_FORMAT = "CONFIG_8001"
    CONFIG_INVALID_VALUE = "CONFIG_8002"

    # Internal Errors (9000-9099)
    INTERNAL_UNEXPECTED_ERROR = "INTERNAL_9001"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    """Suggested recovery actions for errors."""
    RETRY_NEXT_POLL = "retry_next_poll"
    RECONNECT = "reconnect"
    REGISTER_AGAIN = "register_again"
    USER_INTERVENTION = "user_intervention"


class MarketAuthError(Exception):
    """
    Base exception class for all credential manager errors.

    Provides structured error information including error codes, context,
    and recovery suggestions for consistent error handling.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.recovery_actions = recovery_actions or []
        self.cause = cause
        self.user_message = user_message or message
        self.timestamp = datetime.now()

        if cause:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for serialization."""
        return {
            'error': {
                'code': self.error_code.value,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': {
                    'type': self.context.get('cause_type'),
                    'message': self.context.get('cause_message')
                } if self.cause else None
            }
        }


class TokenStorageError(MarketAuthError):
    """Token file and working directory access errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED,
                 path: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if path:
            context['path'] = path

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )


class TokenParseError(MarketAuthError):
    """Malformed token data, either on disk or from the authority."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.PARSE_INVALID_FORMAT, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.REGISTER_AGAIN],
            **kwargs
        )


class NetworkError(MarketAuthError):
    """Transport level errors talking to the authority."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.NETWORK_CONNECTION_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY_NEXT_POLL, RecoveryAction.RECONNECT],
            **kwargs
        )


class BadStatusError(MarketAuthError):
    """The authority answered register or refresh with a non-200 status."""

    def __init__(self, message: str, status: int, error_code: ErrorCode = ErrorCode.NETWORK_BAD_STATUS, **kwargs):
        context = kwargs.pop('context', {})
        context['status'] = status
        self.status = status

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY_NEXT_POLL, RecoveryAction.REGISTER_AGAIN],
            context=context,
            **kwargs
        )


class TokenValidationError(MarketAuthError):
    """
    The authority rejected an access token on the verify endpoint.

    Kept apart from NetworkError so callers can tell "credential rejected"
    from "server unreachable".
    """

    def __init__(self, message: str = "token validation error", status: Optional[int] = None, **kwargs):
        context = kwargs.pop('context', {})
        if status is not None:
            context['status'] = status
        self.status = status

        super().__init__(
            message=message,
            error_code=ErrorCode.AUTH_TOKEN_REJECTED,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY_NEXT_POLL],
            context=context,
            **kwargs
        )


class ConfigurationError(MarketAuthError):
    """Configuration related errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.CONFIG_INVALID_VALUE,
                 config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if config_key:
            context['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )


def handle_exception(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
    default_error_code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED_ERROR
) -> MarketAuthError:
    """
    Convert a generic exception to a structured MarketAuthError.

    Args:
        exception: The original exception
        context: Additional context information
        default_error_code: Default error code if specific mapping not found

    Returns:
        Structured MarketAuthError
    """
    if isinstance(exception, MarketAuthError):
        return exception

    if isinstance(exception, TimeoutError):
        return NetworkError(str(exception), ErrorCode.NETWORK_TIMEOUT, context=context, cause=exception)
    if isinstance(exception, ConnectionError):
        return NetworkError(str(exception), ErrorCode.NETWORK_CONNECTION_FAILED, context=context, cause=exception)
    if isinstance(exception, OSError):
        return TokenStorageError(str(exception), ErrorCode.STORAGE_OPEN_FAILED, context=context, cause=exception)
    if isinstance(exception, ValueError):
        return TokenParseError(str(exception), ErrorCode.PARSE_INVALID_FORMAT, context=context, cause=exception)

    return MarketAuthError(
        message=str(exception),
        error_code=default_error_code,
        context=context,
        cause=exception
    )
