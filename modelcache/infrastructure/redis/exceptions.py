"""
Redis Infrastructure Exceptions

Domain-specific exceptions for key-value store operations.
Cache callers see these only when the store itself is unavailable;
missing or corrupt cache entries are never reported as errors.
"""

from typing import Optional, Any, Dict


class RedisException(Exception):
    """Base exception for Redis-related errors.

    All key-value store operations raise this or its subclasses.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class RedisConnectionException(RedisException):
    """Raised when the Redis connection fails or is lost."""

    def __init__(
        self,
        message: str = "Redis connection failed",
        host: Optional[str] = None,
        port: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if host:
            details["host"] = host
        if port:
            details["port"] = port
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=message, error_code="REDIS_CONNECTION_ERROR", details=details
        )
        if original_error:
            self.__cause__ = original_error


class RedisOperationTimeoutException(RedisException):
    """Raised when a Redis operation times out."""

    def __init__(
        self,
        operation: str,
        timeout_seconds: Optional[float] = None,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {"operation": operation}
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        if key:
            details["key"] = key

        super().__init__(
            message=f"Redis operation '{operation}' timed out",
            error_code="REDIS_TIMEOUT_ERROR",
            details=details,
        )
        if original_error:
            self.__cause__ = original_error


class RedisOperationException(RedisException):
    """Raised when Redis rejects a command (e.g. WRONGTYPE)."""

    def __init__(
        self,
        operation: str,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {"operation": operation}
        if key:
            details["key"] = key
        if original_error:
            details["original_error"] = str(original_error)

        super().__init__(
            message=f"Redis operation '{operation}' failed",
            error_code="REDIS_OPERATION_ERROR",
            details=details,
        )
        if original_error:
            self.__cause__ = original_error


class RedisConfigurationException(RedisException):
    """Raised when Redis configuration is invalid."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key
        if config_value is not None:
            details["config_value"] = str(config_value)
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=message, error_code="REDIS_CONFIGURATION_ERROR", details=details
        )
        if original_error:
            self.__cause__ = original_error
