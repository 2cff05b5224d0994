"""Base exceptions for neo-kv.

This module defines the base exception hierarchy for the neo-kv library.
All exceptions inherit from NeoKvError and carry an error code and a
details mapping so callers can render them as structured results.
"""

from typing import Any, Dict, Optional


class NeoKvError(Exception):
    """Base exception for all neo-kv errors.

    All exceptions in the neo-kv library inherit from this base class
    and include structured error information for better debugging.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        *args,
        **kwargs
    ):
        super().__init__(message, *args, **kwargs)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}


class ConfigurationError(NeoKvError):
    """Raised when client configuration is missing or invalid."""
    pass


def create_error_response(exception: NeoKvError) -> Dict[str, Any]:
    """Create standardized error response from exception.

    Args:
        exception: The neo-kv exception

    Returns:
        Error response dictionary
    """
    return {
        "error": {
            "code": exception.error_code,
            "message": exception.message,
            "details": exception.details,
            "type": exception.__class__.__name__,
        }
    }
