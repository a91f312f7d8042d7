"""
lanup Error Types

Every failure lanup reports to a user is a ``LanupError`` carrying an
``ErrorCode``. The CLI maps the code to a process exit status, so scripts
wrapping lanup can tell "no network" apart from "bad configuration".

License: MIT
"""

from enum import IntEnum
from typing import Optional


class ErrorCode(IntEnum):
    """Categories of lanup failures."""
    GENERAL = 0
    NO_NETWORK = 1
    INVALID_CONFIG = 2
    FILE_NOT_FOUND = 3
    PERMISSION_DENIED = 4
    INVALID_URL = 5
    PARSE_FAILURE = 6
    PROVIDER_UNAVAILABLE = 7


EXIT_CODES = {
    ErrorCode.GENERAL: 1,
    ErrorCode.NO_NETWORK: 3,
    ErrorCode.INVALID_CONFIG: 2,
    ErrorCode.FILE_NOT_FOUND: 1,
    ErrorCode.PERMISSION_DENIED: 4,
    ErrorCode.INVALID_URL: 5,
    ErrorCode.PARSE_FAILURE: 1,
    ErrorCode.PROVIDER_UNAVAILABLE: 1,
}


# Exception Classes

class LanupError(Exception):
    """Base exception for lanup errors."""

    code = ErrorCode.GENERAL

    def __init__(self, message: str, cause: Optional[BaseException] = None, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message

    @property
    def exit_code(self) -> int:
        """Process exit status for this error."""
        return EXIT_CODES.get(self.code, 1)


class NoUsableInterfaceError(LanupError):
    """No active private IPv4 interface could be selected."""
    code = ErrorCode.NO_NETWORK


class InvalidConfigError(LanupError):
    """Configuration file is missing required values or malformed."""
    code = ErrorCode.INVALID_CONFIG


class EnvParseError(LanupError):
    """A persisted env file contains a line lanup cannot interpret."""
    code = ErrorCode.PARSE_FAILURE

    def __init__(self, message: str, line_number: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.line_number = line_number


class EnvPermissionError(LanupError):
    """The env file or its backup cannot be read or written."""
    code = ErrorCode.PERMISSION_DENIED


class InvalidURLError(LanupError):
    """URL passed to ``lanup expose`` is not a loopback http(s) URL."""
    code = ErrorCode.INVALID_URL


class ProviderUnavailableError(LanupError):
    """A dynamic variable provider (Docker, Supabase) could not be reached."""
    code = ErrorCode.PROVIDER_UNAVAILABLE


class ProviderOutputError(LanupError):
    """A dynamic variable provider returned output lanup cannot parse."""
    code = ErrorCode.PARSE_FAILURE
