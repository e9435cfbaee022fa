"""
Manga Errors - Exception types shared by providers, crypto and the page scheduler
"""

from enum import Enum
from typing import List, Optional


class ErrorCause(str, Enum):
    """Machine-readable reason attached to every ProviderError"""
    NETWORK = 'network'
    SCHEMA = 'schema'
    NOT_FOUND = 'not_found'
    AUTH_REQUIRED = 'auth_required'


class ProviderError(Exception):
    """Raised by providers and the HTTP layer; the caller decides whether to retry"""

    def __init__(self, cause: ErrorCause, message: str = '', url: Optional[str] = None):
        self.cause = ErrorCause(cause)
        self.message = message or self.cause.value
        self.url = url
        super().__init__(self.message)

    def __str__(self):
        if self.url:
            return f"[{self.cause.value}] {self.message} ({self.url})"
        return f"[{self.cause.value}] {self.message}"


class SchemaError(ProviderError):
    """A response did not match the shape we know how to read"""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(ErrorCause.SCHEMA, message, url)


class CryptoError(Exception):
    """Base class for page decryption failures"""
    kind = 'crypto'


class InvalidInputError(CryptoError):
    """Ciphertext, key or iv has the wrong shape"""
    kind = 'invalid_input'


class PaddingInvalidError(CryptoError):
    """Decryption ran but the final block does not carry valid padding"""
    kind = 'padding_invalid'


class DownloadCancelled(Exception):
    """The chapter download was cancelled before all pages were fetched"""


class PartialFailure(Exception):
    """Some pages of a chapter could not be fetched or decoded.

    ``pages`` holds the successful results in chapter order, ``failures`` the
    per-page failures (also in chapter order).
    """

    def __init__(self, pages: list, failures: list):
        self.pages = pages
        self.failures = failures
        summary = ', '.join(f"{f.index}:{f.reason}" for f in failures)
        super().__init__(f"{len(failures)} page(s) failed [{summary}]")

    @property
    def failed_indices(self) -> List[int]:
        return [f.index for f in self.failures]

    @property
    def reasons(self) -> List[str]:
        return [f.reason for f in self.failures]


def failure_reason(error: BaseException) -> str:
    """Short reason string for a per-page failure"""
    if isinstance(error, ProviderError):
        return error.cause.value
    if isinstance(error, CryptoError):
        return error.kind
    return type(error).__name__
