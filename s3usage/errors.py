"""
Exception hierarchy for s3usage.
"""

from typing import Optional


class S3UsageError(Exception):
    """Base class for all s3usage errors."""


class ConfigurationError(S3UsageError):
    """Missing or invalid credentials, endpoint or settings."""


class ConnectivityError(S3UsageError):
    """Transport failure or timeout talking to the admin API."""


class AuthenticationError(S3UsageError):
    """
    Admin API answered with a non-2xx status.

    Most of these are signature rejections (403), but any non-success
    status lands here with the response status and body attached.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class DecodeError(S3UsageError):
    """Admin API returned a payload that is not the expected JSON."""


class PersistenceError(S3UsageError):
    """Storage engine failure."""


class NoDataError(S3UsageError):
    """A query legitimately returned nothing. Informational, not fatal."""
