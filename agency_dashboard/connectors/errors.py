"""
Provider failure taxonomy

Connectors translate SDK and HTTP errors into these types at the boundary;
services only ever catch ProviderError subclasses.
"""


class ProviderError(Exception):
    """Base class for a failed provider call"""

    def __init__(self, message: str, provider: str = ""):
        super().__init__(message)
        self.provider = provider


class CredentialInvalid(ProviderError):
    """Provider rejected the stored credential (revoked, expired, no access)"""


class ProviderUnavailable(ProviderError):
    """Network error, timeout, rate limit or 5xx. Transient."""


class ProviderPartialData(ProviderError):
    """Call succeeded but the payload is structurally incomplete"""


class InvalidRequest(ValueError):
    """Caller supplied an unknown provider, data kind or date range"""


__all__ = [
    "ProviderError",
    "CredentialInvalid",
    "ProviderUnavailable",
    "ProviderPartialData",
    "InvalidRequest",
]
