"""
Error taxonomy for the code2tutorial pipeline.

- ConfigError: bad directory or configuration; the run never starts.
- ProviderError: transient network/auth/quota failure; retried by the invocation wrapper.
- ContractViolationError: the model broke the expected output contract; never retried.
- OwnershipError: a stage tried to commit a shared-context field it does not own.
- RenderError: a renderer got invalid input or failed writing output.
"""

from typing import Any, Optional


class TutorialError(Exception):
    """Base error with a machine-readable code and optional details."""

    code = "GENERIC_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}


class ConfigError(TutorialError):
    code = "INVALID_CONFIG"


class DirectoryNotFoundError(ConfigError):
    code = "DIRECTORY_NOT_FOUND"


class InvalidDirectoryError(ConfigError):
    code = "INVALID_DIRECTORY"


class ProviderError(TutorialError):
    """
    Transient provider failure (network, authentication, rate limit, empty reply).

    retry_after: seconds the provider asked us to wait, when it said so.
    """

    code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details)
        self.retry_after = retry_after


class ContractViolationError(TutorialError):
    code = "CONTRACT_VIOLATION"


class OwnershipError(TutorialError):
    code = "FIELD_OWNERSHIP"


class RenderError(TutorialError):
    code = "RENDER_ERROR"
