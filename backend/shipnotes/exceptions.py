"""Custom exception hierarchy for Shipnotes."""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Lookup errors
    NOT_FOUND = "NOT_FOUND"

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Registry / catalog conflicts
    REPOSITORY_ALREADY_CONNECTED = "REPOSITORY_ALREADY_CONNECTED"
    DUPLICATE_TRIGGER = "DUPLICATE_TRIGGER"
    SLUG_TAKEN = "SLUG_TAKEN"

    # Workflow errors
    WORKFLOW_IN_PROGRESS = "WORKFLOW_IN_PROGRESS"
    CREDITS_EXHAUSTED = "CREDITS_EXHAUSTED"

    # Upstream provider errors
    PROVIDER_RATE_LIMITED = "PROVIDER_RATE_LIMITED"
    PROVIDER_AUTH_FAILED = "PROVIDER_AUTH_FAILED"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"

    # Webhooks
    NOT_SUPPORTED = "NOT_SUPPORTED"

    # Auth & rate limiting
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    RATE_LIMITED = "RATE_LIMITED"

    # Generic errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ShipnotesError(Exception):
    """
    Base exception for all errors that map onto an HTTP response.

    Provides structured error responses with:
    - Human-readable message
    - Machine-readable error code
    - HTTP status code
    - Optional additional details
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for JSON response.

        Returns:
            Dictionary with error, code, and (when present) details fields
        """
        body: Dict[str, Any] = {
            "error": self.message,
            "code": self.error_code.value,
        }
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(ShipnotesError):
    """Resource not found, or not visible from the caller's organization."""

    def __init__(self, resource: str = "Resource"):
        super().__init__(
            f"{resource} not found",
            ErrorCode.NOT_FOUND,
            status_code=404,
        )


class ValidationError(ShipnotesError):
    """Validation failed for user input."""

    def __init__(self, message: str, field: Optional[str] = None, issues: Optional[list] = None):
        details: Dict[str, Any] = {}
        if field:
            details["field"] = field
        if issues:
            details["issues"] = issues
        super().__init__(
            message,
            ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )


class RepositoryAlreadyConnectedError(ShipnotesError):
    """The owner/repo pair is already tracked."""

    def __init__(self, owner: str, repo: str):
        super().__init__(
            "Repository already connected",
            ErrorCode.REPOSITORY_ALREADY_CONNECTED,
            status_code=409,
            details={"owner": owner, "repo": repo}
        )


class DuplicateTriggerError(ShipnotesError):
    """An equivalent trigger already exists for the organization."""

    def __init__(self):
        super().__init__(
            "A trigger with the same configuration already exists",
            ErrorCode.DUPLICATE_TRIGGER,
            status_code=409,
        )


class SlugTakenError(ShipnotesError):
    """Organization slug is already in use."""

    def __init__(self, slug: str):
        super().__init__(
            "Organization slug is already taken",
            ErrorCode.SLUG_TAKEN,
            status_code=409,
            details={"slug": slug}
        )


class WorkflowInProgressError(ShipnotesError):
    """A run of the same workflow is already in flight for this organization."""

    def __init__(self, workflow_type: str):
        super().__init__(
            "A workflow of this type is already running for this organization",
            ErrorCode.WORKFLOW_IN_PROGRESS,
            status_code=409,
            details={"workflow_type": workflow_type}
        )


class CreditsExhaustedError(ShipnotesError):
    """The organization has no AI credits left on its plan."""

    def __init__(self):
        super().__init__(
            "AI credits exhausted for this organization",
            ErrorCode.CREDITS_EXHAUSTED,
            status_code=402,
        )


class ProviderRateLimitedError(ShipnotesError):
    """The external provider rejected the call because of rate limiting."""

    def __init__(self, provider: str, retry_after: Optional[int] = None):
        details: Dict[str, Any] = {"provider": provider}
        if retry_after is not None:
            details["retry_after"] = retry_after
        super().__init__(
            f"{provider} API rate limit exceeded. Please try again later.",
            ErrorCode.PROVIDER_RATE_LIMITED,
            status_code=429,
            details=details
        )


class ProviderAuthError(ShipnotesError):
    """The external provider rejected the supplied credentials."""

    def __init__(self, message: str):
        super().__init__(
            message,
            ErrorCode.PROVIDER_AUTH_FAILED,
            status_code=400,
        )


class UpstreamServiceError(ShipnotesError):
    """An external service failed or is not configured."""

    def __init__(self, message: str):
        super().__init__(
            message,
            ErrorCode.UPSTREAM_ERROR,
            status_code=500,
        )


class NotSupportedError(ShipnotesError):
    """The requested provider or feature has no implementation."""

    def __init__(self, message: str = "Provider not supported"):
        super().__init__(
            message,
            ErrorCode.NOT_SUPPORTED,
            status_code=501,
        )


class AuthenticationError(ShipnotesError):
    """Request lacks valid authentication credentials."""

    def __init__(self, message: str = "Invalid or missing authentication token"):
        super().__init__(
            message,
            ErrorCode.UNAUTHORIZED,
            status_code=401,
        )


class ForbiddenError(ShipnotesError):
    """Authenticated user lacks permission for the requested scope."""

    def __init__(self, message: str = "You do not have access to this organization"):
        super().__init__(
            message,
            ErrorCode.FORBIDDEN,
            status_code=403,
        )


# ---------------------------------------------------------------------------
# Internal errors (never rendered directly; callers translate them)
# ---------------------------------------------------------------------------


class VaultError(Exception):
    """Base class for credential vault failures."""


class VaultKeyError(VaultError):
    """The encryption key is missing or malformed."""


class InvalidEnvelopeError(VaultError):
    """The ciphertext envelope does not have the expected shape."""


class TamperedCiphertextError(VaultError):
    """The authentication tag did not verify."""


class StoreUnavailableError(Exception):
    """The key-value store is unconfigured or unreachable."""
