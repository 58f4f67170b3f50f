"""Exception hierarchy for the scan core."""

from typing import Any


class CloudCostError(Exception):
    """Base exception for all cloudcost errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ProviderError(CloudCostError):
    """Unsupported provider or unrecoverable connection setup failure."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if provider:
            details["provider"] = provider
        super().__init__(message, details)
        self.provider = provider


class CredentialError(CloudCostError):
    """Base class for credential vault errors."""


class CredentialIntegrityError(CredentialError):
    """A stored credential exists but failed authenticated decryption."""

    def __init__(self, credential_id: int, message: str | None = None):
        super().__init__(
            message or f"Credential {credential_id} failed integrity check",
            {"credential_id": credential_id},
        )
        self.credential_id = credential_id


class MasterKeyError(CredentialError):
    """The master key file is unreadable or malformed."""


class NotFoundError(CloudCostError):
    """A requested scan or credential does not exist."""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            f"{resource} {identifier} not found",
            {"resource": resource, "id": identifier},
        )
        self.resource = resource
        self.identifier = identifier


class ScanStateError(CloudCostError):
    """An illegal scan status transition was requested."""
