from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class IssuedCredential:
    """Raw key material returned by the upstream issuer."""

    api_key: str
    subject_id: str | None


class AbstractCredentialIssuer(ABC):
    """Interface for services that mint raw API keys."""

    @abstractmethod
    async def issue(self, email: str) -> IssuedCredential:
        """Create a principal upstream and return its key.

        Args:
            email: Contact address registered with the new principal.

        Returns:
            IssuedCredential: The opaque key and the upstream principal id.

        Raises:
            UpstreamIssuanceAppError: If the call fails or returns a non-success status.
        """
        ...
