from __future__ import annotations

from abc import ABC, abstractmethod

from src.domain.models.caller import Caller


class IIdentityProvider(ABC):
    """Port to the external identity/session collaborator."""

    @abstractmethod
    def resolve(self, token: str | None) -> Caller:
        """Return the caller for a bearer token (anonymous if unknown)."""
