from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    STUDENT = "student"
    DRIVER = "driver"
    ADMIN = "admin"


@dataclass(frozen=True, slots=True)
class Caller:
    """Identity and role as resolved by the identity provider.

    A caller with ``role=None`` is unauthenticated.
    """

    identity: str | None = None
    role: Role | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None and self.role is not None


ANONYMOUS = Caller()
