from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from src.app.ports.output import IIdentityProvider
from src.domain.models import ANONYMOUS, Caller, Role

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StaticTokenIdentityProvider(IIdentityProvider):
    """Resolves bearer tokens from a fixed table.

    Stands in for the real identity service, which issues and verifies
    sessions elsewhere.

    Env vars:
      - FLEET_API_TOKENS: entries as 'token:identity:role', separated by ';'
        (role is one of student, driver, admin)
    """

    tokens_raw: str | None = None

    _callers: dict[str, Caller] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.tokens_raw is None:
            self.tokens_raw = os.getenv("FLEET_API_TOKENS")
        self._callers = self._parse(self.tokens_raw or "")

    @staticmethod
    def _parse(raw: str) -> dict[str, Caller]:
        callers: dict[str, Caller] = {}
        for part in raw.split(";"):
            part = part.strip()
            if not part:
                continue
            pieces = [p.strip() for p in part.split(":")]
            if len(pieces) != 3 or not all(pieces):
                logger.warning("Ignoring malformed token entry")
                continue
            token, identity, role_raw = pieces
            try:
                role = Role(role_raw.lower())
            except ValueError:
                logger.warning("Ignoring token with unknown role %r", role_raw)
                continue
            callers[token] = Caller(identity=identity, role=role)
        return callers

    def resolve(self, token: str | None) -> Caller:
        if not token:
            return ANONYMOUS
        return self._callers.get(token, ANONYMOUS)
