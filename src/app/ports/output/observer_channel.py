from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping


class IObserverChannel(ABC):
    """Port for delivering one message to one observer connection."""

    @abstractmethod
    async def send(self, message: Mapping[str, Any]) -> None:
        raise NotImplementedError
