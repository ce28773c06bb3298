"""Watch event models."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel


class EventType(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"
    ERROR = "ERROR"


class WatchEvent(BaseModel):
    """One line of a watch stream: ``{"type": ..., "object": ...}``.

    ``object`` is the raw dict unless the watch was given a model to decode into.
    """
    type: EventType
    object: Any

    @property
    def added(self) -> bool:
        return self.type == EventType.ADDED

    @property
    def modified(self) -> bool:
        return self.type == EventType.MODIFIED

    @property
    def deleted(self) -> bool:
        return self.type == EventType.DELETED
