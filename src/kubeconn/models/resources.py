"""Minimal resource shapes the client reads: metadata, lists, Status."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ObjectMeta(BaseModel):
    """The parts of ``metadata`` the client cares about."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str = ""
    namespace: str | None = None
    resource_version: str | None = Field(default=None, alias="resourceVersion")
    uid: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class ListMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    resource_version: str | None = Field(default=None, alias="resourceVersion")
    continue_token: str | None = Field(default=None, alias="continue")
    remaining_item_count: int | None = Field(default=None, alias="remainingItemCount")


class ResourceList(BaseModel):
    """A ``*List`` response with items left as plain dicts."""
    model_config = ConfigDict(populate_by_name=True)

    api_version: str | None = Field(default=None, alias="apiVersion")
    kind: str | None = None
    metadata: ListMeta = Field(default_factory=ListMeta)
    items: list[dict[str, Any]] = Field(default_factory=list)


class Status(BaseModel):
    """Server Status payload (errors, delete results, watch ERROR events)."""
    model_config = ConfigDict(populate_by_name=True)

    kind: str = "Status"
    api_version: str = Field(default="v1", alias="apiVersion")
    status: str | None = None
    message: str = ""
    reason: str | None = None
    code: int | None = None

    @staticmethod
    def looks_like(obj: Any) -> bool:
        """True if a decoded JSON object is a Status rather than a resource."""
        return isinstance(obj, dict) and obj.get("kind") == "Status"


def resource_version_of(obj: Any) -> str | None:
    """Return ``metadata.resourceVersion`` of a raw object, if present."""
    if not isinstance(obj, dict):
        return None
    metadata = obj.get("metadata")
    if not isinstance(metadata, dict):
        return None
    version = metadata.get("resourceVersion")
    return str(version) if version else None
