"""Generic resource client for any built-in or custom resource kind."""

from __future__ import annotations

from typing import Any, Iterator

from pydantic import BaseModel

from kubeconn.client import KubeClient, build_list_params
from kubeconn.config import get_settings
from kubeconn.models.resources import ResourceList, Status
from kubeconn.utils.pagination import paginate
from kubeconn.watch import WatchStream


class ResourceClient:
    """CRUD, patch, apply and watch for one resource kind.

    Core resources use ``group=""``::

        pods = ResourceClient(client, "", "v1", "pods")
        deployments = ResourceClient(client, "apps", "v1", "deployments")
    """

    def __init__(self, client: KubeClient, group: str, version: str, plural: str) -> None:
        self._client = client
        self._group = group
        self._version = version
        self._plural = plural

    def path(self, namespace: str | None = None, name: str | None = None) -> str:
        """API path: /api/{version} for the core group, /apis/{group}/{version} otherwise."""
        base = f"/apis/{self._group}/{self._version}" if self._group else f"/api/{self._version}"
        if namespace:
            base += f"/namespaces/{namespace}"
        base += f"/{self._plural}"
        if name:
            base += f"/{name}"
        return base

    def list(
        self,
        namespace: str | None = None,
        *,
        label_selector: str | None = None,
        field_selector: str | None = None,
        limit: int | None = None,
        continue_token: str | None = None,
        resource_version: str | None = None,
    ) -> ResourceList:
        """List one page of resources (all namespaces when ``namespace`` is None)."""
        params = build_list_params(
            label_selector=label_selector,
            field_selector=field_selector,
            limit=limit,
            continue_token=continue_token,
            resource_version=resource_version,
        )
        response = self._client.get(self.path(namespace), params)
        return ResourceList.model_validate(response.json())

    def iter_all(
        self,
        namespace: str | None = None,
        *,
        label_selector: str | None = None,
        field_selector: str | None = None,
        page_size: int = 500,
    ) -> Iterator[dict[str, Any]]:
        """Yield every resource, fetching ``page_size`` items per request."""
        path = self.path(namespace)
        params = build_list_params(label_selector=label_selector, field_selector=field_selector, limit=page_size)
        return paginate(lambda p: self._client.get(path, p).json(), params)

    def read(self, name: str, namespace: str | None = None) -> dict[str, Any]:
        return self._client.get(self.path(namespace, name)).json()

    def create(self, body: dict[str, Any] | BaseModel, namespace: str | None = None) -> dict[str, Any]:
        return self._client.post(self.path(namespace), body).json()

    def update(self, name: str, body: dict[str, Any] | BaseModel, namespace: str | None = None) -> dict[str, Any]:
        """Replace a resource. Use ``patch`` or ``apply`` for partial updates."""
        return self._client.put(self.path(namespace, name), body).json()

    def patch(
        self,
        name: str,
        body: Any,
        namespace: str | None = None,
        *,
        patch_type: str = "merge",
    ) -> dict[str, Any]:
        """Partial update with a JSON, merge or strategic-merge patch."""
        return self._client.patch(self.path(namespace, name), body, content_type=patch_type).json()

    def apply(
        self,
        name: str,
        body: dict[str, Any] | BaseModel,
        namespace: str | None = None,
        *,
        field_manager: str = "kubeconn",
        force: bool = False,
    ) -> dict[str, Any]:
        """Server-side apply."""
        response = self._client.apply(self.path(namespace, name), body, field_manager=field_manager, force=force)
        return response.json()

    def delete(self, name: str, namespace: str | None = None, *, body: Any = None) -> Status | dict[str, Any]:
        """Delete a resource. Returns the Status, or the object when the server returns it."""
        data = self._client.delete(self.path(namespace, name), body).json()
        if Status.looks_like(data):
            return Status.model_validate(data)
        return data

    def watch(
        self,
        namespace: str | None = None,
        *,
        resource_version: str = "0",
        timeout_seconds: int | None = None,
        label_selector: str | None = None,
        field_selector: str | None = None,
        **kwargs: Any,
    ) -> WatchStream:
        """Watch the collection. See WatchStream for iteration and stopping.

        ``timeout_seconds`` defaults to the KUBECONN_WATCH_TIMEOUT setting.
        """
        if timeout_seconds is None:
            timeout_seconds = get_settings().watch_timeout
        params = build_list_params(label_selector=label_selector, field_selector=field_selector)
        return WatchStream(
            self._client,
            self.path(namespace),
            resource_version=resource_version,
            timeout_seconds=timeout_seconds,
            params=params,
            **kwargs,
        )
