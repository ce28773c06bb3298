"""Connection manager for the Kubernetes API.

Owns the pooled HTTP connections and the live credential, injects auth into
every request, maps status codes to typed errors, and survives service
account token rotation by hot-swapping the pool.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import ssl
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import httpx
import yaml
from pydantic import BaseModel

from kubeconn.auth import CredentialResolver
from kubeconn.config import (
    IN_CLUSTER_CA_CERT_PATH,
    IN_CLUSTER_NAMESPACE_PATH,
    IN_CLUSTER_TOKEN_PATH,
    Cluster,
    get_settings,
    load_kubeconfig,
)
from kubeconn.exceptions import (
    AuthenticationError,
    ClientError,
    ConfigError,
    ConflictError,
    GoneError,
    KubeError,
    NotFoundError,
    PoolExhaustedError,
    ServerError,
    UnexpectedResponseError,
)
from kubeconn.models.credentials import Credential
from kubeconn.rotation import TokenRotationWatcher
from kubeconn.utils.cache import CredentialCache

logger = logging.getLogger(__name__)

USER_AGENT = "kubeconn/0.1.0"
CONNECT_TIMEOUT = 5.0

# Partial update content types accepted by the API server
PATCH_CONTENT_TYPES = {
    "json": "application/json-patch+json",
    "merge": "application/merge-patch+json",
    "strategic": "application/strategic-merge-patch+json",
    "apply": "application/apply-patch+yaml",
}


def build_list_params(
    label_selector: str | None = None,
    field_selector: str | None = None,
    limit: int | None = None,
    continue_token: str | None = None,
    resource_version: str | None = None,
    timeout_seconds: int | None = None,
    watch: bool | None = None,
) -> dict[str, str]:
    """Build list query parameters, omitting every parameter that is not set."""
    params: dict[str, str] = {}
    if label_selector:
        params["labelSelector"] = label_selector
    if field_selector:
        params["fieldSelector"] = field_selector
    if limit is not None:
        params["limit"] = str(limit)
    if continue_token:
        params["continue"] = continue_token
    if resource_version is not None:
        params["resourceVersion"] = resource_version
    if timeout_seconds is not None:
        params["timeoutSeconds"] = str(timeout_seconds)
    if watch:
        params["watch"] = "true"
    return params


def raise_for_status(response: httpx.Response, path: str) -> None:
    """Raise the typed error for a non-2xx/3xx response."""
    status = response.status_code
    if 200 <= status < 400:
        return

    body = response.text
    context = {"path": path, "status_code": status, "body": body}
    if status == 401:
        raise AuthenticationError(f"Unauthorized ({path}): {body}", **context)
    if status == 403:
        raise AuthenticationError(f"Forbidden ({path}): {body}", **context)
    if status == 404:
        raise NotFoundError(f"Not found ({path})", **context)
    if status == 409:
        raise ConflictError(f"Conflict ({path}): {body}", **context)
    if status == 410:
        raise GoneError(f"Gone - resource version expired ({path})", **context)
    if 400 <= status < 500:
        raise ClientError(f"Client error {status} ({path}): {body}", **context)
    if 500 <= status < 600:
        raise ServerError(f"Server error {status} ({path}): {body}", **context)
    raise UnexpectedResponseError(f"Unexpected response {status} ({path}): {body}", **context)


def _is_tls_error(exc: BaseException) -> bool:
    """True if an ssl.SSLError sits anywhere in the exception chain."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, ssl.SSLError):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False


def build_ssl_context(cluster: Cluster | None, credential: Credential) -> ssl.SSLContext:
    """Build the TLS context for a cluster entry and the user's client certificate."""
    cafile = None
    cadata = None
    if cluster is not None and cluster.certificate_authority_data:
        try:
            cadata = base64.b64decode(cluster.certificate_authority_data, validate=True).decode()
        except (binascii.Error, ValueError) as e:
            raise ConfigError(f"Invalid certificate-authority-data: {e}") from e
    elif cluster is not None and cluster.certificate_authority:
        cafile = str(Path(cluster.certificate_authority).expanduser())

    try:
        ctx = ssl.create_default_context(cafile=cafile, cadata=cadata)
        if credential.client_cert_file:
            ctx.load_cert_chain(credential.client_cert_file, credential.client_key_file)
    except (ssl.SSLError, OSError) as e:
        raise ConfigError(f"Invalid TLS configuration: {e}") from e

    if cluster is not None and cluster.insecure_skip_tls_verify:
        logger.warning(
            "SECURITY WARNING: TLS certificate verification is disabled (insecure-skip-tls-verify=true). "
            "This should only be used for development/testing."
        )
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE

    return ctx


def _encode_body(body: Any, content_type: str) -> str | bytes:
    if isinstance(body, (str, bytes)):
        return body
    if isinstance(body, BaseModel):
        body = body.model_dump(mode="json", by_alias=True, exclude_none=True)
    if content_type == PATCH_CONTENT_TYPES["apply"]:
        return yaml.safe_dump(body, sort_keys=False)
    return json.dumps(body)


class _LiveTokenAuth(httpx.Auth):
    """Sets the Authorization header from the client's live credential state."""

    def __init__(self, client: KubeClient) -> None:
        self._client = client

    def auth_flow(self, request: httpx.Request) -> Iterator[httpx.Request]:
        header = self._client._authorization_header()
        if header and "Authorization" not in request.headers:
            request.headers["Authorization"] = header
        yield request


class _Pool:
    """One httpx.Client plus a lease count.

    A retired pool accepts no new leases and closes once the last lease is
    released, so requests already running on it finish normally.
    """

    def __init__(self, http: httpx.Client) -> None:
        self.http = http
        self._lock = threading.Lock()
        self._leases = 0
        self._retired = False

    @property
    def closed(self) -> bool:
        return self.http.is_closed

    def acquire(self) -> None:
        with self._lock:
            if self._retired:
                raise KubeError("Connection pool is closing")
            self._leases += 1

    def release(self) -> None:
        with self._lock:
            self._leases -= 1
            should_close = self._retired and self._leases == 0
        if should_close:
            self.http.close()

    def retire(self) -> None:
        with self._lock:
            self._retired = True
            should_close = self._leases == 0
        if should_close:
            self.http.close()


class KubeClient:
    """Pooled, authenticated client for one API server.

    Thread-safe: any number of threads may issue requests while the token
    watcher (or a TLS failure) swaps in a fresh pool.
    """

    def __init__(
        self,
        server: str,
        *,
        credential: Credential | None = None,
        token: str | None = None,
        tls: ssl.SSLContext | None = None,
        token_file: str | Path | None = None,
        namespace: str = "default",
        pool_size: int = 25,
        pool_timeout: float = 30.0,
        request_timeout: float = 30.0,
        watch_token_file: bool = True,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if pool_size <= 0:
            raise ValueError(f"pool_size must be positive (got {pool_size})")
        if pool_timeout <= 0:
            raise ValueError("pool_timeout must be positive")
        if request_timeout <= 0:
            raise ValueError("request_timeout must be positive")

        self.server = server.rstrip("/")
        self.namespace = namespace
        self._credential = credential or Credential(token=token)
        self._pool_size = pool_size
        self._pool_timeout = pool_timeout
        self._request_timeout = request_timeout
        self._transport = transport

        self._tls = tls
        if httpx.URL(self.server).scheme == "https" and self._tls is None:
            self._tls = build_ssl_context(None, self._credential)
            logger.debug("Auto-configured TLS context for HTTPS connection")

        source = token_file or self._credential.token_file
        self._token_file = Path(source) if source else None

        self._lock = threading.Lock()
        self._generation = 0
        self._live_token = self._load_token()
        self._pool: _Pool | None = self._create_pool()

        self._watcher: TokenRotationWatcher | None = None
        if self._token_file is not None and watch_token_file:
            self._watcher = self._start_token_watcher()

    # ── factories ─────────────────────────────────────────────────────

    @classmethod
    def from_config(
        cls,
        path: str | Path | None = None,
        *,
        context: str | None = None,
        cache_credentials: bool | None = None,
        **kwargs: Any,
    ) -> KubeClient:
        """Build a client from a kubeconfig file.

        Raises:
            ConfigError: If the kubeconfig or the selected context is unusable.
            ExecCredentialError: If an exec credential helper fails.
        """
        settings = get_settings()
        config = load_kubeconfig(path)
        context = context or settings.context or None
        cluster, user = config.resolve(context)

        use_cache = settings.cache_enabled if cache_credentials is None else cache_credentials
        cache = CredentialCache(settings.cache_dir) if use_cache else None
        credential = CredentialResolver(cache).resolve(user)

        try:
            tls = build_ssl_context(cluster, credential) if cluster.server.startswith("https") else None
        except ConfigError:
            credential.cleanup_temp_files()
            raise

        kwargs.setdefault("namespace", config.namespace_for(context) or "default")
        kwargs.setdefault("pool_size", settings.pool_size)
        kwargs.setdefault("pool_timeout", settings.pool_timeout)
        kwargs.setdefault("request_timeout", settings.request_timeout)
        return cls(cluster.server, credential=credential, tls=tls, **kwargs)

    @classmethod
    def in_cluster(cls, **kwargs: Any) -> KubeClient:
        """Build a client from the pod's service account."""
        host = os.environ.get("KUBERNETES_SERVICE_HOST")
        if not host:
            raise ConfigError("Not running in a cluster: KUBERNETES_SERVICE_HOST is not set")
        if ":" in host:
            host = f"[{host}]"
        port = os.environ.get("KUBERNETES_SERVICE_PORT")
        server = f"https://{host}:{port}" if port else f"https://{host}"

        tls = None
        if IN_CLUSTER_CA_CERT_PATH.exists():
            tls = ssl.create_default_context(cafile=str(IN_CLUSTER_CA_CERT_PATH))
        if IN_CLUSTER_TOKEN_PATH.exists():
            kwargs.setdefault("token_file", IN_CLUSTER_TOKEN_PATH)
        if IN_CLUSTER_NAMESPACE_PATH.exists():
            kwargs.setdefault("namespace", IN_CLUSTER_NAMESPACE_PATH.read_text().strip())

        settings = get_settings()
        kwargs.setdefault("pool_size", settings.pool_size)
        kwargs.setdefault("pool_timeout", settings.pool_timeout)
        kwargs.setdefault("request_timeout", settings.request_timeout)
        return cls(server, tls=tls, **kwargs)

    @classmethod
    def auto(cls, **kwargs: Any) -> KubeClient:
        """In-cluster config when running in a pod, otherwise the kubeconfig."""
        if os.environ.get("KUBERNETES_SERVICE_HOST"):
            return cls.in_cluster(**kwargs)
        kubeconfig = Path(get_settings().kubeconfig).expanduser()
        if kubeconfig.exists():
            return cls.from_config(kubeconfig, **kwargs)
        raise ConfigError(f"Cannot detect Kubernetes config: not in-cluster and {kubeconfig} not found")

    # ── requests ──────────────────────────────────────────────────────

    def get(
        self,
        path: str,
        params: dict[str, str] | None = None,
        *,
        headers: dict[str, str] | None = None,
        check_status: bool = True,
    ) -> httpx.Response:
        """GET, retrying once if the TLS handshake fails (likely token rotation)."""
        response, _ = self._dispatch("GET", path, params=params, headers=headers, retry_tls=True)
        if check_status:
            raise_for_status(response, path)
        return response

    @contextmanager
    def stream_get(
        self,
        path: str,
        params: dict[str, str] | None = None,
        *,
        headers: dict[str, str] | None = None,
        read_timeout: float | None = None,
        check_status: bool = True,
    ) -> Iterator[httpx.Response]:
        """Streaming GET. The pooled connection is held until the block exits."""
        timeout = None
        if read_timeout is not None:
            timeout = httpx.Timeout(
                self._request_timeout, connect=CONNECT_TIMEOUT, read=read_timeout, pool=self._pool_timeout
            )
        response, pool = self._dispatch(
            "GET", path, params=params, headers=headers, retry_tls=True, stream=True, timeout=timeout
        )
        try:
            if check_status and not 200 <= response.status_code < 400:
                response.read()
                raise_for_status(response, path)
            yield response
        finally:
            response.close()
            pool.release()

    def post(self, path: str, body: Any, **kwargs: Any) -> httpx.Response:
        return self._write("POST", path, body, "application/json", **kwargs)

    def put(self, path: str, body: Any, **kwargs: Any) -> httpx.Response:
        return self._write("PUT", path, body, "application/json", **kwargs)

    def patch(
        self,
        path: str,
        body: Any,
        *,
        content_type: str = "merge",
        params: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Partial update. ``content_type`` is a PATCH_CONTENT_TYPES key or MIME type."""
        content_type = PATCH_CONTENT_TYPES.get(content_type, content_type)
        if content_type not in PATCH_CONTENT_TYPES.values():
            raise ValueError(f"Unsupported patch content type '{content_type}'")
        if content_type == PATCH_CONTENT_TYPES["apply"] and not (params or {}).get("fieldManager"):
            raise ValueError("Server-side apply requires a fieldManager")
        return self._write("PATCH", path, body, content_type, params=params, **kwargs)

    def apply(
        self,
        path: str,
        body: Any,
        *,
        field_manager: str,
        force: bool = False,
        params: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Server-side apply attributed to ``field_manager``."""
        params = {**(params or {}), "fieldManager": field_manager}
        if force:
            params["force"] = "true"
        return self.patch(path, body, content_type="apply", params=params, **kwargs)

    def delete(self, path: str, body: Any = None, **kwargs: Any) -> httpx.Response:
        return self._write("DELETE", path, body, "application/json", **kwargs)

    def _write(
        self,
        method: str,
        path: str,
        body: Any,
        content_type: str,
        *,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        check_status: bool = True,
    ) -> httpx.Response:
        request_headers = dict(headers or {})
        content = None
        if body is not None:
            request_headers["Content-Type"] = content_type
            content = _encode_body(body, content_type)

        response, _ = self._dispatch(method, path, params=params, headers=request_headers, content=content)
        if check_status:
            raise_for_status(response, path)
        return response

    def _dispatch(
        self,
        method: str,
        path: str,
        *,
        retry_tls: bool = False,
        stream: bool = False,
        timeout: httpx.Timeout | None = None,
        **request_kwargs: Any,
    ) -> tuple[httpx.Response, _Pool]:
        """Send a request over a leased pool.

        For streaming requests the caller must release the returned pool once
        the response is closed; otherwise the lease is already released.
        """
        if timeout is not None:
            request_kwargs["timeout"] = timeout
        attempts = 2 if retry_tls else 1

        for attempt in range(1, attempts + 1):
            pool, generation = self._acquire()
            try:
                request = pool.http.build_request(method, path, **request_kwargs)
                response = pool.http.send(request, stream=stream)
            except httpx.PoolTimeout as e:
                pool.release()
                raise PoolExhaustedError(f"Timed out waiting for a pooled connection ({path})", path=path) from e
            except (httpx.TransportError, ssl.SSLError) as e:
                pool.release()
                if attempt < attempts and _is_tls_error(e):
                    logger.warning(f"SSL error (likely token rotation): {e}, recreating HTTP pool and retrying")
                    self.reload_token_and_pool("SSL error recovery", seen_generation=generation)
                    continue
                raise
            except BaseException:
                pool.release()
                raise

            if not stream:
                pool.release()
            return response, pool

        raise KubeError(f"Request to {path} was not sent", path=path)

    # ── live credential state ─────────────────────────────────────────

    @property
    def credential(self) -> Credential:
        return self._credential

    @property
    def generation(self) -> int:
        """Number of pool rebuilds so far."""
        with self._lock:
            return self._generation

    def current_token(self) -> str | None:
        with self._lock:
            return self._live_token

    def _authorization_header(self) -> str | None:
        token = self.current_token()
        if token:
            return f"Bearer {token}"
        return self._credential.authorization_header()

    def reload_token_and_pool(self, reason: str, *, seen_generation: int | None = None) -> bool:
        """Re-read the token source and swap in a fresh pool.

        With ``seen_generation``, the reload is skipped if the pool was already
        rebuilt since that generation was observed. Returns True if a new pool
        was installed.
        """
        with self._lock:
            if self._pool is None:
                return False
            if seen_generation is not None and seen_generation != self._generation:
                logger.debug(f"{reason}: pool already rebuilt, skipping reload")
                return False
            logger.info(f"{reason}, reloading token and recreating HTTP pool")
            self._live_token = self._load_token()
            old_pool = self._pool
            self._pool = self._create_pool()
            self._generation += 1
        old_pool.retire()
        return True

    def _acquire(self) -> tuple[_Pool, int]:
        with self._lock:
            pool = self._pool
            if pool is None:
                raise KubeError("Client is closed")
            pool.acquire()
            return pool, self._generation

    def _load_token(self) -> str | None:
        if self._token_file is None:
            return None
        try:
            return self._token_file.read_text().strip()
        except OSError as e:
            logger.warning(f"Failed to read token: {e}")
            return None

    def _create_pool(self) -> _Pool:
        options: dict[str, Any] = {
            "base_url": self.server,
            "auth": _LiveTokenAuth(self),
            "headers": {"User-Agent": USER_AGENT, "Accept": "application/json"},
            "timeout": httpx.Timeout(self._request_timeout, connect=CONNECT_TIMEOUT, pool=self._pool_timeout),
            "limits": httpx.Limits(max_connections=self._pool_size, max_keepalive_connections=self._pool_size),
        }
        if self._transport is not None:
            options["transport"] = self._transport
        elif self._tls is not None:
            options["verify"] = self._tls
        return _Pool(httpx.Client(**options))

    def _start_token_watcher(self) -> TokenRotationWatcher | None:
        watcher = TokenRotationWatcher(self._token_file, self.reload_token_and_pool)  # type: ignore[arg-type]
        if not watcher.start():
            return None
        return watcher

    # ── lifecycle ─────────────────────────────────────────────────────

    def close(self) -> None:
        """Stop the token watcher, close the pool and delete temp credential files."""
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.retire()
        self._credential.cleanup_temp_files()

    def __enter__(self) -> KubeClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
