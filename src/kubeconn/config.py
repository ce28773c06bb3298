"""Configuration management for kubeconn.

Loads client settings from the environment (and a local .env) and parses
kubeconfig files into plain models.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from kubeconn.exceptions import ConfigError

DEFAULT_KUBECONFIG = "~/.kube/config"
DEFAULT_CACHE_DIR = "~/.kube/cache"

IN_CLUSTER_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")
IN_CLUSTER_TOKEN_PATH = IN_CLUSTER_DIR / "token"
IN_CLUSTER_CA_CERT_PATH = IN_CLUSTER_DIR / "ca.crt"
IN_CLUSTER_NAMESPACE_PATH = IN_CLUSTER_DIR / "namespace"


class Settings(BaseModel):
    """Client settings loaded from environment variables."""
    kubeconfig: str = Field(default=DEFAULT_KUBECONFIG, description="Path to the kubeconfig file")
    context: str = Field(default="", description="Context to use instead of current-context")
    pool_size: int = Field(default=25, description="Maximum pooled connections")
    pool_timeout: float = Field(default=30.0, description="Seconds to wait for a pooled connection")
    request_timeout: float = Field(default=30.0, description="Per-request read timeout in seconds")
    cache_enabled: bool = Field(default=True, description="Cache exec provider credentials")
    cache_dir: str = Field(default=DEFAULT_CACHE_DIR, description="Directory for cached credentials")
    watch_timeout: int = Field(default=600, description="Server-side watch timeout in seconds")


# ── kubeconfig ──────────────────────────────────────────────────────


class _KubeModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Cluster(_KubeModel):
    server: str
    certificate_authority: str | None = Field(default=None, alias="certificate-authority")
    certificate_authority_data: str | None = Field(default=None, alias="certificate-authority-data")
    insecure_skip_tls_verify: bool = Field(default=False, alias="insecure-skip-tls-verify")


class NamedCluster(_KubeModel):
    name: str
    cluster: Cluster


class Context(_KubeModel):
    cluster: str
    user: str
    namespace: str | None = None


class NamedContext(_KubeModel):
    name: str
    context: Context


class ExecEnvVar(_KubeModel):
    name: str
    value: str


class ExecConfig(_KubeModel):
    api_version: str = Field(default="client.authentication.k8s.io/v1", alias="apiVersion")
    command: str
    args: list[str] = Field(default_factory=list)
    env: list[ExecEnvVar] = Field(default_factory=list)
    install_hint: str | None = Field(default=None, alias="installHint")

    @field_validator("args", "env", mode="before")
    @classmethod
    def _null_as_empty(cls, v):
        return [] if v is None else v


class User(_KubeModel):
    """Credential entries of one kubeconfig user. Any combination may be present."""
    token: str | None = None
    token_file: str | None = Field(default=None, alias="tokenFile")
    client_certificate: str | None = Field(default=None, alias="client-certificate")
    client_certificate_data: str | None = Field(default=None, alias="client-certificate-data")
    client_key: str | None = Field(default=None, alias="client-key")
    client_key_data: str | None = Field(default=None, alias="client-key-data")
    username: str | None = None
    password: str | None = None
    exec: ExecConfig | None = None


class NamedUser(_KubeModel):
    name: str
    user: User = Field(default_factory=User)


class KubeConfig(_KubeModel):
    """A parsed kubeconfig file."""
    current_context: str = Field(default="", alias="current-context")
    clusters: list[NamedCluster] = Field(default_factory=list)
    contexts: list[NamedContext] = Field(default_factory=list)
    users: list[NamedUser] = Field(default_factory=list)

    def resolve(self, context: str | None = None) -> tuple[Cluster, User]:
        """Return the cluster and user entries selected by a context.

        Raises:
            ConfigError: If the context, its cluster or its user is missing.
        """
        name = context or self.current_context
        if not name:
            raise ConfigError("No context given and kubeconfig has no current-context")

        ctx = next((c for c in self.contexts if c.name == name), None)
        if ctx is None:
            raise ConfigError(f"Context '{name}' not found in kubeconfig")

        cluster = next((c for c in self.clusters if c.name == ctx.context.cluster), None)
        if cluster is None:
            raise ConfigError(f"Cluster '{ctx.context.cluster}' not found in kubeconfig")

        user = next((u for u in self.users if u.name == ctx.context.user), None)
        if user is None:
            raise ConfigError(f"User '{ctx.context.user}' not found in kubeconfig")

        return cluster.cluster, user.user

    def namespace_for(self, context: str | None = None) -> str | None:
        """Default namespace configured on a context, if any."""
        name = context or self.current_context
        ctx = next((c for c in self.contexts if c.name == name), None)
        return ctx.context.namespace if ctx else None


def _resolve_path(value: str | None, base: Path) -> str | None:
    """Expand ~ and make a kubeconfig file reference absolute relative to the kubeconfig."""
    if not value:
        return value
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = base / path
    return str(path)


def load_kubeconfig(path: str | Path | None = None) -> KubeConfig:
    """Parse a kubeconfig file.

    Relative certificate, key and token file references are resolved against
    the directory holding the kubeconfig.

    Raises:
        ConfigError: If the file is missing, not YAML, or not a kubeconfig.
    """
    config_path = Path(path or get_settings().kubeconfig).expanduser()
    if not config_path.exists():
        raise ConfigError(f"Kubeconfig not found at {config_path}")

    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        config = KubeConfig.model_validate(raw)
    except (yaml.YAMLError, ValidationError) as e:
        raise ConfigError(f"Invalid kubeconfig {config_path}: {e}") from e

    base = config_path.resolve().parent
    for entry in config.clusters:
        entry.cluster.certificate_authority = _resolve_path(entry.cluster.certificate_authority, base)
    for entry in config.users:
        user = entry.user
        user.token_file = _resolve_path(user.token_file, base)
        user.client_certificate = _resolve_path(user.client_certificate, base)
        user.client_key = _resolve_path(user.client_key, base)
    return config


# ── settings ────────────────────────────────────────────────────────


def _env(*keys: str, default: str = "") -> str:
    """Try multiple env var names, return the first one found."""
    for key in keys:
        val = os.environ.get(key, "")
        if val:
            return val.strip().strip('"')
    return default


def _load_settings() -> Settings:
    """Load settings from KUBECONN_* environment variables.

    ``KUBECONFIG`` is honored when ``KUBECONN_KUBECONFIG`` is unset; only its
    first entry is used.
    """
    kubeconfig = _env("KUBECONN_KUBECONFIG", "KUBECONFIG", default=DEFAULT_KUBECONFIG)
    return Settings(
        kubeconfig=kubeconfig.split(os.pathsep)[0],
        context=_env("KUBECONN_CONTEXT"),
        pool_size=int(_env("KUBECONN_POOL_SIZE", default="25")),
        pool_timeout=float(_env("KUBECONN_POOL_TIMEOUT", default="30")),
        request_timeout=float(_env("KUBECONN_REQUEST_TIMEOUT", default="30")),
        cache_enabled=_env("KUBECONN_CACHE_ENABLED", default="true").lower() in ("true", "1", "yes"),
        cache_dir=_env("KUBECONN_CACHE_DIR", default=DEFAULT_CACHE_DIR),
        watch_timeout=int(_env("KUBECONN_WATCH_TIMEOUT", default="600")),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and cache client settings, reading .env from the working directory first."""
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path)
    return _load_settings()
