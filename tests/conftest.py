"""Shared fixtures for the kubeconn test suite."""

import base64
import json
import subprocess
from pathlib import Path
from typing import Callable

import httpx
import pytest
import yaml

from kubeconn.client import KubeClient
from kubeconn.config import get_settings

SERVER = "http://k8s.test"


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Keep every test away from the real ~/.kube and any ambient env."""
    for var in ("KUBECONFIG", "KUBECONN_KUBECONFIG", "KUBECONN_CONTEXT", "KUBERNETES_SERVICE_HOST",
                "KUBERNETES_SERVICE_PORT", "KUBECONN_WATCH_TIMEOUT"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("KUBECONN_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("KUBECONN_KUBECONFIG", str(tmp_path / "missing-kubeconfig"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_client():
    """Factory for clients backed by an httpx.MockTransport handler."""
    clients: list[KubeClient] = []

    def factory(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> KubeClient:
        kwargs.setdefault("watch_token_file", False)
        client = KubeClient(kwargs.pop("server", SERVER), transport=httpx.MockTransport(handler), **kwargs)
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.close()


@pytest.fixture
def token_file(tmp_path) -> Path:
    path = tmp_path / "sa" / "token"
    path.parent.mkdir()
    path.write_text("token-v1\n")
    return path


@pytest.fixture
def write_kubeconfig(tmp_path):
    """Write a kubeconfig with one context per user entry and return its path."""

    def writer(users: dict[str, dict], server: str = SERVER, namespace: str | None = None) -> Path:
        contexts = []
        for name in users:
            context = {"cluster": "test-cluster", "user": name}
            if namespace:
                context["namespace"] = namespace
            contexts.append({"name": name, "context": context})
        config = {
            "apiVersion": "v1",
            "kind": "Config",
            "current-context": next(iter(users)),
            "clusters": [{"name": "test-cluster", "cluster": {"server": server}}],
            "contexts": contexts,
            "users": [{"name": name, "user": user} for name, user in users.items()],
        }
        path = tmp_path / "kubeconfig"
        path.write_text(yaml.safe_dump(config))
        return path

    return writer


def b64(text: str) -> str:
    return base64.b64encode(text.encode()).decode()


def exec_output(token: str | None = "exec-token", expiration: str | None = None, **status) -> str:
    """Serialized ExecCredential as an exec plugin would print it."""
    body = dict(status)
    if token is not None:
        body["token"] = token
    if expiration:
        body["expirationTimestamp"] = expiration
    return json.dumps({
        "apiVersion": "client.authentication.k8s.io/v1",
        "kind": "ExecCredential",
        "status": body,
    })


def completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def watch_lines(*events: dict) -> bytes:
    return b"".join(json.dumps(e).encode() + b"\n" for e in events)


def pod_event(name: str, version: str, event_type: str = "ADDED") -> dict:
    return {
        "type": event_type,
        "object": {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {"name": name, "namespace": "default", "resourceVersion": version},
        },
    }
