"""Structured error output for the CLI."""

from __future__ import annotations

import json
import sys

import httpx
from rich.console import Console

from kubeconn.exceptions import (
    AuthenticationError,
    ClientError,
    ConfigError,
    ConflictError,
    ExecCredentialError,
    GoneError,
    KubeError,
    NotFoundError,
    PoolExhaustedError,
    ServerError,
    WatchRetriesExhaustedError,
)

console = Console(stderr=True)

# Most specific classes first
_ERROR_CODES: list[tuple[type[BaseException], str, str | None]] = [
    (ExecCredentialError, "EXEC_CREDENTIAL_ERROR", "Check the exec plugin in your kubeconfig user entry"),
    (AuthenticationError, "AUTH_ERROR", "Credentials were rejected - check your kubeconfig user and RBAC"),
    (ConfigError, "CONFIG_ERROR", "Check KUBECONFIG / --kubeconfig and the selected context"),
    (NotFoundError, "NOT_FOUND", "The resource or API path does not exist - verify the path"),
    (ConflictError, "CONFLICT", "The resource changed or already exists - re-read and retry"),
    (GoneError, "GONE", "Resource version too old - restart from a fresh list"),
    (ClientError, "CLIENT_ERROR", None),
    (ServerError, "SERVER_ERROR", "The API server failed - retry later"),
    (PoolExhaustedError, "POOL_EXHAUSTED", "Too many concurrent requests - raise KUBECONN_POOL_SIZE"),
    (WatchRetriesExhaustedError, "WATCH_FAILED", "The watch kept failing - check connectivity"),
    (httpx.TimeoutException, "TIMEOUT", "Request timed out - try again or check network connectivity"),
    (httpx.TransportError, "CONNECTION_ERROR", "Connection error - check network connectivity"),
    (KubeError, "KUBE_ERROR", None),
]


def classify(error: BaseException) -> tuple[str, str | None]:
    """Map an exception to an error code and an optional actionable hint."""
    for error_type, code, hint in _ERROR_CODES:
        if isinstance(error, error_type):
            return code, hint
    return "RUNTIME_ERROR", None


def handle_error(error: BaseException) -> None:
    """Write a JSON error object to stdout and a readable message to stderr.

    stdout: {"error": true, "code": "...", "message": "...", "status": 404, "path": "...", "hint": "..."}
    """
    message = str(error)
    code, hint = classify(error)

    error_obj: dict[str, object] = {
        "error": True,
        "code": code,
        "message": message,
    }
    if isinstance(error, KubeError):
        if error.status_code is not None:
            error_obj["status"] = error.status_code
        if error.path:
            error_obj["path"] = error.path
    if hint:
        error_obj["hint"] = hint

    json.dump(error_obj, sys.stdout)
    sys.stdout.write("\n")

    console.print(f"[red]Error:[/red] {message}")
    if hint:
        console.print(f"[dim]Hint: {hint}[/dim]")
