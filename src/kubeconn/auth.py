"""Credential resolution for Kubernetes users.

Turns a kubeconfig user entry into a single Credential, running exec
credential helpers (with caching) when configured.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from kubeconn.config import ExecConfig, User
from kubeconn.exceptions import ConfigError, ExecCredentialError
from kubeconn.models.credentials import Credential, ExecCredential
from kubeconn.utils.cache import CredentialCache

logger = logging.getLogger(__name__)


def materialize_pem(data: str, prefix: str, owner: Credential) -> str:
    """Decode base64 PEM data into an owner-only temp file tracked by ``owner``.

    Returns:
        The temp file path.
    """
    try:
        pem = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigError(f"Invalid base64 data for {prefix}: {e}") from e

    # mkstemp creates the file 0600 before anything is written
    fd, path = tempfile.mkstemp(prefix=f"{prefix}-", suffix=".pem")
    owner.track_temp_file(path)
    with os.fdopen(fd, "wb") as f:
        f.write(pem)
    return path


class CredentialResolver:
    """Picks one authentication strategy per user entry by fixed priority.

    Priority: exec provider > token / tokenFile > client certificate > basic auth.
    The order lives in ``strategies`` only; the first predicate that matches wins.
    """

    def __init__(
        self,
        cache: CredentialCache | None = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self._cache = cache
        self._runner = runner
        self.strategies: list[tuple[str, Callable[[User], bool], Callable[[User], Credential]]] = [
            ("exec", lambda u: u.exec is not None, self._from_exec),
            ("token", lambda u: bool(u.token or u.token_file), self._from_token),
            (
                "client-certificate",
                lambda u: bool(u.client_certificate or u.client_certificate_data),
                self._from_client_certificate,
            ),
            ("basic", lambda u: bool(u.username), self._from_basic),
        ]

    def select(self, user: User) -> str | None:
        """Name of the strategy that would be used for ``user``, or None."""
        for name, applies, _ in self.strategies:
            if applies(user):
                return name
        return None

    def resolve(self, user: User) -> Credential:
        """Build the credential for a user entry. Unauthenticated if nothing applies."""
        for name, applies, build in self.strategies:
            if applies(user):
                logger.debug(f"Resolving credential with '{name}' strategy")
                return build(user)
        return Credential()

    # ── strategies ────────────────────────────────────────────────────

    def _from_token(self, user: User) -> Credential:
        if user.token:
            return Credential(token=user.token)

        path = Path(user.token_file).expanduser()  # type: ignore[arg-type]
        try:
            token = path.read_text().strip()
        except OSError as e:
            raise ConfigError(f"Cannot read token file {path}: {e}") from e
        return Credential(token=token, token_file=str(path))

    def _from_client_certificate(self, user: User) -> Credential:
        credential = Credential()
        try:
            if user.client_certificate_data:
                credential.client_cert_file = materialize_pem(
                    user.client_certificate_data, "k8s-client-cert", credential
                )
            elif user.client_certificate:
                credential.client_cert_file = str(Path(user.client_certificate).expanduser())

            if user.client_key_data:
                credential.client_key_file = materialize_pem(user.client_key_data, "k8s-client-key", credential)
            elif user.client_key:
                credential.client_key_file = str(Path(user.client_key).expanduser())
        except ConfigError:
            credential.cleanup_temp_files()
            raise
        return credential

    def _from_basic(self, user: User) -> Credential:
        return Credential(username=user.username, password=user.password)

    def _from_exec(self, user: User) -> Credential:
        exec_config: ExecConfig = user.exec  # type: ignore[assignment]
        cache_key = CredentialCache.key_for(exec_config.command, exec_config.args)

        if self._cache is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                logger.debug("Using cached exec provider credential")
                return cached

        exec_credential = self._run_exec(exec_config)
        status = exec_credential.status
        logger.debug(f"Exec provider returned credential (expires: {status.expiration_timestamp})")

        if status.token:
            credential = Credential(token=status.token)
        elif status.client_certificate_data:
            credential = Credential()
            try:
                credential.client_cert_file = materialize_pem(
                    status.client_certificate_data, "k8s-exec-cert", credential
                )
                if status.client_key_data:
                    credential.client_key_file = materialize_pem(
                        status.client_key_data, "k8s-exec-key", credential
                    )
            except ConfigError as e:
                credential.cleanup_temp_files()
                raise ExecCredentialError(f"Exec provider returned invalid certificate data: {e}") from e
        else:
            raise ExecCredentialError("Exec provider returned credential without token or certificate")

        # Certificate credentials point at temp files that will not exist when
        # the cache entry is read back, so only tokens are cached.
        if self._cache is not None:
            if credential.token:
                self._cache.set(cache_key, credential, status.expiration_timestamp)
                logger.debug("Cached exec provider token credential")
            else:
                logger.debug("Skipping cache for cert-based exec credential (temp files not cacheable)")

        return credential

    def _run_exec(self, exec_config: ExecConfig) -> ExecCredential:
        """Run the helper once and parse its ExecCredential output."""
        argv = [exec_config.command, *exec_config.args]
        logger.debug(f"Executing credential provider: {' '.join(argv)}")

        env = dict(os.environ)
        env.update({var.name: var.value for var in exec_config.env})
        env["KUBERNETES_EXEC_INFO"] = json.dumps({
            "apiVersion": exec_config.api_version,
            "kind": "ExecCredential",
            "spec": {"interactive": False},
        })

        try:
            result = self._runner(argv, env=env, capture_output=True, text=True, check=False)
        except OSError as e:
            message = f"Exec provider '{exec_config.command}' could not be started: {e}"
            if exec_config.install_hint:
                message += f"\n{exec_config.install_hint}"
            raise ExecCredentialError(message) from e

        if result.returncode != 0:
            error_msg = (result.stderr or "").strip()
            logger.error(f"Exec provider failed (exit {result.returncode}): {error_msg}")
            raise ExecCredentialError(
                f"Exec provider failed (exit {result.returncode}): {error_msg}",
                body=error_msg,
            )

        try:
            return ExecCredential.model_validate_json(result.stdout)
        except ValidationError as e:
            logger.error(f"Failed to parse exec provider output: {e}")
            raise ExecCredentialError(f"Failed to parse exec provider output: {e}") from e
