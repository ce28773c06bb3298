"""Credential data models."""

from __future__ import annotations

import base64
import logging
import os
import threading
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

logger = logging.getLogger(__name__)


class Credential(BaseModel):
    """Authentication material for one API server user.

    At most one mode is active, in the order token > client certificate > basic.
    Temporary files created for embedded certificate data are owned by the
    credential and removed by ``cleanup_temp_files``.
    """
    token: str | None = None
    token_file: str | None = None
    username: str | None = None
    password: str | None = None
    client_cert_file: str | None = None
    client_key_file: str | None = None

    _temp_files: list[str] = PrivateAttr(default_factory=list)
    _temp_files_lock: threading.Lock = PrivateAttr(default_factory=threading.Lock)

    @property
    def auth_mode(self) -> str:
        if self.token:
            return "token"
        if self.client_cert_file:
            return "client-certificate"
        if self.username:
            return "basic"
        return "none"

    def authorization_header(self) -> str | None:
        """Header value for token or basic auth; certificates go on the TLS context."""
        if self.token:
            return f"Bearer {self.token}"
        if self.username:
            raw = f"{self.username}:{self.password or ''}".encode()
            return f"Basic {base64.b64encode(raw).decode()}"
        return None

    def track_temp_file(self, path: str) -> None:
        with self._temp_files_lock:
            self._temp_files.append(path)

    @property
    def temp_files(self) -> list[str]:
        with self._temp_files_lock:
            return list(self._temp_files)

    def cleanup_temp_files(self) -> None:
        """Delete every temporary file this credential created."""
        with self._temp_files_lock:
            for path in self._temp_files:
                try:
                    os.unlink(path)
                except FileNotFoundError:
                    pass
                except OSError as e:
                    logger.warning(f"Failed to remove temp file {path}: {e}")
            self._temp_files.clear()


class CachedCredential(BaseModel):
    """A credential persisted by the exec credential cache."""
    model_config = ConfigDict(populate_by_name=True)

    credential: Credential
    expires_at: datetime | None = Field(default=None, alias="expiresAt")

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return (now or datetime.now(timezone.utc)) >= expires_at


class ExecCredentialStatus(BaseModel):
    """``status`` block of an ExecCredential document."""
    model_config = ConfigDict(populate_by_name=True)

    token: str | None = None
    client_certificate_data: str | None = Field(default=None, alias="clientCertificateData")
    client_key_data: str | None = Field(default=None, alias="clientKeyData")
    expiration_timestamp: datetime | None = Field(default=None, alias="expirationTimestamp")


class ExecCredential(BaseModel):
    """Output of an exec credential helper (client.authentication.k8s.io)."""
    model_config = ConfigDict(populate_by_name=True)

    api_version: str = Field(default="client.authentication.k8s.io/v1", alias="apiVersion")
    kind: str = "ExecCredential"
    status: ExecCredentialStatus
