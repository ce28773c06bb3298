"""On-disk cache for exec provider credentials.

Follows kubectl's layout: one JSON file per helper invocation under
``~/.kube/cache``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from kubeconn.config import DEFAULT_CACHE_DIR
from kubeconn.models.credentials import CachedCredential, Credential

logger = logging.getLogger(__name__)


class CredentialCache:
    """Expiration-aware credential store.

    Entries live in ``{cache_dir}/exec-{key}.json`` as
    ``{"credential": {...}, "expiresAt": "..."}`` with owner-only permissions.
    Writing is best effort: the cache is an optimization, so failures are
    logged and swallowed.
    """

    def __init__(self, cache_dir: str | Path = DEFAULT_CACHE_DIR) -> None:
        self._dir = Path(cache_dir).expanduser()

    @property
    def directory(self) -> Path:
        return self._dir

    @staticmethod
    def key_for(command: str, args: list[str] | None = None) -> str:
        """Generate a stable cache key from an exec command and its arguments."""
        raw = f"{command}|{'|'.join(args or [])}"
        return hashlib.sha256(raw.encode()).hexdigest()[:16]

    def get(self, key: str) -> Credential | None:
        """Return the cached credential, or None if absent or expired."""
        path = self._path(key)
        if not path.exists():
            return None

        try:
            cached = CachedCredential.model_validate_json(path.read_text())
        except (OSError, ValidationError) as e:
            logger.warning(f"Failed to load cached credential {path.name}: {e}")
            self._remove(path)
            return None

        if cached.is_expired():
            logger.debug(f"Cached credential expired for key: {key}")
            self._remove(path)
            return None

        logger.debug(f"Using cached credential for key: {key} (expires: {cached.expires_at})")
        return cached.credential

    def set(self, key: str, credential: Credential, expires_at: datetime | None = None) -> None:
        """Store a credential with an optional expiry."""
        path = self._path(key)
        cached = CachedCredential(credential=credential, expires_at=expires_at)
        payload = cached.model_dump(mode="json", by_alias=True, exclude_none=True)

        try:
            self._ensure_dir()
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                json.dump(payload, f)
            os.chmod(path, 0o600)
            logger.debug(f"Cached credential for key: {key} (expires: {expires_at})")
        except OSError as e:
            logger.warning(f"Failed to cache credential: {e}")

    def clear_all(self) -> int:
        """Delete every cached credential. Returns the number of entries removed."""
        if not self._dir.is_dir():
            return 0
        count = 0
        for path in self._dir.glob("exec-*.json"):
            if self._remove(path):
                logger.debug(f"Deleted cache file: {path}")
                count += 1
        return count

    def _ensure_dir(self) -> None:
        if self._dir.is_dir():
            return
        self._dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        os.chmod(self._dir, 0o700)
        logger.debug(f"Created cache directory: {self._dir}")

    def _path(self, key: str) -> Path:
        return self._dir / f"exec-{key}.json"

    @staticmethod
    def _remove(path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to remove cache file {path}: {e}")
            return False
