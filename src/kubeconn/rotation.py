"""Service account token rotation detection.

Kubernetes rotates projected tokens by writing a new timestamped directory
and atomically renaming the ``..data`` symlink over the old one, so the token
file is never modified in place. The watcher therefore observes the token's
parent directory instead of the file.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver
from watchdog.observers.polling import PollingObserver

logger = logging.getLogger(__name__)

ROTATION_MARKER = "..data"


class _RotationHandler(FileSystemEventHandler):
    """Translates directory events into rotation callbacks."""

    def __init__(self, token_name: str, on_rotate: Callable[[str], None]) -> None:
        super().__init__()
        self._token_name = token_name
        self._on_rotate = on_rotate
        self.active = True

    def on_moved(self, event: FileSystemEvent) -> None:
        name = os.path.basename(os.fsdecode(event.dest_path))
        if name == ROTATION_MARKER:
            self._fire(f"Token rotated (moved {name})")
        elif name == self._token_name:
            self._fire(f"Token file replaced ({name})")

    def on_modified(self, event: FileSystemEvent) -> None:
        if self._is_token(event):
            self._fire("Token file changed (modified)")

    def on_closed(self, event: FileSystemEvent) -> None:
        if self._is_token(event):
            self._fire("Token file changed (closed after write)")

    def _is_token(self, event: FileSystemEvent) -> bool:
        return not event.is_directory and os.path.basename(os.fsdecode(event.src_path)) == self._token_name

    def _fire(self, reason: str) -> None:
        if not self.active:
            return
        try:
            self._on_rotate(reason)
        except Exception:
            logger.exception(f"Token reload failed after: {reason}")


class TokenRotationWatcher:
    """Calls ``on_rotate(reason)`` whenever the token file is rotated.

    Runs on a watchdog observer thread. The native observer is used by
    default; pass ``polling=True`` (or a custom ``observer_factory``) for
    filesystems without change notifications.
    """

    def __init__(
        self,
        token_path: str | Path,
        on_rotate: Callable[[str], None],
        *,
        polling: bool = False,
        observer_factory: Callable[[], BaseObserver] | None = None,
    ) -> None:
        self._token_path = Path(token_path)
        self._handler = _RotationHandler(self._token_path.name, on_rotate)
        self._observer_factory = observer_factory or (PollingObserver if polling else Observer)
        self._observer: BaseObserver | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> bool:
        """Start watching. Returns False if the watcher could not be started."""
        directory = self._token_path.parent
        with self._lock:
            if self._observer is not None:
                return True
            if not directory.is_dir():
                logger.warning(f"Token directory {directory} does not exist, not watching for rotation")
                return False

            observer = self._observer_factory()
            try:
                observer.schedule(self._handler, str(directory), recursive=False)
                observer.daemon = True
                observer.start()
            except (OSError, RuntimeError) as e:
                logger.warning(f"Failed to start token file watcher: {e}")
                return False

            self._handler.active = True
            self._observer = observer

        logger.info(f"Started watcher for token directory: {directory}")
        return True

    def stop(self, timeout: float = 5.0) -> None:
        """Stop watching. Notifications arriving after this are dropped."""
        with self._lock:
            observer, self._observer = self._observer, None
            self._handler.active = False
        if observer is None:
            return
        observer.stop()
        observer.join(timeout)
