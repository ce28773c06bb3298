"""Resumable watch streams.

A watch is a long-lived GET returning one JSON event per line. The stream
tracks the last resource version it delivered so reconnects resume instead
of replaying, restarts from "0" when the server reports the version as Gone,
and backs off exponentially on failures.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Generator, Iterator

import httpx
from pydantic import BaseModel, ValidationError

from kubeconn.client import raise_for_status
from kubeconn.exceptions import (
    AuthenticationError,
    ClientError,
    MalformedEventError,
    PoolExhaustedError,
    ServerError,
    UnexpectedResponseError,
    WatchRetriesExhaustedError,
)
from kubeconn.models.resources import Status, resource_version_of
from kubeconn.models.watch import EventType, WatchEvent

if TYPE_CHECKING:
    from kubeconn.client import KubeClient

logger = logging.getLogger(__name__)

# Extra read time beyond timeoutSeconds before the client gives up on an idle stream
WATCH_READ_SLACK = 30.0

# Failures that trigger a backoff and reconnect
RETRYABLE_ERRORS = (
    httpx.TransportError,
    ClientError,
    ServerError,
    UnexpectedResponseError,
    PoolExhaustedError,
    MalformedEventError,
)


@dataclass
class RetryState:
    """Consecutive-failure bookkeeping for one watch."""
    max_retries: int = -1
    initial_backoff: float = 1.0
    max_backoff: float = 30.0
    retries: int = 0
    backoff: float = field(init=False)

    def __post_init__(self) -> None:
        self.backoff = self.initial_backoff

    @property
    def exhausted(self) -> bool:
        return self.max_retries >= 0 and self.retries >= self.max_retries

    def reset(self) -> None:
        self.retries = 0
        self.backoff = self.initial_backoff

    def record_failure(self) -> float | None:
        """Count a failure and return the delay before reconnecting.

        Returns None once the retry budget is spent.
        """
        self.retries += 1
        if self.exhausted:
            return None
        wait = self.backoff
        self.backoff = min(self.backoff * 2, self.max_backoff)
        return wait


class WatchStream:
    """Iterate over watch events for one collection path.

    Example::

        stream = WatchStream(client, "/api/v1/namespaces/default/pods")
        for event in stream:
            print(event.type, event.object["metadata"]["name"])

    Iteration ends when ``stop()`` is called, when a ``run`` callback returns
    False, or when the caller breaks out of the loop. Authentication failures
    and exhausted retries raise.
    """

    def __init__(
        self,
        client: KubeClient,
        path: str,
        *,
        resource_version: str = "0",
        timeout_seconds: int = 600,
        max_retries: int = -1,
        initial_backoff: float = 1.0,
        max_backoff: float = 30.0,
        params: dict[str, str] | None = None,
        model: type[BaseModel] | None = None,
        sleep: Callable[[float], Any] | None = None,
    ) -> None:
        self._client = client
        self._path = path
        self._timeout_seconds = timeout_seconds
        self._params = dict(params or {})
        self._model = model
        self._stopped = threading.Event()
        self._sleep = sleep or self._stopped.wait
        self.resource_version = resource_version
        self.retry = RetryState(
            max_retries=max_retries,
            initial_backoff=initial_backoff,
            max_backoff=max_backoff,
        )

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def stop(self) -> None:
        """Ask the stream to end after the current event; also interrupts a backoff wait."""
        self._stopped.set()

    def query(self) -> dict[str, str]:
        params = dict(self._params)
        params["watch"] = "1"
        params["resourceVersion"] = self.resource_version
        if self._timeout_seconds > 0:
            params["timeoutSeconds"] = str(self._timeout_seconds)
        return params

    def run(self, callback: Callable[[WatchEvent], bool | None]) -> None:
        """Deliver events to ``callback`` until it returns False."""
        for event in self:
            if callback(event) is False:
                self.stop()

    def __iter__(self) -> Iterator[WatchEvent]:
        read_timeout = self._timeout_seconds + WATCH_READ_SLACK if self._timeout_seconds > 0 else None

        while not self.stopped:
            try:
                with self._client.stream_get(
                    self._path, self.query(), read_timeout=read_timeout, check_status=False
                ) as response:
                    if not 200 <= response.status_code < 300:
                        response.read()
                        self._handle_http_error(response)
                        continue

                    progressed = yield from self._consume(response)
                    logger.debug(f"Watch stream for {self._path} closed, reconnecting at {self.resource_version}")

                if not progressed and not self.stopped:
                    logger.debug(
                        f"Watch stream for {self._path} closed without events, "
                        f"waiting {self.retry.initial_backoff:.1f}s"
                    )
                    self._sleep(self.retry.initial_backoff)
            except AuthenticationError:
                raise
            except RETRYABLE_ERRORS as e:
                wait = self.retry.record_failure()
                if wait is None:
                    raise WatchRetriesExhaustedError(
                        f"Watch max retries ({self.retry.max_retries}) exceeded for {self._path}: {e}",
                        path=self._path,
                    ) from e
                logger.warning(
                    f"Watch connection failed for {self._path} (attempt {self.retry.retries}): {e}. "
                    f"Retrying in {wait:.1f}s..."
                )
                self._sleep(wait)

    def _handle_http_error(self, response: httpx.Response) -> None:
        status = response.status_code
        if status == 410:
            logger.warning(f"Watch resource version expired for {self._path}, restarting from beginning")
            self.resource_version = "0"
            return
        if status in (401, 403):
            raise AuthenticationError(
                f"Watch authentication failed ({status}) for {self._path}",
                path=self._path,
                status_code=status,
                body=response.text,
            )
        raise_for_status(response, self._path)

    def _consume(self, response: httpx.Response) -> Generator[WatchEvent, None, bool]:
        """Yield decoded events from one connection.

        Returns True when the connection delivered an event, a bookmark or a
        Gone restart. The retry budget resets once the connection makes progress.
        """
        progressed = False
        for line in response.iter_lines():
            if not line.strip():
                continue
            try:
                event = WatchEvent.model_validate(json.loads(line))
            except (json.JSONDecodeError, ValidationError) as e:
                raise MalformedEventError(f"Malformed watch event for {self._path}: {e}", path=self._path) from e

            if event.type == EventType.ERROR or Status.looks_like(event.object):
                raw = event.object if isinstance(event.object, dict) else {}
                status = Status.model_validate(raw)
                logger.error(f"Watch error for {self._path}: {status.message}")
                if status.code == 410:
                    self.resource_version = "0"
                    self.retry.reset()
                    return True
                return progressed

            version = resource_version_of(event.object)
            if event.type == EventType.BOOKMARK:
                if version:
                    self.resource_version = version
                self.retry.reset()
                progressed = True
                continue

            if self._model is not None:
                try:
                    event.object = self._model.model_validate(event.object)
                except ValidationError as e:
                    raise MalformedEventError(
                        f"Watch object does not match {self._model.__name__}: {e}", path=self._path
                    ) from e

            if version:
                self.resource_version = version
            self.retry.reset()
            yield event
            progressed = True

            if self.stopped:
                return True

        return progressed
