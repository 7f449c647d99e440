"""
Request/reply correlation.

Each outstanding request owns a `concurrent.futures.Future` registered under
its correlation id. The reply consumer pops the entry and settles the future,
so a reply is matched at most once and late or unknown replies are dropped.
"""

import logging
import os
import threading
import time
import uuid
from concurrent.futures import Future, InvalidStateError
from typing import Any, Optional

from amqp_poster.codec import decode
from amqp_poster.exceptions import CodecError, RemoteError
from amqp_poster.rabbitmq.base import InboundMessage

logger = logging.getLogger(__name__)


def new_correlation_id() -> str:
    return str(uuid.uuid4())


def broadcast_correlation_id() -> str:
    """Id for broadcasts, carried for tracing only and never registered."""
    return f"{os.getpid()}_{time.monotonic_ns()}"


def _settle(future: Future, result: Any = None, exception: Optional[BaseException] = None) -> None:
    try:
        if exception is not None:
            future.set_exception(exception)
        else:
            future.set_result(result)
    except InvalidStateError:
        # cancelled by the caller between lookup and settle
        logger.debug("Pending request was already settled or cancelled")


class CorrelationTable:
    """Per-instance map of correlation id to pending reply future."""

    def __init__(self) -> None:
        self._pending: dict[str, Future] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def __contains__(self, correlation_id: str) -> bool:
        with self._lock:
            return correlation_id in self._pending

    def register(self, correlation_id: str) -> Future:
        """
        Create the pending entry for a request about to be published.

        :raises ValueError: If the id is already pending.
        """
        future: Future = Future()
        with self._lock:
            if correlation_id in self._pending:
                raise ValueError(f"Correlation id {correlation_id} is already pending")
            self._pending[correlation_id] = future

        # cancellation by the caller (e.g. a timeout) drops the entry
        future.add_done_callback(lambda f: self._forget(correlation_id, f))
        return future

    def _forget(self, correlation_id: str, future: Future) -> None:
        with self._lock:
            if self._pending.get(correlation_id) is future:
                del self._pending[correlation_id]

    def discard(self, correlation_id: str) -> Optional[Future]:
        with self._lock:
            return self._pending.pop(correlation_id, None)

    def fail(self, correlation_id: str, error: BaseException) -> None:
        """Remove a pending entry and reject it with `error`."""
        future = self.discard(correlation_id)
        if future is not None:
            _settle(future, exception=error)

    def reject_all(self, error: BaseException) -> int:
        """
        Reject every pending request with `error`.

        :return: Number of requests rejected.
        """
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()

        for future in pending:
            _settle(future, exception=error)
        if pending:
            logger.warning("Rejected %d pending request(s): %s", len(pending), error)
        return len(pending)

    def resolve(self, message: InboundMessage) -> None:
        """
        Reply queue consumer callback.

        Settles the matching request with the decoded payload, or with the
        codec/remote error decoding raised. Replies nobody waits for are ignored.
        """
        correlation_id = (message.properties or {}).get("correlation_id")
        with self._lock:
            future = self._pending.pop(correlation_id, None) if correlation_id else None

        if future is None:
            logger.debug("Discarding reply with unknown correlation id %s", correlation_id)
            return

        try:
            payload = decode(message)
        except (CodecError, RemoteError) as e:
            _settle(future, exception=e)
        else:
            _settle(future, result=payload)
