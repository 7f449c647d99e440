import concurrent.futures
import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class NamedThreadPool(concurrent.futures.ThreadPoolExecutor):
    """Thread pool that renames the worker thread after the task it runs."""

    def submit(
        self, fn, /, name: Optional[str] = None, *args, **kwargs
    ) -> concurrent.futures.Future:  # type: ignore
        def rename_thread(*args, **kwargs):
            if name is not None and len(name) > 0:
                threading.current_thread().name = name
            return fn(*args, **kwargs)

        return super().submit(rename_thread, *args, **kwargs)
