from __future__ import annotations
import logging
import threading
from typing import Callable, Optional

from .errors import TransportFailureError


class TaskConstants:
    JOIN_TIMEOUT_S = 5.0


class SupervisedThread:
    """Background loop with a cooperative stop signal and a failure channel.

    `target` receives the stop event and is expected to return once it is
    set. An exception escaping `target` ends the task; it is logged and kept
    so the owner can surface it with `raise_if_failed`.
    """

    def __init__(
        self,
        name: str,
        target: Callable[[threading.Event], None],
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.name = name
        self.log = logger or logging.getLogger("tasks")
        self._target = target
        self._stop = threading.Event()
        self._failure: Optional[BaseException] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def stop_event(self) -> threading.Event:
        return self._stop

    @property
    def failure(self) -> Optional[BaseException]:
        return self._failure

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError(f"task {self.name} already started")
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout_s: float = TaskConstants.JOIN_TIMEOUT_S) -> None:
        self._stop.set()
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout_s)
        if thread.is_alive():
            self.log.warning("task %s did not stop within %.1fs", self.name, timeout_s)

    def join(self, timeout_s: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout_s)

    def raise_if_failed(self) -> None:
        if self._failure is not None:
            raise TransportFailureError(f"{self.name} task died: {self._failure}") from self._failure
        if self._thread is not None and not self._thread.is_alive() and not self._stop.is_set():
            raise TransportFailureError(f"{self.name} task exited unexpectedly")

    def _run(self) -> None:
        self.log.info("task %s started", self.name)
        try:
            self._target(self._stop)
        except Exception as exc:
            self._failure = exc
            self.log.exception("task %s died", self.name)
        finally:
            self.log.info("task %s exited", self.name)
