"""Background execution for blocking network calls.

Route and tile fetches run on a ``QThreadPool``; their outcome is delivered
back to the GUI thread through a queued signal so every state mutation stays
on the event loop.
"""

from __future__ import annotations

import itertools
from typing import Any, Callable, Dict, List, Optional, Tuple

from PySide6.QtCore import QObject, QRunnable, QThreadPool, Signal, Slot

from logger import LoggableMixin, LogCategory

Task = Callable[[], Any]
ResultCallback = Callable[[Any], None]
ErrorCallback = Callable[[BaseException], None]


class ImmediateDispatcher(LoggableMixin):
    """Runs tasks synchronously. Used by the CLI and tests."""

    log_category = LogCategory.SYSTEM

    def __init__(self):
        super().__init__()

    def dispatch(self, task: Task, on_result: ResultCallback,
                 on_error: Optional[ErrorCallback] = None) -> None:
        try:
            result = task()
        except Exception as exc:
            if on_error is None:
                self.log_warning("Background task failed", exception=exc)
                return
            on_error(exc)
            return
        on_result(result)


class DeferredDispatcher(ImmediateDispatcher):
    """Queues tasks until :meth:`run_pending` so callers can reorder completions."""

    def __init__(self):
        super().__init__()
        self.pending: List[Tuple[Task, ResultCallback, Optional[ErrorCallback]]] = []

    def dispatch(self, task: Task, on_result: ResultCallback,
                 on_error: Optional[ErrorCallback] = None) -> None:
        self.pending.append((task, on_result, on_error))

    def run_pending(self, reverse: bool = False) -> int:
        jobs = list(reversed(self.pending)) if reverse else list(self.pending)
        self.pending.clear()
        for task, on_result, on_error in jobs:
            super().dispatch(task, on_result, on_error)
        return len(jobs)


class _TaskSignals(QObject):
    finished = Signal(int, object)
    failed = Signal(int, object)


class _Runnable(QRunnable):
    def __init__(self, task_id: int, task: Task, signals: _TaskSignals):
        super().__init__()
        self.task_id = task_id
        self.task = task
        self.signals = signals

    def run(self):
        try:
            result = self.task()
        except Exception as exc:
            self.signals.failed.emit(self.task_id, exc)
            return
        self.signals.finished.emit(self.task_id, result)


class ThreadPoolDispatcher(QObject, LoggableMixin):
    """Dispatches tasks to a ``QThreadPool`` and calls back on the GUI thread."""

    log_category = LogCategory.SYSTEM

    def __init__(self, parent: Optional[QObject] = None,
                 pool: Optional[QThreadPool] = None, max_threads: int = 4):
        QObject.__init__(self, parent)
        LoggableMixin.__init__(self)
        self.pool = pool or QThreadPool(self)
        self.pool.setMaxThreadCount(max_threads)
        self._signals = _TaskSignals(self)
        self._signals.finished.connect(self._on_finished)
        self._signals.failed.connect(self._on_failed)
        self._callbacks: Dict[int, Tuple[ResultCallback, Optional[ErrorCallback]]] = {}
        self._ids = itertools.count(1)

    def dispatch(self, task: Task, on_result: ResultCallback,
                 on_error: Optional[ErrorCallback] = None) -> None:
        task_id = next(self._ids)
        self._callbacks[task_id] = (on_result, on_error)
        self.pool.start(_Runnable(task_id, task, self._signals))

    @Slot(int, object)
    def _on_finished(self, task_id: int, result: Any) -> None:
        callbacks = self._callbacks.pop(task_id, None)
        if callbacks is not None:
            callbacks[0](result)

    @Slot(int, object)
    def _on_failed(self, task_id: int, exc: BaseException) -> None:
        callbacks = self._callbacks.pop(task_id, None)
        if callbacks is None:
            return
        on_error = callbacks[1]
        if on_error is None:
            self.log_warning("Background task failed", exception=exc)
            return
        on_error(exc)

    def pending_count(self) -> int:
        return len(self._callbacks)

    def wait_for_done(self, msecs: int = -1) -> bool:
        return self.pool.waitForDone(msecs)


__all__ = ["ImmediateDispatcher", "DeferredDispatcher", "ThreadPoolDispatcher"]
