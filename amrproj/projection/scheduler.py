# -*- encoding: utf-8 -*-

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from amrproj.profiler import TimeProfiler

log = logging.getLogger(__name__)


@dataclass
class TaskOutcome:
    """What happened to one task run by :class:`.ThreadScheduler`

    Exactly one of ``result`` and ``error`` is meaningful: if ``error`` is
    not ``None``, the task raised that exception.
    """

    name: str
    index: int
    result: Any = None
    error: Optional[Exception] = None
    profiler: Optional[TimeProfiler] = None


class _SchedulerWorker(threading.Thread):
    """A thread that keeps running tasks until the queue is empty

    Every worker owns the buffers created by the tasks it runs; nothing is
    written to shared state but the outcome of each task.
    """

    def __init__(self, scheduler: "ThreadScheduler", work_queue: queue.Queue, num: int):
        super().__init__(name=f"amrproj-worker-{num}", daemon=True)
        self.scheduler = scheduler
        self.work_queue = work_queue

    def run(self):
        while True:
            try:
                index, name, task = self.work_queue.get_nowait()
            except queue.Empty:
                return

            self.scheduler._run_task(index, name, task)


class ThreadScheduler:
    """Run one task per variable, at most `max_concurrency` at a time

    If there are no more tasks than `max_concurrency`, each task gets its own
    thread and all of them start together. Otherwise, `max_concurrency`
    threads drain a queue of tasks. With ``max_concurrency == 1`` (or a
    single task) everything runs sequentially in the calling thread.

    An exception raised by a task is recorded in its :class:`.TaskOutcome`
    and does not stop the other tasks. The optional function `on_complete`
    is called as ``on_complete(outcome, num_of_completed_tasks,
    num_of_tasks)`` every time a task terminates; if it raises, the
    exception is logged and the tasks keep running.

    After :meth:`.run` returns, the field ``peak_concurrency`` contains the
    largest number of tasks that were running at the same time.
    """

    def __init__(
        self,
        max_concurrency: int,
        on_complete: Optional[Callable[[TaskOutcome, int, int], None]] = None,
    ):
        assert max_concurrency >= 1
        self.max_concurrency = max_concurrency
        self.on_complete = on_complete
        self.peak_concurrency = 0
        self._active = 0
        self._num_of_tasks = 0
        self._lock = threading.Lock()
        self._outcomes = {}  # type: Dict[int, TaskOutcome]

    def _run_task(self, index: int, name: str, task: Callable[[], Any]) -> None:
        with self._lock:
            self._active += 1
            self.peak_concurrency = max(self.peak_concurrency, self._active)

        outcome = TaskOutcome(name=name, index=index)
        try:
            with TimeProfiler(name=name, index=index) as prof:
                outcome.result = task()
        except Exception as exc:
            # The error belongs to this variable only, the caller decides
            # what to do with it
            log.debug("task %s failed: %s", name, exc)
            outcome.error = exc
        finally:
            with self._lock:
                self._active -= 1

        outcome.profiler = prof
        with self._lock:
            self._outcomes[index] = outcome

            # Calls to `on_complete` are serialized by the lock
            if self.on_complete is not None:
                try:
                    self.on_complete(
                        outcome, len(self._outcomes), self._num_of_tasks
                    )
                except Exception:
                    # The outcome is already recorded; the remaining tasks
                    # must run anyway
                    log.exception("the completion callback for %s failed", name)

    def run(self, tasks: Sequence[Tuple[str, Callable[[], Any]]]) -> List[TaskOutcome]:
        """Run the tasks, each being a pair ``(name, function)``

        Return the list of :class:`.TaskOutcome` objects, in the same order
        as `tasks`."""
        self.peak_concurrency = 0
        self._outcomes = {}
        self._num_of_tasks = len(tasks)

        num_of_threads = min(len(tasks), self.max_concurrency)
        if num_of_threads <= 1:
            for index, (name, task) in enumerate(tasks):
                self._run_task(index, name, task)
        else:
            work_queue = queue.Queue(maxsize=len(tasks))
            for index, (name, task) in enumerate(tasks):
                work_queue.put((index, name, task))

            log.debug(
                "running %d tasks using %d threads", len(tasks), num_of_threads
            )
            workers = [
                _SchedulerWorker(self, work_queue, num) for num in range(num_of_threads)
            ]

            # Launch all the workers and wait for all of them to finish
            for worker in workers:
                worker.start()

            for worker in workers:
                worker.join()

        return [self._outcomes[index] for index in range(len(tasks))]
