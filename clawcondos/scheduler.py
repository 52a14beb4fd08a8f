"""
Delayed-work scheduling for cascades.

ThreadingScheduler runs jobs on timer threads in a long-lived process.
ManualScheduler keeps its own clock so tests (and one-shot CLI runs) decide
exactly when deferred work happens.
"""

import itertools
import threading
from abc import ABC, abstractmethod
from typing import Callable


class Job:
    """A scheduled call that can be cancelled until it runs."""

    def __init__(self, due: float, fn: Callable, args: tuple, seq: int = 0):
        self.due = due
        self.fn = fn
        self.args = args
        self.seq = seq
        self.cancelled = False
        self.done = False
        self._timer = None

    def cancel(self):
        if self.done:
            return
        self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()

    @property
    def active(self) -> bool:
        return not self.cancelled and not self.done

    def run(self):
        if self.cancelled or self.done:
            return
        self.done = True
        self.fn(*self.args)


class Scheduler(ABC):
    @abstractmethod
    def call_later(self, delay: float, fn: Callable, *args) -> Job:
        pass

    def shutdown(self):
        pass


class ThreadingScheduler(Scheduler):
    def __init__(self):
        self._lock = threading.Lock()
        self._jobs: set[Job] = set()

    def call_later(self, delay: float, fn: Callable, *args) -> Job:
        job = Job(due=delay, fn=fn, args=args)

        def fire():
            with self._lock:
                self._jobs.discard(job)
            job.run()

        timer = threading.Timer(max(0.0, delay), fire)
        timer.daemon = True
        job._timer = timer
        with self._lock:
            self._jobs.add(job)
        timer.start()
        return job

    def shutdown(self):
        with self._lock:
            jobs = list(self._jobs)
            self._jobs.clear()
        for job in jobs:
            job.cancel()


class ManualScheduler(Scheduler):
    """Runs jobs only when the clock is advanced."""

    def __init__(self):
        self.now = 0.0
        self._jobs: list[Job] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, fn: Callable, *args) -> Job:
        job = Job(due=self.now + max(0.0, delay), fn=fn, args=args, seq=next(self._seq))
        self._jobs.append(job)
        return job

    @property
    def pending(self) -> list[Job]:
        return sorted((j for j in self._jobs if j.active), key=lambda j: (j.due, j.seq))

    def advance(self, seconds: float) -> int:
        """Move the clock forward and run every job that falls due. Returns the count run."""
        target = self.now + seconds
        ran = 0
        while True:
            due = [j for j in self.pending if j.due <= target]
            if not due:
                break
            job = due[0]
            self.now = max(self.now, job.due)
            self._jobs.remove(job)
            job.run()
            ran += 1
        self.now = target
        self._jobs = [j for j in self._jobs if j.active]
        return ran

    def run_all(self, max_jobs: int = 1000) -> int:
        """Drain every pending job, including ones scheduled while draining."""
        ran = 0
        while self.pending:
            if ran >= max_jobs:
                raise RuntimeError(f"Scheduler did not settle after {max_jobs} jobs")
            job = self.pending[0]
            self.now = max(self.now, job.due)
            self._jobs.remove(job)
            job.run()
            ran += 1
        return ran

    def shutdown(self):
        for job in self._jobs:
            job.cancel()
        self._jobs.clear()
