"""Fixed-cadence polling with exponential backoff on failure."""
from __future__ import annotations

from enum import Enum
import logging
import random
import threading
from typing import Callable

from nvme_exporter.config import BackoffConfig
from nvme_exporter.sink import LOOP_RUNS_COUNTER, MetricsSink


class ExponentialBackoff:
    """Growing retry delays, capped at ``max_interval``.

    The first call to :meth:`next_backoff` after construction or
    :meth:`reset` returns ``initial_interval``; each following call
    multiplies the interval by ``multiplier``. With a non-zero
    ``randomization_factor`` the returned delay is drawn uniformly from
    ``interval * (1 ± randomization_factor)``.
    """

    def __init__(
        self,
        initial_interval: float = 1.0,
        max_interval: float = 10.0,
        multiplier: float = 1.5,
        randomization_factor: float = 0.5,
        rng: random.Random | None = None,
    ) -> None:
        self.initial_interval = initial_interval
        self.max_interval = max_interval
        self.multiplier = multiplier
        self.randomization_factor = randomization_factor
        self._rng = rng or random.Random()
        self._current = initial_interval

    @classmethod
    def from_config(cls, config: BackoffConfig) -> ExponentialBackoff:
        return cls(
            initial_interval=config.initial_interval_s,
            max_interval=config.max_interval_s,
            multiplier=config.multiplier,
            randomization_factor=config.randomization_factor,
        )

    def reset(self) -> None:
        self._current = self.initial_interval

    def next_backoff(self) -> float:
        interval = min(self._current, self.max_interval)
        self._current = min(self._current * self.multiplier, self.max_interval)
        if not self.randomization_factor:
            return interval
        delta = self.randomization_factor * interval
        return self._rng.uniform(interval - delta, interval + delta)


class SchedulerState(Enum):
    IDLE = "idle"
    POLLING = "polling"
    SUCCESS = "success"
    FAILURE = "failure"
    WAITING = "waiting"
    STOPPED = "stopped"


class PollScheduler:
    """Drives a poll cycle as an explicit state machine.

    ``IDLE -> POLLING -> SUCCESS|FAILURE -> WAITING -> POLLING ...``;
    ``STOPPED`` is reached only through :meth:`stop`. A stop request
    interrupts a pending wait immediately but never an in-flight cycle.
    """

    def __init__(
        self,
        cycle: Callable[[], bool],
        check_interval: float,
        backoff: ExponentialBackoff,
        sink: MetricsSink | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.cycle = cycle
        self.check_interval = check_interval
        self.backoff = backoff
        self.sink = sink
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self.state = SchedulerState.IDLE
        self.last_wait: float | None = None
        self._next_wait = 0.0
        self.logger = logging.getLogger(self.__class__.__name__)

    def stop(self) -> None:
        self.stop_event.set()

    @property
    def stopped(self) -> bool:
        return self.state is SchedulerState.STOPPED

    def run(self) -> None:
        self.logger.info("Polling every %ss.", self.check_interval)
        while self.state is not SchedulerState.STOPPED:
            self.step()
        self.logger.info("Poll scheduler stopped.")

    def step(self) -> SchedulerState:
        """Perform one state transition and return the new state."""
        state = self.state
        if state is SchedulerState.IDLE:
            self.state = (
                SchedulerState.STOPPED if self.stop_event.is_set() else SchedulerState.POLLING
            )
        elif state is SchedulerState.POLLING:
            self.state = SchedulerState.SUCCESS if self._poll() else SchedulerState.FAILURE
        elif state is SchedulerState.SUCCESS:
            self.backoff.reset()
            if self.sink is not None:
                self.sink.increment_counter(LOOP_RUNS_COUNTER)
            self._next_wait = self.check_interval
            self.state = SchedulerState.WAITING
        elif state is SchedulerState.FAILURE:
            self._next_wait = self.backoff.next_backoff()
            self.logger.warning("Poll cycle failed, retrying in %.1fs.", self._next_wait)
            self.state = SchedulerState.WAITING
        elif state is SchedulerState.WAITING:
            self.last_wait = self._next_wait
            if self.stop_event.wait(self._next_wait):
                self.state = SchedulerState.STOPPED
            else:
                self.state = SchedulerState.POLLING
        return self.state

    def _poll(self) -> bool:
        try:
            return bool(self.cycle())
        except Exception:
            self.logger.exception("Poll cycle raised an unexpected error.")
            return False
