"""Repeating actors and the context that runs them together.

Every actor thread loops on one action until the shared stop event is set.
The first action that raises wins the failure slot and sets the stop event;
``TestContext.stop_all()`` is the single join point and re-raises that
failure to whoever drives the run.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import List, Optional, Protocol


class Action(Protocol):
    def do_one_action(self) -> None: ...


@dataclass(frozen=True)
class ActorFailure:
    actor: str
    iteration: int
    error: BaseException

    def describe(self) -> str:
        return f"{self.actor} failed at iteration {self.iteration}: {self.error}"


class RepeatingActor:
    """Runs ``action.do_one_action()`` until the context asks it to stop."""

    def __init__(
        self,
        ctx: "TestContext",
        action: Action,
        name: Optional[str] = None,
        sleep: float = 0.0,
    ) -> None:
        self.ctx = ctx
        self.action = action
        self.name = name or getattr(action, "name", None) or type(action).__name__
        self.sleep = sleep
        self.iterations = 0

    def run(self) -> None:
        logging.debug("%s starting", self.name)
        while not self.ctx.stop_requested:
            try:
                self.action.do_one_action()
            except Exception as exc:
                logging.exception("%s failed at iteration %d", self.name, self.iterations + 1)
                self.ctx.record_failure(self, self.iterations + 1, exc)
                return
            self.iterations += 1
            if self.sleep and self.ctx.wait_stop(self.sleep):
                break
        logging.debug("%s stopped after %d iteration(s)", self.name, self.iterations)


class TestContext:
    """Lifecycle owner for a set of actors sharing one run."""

    __test__ = False  # not a pytest test class

    def __init__(self) -> None:
        self._actors: List[RepeatingActor] = []
        self._stop_event = threading.Event()
        self._failure_lock = threading.Lock()
        self._failure: Optional[ActorFailure] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._futures: List[Future] = []
        self._started = False
        self._stopped = False

    def __enter__(self) -> "TestContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._stopped:
            return
        # an exception already in flight takes precedence over an actor failure
        self.stop_all(raise_failure=exc_type is None)

    @property
    def actors(self) -> List[RepeatingActor]:
        return list(self._actors)

    @property
    def failure(self) -> Optional[ActorFailure]:
        with self._failure_lock:
            return self._failure

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def add_actor(self, actor: RepeatingActor) -> RepeatingActor:
        if self._started:
            raise RuntimeError(f"Cannot add {actor.name} after the context has started")
        if actor.ctx is not self:
            raise ValueError(f"{actor.name} belongs to a different context")
        self._actors.append(actor)
        return actor

    def start_all(self) -> None:
        """Launch every registered actor on its own thread and return immediately."""
        if self._started:
            raise RuntimeError("Context already started")
        self._started = True
        if not self._actors:
            logging.warning("Starting a context with no actors")
            return
        self._executor = ThreadPoolExecutor(
            max_workers=len(self._actors),
            thread_name_prefix="actor",
        )
        for actor in self._actors:
            self._futures.append(self._executor.submit(actor.run))
        logging.info("Started %d actor(s)", len(self._actors))

    def wait_stop(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True when the stop event fired first."""
        return self._stop_event.wait(timeout)

    def wait_for(self, duration: float) -> bool:
        """Block until ``duration`` elapses or an actor fails. Returns True on early stop."""
        deadline = time.monotonic() + duration
        stopped = self._stop_event.wait(max(0.0, duration))
        if stopped:
            logging.info("Run stopped early with %.1fs remaining", max(0.0, deadline - time.monotonic()))
        return stopped

    def record_failure(self, actor: RepeatingActor, iteration: int, error: BaseException) -> bool:
        """Keep the first failure only and ask every actor to stop."""
        with self._failure_lock:
            retained = self._failure is None
            if retained:
                self._failure = ActorFailure(actor.name, iteration, error)
        if not retained:
            logging.warning("Discarding later failure from %s: %s", actor.name, error)
        self._stop_event.set()
        return retained

    def request_stop(self) -> None:
        self._stop_event.set()

    def stop_all(self, raise_failure: bool = True) -> None:
        """Signal stop, join every actor, then re-raise the first recorded failure."""
        self.request_stop()
        if not self._stopped:
            self._stopped = True
            if self._futures:
                wait(self._futures)
                for actor, future in zip(self._actors, self._futures):
                    error = future.exception()
                    if error is not None:
                        self.record_failure(actor, actor.iterations + 1, error)
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None

        failure = self.failure
        if failure is not None:
            logging.error("%s", failure.describe())
            if raise_failure:
                raise failure.error
