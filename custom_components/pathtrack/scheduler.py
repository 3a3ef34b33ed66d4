"""
SyncScheduler — drives recurring sync ticks for the observed entity.

A pure asyncio primitive with no HA or network dependencies.

State machine:
    Idle      --start_observing(e)-->  Observing(e)
    Observing --tick-->                Observing(e)
    Observing --stop_observing(e)-->   Idle
    Observing --start_observing(f)-->  Observing(f)   (the previous loop is stopped first)

Every observation gets a new generation number. Stopping bumps the
generation and cancels the loop task, which also cancels the tick that is in
flight. A tick callback must check ``is_current(entity_id, generation)``
before applying its result, so a response that still resolves after the stop
cannot revive a stopped stream.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from .const import DEFAULT_BACKGROUND_INTERVAL, DEFAULT_OBSERVE_INTERVAL, TICK_TIMEOUT

_LOGGER = logging.getLogger(__name__)

TickCallback = Callable[[str, int], Awaitable[None]]


class SyncScheduler:
    """Runs one cooperative timer loop for at most one observed entity."""

    def __init__(
        self,
        tick: TickCallback,
        interval: float = DEFAULT_OBSERVE_INTERVAL,
        background_interval: float = DEFAULT_BACKGROUND_INTERVAL,
        tick_timeout: float = TICK_TIMEOUT,
    ) -> None:
        self._tick = tick
        self._interval = interval
        self._background_interval = background_interval
        self._tick_timeout = tick_timeout
        self._entity_id: str | None = None
        self._period: float | None = None
        self._task: asyncio.Task | None = None
        self._generation = 0

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    @property
    def observed_entity(self) -> str | None:
        return self._entity_id

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def period(self) -> float | None:
        return self._period

    def is_current(self, entity_id: str, generation: int) -> bool:
        """True while the observation that issued ``generation`` is still active."""
        return self._entity_id == entity_id and self._generation == generation

    def start_observing(
        self, entity_id: str, *, background: bool = False, interval: float | None = None
    ) -> int:
        """
        Start the recurring sync for entity_id and return its generation.

        Starting the entity that is already observed with the same period is a
        no-op. Any other active observation is stopped first so timers never
        accumulate across entity switches. Must be called from the event loop.
        """
        if interval is None:
            interval = self._background_interval if background else self._interval

        if self._entity_id == entity_id and self._period == interval and self._task is not None:
            return self._generation

        self._cancel_current()
        self._generation += 1
        self._entity_id = entity_id
        self._period = interval
        self._task = asyncio.ensure_future(self._run(entity_id, self._generation, interval))
        _LOGGER.debug("Observing %s every %ss (generation %s)", entity_id, interval, self._generation)
        return self._generation

    def stop_observing(self, entity_id: str | None = None) -> bool:
        """
        Stop observing entity_id (or whatever is observed when None).

        Returns False when that entity was not being observed.
        """
        if self._entity_id is None:
            return False
        if entity_id is not None and entity_id != self._entity_id:
            return False
        _LOGGER.debug("Stopped observing %s", self._entity_id)
        self._cancel_current()
        return True

    async def async_shutdown(self) -> None:
        """Stop the loop and wait until its task has finished."""
        task = self._task
        self._cancel_current()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _cancel_current(self) -> None:
        # Bumping the generation invalidates late responses immediately,
        # before the cancelled task gets a chance to run again.
        self._generation += 1
        if self._task is not None:
            self._task.cancel()
        self._task = None
        self._entity_id = None
        self._period = None

    async def _run(self, entity_id: str, generation: int, period: float) -> None:
        """Tick, then sleep for one period, until cancelled."""
        while self.is_current(entity_id, generation):
            try:
                await asyncio.wait_for(self._tick(entity_id, generation), timeout=self._tick_timeout)
            except (asyncio.TimeoutError, TimeoutError):
                _LOGGER.warning("Sync tick for %s timed out after %ss", entity_id, self._tick_timeout)
            except Exception as exc:
                # A failed tick never ends the observation; the next tick retries
                _LOGGER.warning("Sync tick for %s failed: %s", entity_id, exc)
            await asyncio.sleep(period)
