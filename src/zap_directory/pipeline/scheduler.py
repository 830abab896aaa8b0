"""Trigger scheduler: when to recompute the directory.

Two independent producers feed one bounded queue:

* the **timer** emits every ``interval`` seconds;
* the **debouncer** emits once ``debounce`` seconds have passed since
  the last ``notify_payment()`` call.  A burst of zaps therefore yields
  a single trigger.

The queue holds at most one pending trigger.  A trigger emitted while
one is already waiting is coalesced: dropped and counted.  Triggers
carry only their source and time, never event data; the consumer
re-reads the store.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from zap_directory.agents.base import BaseAgent
from zap_directory.core.clock import IClock
from zap_directory.core.enums import AgentType, TriggerSource
from zap_directory.observability import metrics

logger = logging.getLogger(__name__)


class Trigger(BaseModel):
    """A "recompute now" signal."""

    model_config = ConfigDict(frozen=True)

    source: TriggerSource
    at: datetime


class TriggerScheduler(BaseAgent):
    """Merges the timer and the debounced payment signal into one queue.

    Parameters
    ----------
    clock:
        Stamps emitted triggers.
    interval:
        Seconds between timer triggers.
    debounce:
        Quiet period after the last payment notification.
    run_on_start:
        Emit one ``startup`` trigger when the scheduler starts.
    """

    def __init__(
        self,
        clock: IClock,
        *,
        interval: float = 600.0,
        debounce: float = 10.0,
        run_on_start: bool = False,
        agent_id: str | None = None,
    ) -> None:
        super().__init__(agent_id=agent_id)
        self._clock = clock
        self._update_interval = interval
        self._debounce = debounce
        self._run_on_start = run_on_start
        self._queue: asyncio.Queue[Trigger] = asyncio.Queue(maxsize=1)
        self._payment_seen = asyncio.Event()
        self._emitted = 0
        self._coalesced = 0

    @property
    def agent_type(self) -> AgentType:
        return AgentType.SCHEDULER

    @property
    def pending(self) -> bool:
        return not self._queue.empty()

    @property
    def coalesced_count(self) -> int:
        return self._coalesced

    @property
    def emitted_count(self) -> int:
        return self._emitted

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def notify_payment(self) -> None:
        """A new zap was observed; (re)starts the quiet period."""
        self._payment_seen.set()

    def emit(self, source: TriggerSource) -> bool:
        """Queue a trigger.  Returns False if it was coalesced."""
        trigger = Trigger(source=source, at=self._clock.now())
        try:
            self._queue.put_nowait(trigger)
        except asyncio.QueueFull:
            self._coalesced += 1
            metrics.record_trigger_coalesced(source.value)
            logger.debug("Trigger from %s coalesced into pending trigger", source.value)
            return False
        self._emitted += 1
        metrics.record_trigger(source.value)
        logger.debug("Trigger emitted: %s", source.value)
        return True

    async def _timer_loop(self) -> None:
        while True:
            await asyncio.sleep(self._update_interval)
            self.emit(TriggerSource.TIMER)

    async def _debounce_loop(self) -> None:
        while True:
            await self._payment_seen.wait()
            # wait out the quiet period; each new payment restarts it
            while True:
                self._payment_seen.clear()
                try:
                    await asyncio.wait_for(self._payment_seen.wait(), self._debounce)
                except asyncio.TimeoutError:
                    break
            self.emit(TriggerSource.PAYMENT)

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def next_trigger(self) -> Trigger:
        """Wait for the next trigger."""
        return await self._queue.get()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _on_start(self) -> None:
        if self._run_on_start:
            self.emit(TriggerSource.STARTUP)
        self._spawn(self._timer_loop(), "timer")
        self._spawn(self._debounce_loop(), "debounce")

    def _health_details(self) -> dict[str, Any]:
        return {
            "pending": self.pending,
            "emitted": self._emitted,
            "coalesced": self._coalesced,
        }
