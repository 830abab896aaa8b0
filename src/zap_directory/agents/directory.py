"""Directory agent: the single consumer of the trigger queue.

Each trigger runs one cycle::

    aggregate ── no zaps ──> SKIPPED
        │
    publish ── same hash ──> UNCHANGED
        │
        └──> PUBLISHED | FAILED

Cycles never overlap.  The queue has one consumer, and ``run_cycle``
holds a lock so out-of-band callers (the ``once`` command) wait their
turn.  A failing cycle is logged and reported; the loop keeps going.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from zap_directory.agents.base import BaseAgent
from zap_directory.core.clock import IClock
from zap_directory.core.enums import AgentType, CycleOutcome, TriggerSource
from zap_directory.core.errors import PublishError
from zap_directory.core.ids import new_id
from zap_directory.core.models import CycleReport, PublishResult
from zap_directory.observability import metrics
from zap_directory.observability.logger import cycle_context
from zap_directory.pipeline.aggregation import AggregationEngine
from zap_directory.pipeline.publisher import PublishOrchestrator
from zap_directory.pipeline.scheduler import TriggerScheduler

logger = logging.getLogger(__name__)


def _apply(report: CycleReport, result: PublishResult) -> None:
    report.outcome = result.outcome
    report.hash = result.hash
    report.previous_hash = result.previous_hash
    report.deleted = list(result.deleted)
    report.uploaded = list(result.uploaded)
    report.announced_relays = [a.relay for a in result.announced if a.accepted]


class DirectoryAgent(BaseAgent):
    """Runs aggregate → publish cycles, one at a time."""

    def __init__(
        self,
        scheduler: TriggerScheduler,
        engine: AggregationEngine,
        publisher: PublishOrchestrator,
        clock: IClock,
        *,
        agent_id: str | None = None,
    ) -> None:
        super().__init__(agent_id=agent_id)
        self._scheduler = scheduler
        self._engine = engine
        self._publisher = publisher
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_report: CycleReport | None = None
        self._cycles = 0

    @property
    def agent_type(self) -> AgentType:
        return AgentType.DIRECTORY

    @property
    def last_report(self) -> CycleReport | None:
        return self._last_report

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def run_cycle(self, trigger: TriggerSource = TriggerSource.MANUAL) -> CycleReport:
        """Run one full cycle.  Never raises for cycle failures."""
        async with self._lock:
            cycle_id = new_id()
            with cycle_context(cycle_id):
                report = await self._cycle(cycle_id, trigger)
            self._cycles += 1
            self._last_report = report
            self._last_work_at = report.started_at
            return report

    async def _cycle(self, cycle_id: str, trigger: TriggerSource) -> CycleReport:
        report = CycleReport(
            cycle_id=cycle_id,
            trigger=trigger,
            outcome=CycleOutcome.FAILED,
            started_at=self._clock.now(),
        )
        t0 = time.monotonic()
        logger.info("Cycle started (trigger=%s)", trigger.value)

        try:
            aggregated = self._engine.aggregate()
            if aggregated is None:
                report.outcome = CycleOutcome.SKIPPED
                logger.info("No zaps in window, skipping")
            else:
                report.zap_count = aggregated.zap_count
                report.dropped_zaps = aggregated.dropped
                report.name_count = len(aggregated.directory.names) - 1
                metrics.record_dropped_zaps(aggregated.dropped)
                metrics.update_directory_size(report.name_count)
                _apply(report, await self._publisher.publish(aggregated.directory))
        except PublishError as exc:
            if isinstance(exc.result, PublishResult):
                _apply(report, exc.result)
            report.outcome = CycleOutcome.FAILED
            report.error = str(exc)
            self._record_error(exc)
            logger.error("Cycle failed: %s", exc)
        except Exception as exc:
            report.outcome = CycleOutcome.FAILED
            report.error = f"{type(exc).__name__}: {exc}"
            self._record_error(exc)
            logger.exception("Cycle crashed")

        report.duration_seconds = time.monotonic() - t0
        metrics.record_cycle(report.outcome.value, report.duration_seconds)
        logger.info(
            "Cycle finished: %s in %.2fs", report.outcome.value, report.duration_seconds
        )
        return report

    async def _consume(self) -> None:
        while True:
            trigger = await self._scheduler.next_trigger()
            await self.run_cycle(trigger.source)

    async def _on_start(self) -> None:
        self._spawn(self._consume(), "consume")

    def _health_details(self) -> dict[str, Any]:
        last = self._last_report
        return {
            "cycles": self._cycles,
            "busy": self.busy,
            "last_outcome": last.outcome.value if last else None,
            "last_hash": last.hash if last else None,
        }
