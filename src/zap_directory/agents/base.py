"""Base agent ABC providing the shared lifecycle pattern.

All long-running components extend BaseAgent, which provides:

- Unique agent identity (``agent_id``, ``agent_type``)
- Lifecycle management (``start`` / ``stop`` with graceful shutdown)
- Background task ownership via ``_spawn`` (cancelled on ``stop``)
- Health reporting with error tracking

Subclasses implement the ``agent_type`` property and spawn their own
tasks in ``_on_start``.
"""

from __future__ import annotations

import abc
import asyncio
import contextlib
import logging
from collections.abc import Coroutine
from datetime import datetime
from typing import Any

from zap_directory.core.enums import AgentStatus, AgentType
from zap_directory.core.ids import new_id
from zap_directory.core.models import AgentHealthReport

logger = logging.getLogger(__name__)


class BaseAgent(abc.ABC):
    """Abstract base for all service agents.

    Parameters
    ----------
    agent_id:
        Unique identifier for this agent instance. Auto-generated if omitted.
    """

    def __init__(
        self,
        *,
        agent_id: str | None = None,
    ) -> None:
        self._agent_id = agent_id or new_id()
        self._tasks: list[asyncio.Task] = []
        self._running = False
        self._status = AgentStatus.CREATED
        self._error_count = 0
        self._last_work_at: datetime | None = None
        self._last_error: str | None = None

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def agent_id(self) -> str:
        return self._agent_id

    @property
    @abc.abstractmethod
    def agent_type(self) -> AgentType:
        """Return the type of this agent."""
        ...

    @property
    def agent_name(self) -> str:
        """Human-readable name (defaults to class name)."""
        return self.__class__.__name__

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def status(self) -> AgentStatus:
        return self._status

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the agent and run its ``_on_start`` hook."""
        if self._running:
            logger.warning("%s is already running", self.agent_name)
            return

        self._status = AgentStatus.STARTING
        self._running = True

        await self._on_start()

        self._status = AgentStatus.RUNNING
        logger.info(
            "%s started (id=%s, type=%s)",
            self.agent_name,
            self._agent_id[:8],
            self.agent_type.value,
        )

    async def stop(self) -> None:
        """Stop the agent gracefully."""
        self._status = AgentStatus.STOPPING
        self._running = False

        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        await self._on_stop()

        self._status = AgentStatus.STOPPED
        logger.info("%s stopped (id=%s)", self.agent_name, self._agent_id[:8])

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """Run *coro* as a background task owned by this agent."""
        task = asyncio.create_task(
            coro, name=f"agent-{self.agent_name}-{name}-{self._agent_id[:8]}"
        )
        self._tasks.append(task)
        return task

    # ------------------------------------------------------------------
    # Hooks for subclasses
    # ------------------------------------------------------------------

    async def _on_start(self) -> None:
        """Called during start. Override for setup and to spawn tasks."""

    async def _on_stop(self) -> None:
        """Called during stop after the tasks end. Override for cleanup."""

    def _record_error(self, exc: BaseException) -> None:
        self._error_count += 1
        self._last_error = f"{type(exc).__name__}: {exc}"

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health_check(self) -> AgentHealthReport:
        """Return current health status."""
        healthy = self._running and self._status == AgentStatus.RUNNING
        message = ""
        if not self._running:
            message = "Agent is not running"
        elif self._error_count > 0:
            message = f"Last error: {self._last_error} (count={self._error_count})"

        return AgentHealthReport(
            healthy=healthy,
            message=message,
            last_work_at=self._last_work_at,
            error_count=self._error_count,
            details={
                "agent_id": self._agent_id,
                "agent_type": self.agent_type.value,
                "status": self._status.value,
                **self._health_details(),
            },
        )

    def _health_details(self) -> dict[str, Any]:
        """Extra fields for ``health_check().details``."""
        return {}
