"""Agent registry for lifecycle management and discovery.

Starts agents in registration order and stops them in reverse, so the
consumer of a queue is stopped before whatever feeds it is torn down.
"""

from __future__ import annotations

import logging
from typing import Any

from zap_directory.core.interfaces import IAgent
from zap_directory.core.models import AgentHealthReport

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Manages agent lifecycle, discovery, and health monitoring.

    Usage::

        registry = AgentRegistry()
        registry.register(scheduler)
        registry.register(ingestion)
        await registry.start_all()
        # ... service runs ...
        await registry.stop_all()
    """

    def __init__(self) -> None:
        self._agents: dict[str, IAgent] = {}
        self._start_order: list[str] = []

    def register(self, agent: IAgent) -> None:
        """Register an agent. Raises ValueError if agent_id already registered."""
        if agent.agent_id in self._agents:
            raise ValueError(f"Agent already registered: {agent.agent_id}")
        self._agents[agent.agent_id] = agent
        self._start_order.append(agent.agent_id)
        logger.info(
            "Registered agent: %s (type=%s, id=%s)",
            type(agent).__name__,
            agent.agent_type.value,
            agent.agent_id[:8],
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_all(self) -> None:
        """Start all registered agents in registration order."""
        logger.info("Starting %d agents...", len(self._agents))
        for agent_id in self._start_order:
            agent = self._agents[agent_id]
            try:
                await agent.start()
            except Exception:
                logger.exception(
                    "Failed to start agent %s (id=%s)",
                    type(agent).__name__,
                    agent_id[:8],
                )
        logger.info("All agents started")

    async def stop_all(self) -> None:
        """Stop all registered agents in reverse registration order."""
        logger.info("Stopping %d agents...", len(self._agents))
        for agent_id in reversed(self._start_order):
            agent = self._agents[agent_id]
            try:
                await agent.stop()
            except Exception:
                logger.exception(
                    "Failed to stop agent %s (id=%s)",
                    type(agent).__name__,
                    agent_id[:8],
                )
        logger.info("All agents stopped")

    # ------------------------------------------------------------------
    # Health & discovery
    # ------------------------------------------------------------------

    def health_check_all(self) -> dict[str, AgentHealthReport]:
        """Run health checks on all registered agents."""
        results: dict[str, AgentHealthReport] = {}
        for agent_id, agent in self._agents.items():
            try:
                results[agent_id] = agent.health_check()
            except Exception as exc:
                results[agent_id] = AgentHealthReport(
                    healthy=False,
                    message=f"Health check failed: {exc}",
                )
        return results

    def all_healthy(self) -> bool:
        return all(r.healthy for r in self.health_check_all().values())

    @property
    def count(self) -> int:
        return len(self._agents)

    def summary(self) -> list[dict[str, Any]]:
        """Return a summary of all registered agents for logging."""
        return [
            {
                "agent_id": a.agent_id[:8],
                "type": a.agent_type.value,
                "name": type(a).__name__,
                "running": a.is_running,
            }
            for a in self._agents.values()
        ]
