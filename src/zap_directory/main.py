"""Application bootstrap.

Wires the context, agents and pipeline together and runs either the
long-lived service (``run``) or a single cycle (``run_once``).
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
from dataclasses import dataclass
from typing import Any

from .agents.directory import DirectoryAgent
from .agents.ingestion import ZapIngestionAgent
from .agents.registry import AgentRegistry
from .core.config import Settings, load_settings
from .core.context import AppContext
from .core.enums import CycleOutcome, TriggerSource
from .nostr.keys import npub_encode
from .observability.logger import setup_logging
from .pipeline.aggregation import AggregationEngine
from .pipeline.publisher import PublishOrchestrator
from .pipeline.scheduler import TriggerScheduler

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    scheduler: TriggerScheduler
    ingestion: ZapIngestionAgent
    engine: AggregationEngine
    publisher: PublishOrchestrator
    directory: DirectoryAgent
    registry: AgentRegistry


def build_pipeline(ctx: AppContext) -> Pipeline:
    """Construct every component from the context (nothing is started)."""
    settings = ctx.settings
    schedule = settings.schedule

    scheduler = TriggerScheduler(
        ctx.clock,
        interval=schedule.update_interval_seconds,
        debounce=schedule.debounce_seconds,
        run_on_start=schedule.run_on_start,
    )
    ingestion = ZapIngestionAgent(
        ctx.pool,
        ctx.store,
        ctx.loader,
        ctx.clock,
        zap_pubkey=ctx.zap_pubkey,
        site_pubkey=ctx.site_pubkey,
        notify=scheduler.notify_payment,
        window_days=schedule.window_days,
        profile_concurrency=settings.network.profile_concurrency,
    )
    engine = AggregationEngine(
        ctx.store,
        ctx.clock,
        zap_pubkey=ctx.zap_pubkey,
        site_pubkey=ctx.site_pubkey,
        min_zap_amount=settings.min_zap_amount,
        window_days=schedule.window_days,
    )
    publisher = PublishOrchestrator(
        ctx.signer,
        ctx.pool,
        ctx.loader,
        ctx.storage,
        ctx.store,
        ctx.clock,
        fallback_relays=settings.relays,
    )
    directory = DirectoryAgent(scheduler, engine, publisher, ctx.clock)

    # stopped in reverse: consumer first, then the producers
    registry = AgentRegistry()
    registry.register(ingestion)
    registry.register(scheduler)
    registry.register(directory)

    return Pipeline(
        scheduler=scheduler,
        ingestion=ingestion,
        engine=engine,
        publisher=publisher,
        directory=directory,
        registry=registry,
    )


def _bootstrap(
    config_path: str | None, overrides: dict[str, Any] | None
) -> tuple[Settings, AppContext]:
    settings = load_settings(config_path=config_path, overrides=overrides)
    obs = settings.observability
    setup_logging(level=obs.log_level, format=obs.log_format)
    ctx = AppContext.from_settings(settings)
    logger.info(
        "Site identity %s, tracking zaps to %s",
        npub_encode(ctx.site_pubkey),
        npub_encode(ctx.zap_pubkey),
    )
    return settings, ctx


async def run(
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> None:
    """Run the service until SIGINT/SIGTERM."""
    settings, ctx = _bootstrap(config_path, overrides)

    metrics_port = settings.observability.metrics_port
    if metrics_port > 0:
        try:
            from .observability.metrics import start_metrics_server

            start_metrics_server(port=metrics_port)
            logger.info("Prometheus metrics server started on port %d", metrics_port)
        except Exception:
            logger.warning("Failed to start metrics server", exc_info=True)

    # Set up graceful shutdown
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Received shutdown signal")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    await ctx.open()
    pipeline = build_pipeline(ctx)
    try:
        await pipeline.registry.start_all()
        logger.info(
            "Listening on %d relays, recomputing every %.0fs",
            len(settings.relays),
            settings.schedule.update_interval_seconds,
        )
        await stop_event.wait()
    finally:
        await pipeline.registry.stop_all()
        await ctx.close()
        logger.info("Shutdown complete")


async def run_once(
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
    *,
    dry_run: bool = False,
) -> dict[str, Any]:
    """Backfill the window, run one cycle and return a JSON-able summary.

    With ``dry_run`` nothing is written: the summary holds the document
    that would be published and its hash.
    """
    _, ctx = _bootstrap(config_path, overrides)
    await ctx.open()
    try:
        pipeline = build_pipeline(ctx)
        await pipeline.ingestion.load_site_lists()
        await pipeline.ingestion.backfill()

        if dry_run:
            aggregated = pipeline.engine.aggregate()
            if aggregated is None:
                return {"outcome": CycleOutcome.SKIPPED.value}
            pointer = await pipeline.publisher.current_pointer()
            directory = aggregated.directory
            return {
                "hash": directory.content_hash(),
                "previous_hash": pointer.tag_value("x") if pointer else None,
                "zap_count": aggregated.zap_count,
                "dropped_zaps": aggregated.dropped,
                "document": json.loads(directory.to_document()),
            }

        report = await pipeline.directory.run_cycle(TriggerSource.MANUAL)
        return report.model_dump(mode="json")
    finally:
        await ctx.close()
