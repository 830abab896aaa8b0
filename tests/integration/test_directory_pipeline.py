"""Integration test: zaps in, directory out.

End-to-end over the in-memory fakes: zaps arrive on the subscription ->
ingestion stores them and loads profiles -> the payment trigger is
debounced -> the directory agent aggregates and publishes -> a repeat
cycle is a no-op -> a new sender replaces the blob.
"""

import asyncio
import json

import pytest

from conftest import (
    NOW_TS,
    SERVERS,
    SITE_PUBKEY,
    build_profile,
    build_relay_list,
    build_server_list,
    build_zap,
    pubkey_for,
)
from zap_directory.core.enums import NIP05_PATH, CycleOutcome, EventKind, TriggerSource
from zap_directory.main import build_pipeline

ALICE = pubkey_for(0xA1)
BOB = pubkey_for(0xB0)
CAROL = pubkey_for(0xC0)


async def _wait_for(predicate, timeout=2.0):
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not met")


@pytest.fixture
def pipeline(app_context, pool):
    app_context.settings.schedule.debounce_seconds = 0.05
    app_context.settings.schedule.update_interval_seconds = 3600
    pool.events.extend([
        build_server_list(SERVERS),
        build_relay_list([["wss://outbox.example", "write"]]),
        build_profile(ALICE, "alice"),
        build_profile(BOB, "bob"),
    ])
    return build_pipeline(app_context)


def _published_document(storage, sha):
    blob = storage.blobs[SERVERS[0]][sha]
    return json.loads(blob)


class TestDirectoryPipeline:
    @pytest.mark.asyncio
    async def test_zap_to_published_directory(self, pipeline, pool, storage, store):
        await pipeline.registry.start_all()
        try:
            await pool.feed.put(("wss://relay.one", build_zap(ALICE, 3000, created_at=NOW_TS - 30)))
            await pool.feed.put(("wss://relay.two", build_zap(BOB, 1500, created_at=NOW_TS - 20)))

            await _wait_for(lambda: pipeline.directory.last_report is not None)
            report = pipeline.directory.last_report
            assert report.trigger == TriggerSource.PAYMENT
            assert report.outcome == CycleOutcome.PUBLISHED
            assert report.zap_count == 2
        finally:
            await pipeline.registry.stop_all()

        document = _published_document(storage, report.hash)
        assert document == {
            "names": {"alice": ALICE, "bob": BOB, "_": SITE_PUBKEY},
            "relays": {},
        }
        pointer, relays = pool.published[-1]
        assert relays == ["wss://outbox.example"]
        assert pointer.tag_value("x") == report.hash
        assert store.get_replaceable(EventKind.NSITE, SITE_PUBKEY, NIP05_PATH) == pointer

    @pytest.mark.asyncio
    async def test_publish_then_unchanged_then_replace(self, pipeline, pool, storage):
        pool.events.append(build_zap(ALICE, 3000))
        await pipeline.ingestion.load_site_lists()
        await pipeline.ingestion.backfill()

        first = await pipeline.directory.run_cycle()
        assert first.outcome == CycleOutcome.PUBLISHED
        assert first.previous_hash is None

        second = await pipeline.directory.run_cycle(TriggerSource.TIMER)
        assert second.outcome == CycleOutcome.UNCHANGED
        assert len(pool.published) == 1

        # carol has no profile and gets her pubkey prefix
        pool.events.append(build_zap(CAROL, 2000, created_at=NOW_TS - 5))
        await pipeline.ingestion.backfill()
        third = await pipeline.directory.run_cycle()

        assert third.outcome == CycleOutcome.PUBLISHED
        assert third.previous_hash == first.hash
        assert storage.deletes == [(s, first.hash) for s in SERVERS]
        for server in SERVERS:
            assert set(storage.blobs[server]) == {third.hash}
        assert _published_document(storage, third.hash)["names"] == {
            "alice": ALICE,
            CAROL[:8]: CAROL,
            "_": SITE_PUBKEY,
        }

    @pytest.mark.asyncio
    async def test_partial_storage_outage(self, pipeline, pool, storage):
        storage.fail_upload = {SERVERS[0], SERVERS[2]}
        pool.events.append(build_zap(ALICE, 3000))
        await pipeline.ingestion.load_site_lists()
        await pipeline.ingestion.backfill()

        report = await pipeline.directory.run_cycle()
        assert report.outcome == CycleOutcome.PUBLISHED
        assert [r.ok for r in report.uploaded] == [False, True, False]
        assert len(pool.published) == 1

    @pytest.mark.asyncio
    async def test_senders_below_threshold_not_listed(self, pipeline, pool, storage):
        pool.events.extend([build_zap(ALICE, 3000), build_zap(BOB, 999)])
        await pipeline.ingestion.load_site_lists()
        await pipeline.ingestion.backfill()

        report = await pipeline.directory.run_cycle()
        names = _published_document(storage, report.hash)["names"]
        assert BOB not in names.values()
        assert names["_"] == SITE_PUBKEY

    @pytest.mark.asyncio
    async def test_no_zaps_skips(self, pipeline, pool):
        await pipeline.ingestion.backfill()
        report = await pipeline.directory.run_cycle()
        assert report.outcome == CycleOutcome.SKIPPED
        assert pool.published == []
