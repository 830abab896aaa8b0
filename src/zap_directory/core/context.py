"""AppContext: everything a component needs, built once at startup.

There are no module-level singletons.  ``main`` builds one context from
the settings and hands its members to each component; tests build one
from fakes with the plain constructor.
"""

from __future__ import annotations

from dataclasses import dataclass

from .clock import IClock, WallClock
from .config import ResolvedKeys, Settings
from .interfaces import IBlobStorage, IRelayPool, IReplaceableLoader, ISigner
from .models import NostrEvent
from zap_directory.infrastructure.event_store import IEventStore


@dataclass
class AppContext:
    settings: Settings
    keys: ResolvedKeys
    clock: IClock
    signer: ISigner
    store: IEventStore
    pool: IRelayPool
    loader: IReplaceableLoader
    storage: IBlobStorage

    @property
    def site_pubkey(self) -> str:
        return self.keys.site_pubkey

    @property
    def zap_pubkey(self) -> str:
        return self.keys.zap_pubkey

    @classmethod
    def from_settings(
        cls, settings: Settings, clock: IClock | None = None
    ) -> AppContext:
        """Resolve keys and build the real network adapters.

        Raises ConfigError (or MissingKeyError) on bad configuration.
        """
        from zap_directory.infrastructure.event_store import InMemoryEventStore
        from zap_directory.nostr.signer import KeySigner, verify_event
        from zap_directory.observability import metrics
        from zap_directory.relay.loaders import ReplaceableLoader
        from zap_directory.relay.pool import RelayPool
        from zap_directory.storage.blossom import BlossomClient

        settings.validate_relays()
        keys = settings.require_keys()
        clock = clock or WallClock()
        signer = KeySigner(keys.secret_hex)

        def _verify(event: NostrEvent) -> bool:
            ok = verify_event(event)
            if not ok:
                metrics.record_event_rejected()
            return ok

        store = InMemoryEventStore(
            verifier=_verify if settings.network.verify_events else None
        )
        net = settings.network
        pool = RelayPool(
            settings.relays,
            request_timeout=net.request_timeout_seconds,
            publish_timeout=net.publish_timeout_seconds,
        )
        loader = ReplaceableLoader(
            pool,
            store,
            lookup_relays=settings.lookup_relays,
            timeout=net.request_timeout_seconds,
        )
        storage = BlossomClient(
            signer,
            clock,
            timeout=settings.storage.timeout_seconds,
            auth_ttl=settings.storage.auth_ttl_seconds,
        )
        return cls(
            settings=settings,
            keys=keys,
            clock=clock,
            signer=signer,
            store=store,
            pool=pool,
            loader=loader,
            storage=storage,
        )

    async def open(self) -> None:
        """Open network clients that hold connections."""
        for resource in (self.pool, self.storage):
            opener = getattr(resource, "open", None)
            if opener is not None:
                await opener()

    async def close(self) -> None:
        for resource in (self.storage, self.pool):
            closer = getattr(resource, "close", None)
            if closer is not None:
                await closer()
