"""
SyncManager: the reconciliation engine. Strategies live in the submodules.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from datetime import timezone

from calmirror.cache import CacheManager
from calmirror.models import CacheError
from calmirror.models import CollectionInfo
from calmirror.models import DiscoveryError
from calmirror.models import SyncConfig
from calmirror.models import SyncStats
from calmirror.models import TokenState
from calmirror.store import CalendarData
from calmirror.store import CalendarStore
from calmirror.sync.full import run_full_fetch
from calmirror.sync.incremental import run_incremental_fetch

FULL = "full"
INCREMENTAL = "incremental"


def choose_strategy(data: CalendarData, collection: CollectionInfo) -> str:
    """Pick full or incremental fetch for one collection."""
    token = data.token_for(collection.url)
    if token.state is TokenState.NEVER_SYNCED and not data.has_items(collection.url):
        return FULL
    if collection.supports_sync and token.allows_incremental:
        return INCREMENTAL
    return FULL


class SyncManager:
    """Keeps a CalendarStore consistent with the remote collections."""

    def __init__(
        self,
        config: SyncConfig,
        transport,
        cache: CacheManager,
        store: CalendarStore | None = None,
    ):
        self.config = config
        self.transport = transport
        self.cache = cache
        self.store = store if store is not None else CalendarStore()
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_cache(cls, config: SyncConfig, transport, cache: CacheManager) -> "SyncManager":
        """Restore the store from the snapshot; CacheError if it is corrupt."""
        logger = logging.getLogger(__name__)
        data = cache.load()
        if data is None:
            logger.info("No cache found, starting fresh")
            data = CalendarData()
        else:
            logger.info(
                "Loaded existing cache: %d events, %d todos", len(data.events), len(data.todos)
            )
        return cls(config, transport, cache, CalendarStore(data))

    def sync(self) -> SyncStats:
        """Run one reconciliation pass over every discoverable collection.

        Only a discovery failure raises; per-collection failures are logged,
        counted in the returned stats, and the pass carries on.
        """
        self.logger.info("Starting calendar sync")
        try:
            collections = self.transport.discover_collections()
        except DiscoveryError as e:
            self.logger.error(f"Sync failed: {e}")
            raise
        except Exception as e:
            self.logger.error(f"Sync failed: {e}")
            raise DiscoveryError(f"Collection discovery failed: {e}") from e

        unique: dict[str, CollectionInfo] = {}
        for collection in collections:
            unique.setdefault(collection.url, collection)
        collections = list(unique.values())
        self.logger.debug("Found %d collections", len(collections))

        stats = SyncStats(collections=len(collections))
        if collections:
            workers = max(1, min(self.config.max_workers, len(collections)))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="calmirror-sync") as pool:
                for result in pool.map(self._sync_collection, collections):
                    stats.merge(result)

        live_urls = {c.url for c in collections}
        with self.store.write() as data:
            stats.purged = data.purge_stale(live_urls)
            data.mark_synced(datetime.now(timezone.utc))
            event_count, todo_count = len(data.events), len(data.todos)

        if stats.purged:
            self.logger.info("Removed %d items from collections that no longer exist", stats.purged)

        try:
            self.cache.save(self.store.snapshot())
        except CacheError as e:
            self.logger.error(f"Failed to persist cache: {e}")

        self.logger.info(
            "Sync complete: %d events, %d todos (from %d calendars, %d errors)",
            event_count,
            todo_count,
            len(collections),
            stats.errors,
        )
        return stats

    def _sync_collection(self, collection: CollectionInfo) -> SyncStats:
        """Sync one collection; never raises."""
        stats = SyncStats()
        with self.store.read() as data:
            strategy = choose_strategy(data, collection)
            token = data.token_for(collection.url)

        args = (self.config, stats, self.logger, self.transport, self.store, collection)
        try:
            if strategy == INCREMENTAL:
                try:
                    run_incremental_fetch(*args, token)
                    return stats
                except Exception as e:
                    self.logger.warning(
                        f"Incremental sync of {collection.name} failed ({e}); "
                        f"falling back to full fetch"
                    )
                    stats.fallbacks += 1
            run_full_fetch(*args)
        except Exception as e:
            self.logger.error(f"Failed to sync {collection.name} ({collection.url}): {e}")
            self.logger.debug("Collection sync failure detail", exc_info=True)
            stats.errors += 1
        return stats
