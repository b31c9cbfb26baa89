"""
Full fetch: replace a collection's local copy with the server's current contents.
"""

from calmirror.models import CollectionInfo
from calmirror.models import ComponentKind
from calmirror.models import Event
from calmirror.models import SyncConfig
from calmirror.models import SyncStats
from calmirror.models import SyncToken
from calmirror.store import CalendarStore
from calmirror.sync.utils import collect_records


def run_full_fetch(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    transport,
    store: CalendarStore,
    collection: CollectionInfo,
):
    """Fetch every event and todo of ``collection`` and swap them in wholesale.

    Network and parsing happen before the write lock is taken; the swap
    itself is a single short critical section, so repeating a full fetch
    against unchanged data leaves the store unchanged.
    """
    logger.debug(f"Full fetch of {collection.name} ({collection.url})")

    objects = transport.fetch_all(collection.url, ComponentKind.EVENT)
    objects += transport.fetch_all(collection.url, ComponentKind.TODO)
    records = collect_records(objects, collection, config.recurrence)

    events = [r for r in records if isinstance(r, Event)]
    todos = [r for r in records if not isinstance(r, Event)]

    with store.write() as data:
        data.replace_collection(collection.url, events, todos)
        if collection.color:
            data.calendar_colors[collection.url] = collection.color
        else:
            data.calendar_colors.pop(collection.url, None)
        if collection.supports_sync and data.token_for(collection.url).allows_incremental:
            data.sync_tokens[collection.url] = SyncToken.synced_no_token()

    stats.full_fetches += 1
    stats.upserted += len(records)
    logger.debug(
        f"Full fetch of {collection.name}: {len(objects)} objects, "
        f"{len(events)} events, {len(todos)} todos"
    )
