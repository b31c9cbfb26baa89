"""
Incremental fetch: apply the server's diff since the stored sync token.
"""

from calmirror.models import CollectionInfo
from calmirror.models import Event
from calmirror.models import RemoteObject
from calmirror.models import SyncConfig
from calmirror.models import SyncStats
from calmirror.models import SyncToken
from calmirror.store import CalendarStore
from calmirror.sync.utils import chunked
from calmirror.sync.utils import collect_records


def _fetch_changed_content(config: SyncConfig, logger, transport, collection, delta):
    """Inline content where the diff carried it, batch-fetch the rest."""
    fetched = []
    pending = []
    for item in delta.items:
        if item.deleted:
            continue
        if item.data is not None:
            fetched.append(RemoteObject(path=item.path, data=item.data, etag=item.etag))
        else:
            pending.append(item.path)

    for batch in chunked(pending, config.batch_size):
        logger.debug(f"Fetching batch of {len(batch)} changed objects from {collection.url}")
        fetched.extend(transport.fetch_batch(collection.url, batch))
    return fetched


def run_incremental_fetch(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    transport,
    store: CalendarStore,
    collection: CollectionInfo,
    token: SyncToken,
):
    """Apply the changes since ``token`` to ``collection``.

    Without a cursor the server answers with the collection's current
    members and no deletion records, so that listing replaces the
    collection's contents outright.

    Any transport error propagates so the caller can fall back to a full
    fetch; nothing is written to the store until every request succeeded.
    """
    logger.debug(f"Incremental fetch of {collection.name} ({collection.url})")

    snapshot = token.cursor is None
    delta = transport.fetch_changes(collection.url, token.cursor)
    deleted_paths = [item.path for item in delta.items if item.deleted]
    fetched = _fetch_changed_content(config, logger, transport, collection, delta)
    records = collect_records(fetched, collection, config.recurrence)

    with store.write() as data:
        deleted = 0
        if snapshot:
            stored = {
                item.uid
                for item in [*data.events, *data.todos]
                if item.calendar_url == collection.url
            }
            deleted = len(stored - {r.uid for r in records})
            events = [r for r in records if isinstance(r, Event)]
            todos = [r for r in records if not isinstance(r, Event)]
            data.replace_collection(collection.url, events, todos)
            upserted = len(records)
        else:
            for path in deleted_paths:
                deleted += data.remove_by_path(collection.url, path)
            upserted = data.replace_by_uid(records)

        if delta.token:
            data.sync_tokens[collection.url] = SyncToken.has_token(delta.token)
        else:
            logger.info(
                f"{collection.name} returned no sync token; "
                f"using full fetches for it from now on"
            )
            data.sync_tokens[collection.url] = SyncToken.unsupported()

        if collection.color:
            data.calendar_colors[collection.url] = collection.color

    stats.incremental_fetches += 1
    stats.upserted += upserted
    stats.deleted += deleted
    logger.debug(
        f"Incremental fetch of {collection.name}: {len(delta.items)} changes, "
        f"{upserted} records upserted, {deleted} removed"
    )
