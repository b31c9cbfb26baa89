"""
CalDAV connectivity wrapper.

Discovery goes through the caldav library's principal/calendar objects;
object retrieval issues the REPORT bodies directly so that deleted hrefs,
inlined calendar-data and the returned sync-token are all visible.
"""

import logging
from xml.sax.saxutils import escape

import caldav
from caldav.elements import dav
from caldav.elements import ical
from lxml import etree

from calmirror.models import ChangedItem
from calmirror.models import CollectionInfo
from calmirror.models import ComponentKind
from calmirror.models import DiscoveryError
from calmirror.models import RemoteObject
from calmirror.models import SyncDelta
from calmirror.models import TransportError
from calmirror.sync.utils import normalize_color

DAV_NS = "DAV:"
CALDAV_NS = "urn:ietf:params:xml:ns:caldav"

_CALENDAR_QUERY = """<?xml version="1.0" encoding="utf-8" ?>
<C:calendar-query xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:caldav">
  <D:prop><D:getetag/><C:calendar-data/></D:prop>
  <C:filter>
    <C:comp-filter name="VCALENDAR"><C:comp-filter name="{component}"/></C:comp-filter>
  </C:filter>
</C:calendar-query>"""

_SYNC_COLLECTION = """<?xml version="1.0" encoding="utf-8" ?>
<D:sync-collection xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:caldav">
  <D:sync-token>{token}</D:sync-token>
  <D:sync-level>1</D:sync-level>
  <D:prop><D:getetag/><C:calendar-data/></D:prop>
</D:sync-collection>"""

_CALENDAR_MULTIGET = """<?xml version="1.0" encoding="utf-8" ?>
<C:calendar-multiget xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:caldav">
  <D:prop><D:getetag/><C:calendar-data/></D:prop>
{hrefs}
</C:calendar-multiget>"""


def _tag(ns: str, name: str) -> str:
    return f"{{{ns}}}{name}"


def _status_code(status: str | None) -> int | None:
    """Extract the numeric code from an 'HTTP/1.1 404 Not Found' status line."""
    if not status:
        return None
    parts = status.split()
    if len(parts) >= 2 and parts[1].isdigit():
        return int(parts[1])
    return None


def parse_multistatus(body: bytes | str) -> tuple[list[ChangedItem], str | None]:
    """Parse a 207 multistatus body into changed items and the sync-token.

    A response whose own status is 404 is a deletion. Otherwise the
    getetag and calendar-data of the 200 propstat are picked up; the
    calendar-data is None when the server did not inline it.
    """
    if isinstance(body, str):
        body = body.encode("utf-8")
    root = etree.fromstring(body)

    items = []
    for response in root.iter(_tag(DAV_NS, "response")):
        href = (response.findtext(_tag(DAV_NS, "href")) or "").strip()
        if not href:
            continue

        if _status_code(response.findtext(_tag(DAV_NS, "status"))) == 404:
            items.append(ChangedItem(path=href, deleted=True))
            continue

        etag = None
        data = None
        for propstat in response.iter(_tag(DAV_NS, "propstat")):
            code = _status_code(propstat.findtext(_tag(DAV_NS, "status")))
            if code is not None and code != 200:
                continue
            etag = propstat.findtext(f"{_tag(DAV_NS, 'prop')}/{_tag(DAV_NS, 'getetag')}") or etag
            data = (
                propstat.findtext(f"{_tag(DAV_NS, 'prop')}/{_tag(CALDAV_NS, 'calendar-data')}")
                or data
            )

        # Collections themselves show up in some sync reports.
        if href.endswith("/") and data is None:
            continue
        items.append(ChangedItem(path=href, data=data, etag=etag))

    token = root.findtext(_tag(DAV_NS, "sync-token"))
    return items, (token.strip() if token and token.strip() else None)


class CalDAVTransport:
    """Wrapper for the remote CalDAV operations the sync engine consumes."""

    def __init__(self, server_url: str, username: str, password: str, timeout: int = 30):
        self.server_url = server_url
        self.logger = logging.getLogger(__name__)
        self.client = caldav.DAVClient(
            url=server_url, username=username, password=password, timeout=timeout
        )

    def check_connection(self):
        """Resolve the current user principal; raises TransportError on failure."""
        try:
            self.client.principal()
        except Exception as e:
            raise TransportError(f"Failed to connect to {self.server_url}: {e}") from e

    def discover_collections(self) -> list[CollectionInfo]:
        """List the calendars and task lists in the user's calendar home."""
        try:
            calendars = self.client.principal().calendars()
        except Exception as e:
            raise DiscoveryError(f"Failed to discover calendars on {self.server_url}: {e}") from e

        collections = []
        for calendar in calendars:
            url = str(calendar.url)
            name = None
            color = None
            supports_sync = False
            try:
                props = calendar.get_properties(
                    [dav.DisplayName(), ical.CalendarColor(), dav.SyncToken()]
                )
                name = props.get(dav.DisplayName.tag)
                color = normalize_color(props.get(ical.CalendarColor.tag))
                supports_sync = bool(props.get(dav.SyncToken.tag))
            except Exception as e:
                # Colour and capability are optional; a failed PROPFIND here
                # only costs us the extras.
                self.logger.warning("Could not read properties of %s: %s", url, e)
            collections.append(
                CollectionInfo(
                    url=url,
                    name=name or getattr(calendar, "name", None) or "Unnamed",
                    color=color,
                    supports_sync=supports_sync,
                )
            )
        return collections

    def _report(self, url: str, body: str) -> tuple[list[ChangedItem], str | None]:
        try:
            response = self.client.report(url, body, depth=1)
        except Exception as e:
            raise TransportError(f"REPORT on {url} failed: {e}") from e
        if response.status >= 400:
            raise TransportError(f"REPORT on {url} returned HTTP {response.status}")
        try:
            return parse_multistatus(response.raw)
        except etree.XMLSyntaxError as e:
            raise TransportError(f"Malformed REPORT response from {url}: {e}") from e

    def fetch_all(self, url: str, kind: ComponentKind) -> list[RemoteObject]:
        """Every calendar object of one component type in the collection."""
        items, _ = self._report(url, _CALENDAR_QUERY.format(component=kind.value))
        return [
            RemoteObject(path=i.path, data=i.data, etag=i.etag)
            for i in items
            if not i.deleted and i.data is not None
        ]

    def fetch_changes(self, url: str, token: str | None) -> SyncDelta:
        """Changes since ``token`` (everything when token is None)."""
        items, new_token = self._report(url, _SYNC_COLLECTION.format(token=escape(token or "")))
        return SyncDelta(items=items, token=new_token)

    def fetch_batch(self, url: str, paths: list[str]) -> list[RemoteObject]:
        """Content for a batch of hrefs in a single calendar-multiget."""
        hrefs = "\n".join(f"  <D:href>{escape(p)}</D:href>" for p in paths)
        items, _ = self._report(url, _CALENDAR_MULTIGET.format(hrefs=hrefs))
        return [
            RemoteObject(path=i.path, data=i.data, etag=i.etag)
            for i in items
            if not i.deleted and i.data is not None
        ]
