"""
JSON snapshot persistence for the calendar store.
"""

import json
import logging
import os
import tempfile
from pathlib import Path

from calmirror.models import CacheError
from calmirror.store import CalendarData

CACHE_FILE_NAME = "calendar_data.json"


class CacheManager:
    """Loads and saves the whole CalendarData as a single JSON snapshot."""

    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir)
        self.logger = logging.getLogger(__name__)

    @property
    def cache_file(self) -> Path:
        return self.cache_dir / CACHE_FILE_NAME

    def exists(self) -> bool:
        return self.cache_file.exists()

    def load(self) -> CalendarData | None:
        """Return the persisted snapshot, or None when there is none yet.

        A file that exists but cannot be decoded raises CacheError rather
        than yielding a partially restored store.
        """
        if not self.cache_file.exists():
            self.logger.debug("Cache file does not exist: %s", self.cache_file)
            return None

        self.logger.debug("Loading cache from: %s", self.cache_file)
        try:
            raw = self.cache_file.read_text(encoding="utf-8")
        except OSError as e:
            raise CacheError(f"Failed to read cache file {self.cache_file}: {e}") from e

        try:
            return CalendarData.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise CacheError(f"Failed to parse cache file {self.cache_file}: {e}") from e

    def save(self, data: CalendarData):
        """Overwrite the snapshot atomically (write a temp file, then rename)."""
        self.logger.debug(
            "Saving %d events and %d todos to %s",
            len(data.events),
            len(data.todos),
            self.cache_file,
        )
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=".calendar_data.", suffix=".tmp", dir=self.cache_dir
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data.to_dict(), fh, indent=2)
                os.replace(tmp_name, self.cache_file)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise CacheError(f"Failed to write cache file {self.cache_file}: {e}") from e

        self.logger.info("Cache saved successfully")

    def clear(self) -> bool:
        """Remove the snapshot; returns False when there was nothing to remove."""
        if not self.cache_file.exists():
            self.logger.debug("Cache file does not exist, nothing to clear")
            return False
        try:
            self.cache_file.unlink()
        except OSError as e:
            raise CacheError(f"Failed to remove cache file {self.cache_file}: {e}") from e
        self.logger.info("Cache cleared")
        return True
