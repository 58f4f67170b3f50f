"""Bounded on-disk cache of recent scan reports.

Each report is one JSON file named ``scan-<provider>-<created_ns>.json``.
After every save only the newest entries (10 by default, across all
providers) are kept. Readers treat entries older than the staleness
window as absent.
"""

import json
import os
import re
import tempfile
import time
from datetime import timedelta
from pathlib import Path
from typing import Callable

import structlog
from pydantic import ValidationError

from cloudcost.core.config import settings
from cloudcost.schemas.report import ReportCacheEntry, ScanReport

logger = structlog.get_logger()

FILENAME_PATTERN = re.compile(r"^scan-(?P<provider>[a-z0-9_]+)-(?P<stamp>\d+)\.json$")


class ReportCache:
    """Recency-keyed report files under a user-scoped directory."""

    def __init__(
        self,
        directory: Path | None = None,
        max_entries: int | None = None,
        clock: Callable[[], int] = time.time_ns,
    ) -> None:
        """
        Initialize the cache.

        Args:
            directory: Cache directory, defaults to settings.REPORT_CACHE_DIR
            max_entries: Retention count, defaults to settings.REPORT_CACHE_MAX_ENTRIES
            clock: Current time in nanoseconds since the epoch
        """
        self.directory = Path(directory or settings.REPORT_CACHE_DIR).expanduser()
        self.max_entries = max_entries or settings.REPORT_CACHE_MAX_ENTRIES
        self.clock = clock

    def _files(self) -> list[tuple[int, Path]]:
        """Cache files, newest first."""
        if not self.directory.is_dir():
            return []
        files = []
        for path in self.directory.iterdir():
            match = FILENAME_PATTERN.match(path.name)
            if match:
                files.append((int(match.group("stamp")), path))
        files.sort(key=lambda item: item[0], reverse=True)
        return files

    def _next_stamp(self) -> int:
        stamp = self.clock()
        files = self._files()
        if files and files[0][0] >= stamp:
            stamp = files[0][0] + 1
        return stamp

    def save(self, provider: str, region: str | None, report: ScanReport) -> Path:
        """
        Write a report and evict everything but the newest entries.

        Args:
            provider: Provider tag
            region: Region scanned
            report: Full report

        Returns:
            Path of the written file
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        stamp = self._next_stamp()
        entry = ReportCacheEntry(
            timestamp=stamp // 1_000_000,
            provider=provider,
            region=region,
            report=report,
        )
        path = self.directory / f"scan-{provider}-{stamp}.json"

        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(entry.model_dump_json(indent=2))
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        self.prune()
        logger.debug("report_cache.saved", path=str(path), provider=provider)
        return path

    def prune(self) -> int:
        """Delete all but the newest max_entries files. Returns how many were removed."""
        removed = 0
        for _, path in self._files()[self.max_entries:]:
            path.unlink(missing_ok=True)
            removed += 1
        return removed

    def load_most_recent(self, max_age: timedelta | None = None) -> ReportCacheEntry | None:
        """
        Return the newest entry if it is younger than max_age.

        Args:
            max_age: Staleness window, defaults to settings.REPORT_CACHE_MAX_AGE_HOURS

        Returns:
            Newest readable entry, or None if there is none or it is stale
        """
        if max_age is None:
            max_age = timedelta(hours=settings.REPORT_CACHE_MAX_AGE_HOURS)
        now_ms = self.clock() // 1_000_000

        for _, path in self._files():
            try:
                entry = ReportCacheEntry.model_validate(
                    json.loads(path.read_text(encoding="utf-8"))
                )
            except (OSError, ValueError, ValidationError) as e:
                logger.warning("report_cache.unreadable", path=str(path), error=str(e))
                continue

            if now_ms - entry.timestamp > max_age.total_seconds() * 1000:
                return None
            return entry
        return None

    def clear(self) -> None:
        """Remove every cache file."""
        for _, path in self._files():
            path.unlink(missing_ok=True)
