"""
Result cache: the last known (hash, status) per (repository url, branch).

The cache is loaded once at start-up, updated by the build workers while they
run, and written back once after every worker has been joined. Each line of
the cache file is one record::

    <url> <branch> <hash> <status>[ <stamp>]

Blank lines and lines starting with ``#`` are ignored.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .domain import BuildStatus, CacheRecord
from .domain.build import isCommitHash
from .utils import stampFromStr, stampToStr, utcNow

LOG = logging.getLogger(__name__)

HEADER = "# cron-build result cache: url branch hash status [stamp]\n"


class CacheParseError(ValueError):
    def __init__(self, lineno, line, reason):
        super(CacheParseError, self).__init__(
            "cache line %d: %s: %r" % (lineno, reason, line))
        self.lineno = lineno


class CacheLoadError(Exception):
    pass


class CachePersistError(Exception):
    pass


def parseRecord(line: str, lineno: int = 0) -> CacheRecord:
    fields = line.split()
    if len(fields) not in (4, 5):
        raise CacheParseError(lineno, line, "expected 4 or 5 fields")
    url, branch, commit, statusStr = fields[:4]
    if not isCommitHash(commit):
        raise CacheParseError(lineno, line, "bad commit hash")
    try:
        status = BuildStatus(statusStr)
    except ValueError as err:
        raise CacheParseError(lineno, line, "bad status") from err
    stamp = None
    if len(fields) == 5:
        try:
            stamp = stampFromStr(fields[4])
        except ValueError as err:
            raise CacheParseError(lineno, line, "bad stamp") from err
    return CacheRecord(url, branch, commit, status, stamp)


def formatRecord(record: CacheRecord) -> str:
    fields = [record.url, record.branch, record.hash, record.status.value]
    if record.stamp is not None:
        fields.append(stampToStr(record.stamp))
    return " ".join(fields)


def parseRecords(lines: Iterable[Union[str, bytes]]
                 ) -> Tuple[List[CacheRecord], List[CacheParseError]]:
    records = []
    errors = []
    for lineno, line in enumerate(lines, 1):
        if isinstance(line, bytes):
            try:
                line = line.decode("utf-8")
            except UnicodeDecodeError:
                errors.append(CacheParseError(lineno, line, "not utf-8"))
                continue
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            records.append(parseRecord(line, lineno))
        except CacheParseError as err:
            errors.append(err)
    return records, errors


class ResultCache(object):
    """
    Thread safe map of (url, branch) -> CacheRecord.

    Every read and every read-modify-write happens under one lock. Records are
    frozen, so whatever a reader gets back is always one complete record.
    """

    def __init__(self, records: Optional[Iterable[CacheRecord]] = None):
        self._lock = threading.Lock()
        self._records: Dict[Tuple[str, str], CacheRecord] = {}
        self.errors: List[CacheParseError] = []
        for record in records or []:
            self._records[record.key] = record

    def __len__(self):
        with self._lock:
            return len(self._records)

    def __contains__(self, key):
        with self._lock:
            return key in self._records

    @classmethod
    def fromFile(cls, source: str) -> "ResultCache":
        cache = cls()
        cache.load(source)
        return cache

    def load(self, source: str) -> List[CacheRecord]:
        """
        Read records from the file `source`, replacing anything held for the
        same keys.

        A missing file is an empty cache. Malformed lines, including lines
        that are not utf-8, are skipped, logged and kept in `errors`. Any other
        failure to read the file raises CacheLoadError.
        """
        try:
            with open(source, "rb") as cacheFile:
                records, errors = parseRecords(cacheFile)
        except FileNotFoundError:
            LOG.info("no cache file %s, starting empty", source)
            return []
        except OSError as err:
            raise CacheLoadError(
                "unable to read cache %s: %s" % (source, err)) from err
        for err in errors:
            LOG.warning("%s: skipped: %s", source, err)
        with self._lock:
            for record in records:
                self._records[record.key] = record
            self.errors.extend(errors)
        LOG.debug("loaded %d records from %s", len(records), source)
        return records

    def lookup(self, url: str, branch: str) -> Optional[CacheRecord]:
        with self._lock:
            return self._records.get((url, branch))

    def update(self, url: str, branch: str, commit: str, status: BuildStatus,
               stamp=None) -> CacheRecord:
        """Insert or overwrite the record for (url, branch)."""
        if stamp is None:
            stamp = utcNow()
        record = CacheRecord(url, branch, commit, status, stamp)
        with self._lock:
            previous = self._records.get(record.key)
            self._records[record.key] = record
        LOG.debug("update %s %s: %s -> %s %s", url, branch,
                  previous.hash if previous else None, commit, status)
        return record

    def records(self) -> List[CacheRecord]:
        with self._lock:
            return [self._records[key] for key in sorted(self._records)]

    def persist(self, destination: str) -> None:
        """
        Write every record to `destination`.

        Called once after all workers are joined. The content goes to a
        temporary file in the same directory which then replaces the
        destination, so an interrupted write leaves the old file in place.
        """
        records = self.records()
        destDir = os.path.dirname(os.path.abspath(destination))
        try:
            os.makedirs(destDir, exist_ok=True)
            fd, tmpName = tempfile.mkstemp(prefix=".cache-", dir=destDir)
        except OSError as err:
            raise CachePersistError(
                "unable to write cache %s: %s" % (destination, err)) from err
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmpFile:
                tmpFile.write(HEADER)
                for record in records:
                    tmpFile.write(formatRecord(record) + "\n")
                tmpFile.flush()
                os.fsync(tmpFile.fileno())
            os.replace(tmpName, destination)
        except OSError as err:
            if os.path.exists(tmpName):
                os.unlink(tmpName)
            raise CachePersistError(
                "unable to write cache %s: %s" % (destination, err)) from err
        LOG.info("saved %d records to %s", len(records), destination)
