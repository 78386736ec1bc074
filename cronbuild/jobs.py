"""
Job discovery: decide which branches need a build.

For every repository entry the remote branches are listed and compared with
the result cache. A branch gets a build job when it has no cached record or
its head moved away from the cached hash, and never more than one job per
(url, branch) in a single pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .cache import ResultCache
from .domain import BranchHead, BuildJob, RepoEntry
from .git import RemoteError, listBranches

LOG = logging.getLogger(__name__)


@dataclass
class Discovery:
    """What one pass over the repo list found."""

    jobs: List[BuildJob] = field(default_factory=list)
    unchanged: List[Tuple[RepoEntry, BranchHead]] = field(default_factory=list)
    errors: List[Tuple[RepoEntry, RemoteError]] = field(default_factory=list)
    duplicates: List[Tuple[RepoEntry, BranchHead]] = field(default_factory=list)


class JobBuilder(object):
    def __init__(self, cache: ResultCache,
                 lister: Optional[Callable[[str], List[BranchHead]]] = None):
        self.cache = cache
        self.lister = lister or listBranches

    def jobFor(self, entry: RepoEntry, head: BranchHead) -> Optional[BuildJob]:
        """Return a job for head, or None when the cached hash matches."""
        record = self.cache.lookup(head.url, head.branch)
        if record is not None and record.hash == head.hash:
            return None
        return BuildJob(
            name=entry.name,
            url=head.url,
            branch=head.branch,
            hash=head.hash,
            command=entry.command,
            previous_hash=record.hash if record else None)

    def run(self, entries: Iterable[RepoEntry],
            submit: Optional[Callable[[BuildJob], None]] = None) -> Discovery:
        """
        Walk the entries, handing each new job to `submit` as soon as it is
        found so builds can start while the remaining remotes are listed.

        A RemoteError skips that one entry; the rest are still processed.
        """
        found = Discovery()
        seen: Set[Tuple[str, str]] = set()
        listings: Dict[str, List[BranchHead]] = {}
        for entry in entries:
            try:
                heads = listings.get(entry.url)
                if heads is None:
                    heads = self.lister(entry.url)
                    listings[entry.url] = heads
            except RemoteError as err:
                LOG.warning("%s: skipping, branch listing failed: %s", entry.name, err)
                found.errors.append((entry, err))
                continue

            for head in heads:
                if head.key in seen:
                    LOG.info("%s %s: already queued in this run", entry.name, head.branch)
                    found.duplicates.append((entry, head))
                    continue
                job = self.jobFor(entry, head)
                if job is None:
                    LOG.info("%s %s: no change (%s)", entry.name, head.branch,
                             head.hash[:10])
                    found.unchanged.append((entry, head))
                    continue
                seen.add(head.key)
                LOG.info("%s %s: queue build of %s (was %s)", entry.name,
                         head.branch, head.hash[:10],
                         job.previous_hash[:10] if job.previous_hash else "new")
                found.jobs.append(job)
                if submit is not None:
                    submit(job)
        return found
