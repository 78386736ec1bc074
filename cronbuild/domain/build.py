"""
Pure domain model for builds.

Repository entries come in from the repo list, branch heads come back from the
remote, cache records are what the result cache holds per (url, branch), and a
build job turns into exactly one build outcome.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import re
from typing import Optional, Tuple

HASH_RE = re.compile(r"^[0-9a-f]{40}$")


def isCommitHash(value: str) -> bool:
    return bool(HASH_RE.match(value))


class BuildStatus(Enum):
    """Recorded result of one build."""

    SUCCESS = "success"
    FAILURE = "failure"

    @classmethod
    def fromReturnCode(cls, rc: int) -> "BuildStatus":
        return cls.SUCCESS if rc == 0 else cls.FAILURE

    def __str__(self):
        return self.value


class JobState(Enum):
    """Build job lifecycle, in the only order a job moves through it."""

    QUEUED = "queued"
    CLONING = "cloning"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    RECORDED = "recorded"
    NOTIFIED = "notified"
    DONE = "done"

    @property
    def rank(self) -> int:
        # SUCCEEDED and FAILED are alternatives at the same step
        return _STATE_RANK[self]

    def canMoveTo(self, other: "JobState") -> bool:
        return other.rank > self.rank


_STATE_RANK = {
    JobState.QUEUED: 0,
    JobState.CLONING: 1,
    JobState.RUNNING: 2,
    JobState.SUCCEEDED: 3,
    JobState.FAILED: 3,
    JobState.RECORDED: 4,
    JobState.NOTIFIED: 5,
    JobState.DONE: 6,
}


@dataclass(frozen=True)
class RepoEntry:
    """One line of the repo list: what to build and how."""

    name: str
    url: str
    command: str


@dataclass(frozen=True)
class BranchHead:
    """A (repository, branch, commit) observation from the remote."""

    url: str
    branch: str
    hash: str

    def __post_init__(self):
        if not isCommitHash(self.hash):
            raise ValueError("not a commit hash: %r" % (self.hash,))

    @property
    def key(self) -> Tuple[str, str]:
        return (self.url, self.branch)


@dataclass(frozen=True)
class CacheRecord:
    """Last known result for one (url, branch)."""

    url: str
    branch: str
    hash: str
    status: BuildStatus
    stamp: Optional[datetime] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.url, self.branch)


@dataclass(frozen=True)
class BuildJob:
    """
    Build this branch at this commit with this command.

    previous_hash is the cached hash the branch moved away from (None for a
    branch never built before) and only feeds the change log.
    """

    name: str
    url: str
    branch: str
    hash: str
    command: str
    previous_hash: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.url, self.branch)

    def __str__(self):
        return "%s %s@%s" % (self.name, self.branch, self.hash[:10])


@dataclass
class BuildOutcome:
    job: BuildJob
    status: BuildStatus
    log: str = ""
    changelog: str = ""
    rc: Optional[int] = None
    errors: list = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == BuildStatus.SUCCESS
