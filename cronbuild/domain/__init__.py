"""
Domain models for cron-build.

Plain values passed between the job builder, the worker pool, the result cache
and the notifiers. Nothing in here touches git, the filesystem or threads.
"""

from .build import (
    BranchHead,
    BuildJob,
    BuildOutcome,
    BuildStatus,
    CacheRecord,
    JobState,
    RepoEntry,
)

__all__ = [
    "BranchHead",
    "BuildJob",
    "BuildOutcome",
    "BuildStatus",
    "CacheRecord",
    "JobState",
    "RepoEntry",
]
