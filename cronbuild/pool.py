"""
The build worker pool.

A fixed number of threads drain one shared job queue. Each job is built from
start to finish by a single worker:

    Queued -> Cloning -> Running -> Succeeded|Failed -> Recorded -> Notified -> Done

inside a private temporary directory which is removed however the build ends.
Closing the pool puts one stop marker per worker behind the queued jobs, so
`join()` only returns once every job submitted before `close()` is finished.
"""

from __future__ import annotations

import hashlib
import logging
import os
import queue
from subprocess import DEVNULL, STDOUT, CalledProcessError, check_call
import threading
from typing import Dict, List, Optional, Tuple

from .cache import ResultCache
from .domain import BuildJob, BuildOutcome, BuildStatus, JobState
from .git import RemoteError, changeLog, checkout, cloneBranch
from .notify import Notifier
from .utils import WorkDirError, autoDecode, safeName, scopedWorkDir, tailLines

LOG = logging.getLogger(__name__)

_STOP = object()


class PoolClosedError(Exception):
    pass


def runCommand(command: str, cwd: str, logFileName: str) -> int:
    """Run `command` with bash in `cwd`, all output going to logFileName."""
    cmd = ["bash", "-c", command]
    with open(logFileName, "ab") as logFp:
        try:
            LOG.debug("starting check_call(%r) in %s", cmd, cwd)
            rc = check_call(cmd, cwd=cwd, stdin=DEVNULL, stdout=logFp, stderr=STDOUT)
            LOG.debug("check_call() => rc=%d", rc)
        except OSError as err:
            LOG.debug("OSError %s", err, exc_info=True)
            rc = -1 * (err.errno or 1)
            logFp.write(("%s\n" % err).encode("utf-8"))
        except CalledProcessError as err:
            LOG.debug("CalledProcessError %s", err)
            rc = err.returncode
    return rc


def readLog(logFileName: str) -> str:
    try:
        with open(logFileName, "rb") as logFp:
            return tailLines(autoDecode(logFp.read()))
    except IOError:
        LOG.debug("unable to read %s", logFileName, exc_info=True)
        return ""


class WorkerPool(object):
    # pylint: disable=too-many-instance-attributes
    def __init__(self, cache: ResultCache, notifier: Notifier, workers: int = 4,
                 logDir: Optional[str] = None, workRoot: Optional[str] = None):
        # pylint: disable=too-many-arguments
        if workers < 1:
            raise ValueError("workers must be at least 1, not %r" % (workers,))
        self.cache = cache
        self.notifier = notifier
        self.workers = workers
        self.logDir = logDir
        self.workRoot = workRoot
        self._queue: "queue.Queue" = queue.Queue()
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()
        self._states: Dict[Tuple[str, str], JobState] = {}
        self._outcomes: List[BuildOutcome] = []
        self._abort = threading.Event()
        self._fatal: Optional[WorkDirError] = None
        self._closed = False

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, excType, excVal, excTb):
        self.join()

    def start(self):
        assert not self._threads
        for idx in range(self.workers):
            thread = threading.Thread(
                target=self._work, name="build-%d" % idx, daemon=True)
            thread.start()
            self._threads.append(thread)
        LOG.debug("started %d workers", self.workers)

    def submit(self, job: BuildJob) -> None:
        with self._lock:
            if self._closed:
                raise PoolClosedError("pool closed, cannot build %s" % job)
            self._states[job.key] = JobState.QUEUED
        self._queue.put(job)

    def close(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
        for _ in range(max(len(self._threads), 1)):
            self._queue.put(_STOP)

    def join(self) -> List[BuildOutcome]:
        """
        Close the queue and wait for every worker to finish.

        Raises WorkDirError if a worker could not create its working
        directory; jobs still queued at that point were not built.
        """
        self.close()
        if not self._threads:
            # never started: nothing will drain the queue
            self._discardQueued()
        for thread in self._threads:
            thread.join()
        if self._fatal is not None:
            raise self._fatal
        return self.outcomes

    @property
    def outcomes(self) -> List[BuildOutcome]:
        with self._lock:
            return list(self._outcomes)

    def state(self, job: BuildJob) -> Optional[JobState]:
        with self._lock:
            return self._states.get(job.key)

    def states(self) -> Dict[Tuple[str, str], JobState]:
        with self._lock:
            return dict(self._states)

    def _setState(self, job: BuildJob, state: JobState):
        with self._lock:
            current = self._states.get(job.key, JobState.QUEUED)
            assert current == state or current.canMoveTo(state), (
                "%s: %s -> %s" % (job, current, state))
            self._states[job.key] = state
        LOG.debug("%s: %s", job, state.value)

    def _markFailed(self, job: BuildJob):
        with self._lock:
            current = self._states.get(job.key, JobState.QUEUED)
            if current.rank < JobState.FAILED.rank:
                self._states[job.key] = JobState.FAILED

    def _discardQueued(self):
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            if item is not _STOP:
                LOG.warning("not building %s", item)

    def _work(self):
        while True:
            job = self._queue.get()
            try:
                if job is _STOP:
                    return
                if self._abort.is_set():
                    LOG.warning("run aborted, not building %s", job)
                    continue
                self.execute(job)
            except WorkDirError as err:
                LOG.error("%s: %s", job, err)
                with self._lock:
                    if self._fatal is None:
                        self._fatal = err
                self._abort.set()
            except Exception:  # pylint: disable=broad-except
                LOG.error("%s: worker error", job, exc_info=True)
            finally:
                self._queue.task_done()

    def buildLogFile(self, job: BuildJob, workDir: str) -> str:
        urlHash = hashlib.new("md5", job.url.encode("utf-8")).hexdigest()[:8]
        fileName = "%s-%s-%s.log" % (
            safeName(job.name), safeName(job.branch), urlHash)
        if self.logDir:
            return os.path.join(self.logDir, fileName)
        return os.path.join(workDir, fileName)

    def execute(self, job: BuildJob) -> BuildOutcome:
        prefix = "cron-build-%s-" % safeName(job.name)
        with scopedWorkDir(prefix=prefix, parent=self.workRoot) as workDir:
            try:
                outcome = self._build(job, workDir)
            except Exception as err:  # pylint: disable=broad-except
                LOG.error("%s: internal error", job, exc_info=True)
                outcome = BuildOutcome(job, BuildStatus.FAILURE,
                                       log="internal error: %s\n" % err,
                                       errors=[err])
                self._markFailed(job)
            self._record(outcome)
            self._notify(outcome)
        self._setState(job, JobState.DONE)
        with self._lock:
            self._outcomes.append(outcome)
        return outcome

    def _build(self, job: BuildJob, workDir: str) -> BuildOutcome:
        srcDir = os.path.join(workDir, "src")
        logFileName = self.buildLogFile(job, workDir)
        if os.path.exists(logFileName):
            os.unlink(logFileName)

        self._setState(job, JobState.CLONING)
        try:
            cloneBranch(job.url, job.branch, srcDir)
        except RemoteError as err:
            LOG.warning("%s: %s", job, err)
            self._setState(job, JobState.FAILED)
            return BuildOutcome(job, BuildStatus.FAILURE, log="%s\n" % err,
                                errors=[err])
        checkout(srcDir, job.hash)
        changelog = changeLog(srcDir, job.previous_hash, job.hash)

        self._setState(job, JobState.RUNNING)
        LOG.info("%s: execute %r", job, job.command)
        rc = runCommand(job.command, srcDir, logFileName)
        status = BuildStatus.fromReturnCode(rc)
        self._setState(job, JobState.SUCCEEDED if status == BuildStatus.SUCCESS
                       else JobState.FAILED)
        LOG.info("%s: %s (rc=%d)", job, status, rc)
        return BuildOutcome(job, status, log=readLog(logFileName),
                            changelog=changelog, rc=rc)

    def _record(self, outcome: BuildOutcome):
        job = outcome.job
        self.cache.update(job.url, job.branch, job.hash, outcome.status)
        self._setState(job, JobState.RECORDED)

    def _notify(self, outcome: BuildOutcome):
        job = outcome.job
        try:
            self.notifier.notify(job.name, job.branch, outcome.status,
                                 outcome.changelog, log=outcome.log)
        except Exception as err:  # pylint: disable=broad-except
            LOG.warning("%s: notification error: %s", job, err, exc_info=True)
            outcome.errors.append(err)
        self._setState(job, JobState.NOTIFIED)
