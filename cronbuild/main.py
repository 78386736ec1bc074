#!/usr/bin/env python
import argparse
from importlib import metadata
import os
import sys
from typing import List, Optional

import dateutil.tz
import simplejson as json

import cronbuild.logging

from .argparse import addArgumentParserBaseFlags
from .binutils import binDescriptionWithStandardFooter
from .cache import CacheLoadError, CachePersistError, ResultCache
from .config import Config, ConfigError
from .domain import BuildOutcome
from .jobs import Discovery, JobBuilder
from .notify import notifierFromConfig
from .pool import WorkerPool
from .repolist import readRepoList
from .utils import DATETIME_FMT, WorkDirError, sprint

_DEBUG_LOG_FILE_NAME = "cron-build-debug"
LOG = cronbuild.logging.getLogger(__name__)

OK = 0
ERROR = 1

DESC = binDescriptionWithStandardFooter("""
cron-build - build the branches that changed since the last run

REPOLIST names one repository per line: a project name, the repository url and
the build command (the rest of the line, run with `bash -c` from the top of a
fresh clone).

    # name   url                                  command
    demo     https://example.com/demo.git         make test

Every branch whose head moved since the previous run is cloned and built, at
most --workers at a time. Results are kept in the cache file, so a branch is
only built again once it gets new commits.

Examples:
    # Build whatever changed, 8 builds at a time
    $ cron-build -j8 ~/repos.txt

    # Show which branches would be built
    $ cron-build --dry-run ~/repos.txt

    # Last known result of every branch
    $ cron-build --status
""")


def parseArgs(args=None):
    if args is None:
        prog = sys.argv[0]
        args = sys.argv[1:]
    else:
        prog = None

    op = argparse.ArgumentParser(
        prog=os.path.basename(prog) if prog else "cron-build",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description=DESC)
    op.add_argument("repoList", metavar="REPOLIST", nargs="?",
                    help="File listing the repositories to build")

    addArgumentParserBaseFlags(op, _DEBUG_LOG_FILE_NAME)

    mode = op.add_mutually_exclusive_group()
    mode.add_argument("-n", "--dry-run", action="store_true",
                      help="List the builds that would run, build nothing")
    mode.add_argument("-s", "--status", action="store_true",
                      help="Show the last known result of every branch")
    mode.add_argument("--version", action="store_true",
                      help="Show the version and exit")
    op.add_argument("--json", action="store_true",
                    help="With --status, print the records as JSON")

    options = op.parse_args(args)
    if not (options.status or options.version) and not options.repoList:
        op.error("REPOLIST is required")
    return options


def showVersion():
    try:
        version = metadata.version("cron-build")
    except metadata.PackageNotFoundError:
        version = "unknown"
    sprint(f"Version {version}")


def showStatus(cache: ResultCache, asJson: bool = False):
    records = cache.records()
    if asJson:
        sprint(json.dumps([
            {
                "url": record.url,
                "branch": record.branch,
                "hash": record.hash,
                "status": record.status.value,
                "stamp": record.stamp.isoformat() if record.stamp else None,
            } for record in records], indent=2))
        return
    if not records:
        sprint("No builds recorded")
        return
    for record in records:
        when = ""
        if record.stamp:
            when = record.stamp.astimezone(dateutil.tz.tzlocal()).strftime(DATETIME_FMT)
        sprint("%-7s %s %s %s %s" % (record.status.value, record.hash[:10],
                                     record.url, record.branch, when))


def showDryRun(discovery: Discovery):
    for job in discovery.jobs:
        sprint("would build %s %s at %s: %s" % (
            job.name, job.branch, job.hash[:10], job.command))
    showDiscoveryProblems(discovery)
    sprint("%d to build, %d unchanged" % (
        len(discovery.jobs), len(discovery.unchanged)))


def showDiscoveryProblems(discovery: Discovery):
    for entry, error in discovery.errors:
        sprint("Error: %s: %s" % (entry.name, error), file=sys.stderr)


def showSummary(discovery: Discovery, outcomes: List[BuildOutcome], verbose=False):
    if verbose:
        for entry, head in discovery.unchanged:
            sprint("no change: %s %s" % (entry.name, head.branch))
    showDiscoveryProblems(discovery)
    failed = [outcome for outcome in outcomes if not outcome.succeeded]
    for outcome in failed:
        sprint("FAILED: %s %s (%s)" % (
            outcome.job.name, outcome.job.branch, outcome.job.hash[:10]))
    sprint("%d built, %d failed, %d unchanged, %d repositories not listed" % (
        len(outcomes), len(failed), len(discovery.unchanged), len(discovery.errors)))


def runBuilds(config: Config, cache: ResultCache, entries,
              notifier=None) -> int:
    """
    List, build and record every changed branch, then save the cache.

    Jobs are handed to the workers while later repositories are still being
    listed. The cache is written only after all workers have finished.
    """
    if notifier is None:
        notifier = notifierFromConfig(config)
    builder = JobBuilder(cache)
    pool = WorkerPool(cache, notifier, workers=config.workers,
                      logDir=config.buildLogDir)
    fatal: Optional[WorkDirError] = None
    discovery = Discovery()
    pool.start()
    try:
        discovery = builder.run(entries, submit=pool.submit)
    finally:
        try:
            pool.join()
        except WorkDirError as err:
            fatal = err
        cache.persist(config.cacheFile)

    showSummary(discovery, pool.outcomes, verbose=config.verbose)
    if fatal is not None:
        raise fatal
    return OK


def impl_main(args=None) -> int:
    options = parseArgs(args)
    config = Config(options)

    cronbuild.logging.setup(
        config.logDir,
        _DEBUG_LOG_FILE_NAME,
        debug=options.debug,
        verbose=bool(options.verbose))
    LOG.debug("starting with args %s", options)
    LOG.debug("python: %s", sys.version)

    if options.version:
        showVersion()
        return OK

    cache = ResultCache.fromFile(config.cacheFile)
    if options.status:
        showStatus(cache, asJson=options.json)
        return OK

    try:
        entries, errors = readRepoList(options.repoList)
    except (IOError, UnicodeDecodeError) as error:
        sprint("Error: unable to read %s: %s" % (options.repoList, error),
               file=sys.stderr)
        return ERROR
    for error in errors:
        sprint("%s: skipped %s" % (options.repoList, error), file=sys.stderr)

    if options.dry_run:
        showDryRun(JobBuilder(cache).run(entries))
        return OK

    return runBuilds(config, cache, entries)


def main(args=None):
    try:
        return impl_main(args=args)
    except (ConfigError, CacheLoadError, CachePersistError, WorkDirError) as error:
        print("Error:", error, file=sys.stderr)
        sys.exit(ERROR)


if __name__ == "__main__":
    sys.exit(main())
