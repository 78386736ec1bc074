from __future__ import absolute_import, division, print_function

import os
import shutil
import tempfile
from unittest import TestCase

from mock import MagicMock, patch
import simplejson as json

from cronbuild import main
from cronbuild.cache import ResultCache
from cronbuild.domain import BuildStatus
from cronbuild.git import RemoteError

from .helpers import (
    HASH_A,
    HASH_B,
    URL,
    FakeLister,
    RecordingNotifier,
    capturedOutput,
    entry,
    head,
    resetEnv,
)

OTHER_URL = "https://example/other.git"

REPO_LIST = """\
demo   {url}   exit 0
other  {other}   exit 1
bad line
""".format(url=URL, other=OTHER_URL)


def setUpModule():
    resetEnv()


def fakeClone(url, branch, dest):
    os.makedirs(dest)


class MainTestCase(TestCase):
    def setUp(self):
        self.stateDir = tempfile.mkdtemp()
        self.repoList = os.path.join(self.stateDir, "repos.txt")
        with open(self.repoList, "w") as repoFp:
            repoFp.write(REPO_LIST)
        self.cacheFile = os.path.join(self.stateDir, "cache", "results")
        self.lister = FakeLister({
            URL: [head("main", HASH_A)],
            OTHER_URL: [head("main", HASH_B, url=OTHER_URL)],
        })
        patches = [
            patch("cronbuild.jobs.listBranches", new=self.lister),
            patch("cronbuild.pool.cloneBranch", side_effect=fakeClone),
            patch("cronbuild.pool.checkout"),
            patch("cronbuild.pool.changeLog", return_value="abc123 change\n"),
            patch("cronbuild.logging.setup"),
        ]
        for patcher in patches:
            patcher.start()
            self.addCleanup(patcher.stop)

    def tearDown(self):
        shutil.rmtree(self.stateDir)

    def args(self, *extra):
        return ["--state-dir", self.stateDir,
                "--rc-file", os.path.join(self.stateDir, "no-rc-file")] + list(extra)

    def runMain(self, *extra):
        with capturedOutput() as (out, err):
            rc = main.main(self.args(*extra))
        return rc, out.getvalue(), err.getvalue()


class ParseArgsTest(TestCase):
    def testRepoListRequired(self):
        with capturedOutput():
            with self.assertRaises(SystemExit):
                main.parseArgs([])

    def testStatusNeedsNoRepoList(self):
        options = main.parseArgs(["--status", "--json"])
        self.assertTrue(options.status)
        self.assertTrue(options.json)

    def testDebugLeavesRepoList(self):
        options = main.parseArgs(["--debug", "repos.txt"])
        self.assertIs(True, options.debug)
        self.assertEqual("repos.txt", options.repoList)

    def testWorkers(self):
        options = main.parseArgs(["-j", "3", "repos.txt"])
        self.assertEqual(3, options.workers)
        self.assertEqual("repos.txt", options.repoList)
        with capturedOutput():
            with self.assertRaises(SystemExit):
                main.parseArgs(["-j", "0", "repos.txt"])


class RunTest(MainTestCase):
    def testBuildThenNoChange(self):
        rc, out, err = self.runMain("-j", "2", self.repoList)
        self.assertEqual(main.OK, rc)
        self.assertIn("[cron-build] demo main: success", out)
        self.assertIn("[cron-build] other main: failure", out)
        self.assertIn("FAILED: other main", out)
        self.assertIn("2 built, 1 failed, 0 unchanged", out)
        self.assertIn("line 3", err)

        cache = ResultCache.fromFile(self.cacheFile)
        self.assertEqual(BuildStatus.SUCCESS, cache.lookup(URL, "main").status)
        self.assertEqual(BuildStatus.FAILURE, cache.lookup(OTHER_URL, "main").status)

        rc, out, _ = self.runMain(self.repoList)
        self.assertEqual(main.OK, rc)
        self.assertIn("0 built, 0 failed, 2 unchanged", out)

    def testListingErrorDoesNotStopOthers(self):
        self.lister.errors[OTHER_URL] = RemoteError(OTHER_URL, "not found")
        rc, out, err = self.runMain(self.repoList)
        self.assertEqual(main.OK, rc)
        self.assertIn("1 built, 0 failed, 0 unchanged, 1 repositories not listed", out)
        self.assertIn("not found", err)

    def testDryRunBuildsNothing(self):
        rc, out, _ = self.runMain("--dry-run", self.repoList)
        self.assertEqual(main.OK, rc)
        self.assertIn("would build demo main at %s: exit 0" % HASH_A[:10], out)
        self.assertIn("2 to build, 0 unchanged", out)
        self.assertFalse(os.path.exists(self.cacheFile))

    def testMissingRepoList(self):
        rc, _, err = self.runMain(os.path.join(self.stateDir, "nope.txt"))
        self.assertEqual(main.ERROR, rc)
        self.assertIn("unable to read", err)

    def testStatus(self):
        self.runMain(self.repoList)
        rc, out, _ = self.runMain("--status")
        self.assertEqual(main.OK, rc)
        self.assertIn("success %s %s main" % (HASH_A[:10], URL), out)

        rc, out, _ = self.runMain("--status", "--json")
        records = json.loads(out)
        self.assertEqual(
            {(URL, "success"), (OTHER_URL, "failure")},
            {(rec["url"], rec["status"]) for rec in records})

    def testStatusEmpty(self):
        rc, out, _ = self.runMain("--status")
        self.assertEqual(main.OK, rc)
        self.assertIn("No builds recorded", out)

    def testBadRcFileIsFatal(self):
        rcFile = os.path.join(self.stateDir, "rc")
        with open(rcFile, "w") as rcFp:
            rcFp.write("[bogus]\n")
        with capturedOutput() as (_, err):
            with self.assertRaises(SystemExit) as ctx:
                main.main(["--state-dir", self.stateDir, "--rc-file", rcFile,
                           self.repoList])
        self.assertEqual(main.ERROR, ctx.exception.code)
        self.assertIn("unknown configuration sections: bogus", err.getvalue())


    def testUnreadableCacheIsReported(self):
        os.makedirs(self.cacheFile)
        with capturedOutput() as (_, err):
            with self.assertRaises(SystemExit) as ctx:
                main.main(self.args(self.repoList))
        self.assertEqual(main.ERROR, ctx.exception.code)
        self.assertIn("unable to read cache", err.getvalue())


class RunBuildsTest(MainTestCase):
    def config(self):
        cfg = MagicMock()
        cfg.workers = 2
        cfg.cacheFile = self.cacheFile
        cfg.buildLogDir = None
        cfg.verbose = None
        return cfg

    def testEndToEndScenario(self):
        cache = ResultCache()
        notifier = RecordingNotifier()
        with capturedOutput():
            rc = main.runBuilds(self.config(), cache, [entry(command="exit 0")],
                                notifier=notifier)
        self.assertEqual(main.OK, rc)
        record = cache.lookup(URL, "main")
        self.assertEqual((HASH_A, BuildStatus.SUCCESS), (record.hash, record.status))
        self.assertEqual(
            [("demo", "main", BuildStatus.SUCCESS, "abc123 change\n")],
            notifier.calls)
        self.assertEqual(cache.records(), ResultCache.fromFile(self.cacheFile).records())

    def testNoChangeScenario(self):
        cache = ResultCache()
        record = cache.update(URL, "main", HASH_A, BuildStatus.SUCCESS)
        notifier = RecordingNotifier()
        with capturedOutput() as (out, _):
            main.runBuilds(self.config(), cache, [entry()], notifier=notifier)
        self.assertEqual([], notifier.calls)
        self.assertEqual([record], cache.records())
        self.assertIn("0 built, 0 failed, 1 unchanged", out.getvalue())

    @patch("cronbuild.pool.scopedWorkDir")
    def testWorkDirFailurePersistsAndRaises(self, scopedMock):
        scopedMock.side_effect = main.WorkDirError("disk full")
        cache = ResultCache()
        with capturedOutput():
            with self.assertRaises(main.WorkDirError):
                main.runBuilds(self.config(), cache, [entry()],
                               notifier=RecordingNotifier())
        self.assertTrue(os.path.exists(self.cacheFile))
