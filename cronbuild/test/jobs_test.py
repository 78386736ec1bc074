from __future__ import absolute_import, division, print_function

from unittest import TestCase

from cronbuild.cache import ResultCache
from cronbuild.domain import BuildJob, BuildStatus
from cronbuild.git import RemoteError
from cronbuild.jobs import JobBuilder

from .helpers import HASH_A, HASH_B, HASH_C, URL, FakeLister, entry, head

OTHER_URL = "https://example/other.git"


class ChangeDetectionTest(TestCase):
    def setUp(self):
        self.cache = ResultCache()
        self.lister = FakeLister({
            URL: [head("main", HASH_A), head("dev", HASH_B)],
        })
        self.builder = JobBuilder(self.cache, lister=self.lister)

    def testEmptyCacheBuildsEverything(self):
        found = self.builder.run([entry()])
        self.assertEqual(
            [BuildJob("demo", URL, "main", HASH_A, "make"),
             BuildJob("demo", URL, "dev", HASH_B, "make")],
            found.jobs)
        self.assertEqual([], found.unchanged)

    def testOnlyChangedBranchesAreBuilt(self):
        self.cache.update(URL, "main", HASH_A, BuildStatus.SUCCESS)
        self.cache.update(URL, "dev", HASH_C, BuildStatus.FAILURE)
        found = self.builder.run([entry()])
        self.assertEqual(1, len(found.jobs))
        buildJob = found.jobs[0]
        self.assertEqual(("dev", HASH_B, HASH_C),
                         (buildJob.branch, buildJob.hash, buildJob.previous_hash))
        self.assertEqual([(entry(), head("main", HASH_A))], found.unchanged)

    def testFailedBuildAtSameHashIsNotRebuilt(self):
        self.cache.update(URL, "main", HASH_A, BuildStatus.FAILURE)
        self.cache.update(URL, "dev", HASH_B, BuildStatus.FAILURE)
        found = self.builder.run([entry()])
        self.assertEqual([], found.jobs)
        self.assertEqual(2, len(found.unchanged))

    def testSameInputsSameJobs(self):
        self.cache.update(URL, "main", HASH_C, BuildStatus.SUCCESS)
        first = self.builder.run([entry()])
        second = self.builder.run([entry()])
        self.assertEqual(first.jobs, second.jobs)

    def testSubmitGetsEachJob(self):
        submitted = []
        found = self.builder.run([entry()], submit=submitted.append)
        self.assertEqual(found.jobs, submitted)


class NoChangeScenarioTest(TestCase):
    def testNothingQueuedAndCacheUnchanged(self):
        cache = ResultCache()
        record = cache.update(URL, "main", HASH_A, BuildStatus.SUCCESS)
        builder = JobBuilder(cache, lister=FakeLister({URL: [head("main", HASH_A)]}))
        submitted = []
        found = builder.run([entry()], submit=submitted.append)
        self.assertEqual([], submitted)
        self.assertEqual([(entry(), head("main", HASH_A))], found.unchanged)
        self.assertEqual([record], cache.records())


class DedupeTest(TestCase):
    def testDuplicateListingIsQueuedOnce(self):
        lister = FakeLister({URL: [head("main", HASH_A), head("main", HASH_A)]})
        found = JobBuilder(ResultCache(), lister=lister).run([entry()])
        self.assertEqual(1, len(found.jobs))
        self.assertEqual(1, len(found.duplicates))

    def testRepeatedEntryIsQueuedOnce(self):
        lister = FakeLister({URL: [head("main", HASH_A)]})
        found = JobBuilder(ResultCache(), lister=lister).run(
            [entry(), entry(name="again", command="make check")])
        self.assertEqual(1, len(found.jobs))
        self.assertEqual("demo", found.jobs[0].name)
        self.assertEqual([URL], lister.calls)

    def testNoTwoJobsShareAKey(self):
        lister = FakeLister({
            URL: [head("main", HASH_A), head("dev", HASH_B), head("main", HASH_C)],
            OTHER_URL: [head("main", HASH_A, url=OTHER_URL)],
        })
        found = JobBuilder(ResultCache(), lister=lister).run(
            [entry(), entry(url=OTHER_URL), entry()])
        keys = [job.key for job in found.jobs]
        self.assertEqual(len(keys), len(set(keys)))
        self.assertEqual(3, len(keys))


class RemoteErrorTest(TestCase):
    def testFailingEntryIsSkipped(self):
        error = RemoteError(URL, "could not read from remote")
        lister = FakeLister(
            {OTHER_URL: [head("main", HASH_A, url=OTHER_URL)]},
            errors={URL: error})
        found = JobBuilder(ResultCache(), lister=lister).run(
            [entry(), entry(name="other", url=OTHER_URL)])
        self.assertEqual([(entry(), error)], found.errors)
        self.assertEqual(["other"], [job.name for job in found.jobs])
