from __future__ import absolute_import, division, print_function

from contextlib import contextmanager
from io import StringIO
import os
import sys

from cronbuild.domain import BranchHead, BuildJob, RepoEntry

HOSTNAME = 'host.example.com'
HOME = '/home/me'
USER = 'me'

HASH_A = 'a' * 40
HASH_B = 'b' * 40
HASH_C = 'c' * 40
URL = 'https://example/repo.git'


def resetEnv():
    os.environ['HOME'] = HOME
    os.environ['HOSTNAME'] = HOSTNAME
    os.environ['CRONBUILD_STATE_DIR'] = '/tmp/BADDIR'
    os.environ['USER'] = USER


@contextmanager
def capturedOutput():
    ''' Used to capture stdout or stderr.
    eg.
    with capturedOutput() as (out, err):
        print("foo")

    self.assertEqual(out.getvalue(), "foo")
    '''
    newOut, newErr = StringIO(), StringIO()
    oldOut, oldErr = sys.stdout, sys.stderr
    try:
        sys.stdout, sys.stderr = newOut, newErr
        yield sys.stdout, sys.stderr
    finally:
        sys.stdout, sys.stderr = oldOut, oldErr


def entry(name='demo', url=URL, command='make'):
    return RepoEntry(name, url, command)


def head(branch='main', commit=HASH_A, url=URL):
    return BranchHead(url, branch, commit)


def job(branch='main', commit=HASH_A, command='true', name='demo', url=URL,
        previous=None):
    # pylint: disable=too-many-arguments
    return BuildJob(name, url, branch, commit, command, previous_hash=previous)


class FakeLister(object):
    """Stands in for git.listBranches, keyed by url."""

    def __init__(self, listings=None, errors=None):
        self.listings = listings or {}
        self.errors = errors or {}
        self.calls = []

    def __call__(self, url):
        self.calls.append(url)
        if url in self.errors:
            raise self.errors[url]
        return list(self.listings.get(url, []))


class RecordingNotifier(object):
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def notify(self, name, branch, status, changelog, log=""):
        self.calls.append((name, branch, status, changelog))
        if self.error is not None:
            raise self.error
