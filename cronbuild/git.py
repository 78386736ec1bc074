"""
Talking to remote repositories.

Everything here shells out to ``git``. Branch listing never needs a local
clone; cloning and the change log work inside a directory owned by the caller.
"""

import logging
import os
import re
from subprocess import (
    DEVNULL,
    STDOUT,
    CalledProcessError,
    TimeoutExpired,
    check_output,
)
from typing import List, Optional

from .domain import BranchHead
from .utils import autoDecode

LOG = logging.getLogger(__name__)

LS_REMOTE_LINE = re.compile(r"^(?P<hash>[0-9a-f]{40})\s+refs/heads/(?P<branch>\S+)$")
GIT_TIMEOUT = 600


class RemoteError(Exception):
    def __init__(self, url, message):
        super(RemoteError, self).__init__("%s: %s" % (url, message))
        self.url = url


def _git(*args, cwd=None):
    cmd = ["git"] + list(args)
    LOG.debug("run %r (cwd=%s)", cmd, cwd)
    env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
    return check_output(cmd, cwd=cwd, stdin=DEVNULL, stderr=STDOUT, env=env,
                        timeout=GIT_TIMEOUT)


def parseLsRemote(url: str, text: str) -> List[BranchHead]:
    heads = []
    for line in text.splitlines():
        match = LS_REMOTE_LINE.match(line.strip())
        if not match:
            LOG.debug("ls-remote %s: ignore %r", url, line)
            continue
        heads.append(BranchHead(url, match.group("branch"), match.group("hash")))
    return heads


def listBranches(url: str) -> List[BranchHead]:
    try:
        out = autoDecode(_git("ls-remote", "--heads", url))
    except CalledProcessError as err:
        raise RemoteError(url, "ls-remote failed (exit %d): %s" % (
            err.returncode, autoDecode(err.output).strip())) from err
    except OSError as err:
        raise RemoteError(url, "unable to run git: %s" % err) from err
    except TimeoutExpired as err:
        raise RemoteError(url, "ls-remote timed out") from err

    heads = parseLsRemote(url, out)
    if not heads:
        raise RemoteError(url, "no branches found in ls-remote output")
    LOG.info("%s: %d branches", url, len(heads))
    return heads


def cloneBranch(url: str, branch: str, dest: str) -> None:
    try:
        _git("clone", "--quiet", "--branch", branch, "--single-branch", url, dest)
    except CalledProcessError as err:
        raise RemoteError(url, "clone of %s failed (exit %d): %s" % (
            branch, err.returncode, autoDecode(err.output).strip())) from err
    except TimeoutExpired as err:
        raise RemoteError(url, "clone of %s timed out" % branch) from err
    except OSError as err:
        raise RemoteError(url, "unable to run git: %s" % err) from err


def changeLog(workDir: str, previousHash: Optional[str], newHash: str,
              limit: int = 50) -> str:
    """
    One line per commit from previousHash (exclusive) to newHash.

    Falls back to the most recent history when previousHash is unknown or is
    not in the clone (e.g. after a force push). Returns "" if git fails.
    """
    revRange = newHash
    if previousHash:
        try:
            _git("cat-file", "-e", previousHash + "^{commit}", cwd=workDir)
            revRange = "%s..%s" % (previousHash, newHash)
        except (CalledProcessError, TimeoutExpired, OSError):
            LOG.debug("previous hash %s not in clone", previousHash)
    try:
        out = _git("log", "--oneline", "--no-decorate", "-n", str(limit),
                   revRange, cwd=workDir)
    except (CalledProcessError, TimeoutExpired, OSError):
        LOG.info("change log for %s in %s failed", revRange, workDir, exc_info=True)
        return ""
    return autoDecode(out)


def checkout(workDir: str, commit: str) -> None:
    """Pin the clone to the commit that was listed, the branch may have moved."""
    try:
        _git("checkout", "--quiet", "--detach", commit, cwd=workDir)
    except (CalledProcessError, TimeoutExpired, OSError) as err:
        LOG.warning("checkout of %s failed, building branch tip: %s",
                    commit, autoDecode(getattr(err, "output", b"")).strip())
