"""
The repo list: one repository to watch per line.

    # name      url                                   command
    demo        https://example.com/demo.git          make test
    docs        git@example.com:team/docs.git         ./build.sh --strict

The first two whitespace separated fields are the project name and the
repository url, the rest of the line is the build command handed to
``bash -c``. Blank lines and ``#`` comments are ignored.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Tuple

from .domain import RepoEntry

LOG = logging.getLogger(__name__)


class RepoEntryParseError(ValueError):
    def __init__(self, lineno, line, reason):
        super(RepoEntryParseError, self).__init__(
            "line %d: %s: %r" % (lineno, reason, line))
        self.lineno = lineno
        self.line = line


def parseEntry(line: str, lineno: int = 0) -> RepoEntry:
    fields = line.strip().split(None, 2)
    if len(fields) < 3:
        raise RepoEntryParseError(lineno, line, "expected name, url and command")
    name, url, command = fields
    return RepoEntry(name, url, command.strip())


def parseEntries(lines: Iterable[str]) -> Tuple[List[RepoEntry], List[RepoEntryParseError]]:
    entries = []
    errors = []
    for lineno, line in enumerate(lines, 1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        try:
            entries.append(parseEntry(stripped, lineno))
        except RepoEntryParseError as err:
            errors.append(err)
    return entries, errors


def readRepoList(fileName: str) -> Tuple[List[RepoEntry], List[RepoEntryParseError]]:
    with open(fileName, "r", encoding="utf-8") as repoFile:
        entries, errors = parseEntries(repoFile)
    for err in errors:
        LOG.warning("%s: skipped %s", fileName, err)
    return entries, errors
