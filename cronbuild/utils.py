from __future__ import absolute_import, division, print_function

from contextlib import contextmanager
import datetime
import logging
import os
from shutil import rmtree
from tempfile import mkdtemp

import chardet
import dateutil.parser
import dateutil.tz

DATETIME_FMT = "%a %b %e, %Y %X %Z"
SPACER_EACH = "========================================"
SPACER = SPACER_EACH + SPACER_EACH
LOG_TAIL_LINES = 200

LOG = logging.getLogger(__name__)


class WorkDirError(Exception):
    pass


def strForEach(value):
    try:
        return str(value)
    except (UnicodeDecodeError, UnicodeEncodeError):
        LOG.debug("%r", value, exc_info=1)
        return '{!r}'.format(value)


def sprint(*args, **kwargs):
    """sprint: "safe" print - ignore IOError"""
    try:
        print(*list(map(strForEach, args)), **kwargs)
    except IOError:
        LOG.debug("sprint ignore IOError", exc_info=1)
    except (UnicodeEncodeError, UnicodeDecodeError):
        print('codec error', repr(args))
        LOG.debug("%r", args, exc_info=1)
    except BaseException:
        LOG.debug("sprint caught error", exc_info=1)
        raise


def utcNow():
    return datetime.datetime.now(dateutil.tz.tzutc()).replace(microsecond=0)


def stampToStr(stamp):
    stamp = stamp.astimezone(dateutil.tz.tzutc())
    if stamp.microsecond:
        return stamp.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return stamp.strftime("%Y-%m-%dT%H:%M:%SZ")


def stampFromStr(text):
    stamp = dateutil.parser.isoparse(text)
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=dateutil.tz.tzutc())
    return stamp


def autoDecode(byteArray):
    if not byteArray:
        return ""
    detected = chardet.detect(byteArray)
    encoding = detected['encoding']
    if encoding is None or detected['confidence'] < 0.5:  # very arbitrary
        encoding = 'utf-8'
    return byteArray.decode(encoding, errors='replace')


def tailLines(text, count=LOG_TAIL_LINES):
    lines = text.splitlines()
    if len(lines) <= count:
        return text
    skipped = len(lines) - count
    return "[... %d lines skipped ...]\n" % skipped + "\n".join(lines[-count:]) + "\n"


def safeName(value):
    return "".join(c if c.isalnum() or c in "-_." else "_" for c in value)


@contextmanager
def scopedWorkDir(prefix="cron-build-", parent=None):
    """
    Yield a fresh directory that is removed on every way out of the block.

    Raises WorkDirError if the directory cannot be created.
    """
    try:
        workDir = mkdtemp(prefix=prefix, dir=parent)
    except OSError as err:
        raise WorkDirError("unable to create working directory: %s" % err) from err
    LOG.debug("created work dir %s", workDir)
    try:
        yield workDir
    finally:
        LOG.debug("removing work dir %s", workDir)
        rmtree(workDir, ignore_errors=True)
        if os.path.exists(workDir):
            LOG.warning("work dir %s could not be removed", workDir)
