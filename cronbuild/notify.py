"""
Build notifications.

The worker pool only knows the `Notifier` interface: one `notify()` call per
finished build. Which transport is used, and everything it needs (recipients,
mail host and credentials, chat webhook), comes from the rc file through
`notifierFromConfig()`.

Notifiers may be called from several worker threads at once. Those sharing a
single transport serialize their calls with a lock.
"""

from __future__ import absolute_import, print_function

from email.message import EmailMessage
import logging
import os
import smtplib
from subprocess import DEVNULL, CalledProcessError, run
import threading
from typing import List, Optional

import requests
import simplejson as json

from .config import NOTIFY_METHOD
from .domain import BuildStatus
from .utils import SPACER, sprint

LOG = logging.getLogger(__name__)

SUBJECT_PREFIX = "[cron-build]"
SMTP_TIMEOUT = 60
CHAT_TIMEOUT = 30


class NotifyError(Exception):
    pass


def formatSubject(name: str, branch: str, status: BuildStatus) -> str:
    return "%s %s %s: %s" % (SUBJECT_PREFIX, name, branch, status.value)


def formatBody(name: str, branch: str, status: BuildStatus, changelog: str,
               log: str = "") -> str:
    body = "Build of %s branch %s: %s\n\n" % (name, branch, status.value.upper())
    body += "Changes:\n"
    body += (changelog.rstrip() or "(no change log available)") + "\n"
    if log:
        body += "\n" + SPACER + "\n"
        body += log.rstrip() + "\n"
    return body


class Notifier(object):
    def notify(self, name: str, branch: str, status: BuildStatus, changelog: str,
               log: str = "") -> None:
        raise NotImplementedError


class NullNotifier(Notifier):
    def notify(self, name, branch, status, changelog, log=""):
        LOG.debug("no notification for %s %s: %s", name, branch, status)


class LogNotifier(Notifier):
    """Print a one line summary per build."""

    def __init__(self):
        self._lock = threading.Lock()

    def notify(self, name, branch, status, changelog, log=""):
        LOG.info("%s %s: %s", name, branch, status)
        with self._lock:
            sprint(formatSubject(name, branch, status))


class MailProgramNotifier(Notifier):
    """Hand the message to a mail(1) compatible program, one process per build."""

    def __init__(self, program: str, recipients: List[str]):
        self.program = program
        self.recipients = list(recipients)

    def command(self, subject: str) -> List[str]:
        return [self.program, "-s", subject] + self.recipients

    def notify(self, name, branch, status, changelog, log=""):
        cmd = self.command(formatSubject(name, branch, status))
        body = formatBody(name, branch, status, changelog, log)
        LOG.debug("running mail command %r", cmd)
        try:
            run(cmd, input=body.encode("utf-8"), stdout=DEVNULL, stderr=DEVNULL,
                check=True)
        except (OSError, CalledProcessError) as err:
            raise NotifyError("%s failed: %s" % (self.program, err)) from err


class SmtpNotifier(Notifier):
    # pylint: disable=too-many-arguments
    def __init__(self, host: str, port: int, sender: str, recipients: List[str],
                 user: Optional[str] = None, password: Optional[str] = None,
                 starttls: bool = False):
        self.host = host
        self.port = port
        self.sender = sender
        self.recipients = list(recipients)
        self.user = user
        self.password = password
        self.starttls = starttls
        self._lock = threading.Lock()

    def message(self, name, branch, status, changelog, log=""):
        msg = EmailMessage()
        msg["Subject"] = formatSubject(name, branch, status)
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.recipients)
        msg.set_content(formatBody(name, branch, status, changelog, log))
        return msg

    def notify(self, name, branch, status, changelog, log=""):
        msg = self.message(name, branch, status, changelog, log)
        with self._lock:
            try:
                with smtplib.SMTP(self.host, self.port, timeout=SMTP_TIMEOUT) as smtp:
                    if self.starttls:
                        smtp.starttls()
                    if self.user:
                        smtp.login(self.user, self.password or "")
                    smtp.send_message(msg)
            except (OSError, smtplib.SMTPException) as err:
                raise NotifyError("mail to %s via %s:%d failed: %s" % (
                    msg["To"], self.host, self.port, err)) from err
        LOG.debug("mailed %s to %s", msg["Subject"], msg["To"])


class ThreadIdCache(object):
    """Chat thread per project, so all builds of one project stay together."""

    def __init__(self, cacheDir):
        self._cacheFile = os.path.join(cacheDir, 'chat-threads.json')

    def _read(self):
        try:
            with open(self._cacheFile, 'r') as cacheFile:
                return json.load(cacheFile)
        except (IOError, ValueError):
            return {}

    def _write(self, data):
        with open(self._cacheFile, 'w') as cacheFile:
            return json.dump(data, cacheFile)

    def get(self, key):
        return self._read().get(key)

    def put(self, key, value):
        data = self._read()
        if data.get(key) != value:
            data[key] = value
            self._write(data)


def _postToGChat(text, uri, threadId=None):
    payload = {
        'text': text,
    }
    headers = {
        'Content-Type': 'application/json; charset=UTF-8',
    }
    params = None
    if threadId:
        payload['thread'] = {'name': threadId}
        params = {'messageReplyOption': 'REPLY_MESSAGE_FALLBACK_TO_NEW_THREAD'}
    ret = requests.post(uri, json=payload, headers=headers, params=params,
                        timeout=CHAT_TIMEOUT)
    ret.raise_for_status()
    try:
        return ret.json()['thread']['name']
    except (KeyError, TypeError, ValueError):
        return None


class ChatNotifier(Notifier):
    def __init__(self, webhook: str, threadCache: Optional[ThreadIdCache] = None):
        self.webhook = webhook
        self.threadCache = threadCache
        self._lock = threading.Lock()

    def notify(self, name, branch, status, changelog, log=""):
        text = "*%s*" % formatSubject(name, branch, status)
        if changelog.strip():
            text += "\n```" + changelog.rstrip() + "```"
        with self._lock:
            threadId = self.threadCache.get(name) if self.threadCache else None
            try:
                newThreadId = _postToGChat(text, self.webhook, threadId=threadId)
            except requests.RequestException as err:
                raise NotifyError("chat post failed: %s" % err) from err
            if self.threadCache and newThreadId:
                self.threadCache.put(name, newThreadId)


def notifierFromConfig(config) -> Notifier:
    method = config.notifyMethod
    if method == NOTIFY_METHOD.NONE:
        return NullNotifier()
    elif method == NOTIFY_METHOD.MAIL:
        return MailProgramNotifier(config.mailProgram, config.mailTo)
    elif method == NOTIFY_METHOD.SMTP:
        return SmtpNotifier(
            config.smtpHost,
            config.smtpPort,
            config.smtpFrom,
            config.smtpTo,
            user=config.smtpUser,
            password=config.smtpPassword,
            starttls=config.smtpStarttls)
    elif method == NOTIFY_METHOD.CHAT:
        threadCache = ThreadIdCache(config.cacheDir) if config.chatReuseThreads else None
        return ChatNotifier(config.chatWebhook, threadCache)
    return LogNotifier()
