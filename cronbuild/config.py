from __future__ import absolute_import, division, print_function

import configparser
import os

RC_FILE_HELP = """\
Sample rcfile:
    [build]
    workers = 4
    cache file = ~/.local/share/cron-build/cache/results
    keep logs = true|false  # default=true
    [notify]
    method = log|mail|smtp|chat|none  # default=log
    [mail]
    program = mail
    domain = example.com
    to = dev-team, someone@example.org
    [smtp]
    host = smtp.example.com
    port = 587
    user = builder
    password = secret
    from = builder@example.com
    to = dev-team@example.com
    starttls = true|false  # default=false
    [chat]
    webhook = https://chat.googleapis.com/v1/spaces/...
    reuse threads = true|false  # default=true
"""


class ConfigEnum(object):
    __slots__ = (
        'defaultName',
        '_enumVals',
    )

    def __init__(self, default, **enumVals):
        self._enumVals = enumVals
        assert default in enumVals
        self.defaultName = default
        for enumName in enumVals:
            assert enumName not in self.__slots__

    def names(self):
        return iter(self._enumVals.keys())

    def values(self):
        return iter(self._enumVals.values())

    @property
    def defaultVal(self):
        return self._enumVals[self.defaultName]

    def __getattr__(self, attr):
        assert attr != '_enumVals'
        if attr in self._enumVals:
            return self._enumVals[attr]
        else:
            return object.__getattribute__(self, attr)


NOTIFY_METHOD = ConfigEnum(
    'LOG',  # default
    NONE='none',
    LOG='log',
    MAIL='mail',
    SMTP='smtp',
    CHAT='chat',
)

DEFAULT_WORKERS = 4


def _getConfig(cfgParser, section, option, defaultValue=None):
    if not cfgParser.has_section(section):
        return defaultValue
    if not cfgParser.has_option(section, option):
        return defaultValue
    return cfgParser.get(section, option)


def _getEnumConfig(cfgParser, section, option, enum):
    optionVal = _getConfig(
        cfgParser, section, option, enum.defaultVal)
    if optionVal not in list(enum.values()):
        raise ConfigError(
            "RC file has invalid \"{section}.{option}\" setting {optionVal}.  Valid "
            "options: {allowedVals}".format(
                section=section,
                option=option,
                optionVal=optionVal,
                allowedVals=", ".join(list(enum.values()))))

    return optionVal


def _getBoolConfig(cfgParser, section, option, default):
    val = _getConfig(cfgParser, section, option, None)
    if val is None:
        return default
    if val.lower() == 'true':
        return True
    elif val.lower() == 'false':
        return False
    else:
        raise ConfigError(
            "RC file has invalid \"{section}.{option}\" setting {optionVal}.  Valid "
            "options: true, false".format(
                section=section,
                option=option,
                optionVal=val))


def _getIntConfig(cfgParser, section, option, default, minimum=None):
    val = _getConfig(cfgParser, section, option, None)
    if val is None:
        return default
    try:
        intVal = int(val)
    except ValueError:
        intVal = None
    if intVal is None or (minimum is not None and intVal < minimum):
        raise ConfigError(
            "RC file has invalid \"{section}.{option}\" setting {optionVal}.  "
            "Expected an integer{atLeast}".format(
                section=section,
                option=option,
                optionVal=val,
                atLeast="" if minimum is None else " >= %d" % minimum))
    return intVal


def _getListConfig(cfgParser, section, option):
    val = _getConfig(cfgParser, section, option, "")
    return [item.strip() for item in val.split(",") if item.strip()]


class ConfigError(Exception):
    pass


class Config(object):
    # pylint: disable=too-many-instance-attributes
    validConfig = {
        'build': {'workers', 'cache file', 'keep logs'},
        'notify': {'method'},
        'mail': {'domain', 'program', 'to'},
        'smtp': {'host', 'port', 'user', 'password', 'from', 'to', 'starttls'},
        'chat': {'webhook', 'reuse threads'},
    }

    def _validateConfigParser(self, cfgParser):
        cfgSections = set(cfgParser.sections())
        unknownSections = cfgSections - set(self.validConfig.keys())
        if unknownSections:
            raise ConfigError(
                "RC file has unknown configuration sections: {}".format(
                    ", ".join(sorted(unknownSections))))
        for section in cfgSections:
            cfgValues = set(cfgParser.options(section))
            unknownOptions = cfgValues - self.validConfig[section]
            if unknownOptions:
                raise ConfigError(
                    "RC file has unknown configuration options in "
                    "section \"{}\": {}".format(
                        section, ", ".join(sorted(unknownOptions))))

    def __init__(self, options):
        stateDir = options.stateDir
        self.options = options
        self._logDir = os.path.expanduser(stateDir) + "/log/"
        self._cacheDir = os.path.expanduser(stateDir) + "/cache/"

        rcFile = os.path.expanduser(options.rcFile)
        cfgParser = configparser.RawConfigParser()
        try:
            cfgParser.read(rcFile)
        except configparser.Error as err:
            raise ConfigError("RC file %s is not valid: %s" % (rcFile, err)) from err
        self._validateConfigParser(cfgParser)

        self._workers = _getIntConfig(
            cfgParser, "build", "workers", DEFAULT_WORKERS, minimum=1)
        self._cacheFile = _getConfig(cfgParser, "build", "cache file", None)
        self._keepLogs = _getBoolConfig(cfgParser, "build", "keep logs", True)

        self._notifyMethod = _getEnumConfig(
            cfgParser, "notify", "method", NOTIFY_METHOD)

        self._mailDomain = _getConfig(
            cfgParser, "mail", "domain", os.getenv('HOSTNAME'))
        self._mailProgram = _getConfig(cfgParser, "mail", "program", "mail")
        self._mailTo = _getListConfig(cfgParser, "mail", "to")

        self._smtpHost = _getConfig(cfgParser, "smtp", "host", "localhost")
        self._smtpPort = _getIntConfig(cfgParser, "smtp", "port", 25, minimum=1)
        self._smtpUser = _getConfig(cfgParser, "smtp", "user", None)
        self._smtpPassword = _getConfig(cfgParser, "smtp", "password", None)
        self._smtpFrom = _getConfig(cfgParser, "smtp", "from", None)
        self._smtpTo = _getListConfig(cfgParser, "smtp", "to")
        self._smtpStarttls = _getBoolConfig(cfgParser, "smtp", "starttls", False)

        self._chatWebhook = _getConfig(cfgParser, "chat", "webhook", None)
        self._chatReuseThreads = _getBoolConfig(
            cfgParser, "chat", "reuse threads", True)

        self._validateNotify()

    def _validateNotify(self):
        if self._notifyMethod == NOTIFY_METHOD.MAIL and not self._mailTo:
            raise ConfigError("RC file needs \"mail.to\" for notify method mail")
        if self._notifyMethod == NOTIFY_METHOD.SMTP and not self._smtpTo:
            raise ConfigError("RC file needs \"smtp.to\" for notify method smtp")
        if self._notifyMethod == NOTIFY_METHOD.CHAT and not self._chatWebhook:
            raise ConfigError("RC file needs \"chat.webhook\" for notify method chat")

    @property
    def verbose(self):
        return self.options.verbose

    @staticmethod
    def checkDir(dirName):
        if not os.access(dirName, os.W_OK | os.X_OK | os.R_OK):
            os.makedirs(dirName)
        return dirName

    @property
    def logDir(self):
        return self.checkDir(self._logDir)

    @property
    def cacheDir(self):
        return self.checkDir(self._cacheDir)

    @property
    def cacheFile(self):
        override = getattr(self.options, 'cacheFile', None)
        if override:
            return os.path.expanduser(override)
        if self._cacheFile:
            return os.path.expanduser(self._cacheFile)
        return os.path.join(self.cacheDir, "results")

    @property
    def workers(self):
        override = getattr(self.options, 'workers', None)
        return override if override else self._workers

    @property
    def buildLogDir(self):
        return self.logDir if self._keepLogs else None

    @property
    def notifyMethod(self):
        return self._notifyMethod

    def mailAddress(self, addr):
        if "@" not in addr and self._mailDomain:
            return addr + "@" + self._mailDomain
        return addr

    @property
    def mailDomain(self):
        return self._mailDomain

    @property
    def mailProgram(self):
        return self._mailProgram

    @property
    def mailTo(self):
        return [self.mailAddress(addr) for addr in self._mailTo]

    @property
    def smtpHost(self):
        return self._smtpHost

    @property
    def smtpPort(self):
        return self._smtpPort

    @property
    def smtpUser(self):
        return self._smtpUser

    @property
    def smtpPassword(self):
        return self._smtpPassword

    @property
    def smtpFrom(self):
        if self._smtpFrom:
            return self._smtpFrom
        return self.mailAddress(os.getenv('USER', 'cron-build'))

    @property
    def smtpTo(self):
        return [self.mailAddress(addr) for addr in self._smtpTo]

    @property
    def smtpStarttls(self):
        return self._smtpStarttls

    @property
    def chatWebhook(self):
        return self._chatWebhook

    @property
    def chatReuseThreads(self):
        return self._chatReuseThreads
