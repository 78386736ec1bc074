from __future__ import absolute_import, division, print_function

import os


def positiveInt(value):
    intVal = int(value)
    if intVal < 1:
        raise ValueError(value)
    return intVal


def addArgumentParserBaseFlags(parser, logfileName):
    '''
    Adds the flags every cron-build entry point shares: config file and state
    directory overrides, verbosity and debug logging.

    Provides ALL flags required by the Config class.
    '''
    parser.add_argument(
        "-v",
        dest="verbose",
        help="Increase verbosity (multiple times for more verbose)",
        action="append_const",
        const=1)
    parser.add_argument(
        "-d",
        "--state-dir",
        dest='stateDir',
        metavar="DIR",
        help="Specify state directory (default='%(default)s')",
        default=os.getenv('CRONBUILD_STATE_DIR', "~/.local/share/cron-build"))
    parser.add_argument("--rc-file", dest="rcFile",
                        help="Specify path to rc-file (default=\"%(default)s\")",
                        default="~/.config/cron-build.rc")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="enable debug output to <state-dir>/log/%s" % logfileName)
    parser.add_argument(
        "-j",
        "--workers",
        type=positiveInt,
        metavar="N",
        help="Number of builds to run at once (rc file build.workers, default 4)")
    parser.add_argument(
        "--cache",
        dest="cacheFile",
        metavar="FILE",
        help="Result cache file (default <state-dir>/cache/results)")
