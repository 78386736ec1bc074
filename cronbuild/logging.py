from __future__ import absolute_import, division, print_function

import logging
import os
import sys


def getLogger(name):
    return logging.getLogger(name)


def setup(logDir, debugLogFileName, debug=False, verbose=False):
    fmt = (
        '+%(process)-6d %(levelname)-9s '
        '%(name)-20s %(filename)20s:%(lineno)-5d '
        '[%(asctime)s] %(threadName)s %(message)s')
    if debug:
        logging.basicConfig(
            filename=os.path.join(logDir, debugLogFileName),
            level=logging.DEBUG,
            format=fmt)
    else:
        level = logging.INFO if verbose else logging.WARNING
        logging.basicConfig(stream=sys.stderr, level=level, format=fmt)
