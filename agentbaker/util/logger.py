"""Logging for agentbaker.

The engine itself only logs on debug level, so that rendering a node
produces no output unless asked for. The CLI raises or lowers the level
with ``--verbosity``.
"""

import logging
import sys
import time

# pylint: disable=no-name-in-module
from huepy import bad, red, info as infomsg, yellow, run, grey, good, green

LOG_LEVELS = list(range(5))
DEFAULT_LOG_LEVEL = 3

LEVEL_NAMES = {
    'quiet': 0,
    'error': 1,
    'warning': 2,
    'info': 3,
    'debug': 4}


def get_logger(name):
    """Returns a Python logger which writes to STDOUT.

    Only a single handler is attached, no matter how often this is
    called with the same name.

    Args:
        name (str): The name of the Logger.

    Returns:
        A Python Logger.
    """

    log = logging.getLogger(name)
    set_level(log, Logger.LOG_LEVEL)

    if not log.handlers:
        sh = logging.StreamHandler(sys.stdout)
        fmt = logging.Formatter("%(message)s")
        sh.setFormatter(fmt)
        log.addHandler(sh)

    return log


def set_level(logger, level):
    """Maps an agentbaker verbosity level onto a Python log level.

    Args:
        logger: A Python logger object.
        level (int): The verbosity, 0 (quiet) to 4 (debug).

    Raises:
        ValueError if log level is unsupported.
    """

    if level not in LOG_LEVELS:
        raise ValueError(f"log level {level} is not supported")

    logger.disabled = False
    if level == 1:
        logger.setLevel(logging.ERROR)
    elif level == 2:
        logger.setLevel(logging.WARNING)
    elif level == 3:
        logger.setLevel(logging.INFO)
    elif level == 4:
        logger.setLevel(logging.DEBUG)
    else:
        logger.disabled = True


class Singleton(type):
    """Metaclass returning the same instance for every call of a class.

    Calling the class again re-runs ``__init__`` on the existing instance,
    so ``Logger(__name__)`` in every module shares one object whose
    underlying Python logger follows the last name and level.
    """
    _instances = {}

    def __call__(cls, *args, **kwargs):
        if cls not in cls._instances:
            cls._instances[cls] = super(Singleton, cls).__call__(*args, **kwargs)
        else:
            cls._instances[cls].__init__(*args, **kwargs)

        return cls._instances[cls]


class Logger(metaclass=Singleton):
    """Proxy around logging.Logger with colored, prefixed messages.

    The levels are:

    .. code:: shell

        * 0 - quiet (no output)
        * 1 - error
        * 2 - warning
        * 3 - info
        * 4 - debug

    Example:
        >>> log = Logger(__name__)
        >>> log.info("rendering pool %s", "agent2")
        [~] rendering pool agent2

    Attributes:
        LOG_LEVEL (int): The log level used across the application.

    Args:
        name (str): The name of the logger.
    """

    LOG_LEVEL = DEFAULT_LOG_LEVEL

    def __init__(self, name):
        self.logger = get_logger(name)

    @property
    def level(self):
        """Returns the Python log level, or 0 if the logger is quiet."""
        if self.logger.disabled:
            return 0

        return self.logger.level

    @level.setter
    def level(self, level):
        try:
            level = LEVEL_NAMES[level]
        except KeyError:
            level = int(level)

        Logger.LOG_LEVEL = level
        set_level(self.logger, level)

    def error(self, msg, *args, color=True, **kwargs):
        """Logs in red with ``[-]`` on error level."""

        if color:
            msg = bad(red(msg))

        self.logger.error(msg, *args, **kwargs)

    def warning(self, msg, *args, color=True, **kwargs):
        """Logs in yellow with ``[!]`` on warning level."""

        if color:
            msg = infomsg(yellow(msg))

        self.logger.warning(msg, *args, **kwargs)

    def info(self, msg, *args, color=True, **kwargs):
        """Logs in grey with ``[~]`` on info level."""

        if color:
            msg = run(grey(msg))

        self.logger.info(msg, *args, **kwargs)

    def debug(self, msg, *args, color=True, **kwargs):
        """Logs with a timestamp prefix on debug level.

        Example:
            >>> log.debug("test")
            [20200614-155611] test
        """

        if color:
            now = time.strftime("%Y%m%d-%H%M%S")
            msg = grey(f"[{now}] {msg}")

        self.logger.debug(msg, *args, **kwargs)

    def success(self, msg, *args, color=True, **kwargs):
        """Logs in green with ``[+]`` on info level."""

        if color:
            msg = good(green(msg))

        self.logger.info(msg, *args, **kwargs)
