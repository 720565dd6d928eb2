# Author: clusterminp developers
"A few basic operations needed throughout clusterminp"
from dataclasses import dataclass, fields
import logging
from numbers import Number

from .notebooks import tqdm


LOG_LEVELS = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL,
}


def as_sequence(items, item_type=Number):
    if isinstance(items, item_type):
        return items,
    return tuple(items)


def log_level(arg):
    """Convert string to logging module constant"""
    if isinstance(arg, int):
        return arg
    elif isinstance(arg, str):
        try:
            return LOG_LEVELS[arg.upper()]
        except KeyError:
            raise ValueError(f"Invalid log level: {arg}. must be one of {', '.join(LOG_LEVELS)}")
    else:
        raise TypeError(f"Invalid log level: {arg!r}. need int or str.")


def set_log_level(level, logger_name='clusterminp'):
    """Set the minimum level of messages to be logged

    Parameters
    ----------
    level : str | int
        Level as string (debug, info, warning, error, critical) or
        corresponding constant from the logging module.
    logger_name : str
        Name of the logger for which to set the logging level. The default is
        the clusterminp logger.
    """
    logging.getLogger(logger_name).setLevel(log_level(level))


class ScreenHandler(logging.StreamHandler):
    "Log handler compatible with TQDM"

    def __init__(self, formatter=None):
        logging.StreamHandler.__init__(self)
        if formatter is None:
            formatter = logging.Formatter("%(levelname)-8s:  %(message)s")
        self.setFormatter(formatter)

    def emit(self, record):
        tqdm.write(self.format(record))


def intervals(seq, first=None):
    """Iterate over each successive pair in a sequence.

    Examples
    --------
    >>> for i in intervals([1, 2, 3, 45]):
    ...     print(i)
    ...
    (1, 2)
    (2, 3)
    (3, 45)
    """
    iterator = iter(seq)
    if first is None:
        try:
            last = next(iterator)
        except StopIteration:
            return
    else:
        last = first

    for item in iterator:
        yield last, item
        last = item


@dataclass
class PickleableDataClass:

    def __getstate__(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def __setstate__(self, state: dict):
        self.__init__(**state)
