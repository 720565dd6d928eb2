# Author: clusterminp developers
from .basic import (
    tqdm,
    PickleableDataClass,
    as_sequence, intervals,
    log_level, set_log_level, ScreenHandler,
)
from .system import IS_OSX, IS_WINDOWS, restore_main_spec
