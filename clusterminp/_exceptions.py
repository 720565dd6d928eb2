"""Exceptions used throughout clusterminp"""
from typing import Collection

from ._text import enumeration


class ConfigurationError(ValueError):
    "Invalid or incomplete configuration of a cluster test"


class UnknownOption(ConfigurationError):
    "A named option is not one of the supported choices"
    def __init__(self, name: str, value, options: Collection):
        ConfigurationError.__init__(self, name, value, tuple(options))

    def __str__(self):
        name, value, options = self.args
        return f"{name}={value!r}: needs to be {enumeration(map(repr, options), 'or')}"


class DimensionMismatchError(ConfigurationError):
    "Statistic maps, mask and adjacency do not describe the same units"
