"""This module implements BetterIntEnum: an IntEnum type with improved printing and lenient lookup."""

from enum import IntEnum
from typing import Optional


class BetterIntEnum(IntEnum):
    """BetterIntEnum is an IntEnum type with improved printing of enumeration values."""
    def __repr__(self):
        return f"{self.__class__.__name__}.{self.name}"

    def __str__(self):
        return f"{self.__class__.__name__}.{self.name}"

    @classmethod
    def describe(cls, value: int) -> str:
        """Render a raw value as its enumeration name if it has one, or as a hexadecimal number otherwise."""
        member = cls.lookup(value)
        if member is None:
            return f"{cls.__name__}(0x{value:02x})"
        return str(member)

    @classmethod
    def lookup(cls, value: int) -> Optional["BetterIntEnum"]:
        """Return the enumeration value corresponding to `value`, or None if there is none."""
        try:
            return cls(value)
        except ValueError:
            return None
