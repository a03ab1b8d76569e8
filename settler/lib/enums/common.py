"""
String-compatible Enum base class.

`AutoStrEnum` members compare equal to, format as and serialize like their
plain string values, which keeps log messages and status codes readable.
"""

from enum import Enum


class AutoStrEnum(str, Enum):
    """
    Enum whose members behave like their string values.

    Example:
        >>> class Status(AutoStrEnum):
        ...     OK = "ok"
        >>> Status.OK == "ok"
        True
        >>> f"status={Status.OK}"
        'status=ok'
    """

    def __str__(self) -> str:
        return str(self.value)
