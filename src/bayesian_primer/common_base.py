"""Base class for steering objects.

Provides a readable string representation listing the instance attributes, which is
logged when the steering object is constructed.
"""

from __future__ import annotations


class CommonBase:
    def __init__(self, **kwargs):
        super().__init__(**kwargs)

    def __str__(self) -> str:
        s = [f"{k} = {v}" for k, v in self.__dict__.items()]
        return "[i] {} with \n .  {}".format(self.__class__.__name__, "\n .  ".join(s))
