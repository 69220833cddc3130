from __future__ import annotations

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from fors.session.session import Fors


class Stream:
    """
    This is a base class that should be inherited when implementing
    different stream types. Should only be created by plugins.
    """

    __shortname__ = "stream"

    def __init__(self, session: Fors):
        self.session = session

    def __repr__(self):
        params = [repr(self.shortname())]
        try:
            params.append(repr(self.to_url()))
        except TypeError:
            pass

        return f"<{self.__class__.__name__} [{', '.join(params)}]>"

    @classmethod
    def shortname(cls):
        return cls.__shortname__

    def to_url(self) -> str:
        raise TypeError(f"<{self.__class__.__name__} [{self.shortname()}]> cannot be translated to a URL")
