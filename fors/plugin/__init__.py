from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, ClassVar, NamedTuple

from fors.exceptions import NoStreamsError


if TYPE_CHECKING:
    from fors.session.session import Fors
    from fors.stream.hls.segment import StreamVariant


log = logging.getLogger(__name__)


class StreamSet(NamedTuple):
    """What a plugin resolved a URL into."""

    variants: list[StreamVariant]
    is_live: bool
    low_latency: bool = False


class Matcher(NamedTuple):
    pattern: re.Pattern
    name: str | None = None


def pluginmatcher(pattern: re.Pattern, name: str | None = None):
    """
    Decorator for plugin URL matchers.

    The matchers are checked in reverse decoration order, so the topmost decorator is
    checked first.
    """

    def decorator(cls: type[Plugin]) -> type[Plugin]:
        if not issubclass(cls, Plugin):
            raise TypeError(f"{repr(cls)} is not a Plugin")
        if "matchers" not in cls.__dict__:
            cls.matchers = []
        cls.matchers.insert(0, Matcher(pattern, name))

        return cls

    return decorator


class Plugin:
    """
    Plugin base class for retrieving the HLS variants of a website URL.
    """

    matchers: ClassVar[list[Matcher]] = []
    module: ClassVar[str] = "unknown"

    def __init__(self, session: Fors, url: str, **options):
        self.session = session
        self.options = options
        self.url = url
        self.match: re.Match | None = None
        self.matcher: Matcher | None = None
        for matcher in self.matchers:
            match = matcher.pattern.match(url)
            if match:
                self.matcher = matcher
                self.match = match
                break

    @classmethod
    def match_url(cls, url: str) -> bool:
        return any(matcher.pattern.match(url) for matcher in cls.matchers)

    def get_option(self, key: str):
        if key in self.options:
            return self.options[key]
        return self.session.get_option(f"{self.module}-{key}")

    def streams(self) -> StreamSet:
        """
        Retrieves the variants of the URL.

        :raises NoStreamsError: if nothing playable was found
        :raises PluginError: on site errors
        """
        result = self._get_streams()
        if not result or not result.variants:
            raise NoStreamsError(self.url)

        log.debug(f"Found {len(result.variants)} variants from playlist")
        return result

    def _get_streams(self) -> StreamSet | None:
        raise NotImplementedError
