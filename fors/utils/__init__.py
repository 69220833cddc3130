import json
from collections import OrderedDict
from typing import Generic, Optional, TypeVar

from fors.exceptions import PluginError
from fors.utils.url import is_absolute_url, resolve_url, update_scheme


_SNIPPET_LENGTH = 35


def parse_json(data, name="JSON", exception=PluginError):
    """Wrapper around json.loads.

    Decoding errors are raised as ``exception``, with the start of the data in the message.
    """
    try:
        return json.loads(data)
    except ValueError as err:
        snippet = repr(data)
        if len(snippet) > _SNIPPET_LENGTH:
            snippet = f"{snippet[:_SNIPPET_LENGTH]} ..."
        else:
            snippet = data
        raise exception(f"Unable to parse {name}: {err} ({snippet})") from err


K = TypeVar("K")
V = TypeVar("V")


class LRUCache(Generic[K, V]):
    """Bounded mapping that drops the least recently used key."""

    def __init__(self, size: int):
        self.size = size
        self._items: "OrderedDict[K, V]" = OrderedDict()

    def __contains__(self, key) -> bool:
        return key in self._items

    def get(self, key: K) -> Optional[V]:
        if key not in self._items:
            return None
        self._items.move_to_end(key)
        return self._items[key]

    def set(self, key: K, value: V) -> None:
        self._items[key] = value
        self._items.move_to_end(key)
        while len(self._items) > self.size:
            self._items.popitem(last=False)


__all__ = ["parse_json", "LRUCache", "is_absolute_url", "resolve_url", "update_scheme"]
