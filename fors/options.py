from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar


if TYPE_CHECKING:
    from collections.abc import Callable, Mapping


def _normalize_key(name: str) -> str:
    return name.replace("_", "-")


class Options:
    """
    For storing options to be used by the session, plugins and streams.

    Option keys are normalized: underscores are replaced with dashes. Subclasses can map keys
    to custom getters and setters via :attr:`_MAP_GETTERS` and :attr:`_MAP_SETTERS`.
    """

    _MAP_GETTERS: ClassVar[Mapping[str, Callable[[Any, str], Any]]] = {}
    _MAP_SETTERS: ClassVar[Mapping[str, Callable[[Any, str, Any], None]]] = {}

    def __init__(self, defaults: Mapping[str, Any] | None = None):
        self.options: dict[str, Any] = {
            _normalize_key(key): value
            for key, value in (defaults or {}).items()
        }

    def get(self, key: str) -> Any:
        normalized = _normalize_key(key)
        method = self._MAP_GETTERS.get(normalized)
        if method is not None:
            return method(self, normalized)
        return self.get_explicit(normalized)

    def get_explicit(self, key: str) -> Any:
        return self.options.get(_normalize_key(key))

    def set(self, key: str, value: Any) -> None:
        normalized = _normalize_key(key)
        method = self._MAP_SETTERS.get(normalized)
        if method is not None:
            method(self, normalized, value)
        else:
            self.set_explicit(normalized, value)

    def set_explicit(self, key: str, value: Any) -> None:
        self.options[_normalize_key(key)] = value

    def update(self, options: Mapping[str, Any]) -> None:
        for key, value in options.items():
            self.set(key, value)
