from __future__ import annotations

from socket import AF_INET, AF_INET6
from typing import TYPE_CHECKING, Any, ClassVar

import urllib3.util.connection as urllib3_util_connection

from fors.options import Options
from fors.utils.url import update_scheme


if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from fors.session.session import Fors


_default_gai_family = urllib3_util_connection.allowed_gai_family  # type: ignore[attr-defined]

_GAI_FAMILIES = {
    "ipv4": AF_INET,
    "ipv6": AF_INET6,
}


class ForsOptions(Options):
    """
    Session options.

    The ``http-*`` keys are views on the session's :class:`requests.Session` attributes,
    everything else is a plain value read by the plugins and the HLS worker.
    """

    def __init__(self, session: Fors) -> None:
        super().__init__({
            "ipv4": False,
            "ipv6": False,
            "chunk-size": 8192,
            "hls-live-edge": 3,
            "hls-live-edge-low-latency": 2,
            "hls-playlist-reload-attempts": 3,
            "hls-playlist-retry-delay": 0.75,
            "hls-playlist-parse-retry-delay": 0.5,
            "hls-ad-reload-time": 0.5,
            "hls-reload-factor": 0.75,
            "twitch-low-latency": False,
            "twitch-cache": False,
        })
        self.session = session

    @staticmethod
    def parse_headers(value: str) -> dict[str, str]:
        """Parse a ``"Key=Value;Key2=Value2"`` string, skipping pairs without a ``=``."""
        headers = {}
        for pair in value.split(";"):
            name, sep, val = pair.partition("=")
            if sep:
                headers[name.strip()] = val.strip()
        return headers

    # getters

    def _get_http_proxy(self, key):
        return self.session.http.proxies.get("http")

    def _get_http_attr(self, key):
        return getattr(self.session.http, self._HTTP_ATTRS[key])

    # setters

    def _set_address_family(self, key, value):
        self.set_explicit(key, bool(value))
        if not value:
            urllib3_util_connection.allowed_gai_family = _default_gai_family  # type: ignore[attr-defined]
            return

        other = "ipv6" if key == "ipv4" else "ipv4"
        self.set_explicit(other, False)
        family = _GAI_FAMILIES[key]
        urllib3_util_connection.allowed_gai_family = lambda: family  # type: ignore[attr-defined]

    def _set_http_proxy(self, key, value):
        proxy = update_scheme("https://", value, force=False)
        self.session.http.proxies.update(http=proxy, https=proxy)

    def _set_http_headers(self, key, value):
        if not isinstance(value, dict):
            value = self.parse_headers(value)
        self.session.http.headers.update(value)

    def _set_http_attr(self, key, value):
        setattr(self.session.http, self._HTTP_ATTRS[key], value)

    _HTTP_ATTRS: ClassVar[Mapping[str, str]] = {
        "http-headers": "headers",
        "http-ssl-verify": "verify",
        "http-timeout": "timeout",
    }

    _MAP_GETTERS: ClassVar[Mapping[str, Callable[[ForsOptions, str], Any]]] = {
        "http-proxy": _get_http_proxy,
        "http-headers": _get_http_attr,
        "http-ssl-verify": _get_http_attr,
        "http-timeout": _get_http_attr,
    }

    _MAP_SETTERS: ClassVar[Mapping[str, Callable[[ForsOptions, str, Any], None]]] = {
        "ipv4": _set_address_family,
        "ipv6": _set_address_family,
        "http-proxy": _set_http_proxy,
        "http-headers": _set_http_headers,
        "http-ssl-verify": _set_http_attr,
        "http-timeout": _set_http_attr,
    }
