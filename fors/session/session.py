from __future__ import annotations

import logging
import pkgutil
from importlib import import_module
from typing import Any

import fors.plugins
from fors.exceptions import NoPluginError
from fors.plugin import Plugin, StreamSet
from fors.session.http import HTTPSession
from fors.session.options import ForsOptions
from fors.utils.url import update_scheme


log = logging.getLogger(__name__)


class Fors:
    """
    The session holds the HTTP client, the options and the loaded plugins.
    """

    def __init__(self, options: dict[str, Any] | None = None, plugins_builtin: bool = True):
        #: An instance of Fors's :class:`requests.Session` subclass.
        self.http = HTTPSession()
        self.options = ForsOptions(self)
        if options:
            self.options.update(options)
        self.plugins: dict[str, type[Plugin]] = {}
        if plugins_builtin:
            self.load_builtin_plugins()

    def set_option(self, key: str, value: Any) -> None:
        self.options.set(key, value)

    def get_option(self, key: str) -> Any:
        return self.options.get(key)

    def load_builtin_plugins(self) -> None:
        for _finder, name, _ispkg in pkgutil.iter_modules(fors.plugins.__path__):
            module = import_module(f"{fors.plugins.__name__}.{name}")
            self._load_plugin(name, module)

    def _load_plugin(self, name: str, module) -> None:
        plugin = getattr(module, "__plugin__", None)
        if plugin is None or not issubclass(plugin, Plugin):
            log.debug(f"Module {name} does not provide a plugin")
            return
        plugin.module = name
        self.plugins[name] = plugin

    def resolve_url(self, url: str) -> tuple[str, type[Plugin], str]:
        """
        Attempts to find a plugin that can use this URL.

        :raises NoPluginError: on plugin resolve failure
        :return: A tuple of plugin name, plugin class and resolved URL
        """
        url = update_scheme("https://", url, force=False)

        for name, plugin in self.plugins.items():
            if plugin.match_url(url):
                return name, plugin, url

        raise NoPluginError(f"No plugin can handle URL: {url}")

    def streams(self, url: str, **params) -> StreamSet:
        """
        Resolves the URL and returns the playable variants of its plugin.

        :raises NoPluginError: on plugin resolve failure
        """
        _name, pluginclass, resolved_url = self.resolve_url(url)
        plugin = pluginclass(self, resolved_url, **params)

        return plugin.streams()
