from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from contextlib import suppress
from pathlib import Path
from time import time
from typing import Any


log = logging.getLogger(__name__)


def _cache_dir() -> Path:
    xdg_cache_home = os.environ.get("XDG_CACHE_HOME")
    base = Path(xdg_cache_home) if xdg_cache_home else Path.home() / ".cache"
    return base / "fors"


class Cache:
    """Caches Python values as JSON and prunes expired entries."""

    def __init__(self, filename: str | Path, key_prefix: str = ""):
        self.key_prefix = key_prefix
        self.filename = Path(filename) if Path(filename).is_absolute() else _cache_dir() / filename

        self._cache: dict[str, dict[str, Any]] = {}

    def _load(self) -> None:
        self._cache = {}
        try:
            with self.filename.open("r", encoding="utf-8") as fd:
                data = json.load(fd)
        except FileNotFoundError:
            return
        except (OSError, ValueError) as err:
            log.debug(f"Discarding unreadable cache file {self.filename}: {err}")
            return

        if isinstance(data, dict):
            self._cache = {
                key: value
                for key, value in data.items()
                if isinstance(value, dict) and "value" in value
            }

    def _prune(self) -> bool:
        now = time()
        pruned = []

        for key, value in self._cache.items():
            expires = value.get("expires", now)
            if expires <= now:
                pruned.append(key)

        for key in pruned:
            self._cache.pop(key, None)

        return len(pruned) > 0

    def _save(self) -> None:
        fd, tempname = None, None
        try:
            self.filename.parent.mkdir(parents=True, exist_ok=True)
            fd = tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=self.filename.parent,
                prefix=f"{self.filename.name}.",
                suffix=".tmp",
                delete=False,
            )
            tempname = fd.name
            json.dump(self._cache, fd, indent=2, separators=(",", ": "))
            fd.close()
            # the file is replaced atomically, readers never see a partial write
            shutil.move(tempname, self.filename)
        except OSError as err:
            log.error(f"Failed saving cache file {self.filename}: {err}")
            if fd is not None:
                fd.close()
            if tempname:
                with suppress(OSError):
                    os.unlink(tempname)

    def set(self, key: str, value: Any, expires: float = 60 * 60 * 24 * 7) -> None:
        """
        Stores a JSON-serializable value.

        :param key: The key
        :param value: The value
        :param expires: Seconds from now until the value expires
        """
        self._load()
        self._prune()

        if self.key_prefix:
            key = f"{self.key_prefix}:{key}"

        self._cache[key] = dict(expires=time() + expires, value=value)
        self._save()

    def get(self, key: str, default: Any = None) -> Any:
        self._load()

        if self._prune():
            self._save()

        if self.key_prefix:
            key = f"{self.key_prefix}:{key}"

        if key in self._cache:
            return self._cache[key]["value"]

        return default


__all__ = ["Cache"]
