from __future__ import annotations

import time
from typing import Any

import requests
from requests import Response, Session

from fors import __version__
from fors.exceptions import PluginError
from fors.utils import parse_json


DEFAULT_USER_AGENT = f"fors/{__version__}"

_VALID_REQUEST_ARGS = "method", "url", "headers", "files", "data", "params", "auth", "cookies", "hooks", "json"


class HTTPSession(Session):
    """
    A :class:`requests.Session` which wraps request errors into the given exception class
    and retries failed requests.
    """

    def __init__(self):
        super().__init__()

        self.headers["User-Agent"] = DEFAULT_USER_AGENT
        self.timeout = 20.0

    @classmethod
    def determine_json_encoding(cls, sample: bytes):
        """
        Determine which Unicode encoding the JSON text sample is encoded with

        RFC4627 suggests that the encoding of JSON text can be determined
        by checking the pattern of NULL bytes in first 4 octets of the text.
        """
        nulls_at = [i for i, j in enumerate(bytearray(sample[:4])) if j == 0]
        if nulls_at == [0, 1, 2]:
            return "UTF-32BE"
        elif nulls_at == [0, 2]:
            return "UTF-16BE"
        elif nulls_at == [1, 2, 3]:
            return "UTF-32LE"
        elif nulls_at == [1, 3]:
            return "UTF-16LE"
        else:
            return "UTF-8"

    @classmethod
    def json(cls, res: Response, *args, **kwargs):
        """Parses JSON from a response."""
        # if an encoding is already set then use the provided encoding
        if res.encoding is None:
            res.encoding = cls.determine_json_encoding(res.content[:4])
        return parse_json(res.text, *args, **kwargs)

    @staticmethod
    def valid_request_args(**req_keywords) -> dict[str, Any]:
        return {k: v for k, v in req_keywords.items() if k in _VALID_REQUEST_ARGS}

    def request(self, method, url, *args, **kwargs):
        exception = kwargs.pop("exception", PluginError)
        raise_for_status = kwargs.pop("raise_for_status", True)
        retries = kwargs.pop("retries", 0)
        retry_backoff = kwargs.pop("retry_backoff", 0.3)
        retry_max_backoff = kwargs.pop("retry_max_backoff", 10.0)
        timeout = kwargs.pop("timeout", self.timeout)
        total_retries = retries

        while True:
            try:
                res = super().request(
                    method,
                    url,
                    *args,
                    timeout=timeout,
                    **kwargs,
                )
                if raise_for_status:
                    try:
                        res.raise_for_status()
                    except requests.HTTPError:
                        # release the connection of a streamed response
                        res.close()
                        raise
                break
            except KeyboardInterrupt:
                raise
            except requests.RequestException as rerr:
                if retries == 0:
                    err = exception(f"Unable to open URL: {url} ({rerr})")
                    err.err = rerr
                    raise err from rerr

                retries -= 1
                # back off retrying, but only to a maximum sleep time
                delay = min(retry_max_backoff, retry_backoff * (2 ** (total_retries - retries)))
                time.sleep(delay)

        return res
