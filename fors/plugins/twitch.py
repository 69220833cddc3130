from __future__ import annotations

import logging
import re
from urllib.parse import quote

from fors.cache import Cache
from fors.exceptions import PluginError
from fors.plugin import Plugin, StreamSet, pluginmatcher
from fors.stream.hls import HLSStream


log = logging.getLogger(__name__)


CACHE_TTL = 5 * 60


class TwitchAPI:
    CLIENT_ID = "kimne78kx3ncx6brgo4mv6wki5h1ko"
    GQL_URL = "https://gql.twitch.tv/gql"
    PLAYBACK_ACCESS_TOKEN_HASH = "ed230aa1e33e07eebb8928504583da78a5173989fadfb1ac94be06a04f3cdbe9"
    RETRIES = 2

    def __init__(self, session):
        self.session = session

    def call(self, data):
        res = self.session.http.post(
            self.GQL_URL,
            json=data,
            headers={"Client-ID": self.CLIENT_ID},
            retries=self.RETRIES,
        )
        result = self.session.http.json(res, name="Twitch API response")
        if not isinstance(result, dict):
            raise PluginError("Twitch API error: unexpected response")

        errors = result.get("errors")
        if isinstance(errors, list) and errors:
            message = errors[0].get("message") if isinstance(errors[0], dict) else None
            if message:
                raise PluginError(f"Twitch API error: {message}")

        error, message = result.get("error"), result.get("message")
        if isinstance(error, str) and isinstance(message, str):
            raise PluginError(f"Twitch API error: {error}: {message}")

        return result

    def access_token(self, is_live: bool, channel_or_vod: str) -> tuple[str, str]:
        """Returns the signature and the token value of a live channel or a VOD."""
        request = {
            "operationName": "PlaybackAccessToken",
            "extensions": {
                "persistedQuery": {
                    "version": 1,
                    "sha256Hash": self.PLAYBACK_ACCESS_TOKEN_HASH,
                },
            },
            "variables": {
                "isLive": is_live,
                "login": channel_or_vod if is_live else "",
                "isVod": not is_live,
                "vodID": channel_or_vod if not is_live else "",
                "playerType": "embed",
                "platform": "site",
            },
        }
        log.info("Requesting Twitch access token")
        data = self.call(request).get("data") or {}
        key = "streamPlaybackAccessToken" if is_live else "videoPlaybackAccessToken"
        token = data.get(key)
        if not isinstance(token, dict) or "signature" not in token or "value" not in token:
            raise PluginError(f"No access token returned for {'live channel' if is_live else 'VOD'}")

        return token["signature"], token["value"]


class UsherService:
    BASE_URL = "https://usher.ttvnw.net"

    @classmethod
    def channel(cls, channel: str, sig: str, token: str, low_latency: bool = False) -> str:
        url = (
            f"{cls.BASE_URL}/api/channel/hls/{channel}.m3u8"
            f"?sig={sig}&token={quote(token, safe='')}"
            f"&allow_source=true&allow_audio_only=true&allow_spectre=true"
            f"&player=twitchweb&client_id={TwitchAPI.CLIENT_ID}"
        )
        if low_latency:
            url += "&fast_bread=true"
        return url

    @classmethod
    def video(cls, video_id: str, sig: str, token: str) -> str:
        return (
            f"{cls.BASE_URL}/vod/{video_id}.m3u8"
            f"?sig={sig}&token={quote(token, safe='')}"
            f"&allow_source=true&allow_spectre=true"
            f"&player=twitchweb&client_id={TwitchAPI.CLIENT_ID}"
        )


@pluginmatcher(
    name="vod",
    pattern=re.compile(r"https?://(?:[\w-]+\.)?twitch\.tv/videos/(?P<video_id>\d+)"),
)
@pluginmatcher(
    name="live",
    pattern=re.compile(r"https?://(?:[\w-]+\.)?twitch\.tv/(?P<channel>[^/?#]+)/?(?:[?#].*)?$"),
)
class Twitch(Plugin):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        groups = self.match.groupdict() if self.match else {}
        self.video_id = groups.get("video_id")
        self.channel = (groups.get("channel") or "").lower() or None
        self.is_live = self.matcher is None or self.matcher.name == "live"
        self.low_latency = bool(self.get_option("low-latency"))
        self.api = TwitchAPI(self.session)
        self.cache = Cache("plugin-cache.json", key_prefix="twitch") if self.get_option("cache") else None

    @property
    def _cache_key(self) -> str:
        return f"live:{self.channel}" if self.is_live else f"vod:{self.video_id}"

    def _access_token(self) -> tuple[str, str]:
        if self.cache is not None:
            cached = self.cache.get(f"token:{self._cache_key}")
            if isinstance(cached, list) and len(cached) == 2:
                log.debug("Using cached Twitch access token")
                return cached[0], cached[1]

        sig, token = self.api.access_token(self.is_live, self.channel if self.is_live else self.video_id)
        if self.cache is not None:
            self.cache.set(f"token:{self._cache_key}", [sig, token], expires=CACHE_TTL)

        return sig, token

    def _manifest_url(self) -> str:
        manifest_key = f"manifest:{self._cache_key}:{int(self.low_latency)}"
        if self.cache is not None:
            cached = self.cache.get(manifest_key)
            if isinstance(cached, str):
                log.debug("Using cached Twitch manifest URL")
                return cached

        sig, token = self._access_token()
        if self.is_live:
            url = UsherService.channel(self.channel, sig, token, low_latency=self.low_latency)
        else:
            url = UsherService.video(self.video_id, sig, token)

        if self.cache is not None:
            self.cache.set(manifest_key, url, expires=CACHE_TTL)

        return url

    def _get_streams(self):
        if not self.channel and not self.video_id:
            raise PluginError(f"Invalid Twitch URL: {self.url}")

        variants = HLSStream.parse_variant_playlist(
            self.session,
            self._manifest_url(),
            headers={"Client-ID": TwitchAPI.CLIENT_ID},
        )

        log.info("Will skip ad segments")
        if self.low_latency:
            log.info("Low latency streaming (prefetch segments enabled)")

        return StreamSet(variants, is_live=self.is_live, low_latency=self.low_latency)


__plugin__ = Twitch
