from __future__ import annotations

import json
import logging
import re
from urllib.parse import parse_qsl, urlparse

from fors.exceptions import PluginError
from fors.plugin import Plugin, StreamSet, pluginmatcher
from fors.stream.hls import HLSStream


log = logging.getLogger(__name__)


@pluginmatcher(
    name="shorturl",
    pattern=re.compile(r"https?://youtu\.be/(?P<video_id>[\w-]+)"),
)
@pluginmatcher(
    name="default",
    pattern=re.compile(r"https?://(?:\w+\.)?youtube\.com/"),
)
class YouTube(Plugin):
    _re_hls_manifest = re.compile(r'"hlsManifestUrl":"([^"]+)"')
    _re_path_video_id = re.compile(r"^/(?:live|embed|shorts)/(?P<video_id>[\w-]+)/?$")

    _url_canonical = "https://www.youtube.com/watch?v={video_id}"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.url = self._canonical_url(self.url)

    @classmethod
    def _video_id(cls, url: str) -> str | None:
        parsed = urlparse(url)
        if parsed.netloc.lower() == "youtu.be":
            video_id = parsed.path.strip("/").split("/")[0]
            return video_id or None

        video_id = dict(parse_qsl(parsed.query)).get("v")
        if video_id:
            return video_id

        match = cls._re_path_video_id.match(parsed.path)
        return match["video_id"] if match else None

    @classmethod
    def _canonical_url(cls, url: str) -> str:
        video_id = cls._video_id(url)
        if not video_id:
            raise PluginError(f"Unsupported YouTube URL: {url}")
        return cls._url_canonical.format(video_id=video_id)

    def _manifest_url(self) -> str:
        log.info("Fetching YouTube watch page")
        res = self.session.http.get(self.url)
        if "consent.youtube.com" in urlparse(res.url).netloc:
            raise PluginError("YouTube returned a consent page. Try supplying cookies or running in a browser first.")

        match = self._re_hls_manifest.search(res.text)
        if not match:
            raise PluginError("No HLS manifest URL found on the page (stream may be offline)")

        try:
            return json.loads(f'"{match[1]}"')
        except ValueError as err:
            raise PluginError(f"Failed to decode manifest URL from page data: {err}") from err

    def _get_streams(self):
        manifest_url = self._manifest_url()
        log.info("Fetching YouTube HLS manifest")
        variants = HLSStream.parse_variant_playlist(self.session, manifest_url)

        return StreamSet(variants, is_live=True)


__plugin__ = YouTube
