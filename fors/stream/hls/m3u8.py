from __future__ import annotations

import math
import re
from typing import TYPE_CHECKING, Callable, ClassVar

from fors.exceptions import NoSegmentsError, NoVariantsError
from fors.stream.hls.policy import AdPolicy, TwitchHLSPolicy
from fors.stream.hls.segment import MediaPlaylist, MediaSegment, Resolution, StreamVariant
from fors.utils.url import resolve_url


if TYPE_CHECKING:
    from collections.abc import Mapping


_RE_ATTRIBUTE_SPLIT = re.compile(r""",(?=(?:[^"]*"[^"]*")*[^"]*$)""")

DEFAULT_TARGET_DURATION = 4.0


def parse_attribute_line(value: str) -> list[tuple[str, str]]:
    """
    Split the attribute list of a tag into key/value pairs.

    Commas inside double-quoted values are preserved, surrounding quotes are removed.
    """
    attrs = []
    for item in _RE_ATTRIBUTE_SPLIT.split(value):
        key, sep, val = item.partition("=")
        if not sep:
            continue
        val = val.strip()
        if val.startswith('"'):
            val = val[1:]
        if val.endswith('"'):
            val = val[:-1]
        attrs.append((key.strip(), val))

    return attrs


def _parse_int(value: str | None) -> int:
    try:
        return int(value) if value is not None else 0
    except ValueError:
        return 0


def _parse_float(value: str | None) -> float | None:
    try:
        number = float(value) if value is not None else None
    except ValueError:
        return None
    # nan and inf are not usable as durations or frame rates
    return number if number is not None and math.isfinite(number) else None


def _parse_resolution(value: str | None) -> Resolution | None:
    if not value:
        return None
    width, sep, height = value.partition("x")
    try:
        return Resolution(int(width), int(height)) if sep else None
    except ValueError:
        return None


def parse_tag(tag: str):
    def decorator(func):
        func.tag = tag
        return func

    return decorator


class M3U8Parser:
    """
    Line oriented playlist parser.

    Subclasses register tag handlers with :func:`parse_tag` and implement :meth:`parse_uri`
    and :meth:`get_result`. Tags without a handler and plain comments are ignored.
    """

    _TAGS: ClassVar[Mapping[str, Callable[[M3U8Parser, str], None]]] = {}

    def __init_subclass__(cls, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        tags = dict(cls._TAGS)
        for member in vars(cls).values():
            tag = getattr(member, "tag", None)
            if tag:
                tags[tag] = member
        cls._TAGS = tags

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url

    def parse(self, body: str | bytes):
        if isinstance(body, bytes):
            body = body.decode("utf-8", "replace")

        for line in body.splitlines():
            line = line.strip()
            if not line:
                continue
            if line.startswith("#"):
                if line.startswith("#EXT"):
                    tag, _sep, value = line[1:].partition(":")
                    method = self._TAGS.get(tag)
                    if method is not None:
                        method(self, value)
                continue
            self.parse_uri(line)

        return self.get_result()

    def uri(self, uri: str) -> str:
        return resolve_url(self.base_url, uri)

    def parse_uri(self, line: str) -> None:
        raise NotImplementedError

    def get_result(self):
        raise NotImplementedError


class MasterPlaylistParser(M3U8Parser):
    def __init__(self, base_url: str) -> None:
        super().__init__(base_url)
        self.variants: list[StreamVariant] = []
        self._pending: dict[str, str] | None = None

    @parse_tag("EXT-X-STREAM-INF")
    def parse_ext_x_stream_inf(self, value: str) -> None:
        self._pending = dict(parse_attribute_line(value))

    def parse_uri(self, line: str) -> None:
        if self._pending is None:
            return
        attrs, self._pending = self._pending, None
        self.variants.append(self.build_variant(attrs, self.uri(line)))

    @classmethod
    def build_variant(cls, attrs: dict[str, str], uri: str) -> StreamVariant:
        bandwidth = _parse_int(attrs.get("BANDWIDTH"))
        if not bandwidth:
            bandwidth = _parse_int(attrs.get("AVERAGE-BANDWIDTH"))
        resolution = _parse_resolution(attrs.get("RESOLUTION"))
        frame_rate = _parse_float(attrs.get("FRAME-RATE"))
        name = attrs.get("NAME", attrs.get("VIDEO"))
        audio_only = "audio" in attrs.get("AUDIO", "")
        if resolution is None and name == "audio_only":
            audio_only = True

        if not bandwidth and not audio_only and resolution is not None:
            # rough estimate based on the height
            bandwidth = resolution.height * 1000

        label, aliases = cls.build_labels(name, resolution, frame_rate, audio_only)

        return StreamVariant(
            label=label,
            aliases=aliases,
            bandwidth=bandwidth,
            resolution=resolution,
            frame_rate=frame_rate,
            uri=uri,
            is_audio_only=audio_only,
        )

    @staticmethod
    def build_labels(
        name: str | None,
        resolution: Resolution | None,
        frame_rate: float | None,
        audio_only: bool,
    ) -> tuple[str, tuple[str, ...]]:
        aliases = []
        if name:
            aliases.append(name.lower())

        resolution_label = None
        if resolution is not None:
            suffix = "60" if frame_rate is not None and frame_rate >= 59.5 else ""
            resolution_label = f"{resolution.height}p{suffix}"
            aliases.append(resolution_label.lower())

        if audio_only:
            aliases.extend(("audio_only", "audio"))

        primary = name or resolution_label or ("audio_only" if audio_only else "unknown")
        aliases.append(primary.lower())

        return primary, tuple(sorted(set(aliases)))

    def get_result(self) -> list[StreamVariant]:
        if not self.variants:
            raise NoVariantsError()
        return self.variants


class MediaPlaylistParser(M3U8Parser):
    def __init__(self, base_url: str, low_latency: bool = False, policy: AdPolicy | None = None) -> None:
        super().__init__(base_url)
        self.low_latency = low_latency
        self.policy = policy if policy is not None else TwitchHLSPolicy()

        self.target_duration = DEFAULT_TARGET_DURATION
        self.media_sequence = 0
        self.end_list = False
        self.segments: list[MediaSegment] = []

        self.current_init: str | None = None
        self.discontinuity_next = False
        self.last_duration: float | None = None
        self.pending_duration: float | None = None
        self.pending_title: str | None = None

    @parse_tag("EXT-X-TARGETDURATION")
    def parse_ext_x_targetduration(self, value: str) -> None:
        duration = _parse_float(value)
        if duration is not None:
            self.target_duration = duration

    @parse_tag("EXT-X-MEDIA-SEQUENCE")
    def parse_ext_x_media_sequence(self, value: str) -> None:
        try:
            self.media_sequence = int(value)
        except ValueError:
            pass

    @parse_tag("EXTINF")
    def parse_extinf(self, value: str) -> None:
        duration, _sep, title = value.partition(",")
        self.pending_duration = _parse_float(duration.strip())
        self.pending_title = title.strip() or None
        self.last_duration = self.pending_duration

    @parse_tag("EXT-X-DISCONTINUITY")
    def parse_ext_x_discontinuity(self, value: str) -> None:
        self.discontinuity_next = True

    @parse_tag("EXT-X-MAP")
    def parse_ext_x_map(self, value: str) -> None:
        uri = dict(parse_attribute_line(value)).get("URI")
        if uri:
            self.current_init = self.uri(uri)

    @parse_tag("EXT-X-DATERANGE")
    def parse_ext_x_daterange(self, value: str) -> None:
        self.policy.on_daterange(parse_attribute_line(value))

    @parse_tag("EXT-X-ENDLIST")
    def parse_ext_x_endlist(self, value: str) -> None:
        self.end_list = True

    @parse_tag("EXT-X-TWITCH-PREFETCH")
    def parse_ext_x_twitch_prefetch(self, value: str) -> None:
        if not self.low_latency:
            return
        uri = self.uri(value)
        ad = self.policy.classify_segment(uri, None, True)
        self.append(uri, self.last_duration or self.target_duration, ad, prefetch=True)

    def parse_uri(self, line: str) -> None:
        if self.pending_duration is None:
            return
        duration, title = self.pending_duration, self.pending_title
        self.pending_duration = self.pending_title = None

        uri = self.uri(line)
        ad = self.policy.classify_segment(uri, title, False)
        self.append(uri, duration, ad, title=title)

    def append(self, uri: str, duration: float, ad: bool, prefetch: bool = False, title: str | None = None) -> None:
        discontinuity, self.discontinuity_next = self.discontinuity_next, False
        self.segments.append(MediaSegment(
            uri=uri,
            init=self.current_init,
            sequence=self.media_sequence + len(self.segments),
            # ad segments don't count towards the reload pacing
            duration=0.0 if ad else duration,
            prefetch=prefetch,
            ad=ad,
            discontinuity=discontinuity,
            title=title,
        ))

    def get_result(self) -> MediaPlaylist:
        if not self.segments:
            raise NoSegmentsError()

        return MediaPlaylist(
            target_duration=self.target_duration,
            end_list=self.end_list,
            segments=self.segments,
            ad_daterange=self.policy.last_daterange,
        )


def parse_master_playlist(body: str | bytes, base_url: str) -> list[StreamVariant]:
    """
    Parse a master playlist into its stream variants.

    :raises NoVariantsError: if the playlist does not list any variant
    :raises ResolveUrlError: if a variant URI can't be resolved against ``base_url``
    """
    return MasterPlaylistParser(base_url).parse(body)


def parse_media_playlist(
    body: str | bytes,
    base_url: str,
    low_latency: bool = False,
    policy: AdPolicy | None = None,
) -> MediaPlaylist:
    """
    Parse a media playlist. Each call gets its own ad policy unless one is passed in.

    :raises NoSegmentsError: if the playlist does not contain any segment
    :raises ResolveUrlError: if a segment URI can't be resolved against ``base_url``
    """
    return MediaPlaylistParser(base_url, low_latency=low_latency, policy=policy).parse(body)
