from __future__ import annotations

from typing import NamedTuple


class Resolution(NamedTuple):
    width: int
    height: int


class StreamVariant(NamedTuple):
    label: str
    aliases: tuple[str, ...]
    bandwidth: int
    resolution: Resolution | None
    frame_rate: float | None
    uri: str
    is_audio_only: bool


class MediaSegment(NamedTuple):
    uri: str
    init: str | None
    sequence: int
    duration: float
    prefetch: bool = False
    ad: bool = False
    discontinuity: bool = False
    title: str | None = None


class AdDateRange(NamedTuple):
    id: str | None
    duration: float | None


class MediaPlaylist(NamedTuple):
    target_duration: float
    end_list: bool
    segments: list[MediaSegment]
    ad_daterange: AdDateRange | None = None

    @property
    def ads_active(self) -> bool:
        return any(segment.ad for segment in self.segments)

    @property
    def max_sequence(self) -> int:
        return self.segments[-1].sequence
