"""
Ad classification for HLS media playlists.

A policy receives the date-range metadata of a playlist while it is being parsed and decides
for each segment whether it is an advertisement. Classification is purely structural, so
prefetch segments can be classified without side effects.
"""

from __future__ import annotations

import math
from typing import Iterable

from fors.stream.hls.segment import AdDateRange


class AdPolicy:
    """Interface of an ad classifier. The default implementation never detects ads."""

    def __init__(self) -> None:
        self.last_daterange: AdDateRange | None = None

    def on_daterange(self, attrs: Iterable[tuple[str, str]]) -> None:
        pass

    def classify_segment(self, uri: str, title: str | None, is_prefetch: bool) -> bool:
        return False


class TwitchHLSPolicy(AdPolicy):
    AD_CLASS = "twitch-stitched-ad"
    AD_ID_PREFIX = "stitched-ad-"
    AD_MARKERS_TITLE = ("amazon", "stitched-ad")
    AD_MARKER_URI = "stitched-ad"

    def on_daterange(self, attrs: Iterable[tuple[str, str]]) -> None:
        dr_class = None
        dr_id = None
        duration = None
        for key, value in attrs:
            if key == "CLASS":
                dr_class = value
            elif key == "ID":
                dr_id = value
            elif key == "DURATION":
                try:
                    duration = float(value)
                except ValueError:
                    duration = None
                else:
                    if not math.isfinite(duration):
                        duration = None

        if dr_class == self.AD_CLASS or (dr_id is not None and dr_id.startswith(self.AD_ID_PREFIX)):
            self.last_daterange = AdDateRange(dr_id, duration)

    def classify_segment(self, uri: str, title: str | None, is_prefetch: bool) -> bool:
        if title:
            title = title.lower()
            if any(marker in title for marker in self.AD_MARKERS_TITLE):
                return True

        return self.AD_MARKER_URI in uri
