from __future__ import annotations

import contextlib
import logging
import math
from dataclasses import dataclass
from threading import Event
from typing import TYPE_CHECKING, Any, BinaryIO, ClassVar

from http.client import IncompleteRead
from urllib3.exceptions import ProtocolError

from requests import Response
from requests.exceptions import ChunkedEncodingError, ConnectionError, ContentDecodingError, RequestException

from fors.exceptions import PlaylistError, PluginError, SegmentDownloadError, StreamError, WriteError
from fors.stream.hls.m3u8 import parse_master_playlist, parse_media_playlist
from fors.stream.hls.policy import AdPolicy, TwitchHLSPolicy
from fors.stream.stream import Stream
from fors.utils import LRUCache


if TYPE_CHECKING:
    from fors.session.session import Fors
    from fors.stream.hls.segment import MediaPlaylist, MediaSegment, StreamVariant


log = logging.getLogger(".".join(__name__.split(".")[:-1]))


class StreamEnded(Exception):
    """Raised inside the worker when the playlist can't be reloaded anymore after content was written."""


@dataclass
class HLSStreamState:
    current_url: str
    last_sequence: int | None = None
    last_init: str | None = None
    initial: bool = True
    in_ads: bool = False
    had_content: bool = False
    consecutive_errors: int = 0

    def reset_cursor(self) -> None:
        self.last_sequence = None
        self.last_init = None


class HLSStreamWriter:
    """
    Copies segment bodies into the output sink, chunk by chunk, flushing after every segment.

    Any failure is fatal: download errors raise :class:`SegmentDownloadError`,
    errors of the sink raise :class:`WriteError`.
    """

    _read_exc_classes = (
        ChunkedEncodingError,
        ContentDecodingError,
        ConnectionError,
        IncompleteRead,
        ProtocolError,
        RequestException,
    )

    def __init__(self, stream: HLSStream, sink: BinaryIO) -> None:
        self.stream = stream
        self.session = stream.session
        self.sink = sink
        self.chunk_size = self.session.options.get("chunk-size")

    @staticmethod
    def _safe_close(resp: Response | None):
        if resp is None:
            return
        with contextlib.suppress(Exception):
            resp.close()

    def create_request_params(self, is_map: bool) -> dict[str, Any]:
        request_params = dict(self.stream.request_params)
        headers = dict(request_params.pop("headers", None) or {})
        if not is_map:
            headers["Accept-Encoding"] = "identity"
        request_params["headers"] = headers

        return request_params

    def _fetch(self, url: str, is_map: bool) -> Response:
        try:
            return self.session.http.get(
                url,
                stream=True,
                exception=StreamError,
                **self.create_request_params(is_map),
            )
        except StreamError as err:
            raise SegmentDownloadError(url, getattr(err, "err", err)) from err

    def write_map(self, segment: MediaSegment) -> None:
        self._write(segment.init, is_map=True)

    def write(self, segment: MediaSegment) -> None:
        self._write(segment.uri, is_map=False)

    def _write(self, url: str, is_map: bool) -> None:
        res = self._fetch(url, is_map)
        try:
            for chunk in res.iter_content(self.chunk_size):
                if chunk:
                    self._sink_write(chunk)
        except self._read_exc_classes as err:
            raise SegmentDownloadError(url, err) from err
        finally:
            self._safe_close(res)

        self._sink_flush()

    def _sink_write(self, data: bytes) -> None:
        try:
            self.sink.write(data)
        except (OSError, ValueError) as err:
            raise WriteError(f"Error when writing to output: {err}") from err

    def _sink_flush(self) -> None:
        try:
            self.sink.flush()
        except (OSError, ValueError) as err:
            raise WriteError(f"Error when flushing output: {err}") from err


class HLSStreamWorker:
    """
    The playback loop: reloads the media playlist, writes new segments and waits
    for the next reload, until the stream ends or the worker gets closed.
    """

    DISCONTINUITY_CACHE_SIZE = 64

    def __init__(self, stream: HLSStream, sink: BinaryIO) -> None:
        self.stream = stream
        self.session = stream.session
        self.writer = HLSStreamWriter(stream, sink)
        self.closed = False
        self._wait = Event()

        options = self.session.options
        self.is_live = stream.is_live
        self.low_latency = stream.low_latency
        self.live_edge = int(options.get("hls-live-edge-low-latency" if self.low_latency else "hls-live-edge"))
        self.playlist_reload_attempts = int(options.get("hls-playlist-reload-attempts"))
        self.playlist_retry_delay = float(options.get("hls-playlist-retry-delay"))
        self.playlist_parse_retry_delay = float(options.get("hls-playlist-parse-retry-delay"))
        self.ad_reload_time = float(options.get("hls-ad-reload-time"))
        self.reload_factor = float(options.get("hls-reload-factor"))

        self.state = HLSStreamState(current_url=stream.url)
        # URIs of discontinuity segments which already had their effect on the sequence cursor
        self.discontinuities: LRUCache[str, int] = LRUCache(self.DISCONTINUITY_CACHE_SIZE)

    def close(self) -> None:
        if self.closed:
            return
        log.debug("Closing worker")
        self.closed = True
        self._wait.set()

    def wait(self, time: float) -> bool:
        """Pauses the worker for the given time. Returns False if the worker got closed meanwhile."""
        return not self._wait.wait(time)

    def run(self) -> None:
        log.debug(
            "; ".join([
                f"Playlist URL: {self.state.current_url}",
                f"Live: {self.is_live}",
                f"Low latency: {self.low_latency}",
                f"Live edge: {self.live_edge}",
            ]),
        )

        while not self.closed:
            try:
                playlist = self.reload_playlist()
            except StreamEnded as err:
                log.info(f"Stream ended ({err})")
                return

            if playlist is None or self.closed:
                continue

            progressed = self.process_playlist(playlist)

            if playlist.end_list and not self.is_live:
                log.info("End of VOD reached")
                return

            if not self.is_live and not progressed:
                # VOD without an end marker: stop after a reload without new segments
                log.info("Stream ended (no new segments)")
                return

            reload_time = self.playlist_reload_time(playlist)
            log.debug(f"Reloading playlist in {reload_time:.3f}s")
            self.wait(reload_time)

    def _fetch_playlist(self) -> Response:
        request_params = dict(self.stream.request_params)
        headers = dict(request_params.pop("headers", None) or {})
        headers.setdefault("Cache-Control", "max-age=0, no-cache")
        headers.setdefault("Pragma", "no-cache")

        return self.session.http.get(
            self.state.current_url,
            exception=StreamError,
            raise_for_status=False,
            headers=headers,
            **request_params,
        )

    def _playlist_error(self, message: str, reason: str, delay: float) -> None:
        state = self.state
        state.consecutive_errors += 1
        if state.consecutive_errors >= self.playlist_reload_attempts and state.had_content:
            raise StreamEnded(reason)

        log.debug(f"{message} ({state.consecutive_errors} consecutive errors)")
        self.wait(delay)

    def reload_playlist(self) -> MediaPlaylist | None:
        """
        Fetches and parses the media playlist.

        Returns None after a transient failure, which has already been waited for.

        :raises StreamEnded: if the playlist is gone after content has been written
        """
        state = self.state

        try:
            res = self._fetch_playlist()
        except StreamError as err:
            self._playlist_error(
                f"Failed to fetch media playlist: {err}",
                "failed to reload playlist after errors",
                self.playlist_retry_delay,
            )
            return None

        try:
            if not res.ok:
                if res.status_code == 404 and state.had_content:
                    raise StreamEnded("playlist not found")
                self._playlist_error(
                    f"Media playlist returned status {res.status_code} - retrying",
                    "playlist unavailable",
                    self.playlist_retry_delay,
                )
                return None

            # relative segment URIs need to be resolved against the URL after redirects
            state.current_url = res.url or state.current_url
            body = res.content
        finally:
            res.close()

        try:
            playlist = parse_media_playlist(
                body,
                state.current_url,
                low_latency=self.low_latency,
                policy=self.stream.__policy__(),
            )
        except PlaylistError as err:
            self._playlist_error(
                f"Failed to parse media playlist: {err}",
                "unreadable playlist",
                self.playlist_parse_retry_delay,
            )
            return None

        state.consecutive_errors = 0
        return playlist

    def process_playlist(self, playlist: MediaPlaylist) -> bool:
        """Applies a freshly loaded playlist. Returns whether any new segment was written or skipped."""
        state = self.state

        if self._update_ad_state(playlist):
            # the cursor jumped past the ad padding, writing resumes with the next reload
            return True

        if state.initial:
            state.initial = False
            if self.is_live:
                # the first live playlist only positions the cursor, writing starts with the next reload
                self._jump_to_live_edge(playlist)
                log.debug(
                    "; ".join([
                        f"First Sequence: {playlist.segments[0].sequence}",
                        f"Last Sequence: {playlist.max_sequence}",
                        f"Start Sequence: {state.last_sequence + 1}",
                    ]),
                )
                return False

        return self.process_segments(playlist)

    def _update_ad_state(self, playlist: MediaPlaylist) -> bool:
        """Tracks ad break entry and exit. Returns whether the cursor was moved to the live edge."""
        state = self.state

        if not state.in_ads and playlist.ads_active:
            state.in_ads = True
            daterange = playlist.ad_daterange
            if daterange is not None and daterange.duration is not None:
                duration = math.ceil(daterange.duration)
                log.info(f"Entering ad break of {duration} second{'' if duration == 1 else 's'}, filtering out segments")
            else:
                log.info("Entering ad break, filtering out segments")

        elif state.in_ads and not playlist.ads_active:
            state.in_ads = False
            log.info("Exiting ad break, resuming stream output")
            if state.had_content:
                # skip the ad padding which the server may have rotated past already
                if self._jump_to_live_edge(playlist):
                    state.last_init = None
                    return True
            else:
                state.reset_cursor()

        return False

    def _jump_to_live_edge(self, playlist: MediaPlaylist) -> bool:
        """Moves the cursor forward to the live edge. Returns False if it was already there or beyond."""
        state = self.state
        edge = playlist.max_sequence - self.live_edge
        moved = state.last_sequence is None or state.last_sequence < edge
        if moved:
            state.last_sequence = edge
        for segment in playlist.segments:
            if segment.discontinuity and segment.sequence <= state.last_sequence:
                self.discontinuities.set(segment.uri, segment.sequence)
        return moved

    def valid_segment(self, segment: MediaSegment) -> bool:
        return self.state.last_sequence is None or segment.sequence > self.state.last_sequence

    def process_segments(self, playlist: MediaPlaylist) -> bool:
        state = self.state
        progressed = False
        warned = False

        for segment in playlist.segments:
            if self.closed:
                break

            if segment.discontinuity and segment.uri not in self.discontinuities:
                self.discontinuities.set(segment.uri, segment.sequence)
                if state.in_ads:
                    if not warned:
                        log.warning("Encountered a stream discontinuity while filtering ads")
                        warned = True
                else:
                    log.debug(f"Discontinuity at segment {segment.sequence}: resetting sequence cursor")
                    state.reset_cursor()

            if not self.valid_segment(segment):
                continue

            if segment.ad:
                log.debug(f"Skipping ad segment {segment.sequence}")
                state.last_sequence = segment.sequence
                progressed = True
                continue

            self.write_segment(segment)
            progressed = True

        return progressed

    def write_segment(self, segment: MediaSegment) -> None:
        state = self.state

        if segment.init is not None and segment.init != state.last_init:
            log.debug(f"Writing initialization segment {segment.init}")
            self.writer.write_map(segment)
            state.last_init = segment.init

        log.debug(
            f"Writing segment {segment.sequence}"
            f"{' (prefetch)' if segment.prefetch else ''}"
            f"{' (discontinuity)' if segment.discontinuity else ''}"
            f" ({segment.duration}s) {segment.uri}",
        )
        self.writer.write(segment)
        state.last_sequence = segment.sequence
        state.last_init = segment.init
        state.had_content = True

    def playlist_reload_time(self, playlist: MediaPlaylist) -> float:
        if self.state.in_ads:
            # poll quickly to notice the end of the ad break
            return self.ad_reload_time

        if self.low_latency:
            for segment in reversed(playlist.segments):
                if segment.duration > 0:
                    return segment.duration
            return playlist.target_duration

        return playlist.target_duration * self.reload_factor


class HLSStream(Stream):
    """
    Implementation of the Apple HTTP Live Streaming protocol for a single media playlist.
    """

    __shortname__ = "hls"
    __worker__: ClassVar[type[HLSStreamWorker]] = HLSStreamWorker
    __policy__: ClassVar[type[AdPolicy]] = TwitchHLSPolicy

    def __init__(
        self,
        session: Fors,
        url: str,
        is_live: bool = True,
        low_latency: bool = False,
        **args,
    ):
        """
        :param session: Fors session instance
        :param url: The URL of the media playlist
        :param is_live: Start at the live edge and keep polling until the playlist disappears
        :param low_latency: Play prefetch segments and poll in the rhythm of the segments
        :param args: Additional keyword arguments passed to :meth:`requests.Session.request`
        """
        super().__init__(session)
        self.url = url
        self.is_live = is_live
        self.low_latency = low_latency
        self.request_params = session.http.valid_request_args(**args)
        self.worker: HLSStreamWorker | None = None

    def to_url(self):
        return self.url

    def write_to(self, sink: BinaryIO) -> None:
        """
        Streams the playlist into the sink until the stream ends.

        :raises SegmentDownloadError: if a segment can't be downloaded
        :raises WriteError: if the sink fails
        """
        self.worker = self.__worker__(self, sink)
        try:
            self.worker.run()
        finally:
            self.worker.close()

    def close(self):
        if self.worker is not None:
            self.worker.close()

    @classmethod
    def _fetch_variant_playlist(cls, session: Fors, url: str, **request_args) -> Response:
        return session.http.get(url, exception=PluginError, **request_args)

    @classmethod
    def parse_variant_playlist(cls, session: Fors, url: str, **request_args) -> list[StreamVariant]:
        """
        Fetches and parses a master playlist, resolving the variant URIs against the final URL.

        :raises PluginError: if the playlist can't be fetched
        :raises NoVariantsError: if the playlist doesn't list any variant
        """
        request_args = session.http.valid_request_args(**request_args)
        res = cls._fetch_variant_playlist(session, url, **request_args)
        try:
            body = res.content
            base_url = res.url or url
        finally:
            with contextlib.suppress(Exception):
                res.close()

        return parse_master_playlist(body, base_url)


def stream_to_writer(session: Fors, url: str, sink: BinaryIO, is_live: bool, low_latency: bool = False) -> None:
    """Plays the media playlist at ``url`` into ``sink``."""
    HLSStream(session, url, is_live=is_live, low_latency=low_latency).write_to(sink)
