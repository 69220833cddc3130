from __future__ import annotations

import logging
import re

import pytest
import requests

from fors.exceptions import PluginError, SegmentDownloadError, WriteError
from fors.stream.hls import HLSStream, stream_to_writer
from fors.stream.hls.hls import HLSStreamWorker


BASE = "https://cdn.example.com/live/"
URL = f"{BASE}index.m3u8"


def playlist(start, end, target=4, duration=None, ads=(), endlist=False, discontinuity=(), maps=None, prefetch=(),
             name="{}.ts", ad_daterange=None):
    """Builds a media playlist with the segments ``start..end`` (inclusive)."""
    lines = ["#EXTM3U", f"#EXT-X-TARGETDURATION:{target}", f"#EXT-X-MEDIA-SEQUENCE:{start}"]
    if ad_daterange is not None:
        lines.append(f'#EXT-X-DATERANGE:ID="stitched-ad-1",CLASS="twitch-stitched-ad",DURATION={ad_daterange}')
    for seq in range(start, end + 1):
        if maps and seq in maps:
            lines.append(f'#EXT-X-MAP:URI="{maps[seq]}"')
        if seq in discontinuity:
            lines.append("#EXT-X-DISCONTINUITY")
        title = "Amazon" if seq in ads else "live"
        lines.append(f"#EXTINF:{duration or target:.3f},{title}")
        lines.append(name.format(seq))
    for uri in prefetch:
        lines.append(f"#EXT-X-TWITCH-PREFETCH:{uri}")
    if endlist:
        lines.append("#EXT-X-ENDLIST")

    return "\n".join(lines) + "\n"


@pytest.fixture()
def segments(requests_mock):
    """Serves every ``*.ts`` / ``*.mp4`` URL below the base URL with its file name as the body."""
    matcher = requests_mock.get(
        re.compile(rf"^{BASE}[^/]+\.(?:ts|mp4)$"),
        content=lambda request, context: f"[{request.url.rsplit('/', 1)[-1].split('.')[0]}]".encode(),
    )
    return matcher


def fetched_segments(requests_mock):
    return [
        req.url.rsplit("/", 1)[-1]
        for req in requests_mock.request_history
        if not req.url.endswith(".m3u8")
    ]


def run(session, sink, is_live=True, low_latency=False):
    HLSStream(session, URL, is_live=is_live, low_latency=low_latency).write_to(sink)


def expected(*names):
    return b"".join(f"[{name}]".encode() for name in names)


@pytest.mark.usefixtures("segments")
class TestLiveStream:
    def test_fast_start(self, session, sink, waits, requests_mock, caplog):
        caplog.set_level(logging.INFO, "fors")
        requests_mock.get(URL, [
            {"text": playlist(10, 20)},
            {"text": playlist(12, 22)},
            {"status_code": 404},
        ])

        run(session, sink)

        assert sink.data == expected(18, 19, 20, 21, 22)
        assert sink.flushes == 5
        assert waits == [3.0, 3.0]
        assert [(r.name, r.levelname, r.message) for r in caplog.records] == [
            ("fors.stream.hls", "INFO", "Stream ended (playlist not found)"),
        ]

    def test_fast_start_nothing_written_on_first_load(self, session, sink, waits, requests_mock):
        requests_mock.get(URL, text=playlist(10, 20))
        worker = HLSStreamWorker(HLSStream(session, URL), sink)
        assert not worker.process_playlist(worker.reload_playlist())
        assert worker.state.last_sequence == 17
        assert not worker.state.initial
        assert sink.data == b""

    def test_low_latency_live_edge_and_prefetch(self, session, sink, waits, requests_mock):
        body = playlist(10, 20, duration=2.0, prefetch=["21.ts", "22.ts"])
        requests_mock.get(URL, [
            {"text": body},
            {"text": body},
            {"status_code": 404},
        ])

        run(session, sink, low_latency=True)

        # max sequence 22 with a live edge of 2
        assert sink.data == expected(21, 22)
        assert waits == [2.0, 2.0]

    def test_prefetch_ignored_without_low_latency(self, session, sink, waits, requests_mock):
        body = playlist(10, 20, prefetch=["21.ts", "22.ts"])
        requests_mock.get(URL, [
            {"text": body},
            {"text": body},
            {"status_code": 404},
        ])

        run(session, sink)

        assert sink.data == expected(18, 19, 20)

    def test_ad_break_exit_jumps_to_live_edge(self, session, sink, waits, requests_mock, caplog):
        caplog.set_level(logging.INFO, "fors")
        requests_mock.get(URL, [
            {"text": playlist(10, 20)},
            {"text": playlist(12, 22)},
            {"text": playlist(23, 25, ads=(23, 24, 25), ad_daterange="29.5")},
            {"text": playlist(26, 30)},
            {"text": playlist(26, 30)},
            {"status_code": 404},
        ])

        run(session, sink)

        assert sink.data == expected(18, 19, 20, 21, 22, 28, 29, 30)
        assert not {"23.ts", "24.ts", "25.ts"} & set(fetched_segments(requests_mock))
        assert waits == [3.0, 3.0, 0.5, 3.0, 3.0]
        assert [r.message for r in caplog.records] == [
            "Entering ad break of 30 seconds, filtering out segments",
            "Exiting ad break, resuming stream output",
            "Stream ended (playlist not found)",
        ]

    def test_ad_break_exit_cursor(self, session, sink, waits, requests_mock):
        requests_mock.get(URL, [
            {"text": playlist(10, 20)},
            {"text": playlist(12, 22)},
            {"text": playlist(23, 25, ads=(23, 24, 25))},
            {"text": playlist(26, 30)},
        ])
        stream = HLSStream(session, URL)
        worker = HLSStreamWorker(stream, sink)
        for _ in range(3):
            worker.process_playlist(worker.reload_playlist())
        assert worker.state.in_ads
        assert worker.state.last_sequence == 25

        worker.process_playlist(worker.reload_playlist())
        assert not worker.state.in_ads
        assert worker.state.last_sequence == 27
        assert worker.state.last_init is None

    def test_ads_before_content(self, session, sink, waits, requests_mock, caplog):
        caplog.set_level(logging.INFO, "fors")
        requests_mock.get(URL, [
            {"text": playlist(10, 20, ads=range(10, 21))},
            {"text": playlist(12, 22, ads=range(12, 23))},
            {"text": playlist(23, 27)},
            {"status_code": 404},
        ])

        run(session, sink)

        # the cursor is fully reset when leaving an ad break without any prior content
        assert sink.data == expected(23, 24, 25, 26, 27)
        assert fetched_segments(requests_mock) == ["23.ts", "24.ts", "25.ts", "26.ts", "27.ts"]
        assert waits == [0.5, 0.5, 3.0]
        assert caplog.records[0].message == "Entering ad break, filtering out segments"

    def test_mixed_ads_and_content(self, session, sink, waits, requests_mock):
        requests_mock.get(URL, [
            {"text": playlist(10, 20)},
            {"text": playlist(12, 22, ads=(21,))},
            {"status_code": 404},
        ])

        run(session, sink)

        assert sink.data == expected(18, 19, 20, 22)
        assert "21.ts" not in fetched_segments(requests_mock)
        assert waits == [3.0, 0.5]

    def test_content_after_ads_in_mixed_window(self, session, sink, waits, requests_mock):
        requests_mock.get(URL, [
            {"text": playlist(10, 20)},
            {"text": playlist(12, 22)},
            {"text": playlist(14, 25, ads=(23, 24))},
            {"text": playlist(15, 26, ads=(23, 24))},
            {"text": playlist(25, 28)},
            {"text": playlist(25, 28)},
            {"status_code": 404},
        ])

        run(session, sink)

        # leaving the ad break never moves the cursor backwards
        assert sink.data == expected(18, 19, 20, 21, 22, 25, 26, 27, 28)
        assert fetched_segments(requests_mock) == [f"{seq}.ts" for seq in (18, 19, 20, 21, 22, 25, 26, 27, 28)]
        assert waits == [3.0, 3.0, 0.5, 0.5, 3.0, 3.0]

    def test_ad_break_with_non_finite_duration(self, session, sink, waits, requests_mock, caplog):
        caplog.set_level(logging.INFO, "fors")
        requests_mock.get(URL, [
            {"text": playlist(10, 20)},
            {"text": playlist(12, 22)},
            {"text": playlist(23, 25, ads=(23, 24, 25), ad_daterange="nan")},
            {"status_code": 404},
        ])

        run(session, sink)

        assert sink.data == expected(18, 19, 20, 21, 22)
        assert [r.message for r in caplog.records] == [
            "Entering ad break, filtering out segments",
            "Stream ended (playlist not found)",
        ]

    def test_discontinuity_resets_cursor_once(self, session, sink, waits, requests_mock, caplog):
        caplog.set_level(logging.INFO, "fors")
        restarted = playlist(5, 8, discontinuity=(5,), name="r{}.ts")
        requests_mock.get(URL, [
            {"text": playlist(10, 20)},
            {"text": playlist(12, 22)},
            {"text": restarted},
            {"text": restarted},
            {"status_code": 404},
        ])
        requests_mock.get(re.compile(rf"^{BASE}r\d+\.ts$"), content=b"<r>")

        run(session, sink)

        assert sink.data == expected(18, 19, 20, 21, 22) + b"<r>" * 4
        assert fetched_segments(requests_mock).count("r5.ts") == 1

    def test_discontinuity_behind_live_edge_is_ignored(self, session, sink, waits, requests_mock):
        requests_mock.get(URL, [
            {"text": playlist(10, 20, discontinuity=(12,))},
            {"text": playlist(12, 22, discontinuity=(12,))},
            {"status_code": 404},
        ])

        run(session, sink)

        assert sink.data == expected(18, 19, 20, 21, 22)

    def test_discontinuity_during_ads(self, session, sink, waits, requests_mock, caplog):
        caplog.set_level(logging.WARNING, "fors")
        requests_mock.get(URL, [
            {"text": playlist(10, 20)},
            {"text": playlist(12, 22)},
            {"text": playlist(23, 26, ads=(23, 24, 25, 26), discontinuity=(23, 25))},
            {"text": playlist(27, 31)},
            {"text": playlist(27, 31)},
            {"status_code": 404},
        ])

        run(session, sink)

        assert sink.data == expected(18, 19, 20, 21, 22, 29, 30, 31)
        assert [(r.levelname, r.message) for r in caplog.records] == [
            ("WARNING", "Encountered a stream discontinuity while filtering ads"),
        ]

    def test_initialization_segments(self, session, sink, waits, requests_mock):
        maps = {10: "init1.mp4", 21: "init2.mp4"}
        requests_mock.get(URL, [
            {"text": playlist(10, 20, maps=maps)},
            {"text": playlist(10, 22, maps=maps)},
            {"text": playlist(10, 22, maps=maps)},
            {"status_code": 404},
        ])

        run(session, sink)

        assert sink.data == expected("init1", 18, 19, 20, "init2", 21, 22)
        assert fetched_segments(requests_mock) == [
            "init1.mp4", "18.ts", "19.ts", "20.ts", "init2.mp4", "21.ts", "22.ts",
        ]

    def test_initialization_segment_after_ad_break(self, session, sink, waits, requests_mock):
        requests_mock.get(URL, [
            {"text": playlist(10, 20, maps={10: "init.mp4"})},
            {"text": playlist(12, 22, maps={12: "init.mp4"})},
            {"text": playlist(23, 25, ads=(23, 24, 25), maps={23: "init.mp4"})},
            {"text": playlist(26, 30, maps={26: "init.mp4"})},
            {"text": playlist(26, 30, maps={26: "init.mp4"})},
            {"status_code": 404},
        ])

        run(session, sink)

        assert sink.data == expected("init", 18, 19, 20, 21, 22, "init", 28, 29, 30)

    def test_redirect_updates_playlist_url(self, session, sink, waits, requests_mock):
        edge = "https://edge.example.com/v2/"
        requests_mock.get(URL, status_code=302, headers={"Location": f"{edge}index.m3u8"})
        requests_mock.get(f"{edge}index.m3u8", [
            {"text": playlist(10, 20)},
            {"text": playlist(12, 22)},
            {"status_code": 404},
        ])
        requests_mock.get(re.compile(rf"^{edge}\d+\.ts$"), content=b"<edge>")

        run(session, sink)

        assert sink.data == b"<edge>" * 5
        playlist_requests = [req.url for req in requests_mock.request_history if req.url.endswith(".m3u8")]
        assert playlist_requests == [
            URL,
            f"{edge}index.m3u8",
            f"{edge}index.m3u8",
            f"{edge}index.m3u8",
        ]

    def test_playlist_errors_after_content(self, session, sink, waits, requests_mock, caplog):
        caplog.set_level(logging.INFO, "fors")
        requests_mock.get(URL, [
            {"text": playlist(10, 20)},
            {"text": playlist(12, 22)},
            {"status_code": 500},
            {"exc": requests.exceptions.ConnectTimeout},
            {"status_code": 503},
            {"text": playlist(13, 23)},
        ])

        run(session, sink)

        assert sink.data == expected(18, 19, 20, 21, 22)
        assert waits == [3.0, 3.0, 0.75, 0.75]
        assert caplog.records[-1].message == "Stream ended (playlist unavailable)"

    def test_transport_errors_after_content(self, session, sink, waits, requests_mock, caplog):
        caplog.set_level(logging.INFO, "fors")
        requests_mock.get(URL, [
            {"text": playlist(10, 20)},
            {"text": playlist(12, 22)},
            {"exc": requests.exceptions.ConnectionError},
        ])

        run(session, sink)

        assert waits == [3.0, 3.0, 0.75, 0.75]
        assert caplog.records[-1].message == "Stream ended (failed to reload playlist after errors)"

    def test_parse_errors_after_content(self, session, sink, waits, requests_mock, caplog):
        caplog.set_level(logging.INFO, "fors")
        requests_mock.get(URL, [
            {"text": playlist(10, 20)},
            {"text": playlist(12, 22)},
            {"text": "#EXTM3U\n#EXT-X-TARGETDURATION:4\n"},
        ])

        run(session, sink)

        assert waits == [3.0, 3.0, 0.5, 0.5]
        assert caplog.records[-1].message == "Stream ended (unreadable playlist)"

    def test_fetch_and_parse_errors_count_together(self, session, sink, waits, requests_mock, caplog):
        caplog.set_level(logging.INFO, "fors")
        requests_mock.get(URL, [
            {"text": playlist(10, 20)},
            {"text": playlist(12, 22)},
            {"status_code": 500},
            {"text": "garbage"},
            {"text": "garbage"},
            {"text": playlist(13, 23)},
        ])

        run(session, sink)

        assert sink.data == expected(18, 19, 20, 21, 22)
        assert waits == [3.0, 3.0, 0.75, 0.5]
        assert caplog.records[-1].message == "Stream ended (unreadable playlist)"

    def test_errors_before_content_keep_retrying(self, session, sink, waits, requests_mock):
        requests_mock.get(URL, [
            {"status_code": 404},
            {"status_code": 404},
            {"status_code": 500},
            {"exc": requests.exceptions.ConnectionError},
            {"text": "garbage"},
            {"text": playlist(10, 20)},
            {"text": playlist(12, 22)},
            {"status_code": 404},
        ])

        run(session, sink)

        assert sink.data == expected(18, 19, 20, 21, 22)
        assert waits == [0.75, 0.75, 0.75, 0.75, 0.5, 3.0, 3.0]

    def test_error_counter_resets_on_success(self, session, sink, waits, requests_mock):
        requests_mock.get(URL, [
            {"text": playlist(10, 20)},
            {"text": playlist(12, 22)},
            {"status_code": 500},
            {"status_code": 500},
            {"text": playlist(13, 23)},
            {"status_code": 500},
            {"status_code": 500},
            {"status_code": 404},
        ])

        run(session, sink)

        assert sink.data == expected(18, 19, 20, 21, 22, 23)

    def test_close(self, session, waits, requests_mock):
        requests_mock.get(URL, [
            {"text": playlist(10, 20)},
            {"text": playlist(12, 22)},
        ])
        stream = HLSStream(session, URL)

        class ClosingSink:
            def __init__(self):
                self.data = b""

            def write(self, data):
                self.data += data
                stream.close()

            def flush(self):
                pass

        sink = ClosingSink()
        stream.write_to(sink)

        assert sink.data == expected(18)
        assert stream.worker.closed


@pytest.mark.usefixtures("segments")
class TestVODStream:
    def test_endlist(self, session, sink, waits, requests_mock, caplog):
        caplog.set_level(logging.INFO, "fors")
        requests_mock.get(URL, text=playlist(0, 3, endlist=True))

        run(session, sink, is_live=False)

        assert sink.data == expected(0, 1, 2, 3)
        assert waits == []
        assert [r.message for r in caplog.records] == ["End of VOD reached"]

    def test_no_endlist(self, session, sink, waits, requests_mock):
        requests_mock.get(URL, [
            {"text": playlist(0, 2)},
            {"text": playlist(0, 4)},
            {"text": playlist(0, 4)},
        ])

        run(session, sink, is_live=False)

        assert sink.data == expected(0, 1, 2, 3, 4)
        assert waits == [3.0, 3.0]
        assert len([req for req in requests_mock.request_history if req.url == URL]) == 3

    def test_ads_count_as_progress(self, session, sink, waits, requests_mock):
        requests_mock.get(URL, [
            {"text": playlist(0, 2)},
            {"text": playlist(0, 4, ads=(3, 4))},
            {"text": playlist(0, 6, ads=(3, 4))},
            {"text": playlist(0, 6, ads=(3, 4), endlist=True)},
        ])

        run(session, sink, is_live=False)

        assert sink.data == expected(0, 1, 2, 5, 6)
        assert waits == [3.0, 0.5, 0.5]

    def test_segment_failure_is_fatal(self, session, sink, waits, requests_mock):
        requests_mock.get(URL, text=playlist(0, 3, endlist=True))
        requests_mock.get(f"{BASE}1.ts", status_code=500)

        with pytest.raises(SegmentDownloadError) as cm:
            run(session, sink, is_live=False)

        assert cm.value.url == f"{BASE}1.ts"
        assert isinstance(cm.value.err, requests.HTTPError)
        assert sink.data == expected(0)

    def test_segment_connection_failure(self, session, sink, waits, requests_mock):
        requests_mock.get(URL, text=playlist(0, 3, endlist=True))
        requests_mock.get(f"{BASE}2.ts", exc=requests.exceptions.ConnectionError("reset"))

        with pytest.raises(SegmentDownloadError) as cm:
            run(session, sink, is_live=False)

        assert cm.value.url == f"{BASE}2.ts"
        assert sink.data == expected(0, 1)

    def test_write_error(self, session, waits, requests_mock):
        requests_mock.get(URL, text=playlist(0, 3, endlist=True))

        class BrokenSink:
            def write(self, data):
                raise BrokenPipeError(32, "Broken pipe")

            def flush(self):
                pass

        with pytest.raises(WriteError):
            run(session, BrokenSink(), is_live=False)

    def test_stream_to_writer(self, session, sink, waits, requests_mock):
        requests_mock.get(URL, text=playlist(0, 1, endlist=True))

        stream_to_writer(session, URL, sink, is_live=False)

        assert sink.data == expected(0, 1)


class TestPlaylistReloadTime:
    @pytest.fixture()
    def worker(self, request, session, sink):
        stream = HLSStream(session, URL, **getattr(request, "param", {}))
        return HLSStreamWorker(stream, sink)

    def parse(self, body, low_latency=False):
        from fors.stream.hls.m3u8 import parse_media_playlist

        return parse_media_playlist(body, URL, low_latency=low_latency)

    def test_default(self, worker):
        assert worker.playlist_reload_time(self.parse(playlist(0, 2, target=6))) == 4.5

    def test_ads(self, worker):
        worker.state.in_ads = True
        assert worker.playlist_reload_time(self.parse(playlist(0, 2, target=6))) == 0.5

    @pytest.mark.parametrize("worker", [{"low_latency": True}], indirect=True)
    def test_low_latency(self, worker):
        assert worker.playlist_reload_time(self.parse(playlist(0, 2, target=6, duration=2.0))) == 2.0

    @pytest.mark.parametrize("worker", [{"low_latency": True}], indirect=True)
    def test_low_latency_only_ads(self, worker):
        assert worker.playlist_reload_time(self.parse(playlist(0, 2, target=6, ads=(0, 1, 2)))) == 6.0

    def test_options(self, session, sink):
        session.set_option("hls-reload-factor", 0.5)
        session.set_option("hls-live-edge", 5)
        worker = HLSStreamWorker(HLSStream(session, URL), sink)
        assert worker.live_edge == 5
        assert worker.playlist_reload_time(self.parse(playlist(0, 2, target=6))) == 3.0


class TestParseVariantPlaylist:
    MASTER = (
        "#EXTM3U\n"
        '#EXT-X-STREAM-INF:BANDWIDTH=6000000,RESOLUTION=1920x1080,FRAME-RATE=60,VIDEO="chunked"\n'
        "chunked/index.m3u8\n"
        "#EXT-X-STREAM-INF:BANDWIDTH=1500000,RESOLUTION=1280x720\n"
        "720p/index.m3u8\n"
    )

    def test_final_url_is_base(self, session, requests_mock):
        requests_mock.get("https://usher.example.com/master.m3u8", status_code=301, headers={"Location": BASE + "master.m3u8"})
        requests_mock.get(BASE + "master.m3u8", text=self.MASTER)

        variants = HLSStream.parse_variant_playlist(session, "https://usher.example.com/master.m3u8")

        assert [v.uri for v in variants] == [BASE + "chunked/index.m3u8", BASE + "720p/index.m3u8"]

    def test_request_args(self, session, requests_mock):
        mock = requests_mock.get(BASE + "master.m3u8", text=self.MASTER)

        HLSStream.parse_variant_playlist(session, BASE + "master.m3u8", headers={"Client-ID": "abc"}, invalid="ignored")

        assert mock.last_request.headers["Client-ID"] == "abc"

    def test_http_error(self, session, requests_mock):
        requests_mock.get(BASE + "master.m3u8", status_code=403)

        with pytest.raises(PluginError, match=r"^Unable to open URL: https://cdn\.example\.com/live/master\.m3u8 "):
            HLSStream.parse_variant_playlist(session, BASE + "master.m3u8")


def test_repr(session):
    assert repr(HLSStream(session, URL)) == f"<HLSStream ['hls', '{URL}']>"
