from __future__ import annotations

import logging
import sys
from typing import Sequence

from fors import Fors, __version__
from fors.exceptions import ForsError
from fors.stream.hls import HLSStream, select_variant, sorted_variants
from fors.stream.hls.segment import StreamVariant
from fors_cli.argparser import build_parser
from fors_cli.output import FileOutput


LOG_FORMAT = "[%(name)s][%(levelname)s] %(message)s"

_LOG_LEVELS = {
    "none": logging.CRITICAL + 1,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": 5,
    "all": 2,
}

log = logging.getLogger("fors.cli")


def setup_logging(level: str = "info", stream=None) -> None:
    logger = logging.getLogger("fors")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(_LOG_LEVELS.get(level, logging.INFO))


def setup_session_options(session: Fors, args) -> None:
    if args.user_agent:
        session.http.headers["User-Agent"] = args.user_agent
    if args.http_header:
        session.set_option("http-headers", dict(args.http_header))
    if args.http_proxy:
        session.set_option("http-proxy", args.http_proxy)
    if args.twitch_low_latency:
        session.set_option("twitch-low-latency", True)
    if args.cache:
        session.set_option("twitch-cache", True)


def format_variant(variant: StreamVariant) -> str:
    if variant.is_audio_only:
        resolution = "audio"
    elif variant.resolution is not None:
        resolution = f"{variant.resolution.width}x{variant.resolution.height}"
    else:
        resolution = "unknown"

    bandwidth = f"{variant.bandwidth // 1000} kbps" if variant.bandwidth > 0 else "unknown"
    frame_rate = f" @ {variant.frame_rate:.0f}fps" if variant.frame_rate is not None else ""

    return f"- {variant.label:<10} {resolution:<12} {bandwidth}{frame_rate}"


def print_variants(variants: Sequence[StreamVariant]) -> None:
    print("Available streams:")
    for variant in sorted_variants(variants):
        print(format_variant(variant))


def output_stream(session: Fors, variant: StreamVariant, is_live: bool, low_latency: bool, filename=None) -> None:
    stream = HLSStream(session, variant.uri, is_live=is_live, low_latency=low_latency)
    log.info(f"Streaming {variant.label} ({variant.uri})")

    output = FileOutput(filename)
    try:
        output.open()
    except OSError as err:
        raise ForsError(f"Failed to open output: {filename} ({err})") from err

    try:
        stream.write_to(output)
    except KeyboardInterrupt:
        stream.close()
        raise
    finally:
        output.close()


def handle_url(session: Fors, args) -> None:
    name, pluginclass, url = session.resolve_url(args.url)
    log.info(f"Found matching plugin {name} for URL {url}")

    plugin = pluginclass(session, url)
    streamset = plugin.streams()

    if args.list:
        print_variants(streamset.variants)
        return

    variant = select_variant(streamset.variants, args.quality)

    if args.stream_url:
        print(variant.uri)
        return

    output_stream(session, variant, streamset.is_live, streamset.low_latency, filename=args.output)


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.loglevel)
    log.debug(f"fors {__version__}")

    try:
        session = Fors()
        setup_session_options(session, args)
        handle_url(session, args)
    except KeyboardInterrupt:
        log.info("Interrupted! Exiting...")
        return 130
    except ForsError as err:
        log.error(err)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
