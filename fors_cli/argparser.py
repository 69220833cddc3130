from __future__ import annotations

import argparse
from textwrap import dedent

from fors import __version__


LOG_LEVELS = ["none", "error", "warning", "info", "debug", "trace", "all"]


def keyvalue(value: str) -> tuple[str, str]:
    key, sep, val = value.partition("=")
    key = key.strip()
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"{value!r} must be in KEY=VALUE format")

    return key, val.strip()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fors",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description=dedent("""
            Extracts a live or on-demand HLS stream from Twitch or YouTube and writes
            the raw media bytes to a file or to stdout.
        """),
        epilog=dedent("""
            Example:

              fors twitch.tv/channel 720p60 | mpv -
        """),
    )

    parser.add_argument(
        "url",
        metavar="URL",
        help="The URL of the stream.",
    )
    parser.add_argument(
        "quality",
        metavar="QUALITY",
        nargs="?",
        default="best",
        help="""
        The stream quality: "best", "worst", or a label like "720p60" or "audio_only".

        Default is "best".
        """,
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--loglevel",
        metavar="LEVEL",
        choices=LOG_LEVELS,
        default="info",
        help=f"Log level, one of {', '.join(LOG_LEVELS)}. Default is \"info\".",
    )

    output = parser.add_argument_group("Output options")
    output.add_argument(
        "-l", "--list",
        action="store_true",
        help="List the available streams and exit.",
    )
    output.add_argument(
        "--stream-url",
        action="store_true",
        help="Print the URL of the selected stream instead of playing it.",
    )
    output.add_argument(
        "-o", "--output",
        metavar="FILENAME",
        help="Write the stream data to FILENAME instead of stdout.",
    )

    http = parser.add_argument_group("HTTP options")
    http.add_argument(
        "--user-agent",
        metavar="AGENT",
        help="Override the User-Agent header of all HTTP requests.",
    )
    http.add_argument(
        "--http-header",
        metavar="KEY=VALUE",
        type=keyvalue,
        action="append",
        help="Add an HTTP header to all requests. Can be repeated.",
    )
    http.add_argument(
        "--http-proxy",
        metavar="HTTP_PROXY",
        help="An HTTP proxy to use for all HTTP and HTTPS requests.",
    )

    plugin = parser.add_argument_group("Plugin options")
    plugin.add_argument(
        "--twitch-low-latency",
        action="store_true",
        help="Enable low latency streaming on Twitch by playing prefetch segments.",
    )
    plugin.add_argument(
        "--cache",
        action="store_true",
        help="Cache access tokens and manifest URLs on disk to speed up startup.",
    )

    return parser
