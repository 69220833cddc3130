"""
fors extracts live HLS streams from Twitch and YouTube and writes them to a file or stdout,
skipping the advertisements stitched into Twitch streams.
"""

__version__ = "0.1.0"

from fors.exceptions import (
    ForsError,
    NoPluginError,
    NoStreamsError,
    PluginError,
    QualityNotFoundError,
    StreamError,
)
from fors.session import Fors
