class ForsError(Exception):
    """Any error caused by fors will be caught with this exception."""


class PluginError(ForsError):
    """Plugin related error."""


class NoPluginError(PluginError):
    """No relevant plugin has been loaded."""


class NoStreamsError(ForsError):
    def __init__(self, url):
        self.url = url
        err = f"No streams found on this URL: {url}"
        ForsError.__init__(self, err)


class QualityNotFoundError(ForsError):
    def __init__(self, quality: str, available=()):
        self.quality = quality
        self.available = list(available)
        err = f"Quality '{quality}' is not available"
        if self.available:
            err = f"{err} (available: {', '.join(self.available)})"
        ForsError.__init__(self, err)


class StreamError(ForsError):
    """Stream related error."""


class PlaylistError(StreamError, ValueError):
    """The playlist could not be parsed into something playable."""


class NoVariantsError(PlaylistError):
    def __init__(self, message="No playable variants found in playlist"):
        PlaylistError.__init__(self, message)


class NoSegmentsError(PlaylistError):
    def __init__(self, message="No segments found in media playlist"):
        PlaylistError.__init__(self, message)


class ResolveUrlError(PlaylistError):
    def __init__(self, base, uri):
        self.base = base
        self.uri = uri
        PlaylistError.__init__(self, f"Failed to resolve relative URL {uri!r} against {base!r}")


class SegmentDownloadError(StreamError):
    def __init__(self, url, err=None):
        self.url = url
        self.err = err
        message = f"Segment download failed: {url}"
        if err is not None:
            message = f"{message} ({err})"
        StreamError.__init__(self, message)


class WriteError(StreamError):
    """The output sink refused data."""


__all__ = [
    "ForsError",
    "PluginError",
    "NoPluginError",
    "NoStreamsError",
    "QualityNotFoundError",
    "StreamError",
    "PlaylistError",
    "NoVariantsError",
    "NoSegmentsError",
    "ResolveUrlError",
    "SegmentDownloadError",
    "WriteError",
]
