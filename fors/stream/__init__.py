from fors.stream.hls import HLSStream
from fors.stream.stream import Stream
