from fors.stream.hls.hls import HLSStream, HLSStreamWorker, HLSStreamWriter, stream_to_writer
from fors.stream.hls.m3u8 import parse_attribute_line, parse_master_playlist, parse_media_playlist
from fors.stream.hls.policy import AdPolicy, TwitchHLSPolicy
from fors.stream.hls.quality import select_variant, sorted_variants
from fors.stream.hls.segment import MediaPlaylist, MediaSegment, StreamVariant
