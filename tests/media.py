"""
Synthetic sample media built in memory with PyAV.

Nothing here needs an ffmpeg executable: frames come from libavfilter's
testsrc/sine sources and are encoded with codecs every PyAV build ships.
Samples are cached per process since they never change.
"""

import io
from fractions import Fraction
from typing import Dict, List, Optional, Tuple

import av
from av.filter import Graph

WIDTH, HEIGHT = 160, 120
FRAME_RATE = 10
SAMPLE_RATE = 44100
SECONDS = 1

_cache: Dict[str, bytes] = {}
_still_cache: Dict[int, List[bytes]] = {}


def _generate(source: str, args: str, sink: str) -> List:
    """Pull every frame a source filter produces."""
    graph = Graph()
    src = graph.add(source, args)
    out = graph.add(sink)
    src.link_to(out)
    graph.configure()

    frames = []
    while True:
        try:
            frames.append(out.pull())
        except (EOFError, BlockingIOError):
            break
    return frames


def video_frames(seconds: int = SECONDS) -> List:
    return _generate("testsrc", f"duration={seconds}:size={WIDTH}x{HEIGHT}:rate={FRAME_RATE}", "buffersink")


def audio_frames(seconds: int = SECONDS) -> List:
    return _generate("sine", f"frequency=440:duration={seconds}:sample_rate={SAMPLE_RATE}", "abuffersink")


def _add_video(container, codec: str, pix_fmt: str):
    stream = container.add_stream(codec, rate=FRAME_RATE)
    stream.width = WIDTH
    stream.height = HEIGHT
    stream.pix_fmt = pix_fmt
    stream.codec_context.time_base = Fraction(1, FRAME_RATE)
    return stream


def _write_video(container, stream, frames: List, pix_fmt: str) -> None:
    for index, frame in enumerate(frames):
        frame = frame.reformat(format=pix_fmt)
        frame.pts = index
        frame.time_base = Fraction(1, FRAME_RATE)
        container.mux(stream.encode(frame))
    container.mux(stream.encode(None))


def _add_audio(container, codec: str, sample_format: str, layout: str):
    stream = container.add_stream(codec, rate=SAMPLE_RATE)
    stream.codec_context.layout = layout
    stream.codec_context.format = sample_format
    stream.codec_context.time_base = Fraction(1, SAMPLE_RATE)
    return stream


def _write_audio(container, stream, frames: List, sample_format: str, layout: str) -> None:
    resampler = av.AudioResampler(format=sample_format, layout=layout, rate=SAMPLE_RATE)
    samples = 0
    for frame in frames + [None]:
        for converted in resampler.resample(frame):
            converted.pts = samples
            converted.time_base = Fraction(1, SAMPLE_RATE)
            samples += converted.samples
            container.mux(stream.encode(converted))
    container.mux(stream.encode(None))


def _container_bytes(fmt: str, build) -> bytes:
    buffer = io.BytesIO()
    container = av.open(buffer, mode="w", format=fmt)
    try:
        build(container)
    finally:
        container.close()
    return buffer.getvalue()


def mp4_clip() -> bytes:
    """MPEG-4 video with a mono AAC tone."""
    if "mp4" not in _cache:
        def build(container):
            video = _add_video(container, "mpeg4", "yuv420p")
            audio = _add_audio(container, "aac", "fltp", "mono")
            _write_video(container, video, video_frames(), "yuv420p")
            _write_audio(container, audio, audio_frames(), "fltp", "mono")

        _cache["mp4"] = _container_bytes("mp4", build)
    return _cache["mp4"]


def wav_clip() -> bytes:
    """Stereo 16-bit PCM."""
    if "wav" not in _cache:
        def build(container):
            audio = _add_audio(container, "pcm_s16le", "s16", "stereo")
            _write_audio(container, audio, audio_frames(), "s16", "stereo")

        _cache["wav"] = _container_bytes("wav", build)
    return _cache["wav"]


def mp3_clip() -> bytes:
    if "mp3" not in _cache:
        def build(container):
            audio = _add_audio(container, "libmp3lame", "fltp", "stereo")
            audio.codec_context.bit_rate = 128000
            _write_audio(container, audio, audio_frames(), "fltp", "stereo")

        _cache["mp3"] = _container_bytes("mp3", build)
    return _cache["mp3"]


def gif_clip() -> bytes:
    if "gif" not in _cache:
        def build(container):
            video = _add_video(container, "gif", "rgb8")
            _write_video(container, video, video_frames(), "rgb8")

        _cache["gif"] = _container_bytes("gif", build)
    return _cache["gif"]


def png_frames(count: int = 3) -> List[bytes]:
    """Distinct stills taken from the test pattern."""
    if count not in _still_cache:
        images = []
        for index, frame in enumerate(video_frames()[:count]):
            encoder = av.CodecContext.create("png", "w")
            encoder.width = WIDTH
            encoder.height = HEIGHT
            encoder.pix_fmt = "rgb24"
            encoder.time_base = Fraction(1, FRAME_RATE)
            frame = frame.reformat(format="rgb24")
            frame.pts = index
            packets = encoder.encode(frame) + encoder.encode(None)
            images.append(b"".join(bytes(packet) for packet in packets))
        _still_cache[count] = images
    return list(_still_cache[count])


# sample name -> (filename, content type, generator)
SAMPLES = {
    "mp4": ("clip.mp4", "video/mp4", mp4_clip),
    "wav": ("tone.wav", "audio/wav", wav_clip),
    "mp3": ("tone.mp3", "audio/mpeg", mp3_clip),
    "gif": ("anim.gif", "image/gif", gif_clip),
    "png": ("still.png", "image/png", lambda: png_frames(1)[0]),
}

# (operation, sample name, options); "png_sequence" means three stills
ROUND_TRIPS: List[Tuple[str, str, Dict[str, str]]] = [
    ("compress-video", "mp4", {}),
    ("compress-video", "mp4", {"quality": "low", "resolution": "360p", "fps": "15"}),
    ("convert-video", "mp4", {"video_codec": "h264", "audio_codec": "aac"}),
    ("compress-audio", "mp3", {"encoding_mode": "vbr"}),
    ("compress-wav", "wav", {}),
    ("compress-wav", "wav", {"compression_type": "convert", "mp3_bitrate": "128"}),
    ("compress-gif", "gif", {"fps": "5", "scale": "50", "colors": "32"}),
    ("convert-audio", "wav", {"target_format": "mp3"}),
    ("convert-audio", "wav", {"target_format": "mp3", "normalize": "true"}),
    ("convert-audio", "mp3", {"target_format": "ogg"}),
    ("convert-audio", "mp3", {"target_format": "flac", "channels": "mono"}),
    ("extract-audio", "mp4", {}),
    ("extract-audio", "mp4", {"start_time": "0.2", "duration": "0.5"}),
    ("video-to-gif", "mp4", {"width": "240", "fps": "5", "max_duration": "3"}),
    ("gif-to-video", "gif", {}),
    ("image-sequence-to-gif", "png_sequence", {"delay": "100"}),
    ("raster-convert", "png", {"target_format": "jpg"}),
    ("raster-convert", "png", {"target_format": "bmp", "resolution": "360p"}),
]


def sources_for(sample: str) -> List[Tuple[str, bytes, str]]:
    """(filename, data, content type) for each upload of a sample."""
    if sample == "png_sequence":
        return [(f"shot{i + 1}.png", data, "image/png") for i, data in enumerate(png_frames(3))]
    filename, content_type, generate = SAMPLES[sample]
    return [(filename, generate(), content_type)]


def stream_counts(data: bytes, fmt: Optional[str] = None) -> Tuple[int, int]:
    """(video stream count, audio stream count) of an encoded file."""
    with av.open(io.BytesIO(data), mode="r", format=fmt) as container:
        return len(container.streams.video), len(container.streams.audio)
