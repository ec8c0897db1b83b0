"""
Embedded-engine backend: runs CommandPlans in-process with PyAV (libav*)
against an in-memory file store, independent of any ffmpeg executable.
"""

import asyncio
import io
import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple

import av
from av.codec.codec import UnknownCodecError
from av.error import FFmpegError
from av.filter import Graph

from .backends import BackendKind, ExecutionContext
from .error_classifier import ErrorClassifier, get_error_classifier
from .filtergraph import FilterGraphError, build_graph, parse_filtergraph
from .models import CommandPlan, ExecutionOutcome, Failure, FailureKind, Success

logger = logging.getLogger(__name__)

# libavcodec's FF_QP2LAMBDA: -q:a / -q:v scale to global_quality
QP2LAMBDA = 118

SWITCH_FLAGS: Set[str] = {"-y", "-n", "-hide_banner", "-nostdin", "-vn", "-an"}

# Flags that take a value; anything else is rejected
VALUE_FLAGS: Set[str] = {
    "-i", "-f", "-ss", "-t", "-framerate", "-loglevel",
    "-c:v", "-c:a", "-vf", "-af", "-lavfi", "-filter_complex",
    "-crf", "-preset", "-b:v", "-b:a", "-r", "-pix_fmt", "-tag:v",
    "-q:a", "-q:v", "-quality", "-abr", "-joint_stereo", "-reservoir",
    "-compression_level", "-gifflags", "-ar", "-ac",
    "-movflags", "-loop", "-frames:v",
}

# Encoder private options passed straight through: flag -> (media, option name)
_CODEC_OPTIONS: Dict[str, Tuple[str, str]] = {
    "-crf": ("video", "crf"),
    "-preset": ("video", "preset"),
    "-quality": ("video", "quality"),
    "-gifflags": ("video", "gifflags"),
    "-abr": ("audio", "abr"),
    "-joint_stereo": ("audio", "joint_stereo"),
    "-reservoir": ("audio", "reservoir"),
    "-compression_level": ("audio", "compression_level"),
}

# output extension -> muxer
_MUXERS: Dict[str, str] = {
    "mp4": "mp4",
    "mov": "mov",
    "mkv": "matroska",
    "webm": "webm",
    "m4a": "ipod",
    "mp3": "mp3",
    "wav": "wav",
    "ogg": "ogg",
    "flac": "flac",
    "aac": "adts",
    "wma": "asf",
    "gif": "gif",
    "webp": "webp",
    "png": "image2pipe",
    "jpg": "image2pipe",
    "jpeg": "image2pipe",
    "bmp": "image2pipe",
}

# muxer -> (default video encoder, default audio encoder)
_DEFAULT_ENCODERS: Dict[str, Tuple[Optional[str], Optional[str]]] = {
    "mp4": ("libx264", "aac"),
    "mov": ("libx264", "aac"),
    "matroska": ("libx264", "aac"),
    "webm": ("libvpx-vp9", "libopus"),
    "ipod": (None, "aac"),
    "mp3": (None, "libmp3lame"),
    "wav": (None, "pcm_s16le"),
    "ogg": (None, "libvorbis"),
    "flac": (None, "flac"),
    "adts": (None, "aac"),
    "asf": (None, "wmav2"),
    "gif": ("gif", None),
    "webp": ("libwebp", None),
    "image2pipe": ("png", None),
}

_IMAGE_ENCODERS_BY_EXTENSION: Dict[str, str] = {
    "png": "png",
    "jpg": "mjpeg",
    "jpeg": "mjpeg",
    "bmp": "bmp",
}

_LAYOUTS = {"1": "mono", "2": "stereo"}

# Native stand-ins for external encoders missing from a libav build
_ENCODER_SUBSTITUTES: Dict[str, Tuple[str, ...]] = {
    "libvorbis": ("vorbis",),
    "libopus": ("opus",),
}

# Native encoders that refuse to open without -strict experimental
_EXPERIMENTAL_ENCODERS: Set[str] = {"vorbis", "opus"}

# The native vorbis encoder only handles two channels
_STEREO_ONLY_ENCODERS: Set[str] = {"vorbis"}

_FPS_IN_GRAPH = re.compile(r"(?:^|[,;\]])\s*fps=(?:fps=)?(\d+(?:[./]\d+)?)")


class EngineError(Exception):
    """The engine could not run an invocation."""


class EngineUnavailableError(EngineError):
    """The engine failed to load; it stays unavailable for the process lifetime."""


def parse_bitrate(value: str) -> int:
    """'128k' -> 128000, '1M' -> 1000000."""
    value = value.strip()
    multiplier = 1
    if value[-1:].lower() == "k":
        multiplier, value = 1000, value[:-1]
    elif value[-1:].lower() == "m":
        multiplier, value = 1000000, value[:-1]
    try:
        return int(float(value) * multiplier)
    except ValueError:
        raise EngineError(f"Invalid bitrate: {value!r}")


def _parse_rate(value: str) -> Fraction:
    try:
        rate = Fraction(value)
    except (ValueError, ZeroDivisionError):
        raise EngineError(f"Invalid frame rate: {value!r}")
    if rate <= 0:
        raise EngineError(f"Invalid frame rate: {value!r}")
    return rate


def _seconds(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        raise EngineError(f"Invalid time value: {value!r}")


def resolve_encoder(name: str) -> str:
    """
    The encoder to open for `name`: itself when this libav build has it,
    otherwise the first native substitute that exists.

    Raises EngineError when neither is available.
    """
    for candidate in (name,) + _ENCODER_SUBSTITUTES.get(name, ()):
        try:
            av.Codec(candidate, "w")
        except UnknownCodecError:
            continue
        if candidate != name:
            logger.debug(f"[Engine] {name} not built in, encoding with {candidate}")
        return candidate
    raise EngineError(f"Encoder unavailable in this build: {name}")


@dataclass
class EngineInvocation:
    """An ffmpeg-style argument list, parsed."""
    input_name: str
    output_name: str
    input_options: Dict[str, str] = field(default_factory=dict)
    options: Dict[str, str] = field(default_factory=dict)
    switches: Set[str] = field(default_factory=set)

    @classmethod
    def parse(cls, args: List[str]) -> "EngineInvocation":
        input_name: Optional[str] = None
        output_name: Optional[str] = None
        pending: Dict[str, str] = {}
        input_options: Dict[str, str] = {}
        switches: Set[str] = set()

        i = 0
        while i < len(args):
            arg = args[i]
            if arg in SWITCH_FLAGS:
                switches.add(arg)
                i += 1
                continue

            if arg.startswith("-") and len(arg) > 1:
                if arg not in VALUE_FLAGS:
                    raise EngineError(f"Unsupported option: {arg}")
                if i + 1 >= len(args):
                    raise EngineError(f"Option {arg} is missing its value")
                value = args[i + 1]
                if arg == "-i":
                    if input_name is not None:
                        raise EngineError("Only a single input is supported")
                    input_name = value
                    input_options, pending = pending, {}
                else:
                    pending[arg] = value
                i += 2
                continue

            if output_name is not None:
                raise EngineError(f"Unexpected argument: {arg}")
            output_name = arg
            i += 1

        if input_name is None:
            raise EngineError("No input given")
        if output_name is None:
            raise EngineError("No output given")

        for flag in ("-vf", "-af", "-lavfi", "-filter_complex"):
            if flag in pending:
                try:
                    parse_filtergraph(pending[flag])
                except FilterGraphError as e:
                    raise EngineError(f"Invalid filtergraph for {flag}: {e}")

        return cls(
            input_name=input_name,
            output_name=output_name,
            input_options=input_options,
            options=pending,
            switches=switches,
        )

    @property
    def output_extension(self) -> str:
        return self.output_name.rsplit(".", 1)[-1].lower() if "." in self.output_name else ""

    @property
    def video_filter(self) -> Optional[str]:
        graph = self.options.get("-vf") or self.options.get("-lavfi") or self.options.get("-filter_complex")
        rate = self.options.get("-r")
        if rate:
            graph = f"{graph},fps={rate}" if graph else f"fps={rate}"
        return graph

    @property
    def audio_filter(self) -> Optional[str]:
        return self.options.get("-af")


class _FilterPipe:
    """A lazily built single-input libavfilter graph."""

    def __init__(self, description: Optional[str], media: str):
        self.description = description
        self.media = media
        self._graph: Optional[Graph] = None

    def _build(self, frame) -> None:
        graph = Graph()
        if self.media == "video":
            source = graph.add_buffer(
                width=frame.width,
                height=frame.height,
                format=frame.format.name,
                time_base=frame.time_base or Fraction(1, 25),
            )
            sink = graph.add("buffersink")
        else:
            source = graph.add_abuffer(
                sample_rate=frame.sample_rate,
                format=frame.format.name,
                layout=frame.layout.name,
                time_base=frame.time_base or Fraction(1, frame.sample_rate),
            )
            sink = graph.add("abuffersink")
        build_graph(graph, source, sink, self.description)
        graph.configure()
        self._graph = graph

    def process(self, frame) -> List:
        """Push a frame (None to flush) and collect everything ready."""
        if not self.description:
            return [frame] if frame is not None else []
        if self._graph is None:
            if frame is None:
                return []
            self._build(frame)

        self._graph.push(frame)
        ready = []
        while True:
            try:
                ready.append(self._graph.pull())
            except (BlockingIOError, EOFError):
                break
        return ready


class _Muxer:
    """Holds packets until every output stream can write its header."""

    def __init__(self, container, wait_for_video: bool):
        self.container = container
        self.ready = not wait_for_video
        self._pending: List = []

    def mux(self, packets) -> None:
        if not self.ready:
            self._pending.extend(packets)
            return
        for packet in packets:
            self.container.mux(packet)

    def release(self) -> None:
        self.ready = True
        pending, self._pending = self._pending, []
        for packet in pending:
            self.container.mux(packet)


class EmbeddedEngine:
    """
    In-process libav engine.

    One instance per process (see `instance()`); `load()` runs once behind an
    asyncio lock and a failed load is remembered. Files live in a named
    in-memory store shared by all jobs, so callers must use names unique to
    their job.
    """

    _instance: Optional["EmbeddedEngine"] = None
    _instance_lock = threading.Lock()

    REQUIRED_FILTERS = ("buffer", "buffersink", "abuffer", "abuffersink")

    def __init__(self, threads: int = 2):
        self.threads = threads
        self._files: Dict[str, bytes] = {}
        self._files_lock = threading.Lock()
        self._load_lock = asyncio.Lock()
        self._loaded = False
        self._closed = False
        self._load_error: Optional[str] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self.load_count = 0

    @classmethod
    def instance(cls, threads: int = 2) -> "EmbeddedEngine":
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls(threads=threads)
            return cls._instance

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        async with self._load_lock:
            if self._closed:
                raise EngineUnavailableError("Embedded engine has been shut down")
            if self._loaded:
                return
            if self._load_error is not None:
                raise EngineUnavailableError(self._load_error)

            self.load_count += 1
            try:
                self._initialise()
            except Exception as e:
                self._load_error = f"Embedded engine failed to load: {e}"
                logger.error(f"[Engine] {self._load_error}")
                raise EngineUnavailableError(self._load_error)

            self._executor = ThreadPoolExecutor(
                max_workers=self.threads, thread_name_prefix="mediashift_engine"
            )
            self._loaded = True

    def _initialise(self) -> None:
        from av.filter import filters_available

        missing = [name for name in self.REQUIRED_FILTERS if name not in filters_available]
        if missing:
            raise EngineError(f"libavfilter lacks {', '.join(missing)}")

        versions = ", ".join(
            f"{lib} {'.'.join(str(v) for v in version)}"
            for lib, version in sorted(av.library_versions.items())
        )
        logger.info(f"[Engine] Loaded PyAV {av.__version__} ({versions})")

    @property
    def closed(self) -> bool:
        return self._closed

    def shutdown(self) -> None:
        """
        Release the worker threads. Terminal: the engine never loads again,
        and `instance()` hands out a fresh engine afterwards.
        """
        self._closed = True
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None
        with self._instance_lock:
            if EmbeddedEngine._instance is self:
                EmbeddedEngine._instance = None

    # -- named buffer store -------------------------------------------------

    def write_file(self, name: str, data: bytes) -> None:
        with self._files_lock:
            self._files[name] = bytes(data)

    def read_file(self, name: str) -> Optional[bytes]:
        with self._files_lock:
            return self._files.get(name)

    def delete_file(self, name: str) -> None:
        with self._files_lock:
            self._files.pop(name, None)

    def list_files(self) -> List[str]:
        with self._files_lock:
            return sorted(self._files)

    def _sequence(self, pattern: str) -> List[bytes]:
        """Inputs matching a printf-style frame pattern, in frame order."""
        regex = re.escape(pattern)
        regex = re.sub(r"%0(\d+)d", lambda m: rf"(\d{{{m.group(1)}}})", regex)
        regex = regex.replace("%d", r"(\d+)")
        matcher = re.compile(f"^{regex}$")

        with self._files_lock:
            matches = [
                (int(m.group(1)), data)
                for name, data in self._files.items()
                for m in [matcher.match(name)] if m
            ]
        return [data for _, data in sorted(matches, key=lambda item: item[0])]

    # -- execution ------------------------------------------------------------

    async def exec(self, args: List[str], progress: Optional[Callable[[float], None]] = None) -> None:
        """Run an ffmpeg-style argument list against the in-memory store."""
        if self._closed or not self._loaded:
            await self.load()

        invocation = EngineInvocation.parse(args)
        loop = asyncio.get_running_loop()

        def report(fraction: float) -> None:
            if progress:
                loop.call_soon_threadsafe(progress, fraction)

        logger.debug(f"[Engine] exec {' '.join(args)}")
        await loop.run_in_executor(self._executor, self._run, invocation, report)

    def _run(self, inv: EngineInvocation, report: Callable[[float], None]) -> None:
        try:
            data = _Transcode(self, inv, report).run()
        except EngineError:
            raise
        except (FFmpegError, FilterGraphError, ValueError, TypeError) as e:
            raise EngineError(str(e)) from e
        self.write_file(inv.output_name, data)


class _Transcode:
    """One engine run: decode, filter, encode, mux."""

    def __init__(self, engine: EmbeddedEngine, inv: EngineInvocation, report: Callable[[float], None]):
        self.engine = engine
        self.inv = inv
        self.report = report
        opts = inv.options

        self.start = _seconds(opts.get("-ss") or inv.input_options.get("-ss")) or 0.0
        limit = _seconds(opts.get("-t") or inv.input_options.get("-t"))
        self.end = self.start + limit if limit is not None else None
        self.max_frames = int(opts["-frames:v"]) if "-frames:v" in opts else None

        extension = inv.output_extension
        self.muxer = opts.get("-f") or _MUXERS.get(extension)
        if not self.muxer:
            raise EngineError(f"Cannot infer an output format for {inv.output_name!r}")
        if self.muxer not in _DEFAULT_ENCODERS:
            raise EngineError(f"Unsupported output format: {self.muxer}")

        default_video, default_audio = _DEFAULT_ENCODERS[self.muxer]
        if self.muxer == "image2pipe":
            default_video = _IMAGE_ENCODERS_BY_EXTENSION.get(extension, default_video)
        self.video_encoder = opts.get("-c:v") or default_video
        self.audio_encoder = opts.get("-c:a") or default_audio
        if default_video is None:
            self.video_encoder = None
        if default_audio is None:
            self.audio_encoder = None
        if "-vn" in inv.switches:
            self.video_encoder = None
        if "-an" in inv.switches:
            self.audio_encoder = None

    # -- sources --------------------------------------------------------------

    def _input_bytes(self) -> bytes:
        data = self.engine.read_file(self.inv.input_name)
        if data is None:
            raise EngineError(f"No such input: {self.inv.input_name}")
        return data

    def _sequence_frames(self, frames_data: List[bytes], rate: Fraction) -> Iterator[Tuple[str, object]]:
        time_base = 1 / rate
        first = None
        for index, data in enumerate(frames_data):
            with av.open(io.BytesIO(data), mode="r") as container:
                frame = next(container.decode(video=0), None)
            if frame is None:
                raise EngineError(f"Frame {index + 1} of the sequence has no image")
            if first is None:
                first = frame
            elif (frame.width, frame.height, frame.format.name) != (first.width, first.height, first.format.name):
                frame = frame.reformat(width=first.width, height=first.height, format=first.format.name)
            frame.pts = index
            frame.time_base = time_base
            self.report(min(0.99, (index + 1) / len(frames_data)))
            yield "video", frame

    def _in_range(self, time: Optional[float]) -> int:
        """-1 before the window, 0 inside, 1 past it."""
        if time is None:
            return 0
        if time < self.start:
            return -1
        if self.end is not None and time >= self.end:
            return 1
        return 0

    def _shift(self, frame) -> None:
        if self.start and frame.pts is not None and frame.time_base:
            frame.pts -= int(self.start / frame.time_base)

    def _container_items(self, container, duration: Optional[float]) -> Iterator[Tuple[str, object]]:
        streams = []
        video_in = container.streams.video[0] if container.streams.video and self.video_encoder else None
        audio_in = container.streams.audio[0] if container.streams.audio and self.audio_encoder else None
        for stream in (video_in, audio_in):
            if stream is not None:
                stream.thread_type = "AUTO"
                streams.append(stream)
        if not streams:
            raise EngineError("Input has no stream usable for this output")

        copy_audio = self.audio_encoder == "copy"
        window = (self.end - self.start) if self.end is not None else None
        total = min(duration, window) if duration and window else (duration or window)
        done: Set[str] = set()

        for packet in container.demux(*streams):
            media = packet.stream.type
            if media in done:
                continue

            if media == "audio" and copy_audio:
                if packet.dts is None:
                    continue
                position = self._in_range(float(packet.pts * packet.time_base) if packet.pts is not None else None)
                if position > 0:
                    done.add(media)
                elif position == 0:
                    yield "audio_packet", packet
                continue

            for frame in packet.decode():
                position = self._in_range(frame.time)
                if position < 0:
                    continue
                if position > 0:
                    done.add(media)
                    break
                self._shift(frame)
                if total and frame.time is not None and media == (video_in or audio_in).type:
                    self.report(min(0.99, max(0.0, frame.time) / total))
                yield media, frame

            if len(done) == len(streams):
                break

    # -- run ----------------------------------------------------------------------

    def run(self) -> bytes:
        inv = self.inv
        output = io.BytesIO()

        if "%" in inv.input_name:
            frames_data = self.engine._sequence(inv.input_name)
            if not frames_data:
                raise EngineError(f"No inputs match {inv.input_name}")
            rate = _parse_rate(inv.input_options.get("-framerate", "25"))
            self.audio_encoder = None
            return self._encode(self._sequence_frames(frames_data, rate), rate, None, output)

        input_format = inv.input_options.get("-f")
        with av.open(io.BytesIO(self._input_bytes()), mode="r", format=input_format) as container:
            duration = container.duration / av.time_base if container.duration else None
            video_in = container.streams.video[0] if container.streams.video else None
            audio_in = container.streams.audio[0] if container.streams.audio else None
            if video_in is None:
                self.video_encoder = None
            if audio_in is None:
                self.audio_encoder = None

            rate = None
            if video_in is not None:
                rate = video_in.average_rate or video_in.guessed_rate or Fraction(25)
            return self._encode(self._container_items(container, duration), rate, audio_in, output)

    def _output_rate(self, input_rate: Optional[Fraction]) -> Fraction:
        if "-r" in self.inv.options:
            return _parse_rate(self.inv.options["-r"])
        graph = self.inv.video_filter or ""
        matches = _FPS_IN_GRAPH.findall(graph)
        if matches:
            return _parse_rate(matches[-1])
        return Fraction(input_rate) if input_rate else Fraction(25)

    def _encode(self, items: Iterator[Tuple[str, object]], input_rate, audio_in, output: io.BytesIO) -> bytes:
        inv = self.inv
        opts = inv.options

        container_options: Dict[str, str] = {}
        if "-loop" in opts:
            container_options["loop"] = opts["-loop"]
        if "-movflags" in opts:
            # moov relocation reopens the output by URL, which an in-memory file cannot do
            logger.debug(f"[Engine] Ignoring -movflags {opts['-movflags']} for in-memory output")

        out = av.open(output, mode="w", format=self.muxer, options=container_options)
        try:
            video_out = self._add_video_stream(out, input_rate) if self.video_encoder else None
            audio_out = self._add_audio_stream(out, audio_in) if self.audio_encoder else None
            if video_out is None and audio_out is None:
                raise EngineError("Output would contain no streams")

            muxer = _Muxer(out, wait_for_video=video_out is not None)
            video_pipe = _FilterPipe(inv.video_filter, "video")
            audio_pipe = _FilterPipe(inv.audio_filter, "audio")
            resampler = None
            if audio_out is not None and self.audio_encoder != "copy":
                ctx = audio_out.codec_context
                resampler = av.AudioResampler(
                    format=ctx.format.name, layout=ctx.layout.name, rate=ctx.sample_rate
                )
            video_index = 0
            audio_in_samples = 0
            audio_samples = 0
            video_done = False

            def encode_video(frames) -> None:
                nonlocal video_index, video_done
                for frame in frames:
                    if video_done:
                        return
                    if not muxer.ready:
                        self._configure_video(video_out, frame)
                    frame.pts = video_index
                    frame.time_base = video_out.codec_context.time_base
                    video_index += 1
                    packets = video_out.encode(frame)
                    if not muxer.ready:
                        muxer.release()
                    muxer.mux(packets)
                    if self.max_frames is not None and video_index >= self.max_frames:
                        video_done = True

            def encode_audio(frames) -> None:
                # None in `frames` drains the resampler
                nonlocal audio_in_samples, audio_samples
                for frame in frames:
                    if frame is not None:
                        frame.pts = audio_in_samples
                        frame.time_base = Fraction(1, frame.sample_rate)
                        audio_in_samples += frame.samples
                    for converted in resampler.resample(frame):
                        converted.pts = audio_samples
                        converted.time_base = Fraction(1, converted.sample_rate)
                        audio_samples += converted.samples
                        muxer.mux(audio_out.encode(converted))

            for media, item in items:
                if media == "video" and video_out is not None and not video_done:
                    encode_video(video_pipe.process(item))
                elif media == "audio" and audio_out is not None:
                    encode_audio(audio_pipe.process(item))
                elif media == "audio_packet" and audio_out is not None:
                    item.stream = audio_out
                    muxer.mux([item])
                if video_done and audio_out is None:
                    break

            if video_out is not None:
                encode_video(video_pipe.process(None))
                if not muxer.ready:
                    raise EngineError("No video frames were produced")
                muxer.mux(video_out.encode(None))
            if audio_out is not None and self.audio_encoder != "copy":
                encode_audio(audio_pipe.process(None) + [None])
                muxer.mux(audio_out.encode(None))
            muxer.release()
        finally:
            out.close()

        return output.getvalue()

    def _add_video_stream(self, out, input_rate):
        opts = self.inv.options
        rate = self._output_rate(input_rate)
        encoder = resolve_encoder(self.video_encoder)
        stream = out.add_stream(encoder, rate=rate, options=self._codec_options("video", encoder))
        # Frames are stamped in this time base before the encoder opens
        stream.codec_context.time_base = 1 / rate
        if "-b:v" in opts:
            stream.codec_context.bit_rate = parse_bitrate(opts["-b:v"])
        if "-tag:v" in opts:
            stream.codec_context.codec_tag = opts["-tag:v"]
        return stream

    def _add_audio_stream(self, out, audio_in):
        opts = self.inv.options
        if self.audio_encoder == "copy":
            if audio_in is None:
                raise EngineError("Nothing to copy: input has no audio")
            return out.add_stream_from_template(audio_in)

        encoder = resolve_encoder(self.audio_encoder)
        codec = av.Codec(encoder, "w")
        rate = int(opts["-ar"]) if "-ar" in opts else (audio_in.rate if audio_in is not None else 44100)
        supported_rates = codec.audio_rates
        if supported_rates and rate not in supported_rates:
            rate = min(supported_rates, key=lambda r: abs(r - rate))

        stream = out.add_stream(encoder, rate=rate, options=self._codec_options("audio", encoder))
        ctx = stream.codec_context
        ctx.time_base = Fraction(1, rate)

        layout = "stereo"
        if "-ac" in opts:
            layout = _LAYOUTS.get(opts["-ac"])
            if layout is None:
                raise EngineError(f"Unsupported channel count: {opts['-ac']}")
        elif audio_in is not None and audio_in.layout is not None:
            # WAV without a channel mask reports "2 channels", which encoders refuse
            layout = _LAYOUTS.get(str(audio_in.layout.nb_channels), "stereo")
        if encoder in _STEREO_ONLY_ENCODERS:
            layout = "stereo"
        ctx.layout = layout

        # Keep the source sample format when the encoder takes it, else its preferred one
        supported_formats = [fmt.name for fmt in (codec.audio_formats or [])]
        source_format = audio_in.format.name if audio_in is not None and audio_in.format is not None else None
        if supported_formats:
            ctx.format = source_format if source_format in supported_formats else supported_formats[0]
        elif source_format:
            ctx.format = source_format

        if "-b:a" in opts:
            ctx.bit_rate = parse_bitrate(opts["-b:a"])
        return stream

    def _codec_options(self, media: str, encoder: str) -> Dict[str, str]:
        opts = self.inv.options
        options = {
            name: opts[flag]
            for flag, (kind, name) in _CODEC_OPTIONS.items()
            if kind == media and flag in opts
        }
        if encoder in _EXPERIMENTAL_ENCODERS:
            options["strict"] = "experimental"
        scale_flag = "-q:v" if media == "video" else "-q:a"
        if scale_flag in opts:
            options["flags"] = "+qscale"
            options["global_quality"] = str(int(float(opts[scale_flag]) * QP2LAMBDA))
        return options

    def _configure_video(self, stream, frame) -> None:
        stream.width = frame.width
        stream.height = frame.height
        requested = self.inv.options.get("-pix_fmt")
        if requested:
            stream.pix_fmt = requested
            return
        supported = [fmt.name for fmt in (stream.codec_context.codec.video_formats or [])]
        if not supported or frame.format.name in supported:
            stream.pix_fmt = frame.format.name
        else:
            stream.pix_fmt = supported[0]


class EmbeddedEngineBackend:
    """Runs a CommandPlan on the shared EmbeddedEngine."""

    kind = BackendKind.EMBEDDED_ENGINE

    def __init__(self, engine: Optional[EmbeddedEngine] = None, classifier: Optional[ErrorClassifier] = None):
        self.engine = engine or EmbeddedEngine.instance()
        self.classifier = classifier or get_error_classifier()

    async def execute(self, plan: CommandPlan, context: ExecutionContext) -> ExecutionOutcome:
        try:
            await self.engine.load()
        except EngineUnavailableError as e:
            return Failure(FailureKind.ENGINE_UNAVAILABLE, str(e))

        prefix = f"{context.job_id}_"
        created: List[str] = []
        try:
            for name, data in context.layout.inputs:
                self.engine.write_file(prefix + name, data)
                created.append(prefix + name)

            output_name = prefix + context.layout.output_name
            created.append(output_name)

            args = plan.to_args(prefix + context.layout.input_ref, output_name)
            await self.engine.exec(args, context.progress.report)

            data = self.engine.read_file(output_name)
            if not data:
                return Failure(FailureKind.NO_OUTPUT, "No output was produced")
            return Success(data)
        except Exception as e:
            reason = self.classifier.summarize(str(e)) if str(e) else type(e).__name__
            logger.warning(f"[Engine] Job {context.job_id} failed: {reason}")
            return Failure(FailureKind.ENGINE_ERROR, reason)
        finally:
            for name in created:
                self.engine.delete_file(name)
