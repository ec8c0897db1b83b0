"""
FFmpeg command planning for every operation kind.

Builders are pure: the same operation and options always yield the same
CommandPlan, and nothing here touches the filesystem or spawns processes.
"""

import logging
from typing import Callable, Dict, List, Mapping, Optional

from ..errors import ConfigurationError, ValidationError
from .constants import (
    AUDIO_BITRATE_BY_TIER,
    AUDIO_TARGETS,
    CHANNEL_COUNTS,
    DEFAULT_AUDIO_BITRATE,
    EVEN_DIMENSIONS_FILTER,
    JPEG_QSCALE_BY_TIER,
    LOUDNORM_FILTER,
    MP3_VBR_BY_BITRATE,
    MP3_VBR_BY_TIER,
    PALETTE_FILTER,
    PCM_CODEC_BY_DEPTH,
    RASTER_TARGETS,
    RESOLUTION_MAP,
    VIDEO_AUDIO_ENCODERS,
    VIDEO_CRF,
    VIDEO_ENCODERS,
    VORBIS_QUALITY_BY_TIER,
    WEBP_QUALITY_BY_TIER,
)
from .models import (
    INPUT,
    OUTPUT,
    CommandPlan,
    Directive,
    DirectiveStage,
    OperationKind,
)
from .operations import get_operation

logger = logging.getLogger(__name__)

Options = Dict[str, Optional[str]]


class _PlanWriter:
    """Accumulates directives in emission order."""

    def __init__(self, operation: OperationKind):
        self.operation = operation
        self._directives: List[Directive] = []
        self.add(DirectiveStage.GLOBAL, "-y")
        self.add(DirectiveStage.GLOBAL, "-hide_banner")

    def add(self, stage: DirectiveStage, flag: Optional[str], value=None) -> "_PlanWriter":
        self._directives.append(Directive(flag, value, stage))
        return self

    def input(self) -> "_PlanWriter":
        return self.add(DirectiveStage.INPUT, "-i", INPUT)

    def codec(self, flag: str, value: Optional[str] = None) -> "_PlanWriter":
        return self.add(DirectiveStage.CODEC, flag, value)

    def quality(self, flag: str, value: str) -> "_PlanWriter":
        return self.add(DirectiveStage.QUALITY, flag, value)

    def filter(self, flag: str, graph: str) -> "_PlanWriter":
        return self.add(DirectiveStage.FILTER, flag, graph)

    def output(self, flag: str, value: str) -> "_PlanWriter":
        return self.add(DirectiveStage.OUTPUT, flag, value)

    def finish(self, extension: str, mime_type: str) -> CommandPlan:
        self.add(DirectiveStage.OUTPUT, None, OUTPUT)
        return CommandPlan(
            operation=self.operation,
            directives=tuple(self._directives),
            output_extension=extension,
            output_mime_type=mime_type,
        )


def _scale_filter(resolution: Optional[str]) -> Optional[str]:
    if not resolution or resolution == "original":
        return None
    width, height = RESOLUTION_MAP[resolution]
    return f"scale={width}:{height}"


def _palette(colors: int = 256) -> str:
    return PALETTE_FILTER.format(colors=colors)


def _frame_rate_fraction(delay_ms: str) -> str:
    return f"1000/{delay_ms}"


def _loop_value(loop: Optional[str]) -> str:
    # gif muxer: 0 loops forever, -1 plays once
    return "0" if loop == "true" else "-1"


def _lame_rate_control(plan: _PlanWriter, mode: str, bitrate: str, vbr_quality: str) -> None:
    if mode == "vbr":
        plan.quality("-q:a", vbr_quality)
    elif mode == "abr":
        plan.quality("-abr", "1")
        plan.quality("-b:a", f"{bitrate}k")
        plan.quality("-joint_stereo", "1")
    else:
        plan.quality("-b:a", f"{bitrate}k")
        plan.quality("-joint_stereo", "1")


# ---------------------------------------------------------------------------
# Per-operation builders
# ---------------------------------------------------------------------------

def _compress_video(plan: _PlanWriter, opts: Options, source_format: Optional[str]) -> CommandPlan:
    plan.input()
    plan.codec("-c:v", VIDEO_ENCODERS["h264"])
    plan.codec("-c:a", "aac")
    plan.quality("-crf", VIDEO_CRF[opts["quality"]])
    if opts["bitrate"] != "auto":
        plan.quality("-b:v", opts["bitrate"])
    if opts["fps"] != "original":
        plan.quality("-r", opts["fps"])
    plan.quality("-pix_fmt", "yuv420p")
    plan.quality("-b:a", DEFAULT_AUDIO_BITRATE)
    scale = _scale_filter(opts["resolution"])
    if scale:
        plan.filter("-vf", scale)
    plan.output("-movflags", "+faststart")
    return plan.finish("mp4", "video/mp4")


def _convert_video(plan: _PlanWriter, opts: Options, source_format: Optional[str]) -> CommandPlan:
    plan.input()
    plan.codec("-c:v", VIDEO_ENCODERS[opts["video_codec"]])
    if opts["video_codec"] == "h265":
        # Apple players only accept the hvc1 sample entry
        plan.codec("-tag:v", "hvc1")
    plan.codec("-c:a", VIDEO_AUDIO_ENCODERS[opts["audio_codec"]])
    plan.quality("-crf", VIDEO_CRF[opts["quality"]])
    if opts["bitrate"] != "auto":
        plan.quality("-b:v", opts["bitrate"])
    if opts["fps"] != "original":
        plan.quality("-r", opts["fps"])
    plan.quality("-pix_fmt", "yuv420p")
    if opts["audio_codec"] != "copy":
        plan.quality("-b:a", DEFAULT_AUDIO_BITRATE)
    scale = _scale_filter(opts["resolution"])
    if scale:
        plan.filter("-vf", scale)
    plan.output("-movflags", "+faststart")
    return plan.finish("mp4", "video/mp4")


def _compress_audio(plan: _PlanWriter, opts: Options, source_format: Optional[str]) -> CommandPlan:
    plan.input()
    plan.codec("-vn")
    plan.codec("-c:a", "libmp3lame")
    _lame_rate_control(plan, opts["encoding_mode"], opts["bitrate"], MP3_VBR_BY_TIER[opts["quality"]])
    return plan.finish("mp3", "audio/mpeg")


def _compress_wav(plan: _PlanWriter, opts: Options, source_format: Optional[str]) -> CommandPlan:
    plan.input()
    plan.codec("-vn")
    if opts["compression_type"] == "convert":
        bitrate = opts["mp3_bitrate"]
        plan.codec("-c:a", "libmp3lame")
        _lame_rate_control(plan, opts["mp3_encoding_mode"], bitrate, MP3_VBR_BY_BITRATE[bitrate])
        return plan.finish("mp3", "audio/mpeg")

    plan.codec("-c:a", PCM_CODEC_BY_DEPTH[opts["bit_depth"]])
    plan.quality("-ar", opts["sample_rate"])
    plan.quality("-ac", "2")
    return plan.finish("wav", "audio/wav")


def _compress_gif(plan: _PlanWriter, opts: Options, source_format: Optional[str]) -> CommandPlan:
    plan.input()
    plan.quality("-gifflags", "+transdiff")

    chain = []
    if opts["scale"] != "100":
        factor = opts["scale"]
        chain.append(f"scale=iw*{factor}/100:ih*{factor}/100:flags=lanczos")
    chain.append(f"fps={opts['fps']}")
    chain.append(_palette(int(opts["colors"])))
    plan.filter("-vf", ",".join(chain))

    plan.output("-loop", "0")
    return plan.finish("gif", "image/gif")


def _convert_audio(plan: _PlanWriter, opts: Options, source_format: Optional[str]) -> CommandPlan:
    target = opts["target_format"]
    if source_format and source_format == target:
        raise ValidationError(f"Source is already {target}; pick a different target format")

    encoder, extension, mime_type = AUDIO_TARGETS[target]
    tier = opts["quality"]

    plan.input()
    plan.codec("-vn")
    plan.codec("-c:a", encoder)

    if target == "ogg":
        plan.quality("-q:a", VORBIS_QUALITY_BY_TIER[tier])
    elif target == "flac":
        plan.quality("-compression_level", "5")
    elif target != "wav":
        plan.quality("-b:a", AUDIO_BITRATE_BY_TIER[tier])

    if opts["sample_rate"] != "original":
        plan.quality("-ar", opts["sample_rate"])
    if opts["channels"] != "original":
        plan.quality("-ac", CHANNEL_COUNTS[opts["channels"]])

    if opts["normalize"] == "true":
        plan.filter("-af", LOUDNORM_FILTER)

    if target == "m4a":
        plan.output("-movflags", "+faststart")
    return plan.finish(extension, mime_type)


def _extract_audio(plan: _PlanWriter, opts: Options, source_format: Optional[str]) -> CommandPlan:
    plan.input()
    if opts["start_time"]:
        plan.add(DirectiveStage.INPUT, "-ss", opts["start_time"])
    if opts["duration"]:
        plan.add(DirectiveStage.INPUT, "-t", opts["duration"])

    plan.codec("-vn")
    plan.codec("-c:a", "libmp3lame")
    plan.quality("-b:a", f"{opts['bitrate']}k")
    plan.quality("-joint_stereo", "1")
    plan.quality("-reservoir", "1")

    if opts["normalize"] == "true":
        plan.filter("-af", LOUDNORM_FILTER)

    plan.output("-f", "mp3")
    return plan.finish("mp3", "audio/mpeg")


def _video_to_gif(plan: _PlanWriter, opts: Options, source_format: Optional[str]) -> CommandPlan:
    plan.input()
    plan.add(DirectiveStage.INPUT, "-t", opts["max_duration"])
    plan.codec("-an")
    plan.filter(
        "-vf",
        f"fps={opts['fps']},scale={opts['width']}:-1:flags=lanczos,{_palette()}",
    )
    plan.output("-loop", _loop_value(opts["loop"]))
    return plan.finish("gif", "image/gif")


def _gif_to_video(plan: _PlanWriter, opts: Options, source_format: Optional[str]) -> CommandPlan:
    plan.input()
    plan.codec("-an")
    plan.codec("-c:v", VIDEO_ENCODERS["h264"])
    plan.quality("-pix_fmt", "yuv420p")
    plan.filter("-vf", EVEN_DIMENSIONS_FILTER)
    plan.output("-movflags", "+faststart")
    return plan.finish("mp4", "video/mp4")


def _image_sequence_to_gif(plan: _PlanWriter, opts: Options, source_format: Optional[str]) -> CommandPlan:
    plan.add(DirectiveStage.INPUT, "-framerate", _frame_rate_fraction(opts["delay"]))
    plan.input()
    plan.filter("-vf", f"{EVEN_DIMENSIONS_FILTER}:flags=lanczos,{_palette()}")
    plan.output("-loop", _loop_value(opts["loop"]))
    plan.output("-f", "gif")
    return plan.finish("gif", "image/gif")


def _raster_convert(plan: _PlanWriter, opts: Options, source_format: Optional[str]) -> CommandPlan:
    target = opts["target_format"]
    encoder, extension, mime_type = RASTER_TARGETS[target]

    plan.input()
    plan.codec("-c:v", encoder)
    if target == "jpg":
        plan.quality("-q:v", JPEG_QSCALE_BY_TIER[opts["quality"]])
    elif target == "webp":
        plan.quality("-quality", WEBP_QUALITY_BY_TIER[opts["quality"]])

    if opts["resolution"] != "original":
        width, height = RESOLUTION_MAP[opts["resolution"]]
        plan.filter("-vf", f"scale={width}:{height}:force_original_aspect_ratio=decrease")

    plan.output("-frames:v", "1")
    return plan.finish(extension, mime_type)


_BUILDERS: Dict[OperationKind, Callable[[_PlanWriter, Options, Optional[str]], CommandPlan]] = {
    OperationKind.COMPRESS_VIDEO: _compress_video,
    OperationKind.CONVERT_VIDEO: _convert_video,
    OperationKind.COMPRESS_AUDIO: _compress_audio,
    OperationKind.COMPRESS_WAV: _compress_wav,
    OperationKind.COMPRESS_GIF: _compress_gif,
    OperationKind.CONVERT_AUDIO: _convert_audio,
    OperationKind.EXTRACT_AUDIO: _extract_audio,
    OperationKind.VIDEO_TO_GIF: _video_to_gif,
    OperationKind.GIF_TO_VIDEO: _gif_to_video,
    OperationKind.IMAGE_SEQUENCE_TO_GIF: _image_sequence_to_gif,
    OperationKind.RASTER_CONVERT: _raster_convert,
}


class CommandBuilder:
    """Turns an operation kind and caller options into a CommandPlan."""

    def build(
        self,
        operation: str,
        options: Mapping[str, str],
        source_format: Optional[str] = None,
    ) -> CommandPlan:
        """
        Build the plan for one job.

        Raises ConfigurationError for an unknown operation and ValidationError
        for an option value outside its domain.
        """
        spec = get_operation(operation)
        builder = _BUILDERS.get(spec.kind)
        if builder is None:
            raise ConfigurationError(f"No command builder for {spec.kind.value}")

        resolved = spec.resolve_options(options)
        plan = builder(_PlanWriter(spec.kind), resolved, source_format)
        logger.debug(f"[Plan] {spec.kind.value}: {' '.join(plan.to_args('<input>', '<output>'))}")
        return plan
