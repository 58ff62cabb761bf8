"""
Stream Transform Descriptors

Pure data describing how a single clip is transformed before it joins the
output timeline: trim, timestamp reset, normalization, mute and silence
removal. Each primitive operation knows the transcoder filter it maps to;
rendering into a concrete command happens in ffmpeg_render.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional, Tuple

from ..utils.config import ExportConfig
from .video_models import ClipInput


def seconds(value: float) -> str:
    """Fixed-precision seconds so rendered graphs are byte-stable"""
    return f"{value:.3f}"


@dataclass(frozen=True)
class StreamOp:
    """A primitive filter applied to one stream"""
    filter_name: ClassVar[str] = ""

    def filter_args(self) -> Tuple[Tuple[Any, ...], Dict[str, Any]]:
        return (), {}


@dataclass(frozen=True)
class Trim(StreamOp):
    filter_name: ClassVar[str] = "trim"
    start: float
    end: Optional[float] = None  # open-ended keeps everything after start

    def filter_args(self):
        kwargs = {'start': seconds(self.start)}
        if self.end is not None:
            kwargs['end'] = seconds(self.end)
        return (), kwargs


@dataclass(frozen=True)
class ATrim(Trim):
    filter_name: ClassVar[str] = "atrim"


@dataclass(frozen=True)
class ResetTimestamps(StreamOp):
    filter_name: ClassVar[str] = "setpts"

    def filter_args(self):
        return ('PTS-STARTPTS',), {}


@dataclass(frozen=True)
class AResetTimestamps(ResetTimestamps):
    filter_name: ClassVar[str] = "asetpts"


@dataclass(frozen=True)
class Scale(StreamOp):
    filter_name: ClassVar[str] = "scale"
    width: int
    height: int

    def filter_args(self):
        return (self.width, self.height), {'force_original_aspect_ratio': 'decrease'}


@dataclass(frozen=True)
class Pad(StreamOp):
    """Letterbox to the target frame, centered on black"""
    filter_name: ClassVar[str] = "pad"
    width: int
    height: int
    color: str = "black"

    def filter_args(self):
        return (self.width, self.height, '(ow-iw)/2', '(oh-ih)/2', self.color), {}


@dataclass(frozen=True)
class Fps(StreamOp):
    filter_name: ClassVar[str] = "fps"
    rate: int

    def filter_args(self):
        return (self.rate,), {}


@dataclass(frozen=True)
class Format(StreamOp):
    filter_name: ClassVar[str] = "format"
    pixel_format: str

    def filter_args(self):
        return (self.pixel_format,), {}


@dataclass(frozen=True)
class SetSar(StreamOp):
    filter_name: ClassVar[str] = "setsar"
    ratio: int = 1

    def filter_args(self):
        return (self.ratio,), {}


@dataclass(frozen=True)
class Volume(StreamOp):
    filter_name: ClassVar[str] = "volume"
    level: float

    def filter_args(self):
        return (f"{self.level:g}",), {}


@dataclass(frozen=True)
class SilenceRemove(StreamOp):
    """Strip leading silence below the threshold"""
    filter_name: ClassVar[str] = "silenceremove"
    threshold: str = "-50dB"

    def filter_args(self):
        return (1, 0, self.threshold), {}


@dataclass(frozen=True)
class AResample(StreamOp):
    filter_name: ClassVar[str] = "aresample"
    sample_rate: int = 44100

    def filter_args(self):
        return (self.sample_rate,), {}


@dataclass(frozen=True)
class Delay(StreamOp):
    """Delay every channel by a number of milliseconds"""
    filter_name: ClassVar[str] = "adelay"
    milliseconds: int

    def filter_args(self):
        return (str(self.milliseconds),), {'all': 1}


@dataclass(frozen=True)
class ClipTransform:
    """Ordered video and audio operations for one input clip"""
    index: int
    video_ops: Tuple[StreamOp, ...] = field(default_factory=tuple)
    audio_ops: Tuple[StreamOp, ...] = field(default_factory=tuple)


def normalization_ops(config: ExportConfig) -> Tuple[StreamOp, ...]:
    """Scale/pad to the target frame with a fixed rate and pixel format"""
    return (
        Scale(config.target_width, config.target_height),
        Pad(config.target_width, config.target_height),
        Fps(config.fps),
        Format(config.pixel_format),
        SetSar(1),
    )


def describe_clip(clip: ClipInput,
                  index: int,
                  config: ExportConfig,
                  normalize: bool = True,
                  remove_silence: bool = False) -> ClipTransform:
    """Describe the trim/mute/silence/normalize transform of one clip.

    Mute wins over silence removal: a muted clip keeps its timing.
    """
    start = clip.resolved_trim_start
    end = clip.resolved_trim_end

    video_ops = [Trim(start, end), ResetTimestamps()]
    if normalize:
        video_ops.extend(normalization_ops(config))

    audio_ops = [ATrim(start, end), AResetTimestamps()]
    if clip.mute:
        audio_ops.append(Volume(0))
    elif remove_silence:
        audio_ops.append(SilenceRemove(config.silence_threshold))
    if normalize:
        audio_ops.append(AResample(config.audio_sample_rate))

    return ClipTransform(index=index, video_ops=tuple(video_ops), audio_ops=tuple(audio_ops))
