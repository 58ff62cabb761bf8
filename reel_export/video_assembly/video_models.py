"""
Video Export Data Models

Pydantic models for the short-form export pipeline.
"""

import base64
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Dict, Union
from pydantic import BaseModel, Field, model_validator
from enum import Enum

# A clip or overlay source: raw bytes, a local path, or an http(s) URL
SourceHandle = Union[bytes, Path, str]


class TransitionKind(str, Enum):
    """Crossfade transitions understood by the transcoder's xfade filter"""
    NONE = "none"
    FADE = "fade"          # plain cross-dissolve
    DISSOLVE = "dissolve"
    WIPE_LEFT = "wipeleft"
    WIPE_RIGHT = "wiperight"
    SLIDE_LEFT = "slideleft"
    SLIDE_RIGHT = "slideright"
    CIRCLE_OPEN = "circleopen"
    CIRCLE_CLOSE = "circleclose"
    ZOOM_IN = "zoomin"


class OutputFormat(str, Enum):
    """Container of the exported artifact"""
    MP4 = "mp4"
    WEBM = "webm"

    @property
    def mime_type(self) -> str:
        return f"video/{self.value}"


class ExportPhase(str, Enum):
    """Phases of an export, in the only order they may occur"""
    LOADING = "loading"
    PREPARING = "preparing"
    CONCATENATING = "concatenating"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _PHASE_ORDER.index(self)


_PHASE_ORDER = list(ExportPhase)


class ClipTransition(BaseModel):
    """Transition from a clip into the next one"""
    kind: TransitionKind = TransitionKind.FADE
    duration: float = Field(default=0.5, gt=0.0)


class ClipInput(BaseModel):
    """One scene's source clip with its independent edit settings"""
    source: SourceHandle
    scene_number: int
    duration: float = Field(gt=0.0)  # seconds
    trim_start: Optional[float] = None
    trim_end: Optional[float] = None
    mute: bool = False
    transition_out: Optional[ClipTransition] = None

    @model_validator(mode="after")
    def _check_trim(self) -> "ClipInput":
        start = self.resolved_trim_start
        end = self.resolved_trim_end
        if not (0.0 <= start < end <= self.duration):
            raise ValueError(
                f"scene {self.scene_number}: trim range [{start}, {end}] "
                f"is invalid for a {self.duration}s clip"
            )
        return self

    @property
    def resolved_trim_start(self) -> float:
        return self.trim_start if self.trim_start is not None else 0.0

    @property
    def resolved_trim_end(self) -> float:
        return self.trim_end if self.trim_end is not None else self.duration

    @property
    def effective_length(self) -> float:
        return self.resolved_trim_end - self.resolved_trim_start

    @property
    def has_trim(self) -> bool:
        return self.resolved_trim_start > 0 or self.resolved_trim_end < self.duration


class AudioOverlayInput(BaseModel):
    """Narration track mixed over the assembled video"""
    source: SourceHandle
    offset_ms: int = 0  # negative discards the lead-in, positive delays the track
    volume: float = Field(default=1.0, ge=0.0, le=1.0)
    duration: Optional[float] = Field(default=None, gt=0.0)  # probed when unknown


class ExportOptions(BaseModel):
    """Options for a single export call"""
    output_format: OutputFormat = OutputFormat.MP4
    audio_overlay: Optional[AudioOverlayInput] = None
    remove_silence: bool = False


class ExportProgress(BaseModel):
    """Progress event emitted during an export"""
    phase: ExportPhase
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    message: str = ""
    current_file: Optional[int] = None
    total_files: Optional[int] = None


class ExportResult(BaseModel):
    """Result of a successful export"""
    data: bytes
    mime_type: str
    output_format: OutputFormat
    plan: str
    used_fallback: bool = False

    # Expected output timeline length in seconds
    duration: float = 0.0

    # Cleanup and mixing problems that did not fail the export
    warnings: List[str] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def size_mb(self) -> float:
        return len(self.data) / (1024 ** 2)


class ExtractedFrame(BaseModel):
    """A single still frame taken from a video"""
    image_bytes: bytes
    mime_type: str = "image/jpeg"
    method: str = "snapshot"  # snapshot | engine

    @property
    def base64(self) -> str:
        return base64.b64encode(self.image_bytes).decode("ascii")

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"


class EncodingProfile(BaseModel):
    """Encoder settings for one output container"""
    name: str
    video_codec: str = "libx264"
    preset: Optional[str] = "medium"
    crf: int = Field(default=23, ge=0, le=63)
    audio_codec: str = "aac"
    audio_bitrate: str = "192k"
    pixel_format: str = "yuv420p"
    faststart: bool = True

    # Faster preset for the per-clip fallback re-encodes
    fallback_preset: Optional[str] = "fast"

    def output_kwargs(self, fallback: bool = False) -> Dict[str, Union[str, int]]:
        """Keyword arguments for ffmpeg.output()"""
        kwargs: Dict[str, Union[str, int]] = {
            'vcodec': self.video_codec,
            'crf': self.crf,
            'acodec': self.audio_codec,
            'audio_bitrate': self.audio_bitrate,
            'pix_fmt': self.pixel_format,
        }
        preset = self.fallback_preset if fallback else self.preset
        if preset:
            kwargs['preset'] = preset
        if self.video_codec == "libvpx-vp9":
            kwargs['b:v'] = 0
        if self.faststart:
            kwargs['movflags'] = '+faststart'
        return kwargs


ENCODING_PROFILES = {
    OutputFormat.MP4: EncodingProfile(name="mp4"),
    OutputFormat.WEBM: EncodingProfile(
        name="webm",
        video_codec="libvpx-vp9",
        preset=None,
        crf=32,
        audio_codec="libopus",
        audio_bitrate="128k",
        faststart=False,
        fallback_preset=None,
    ),
}
