"""
Narration mixing

Second pass over the assembled video: the narration track is trimmed or
delayed according to its signed offset, scaled by its volume and mixed into
the video's own audio. The video stream is copied untouched.

Losing narration is preferable to losing the export, so any failure after
the overlay has been loaded is absorbed: the mixed artifact is discarded and
the pre-mix video stays the result.
"""

import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Optional

from .errors import MixVerificationError
from .ffmpeg_render import render_mix_args
from .graph_builder import build_mix_plan
from .session import Workspace
from .sources import SourceLoader
from .video_models import AudioOverlayInput, ENCODING_PROFILES, OutputFormat

logger = logging.getLogger(__name__)

_AUDIO_EXTENSIONS = {'wav', 'mp3', 'aac', 'm4a', 'ogg', 'opus', 'flac', 'webm'}


@dataclass
class MixOutcome:
    """Name of the mixed artifact, or None when the pre-mix video is kept"""
    output_name: Optional[str]
    warning: Optional[str] = None

    @property
    def mixed(self) -> bool:
        return self.output_name is not None


def overlay_extension(overlay: AudioOverlayInput) -> str:
    if isinstance(overlay.source, (bytes, bytearray)):
        return 'wav'
    suffix = PurePosixPath(str(overlay.source).split('?')[0]).suffix.lstrip('.').lower()
    return suffix if suffix in _AUDIO_EXTENSIONS else 'wav'


class AudioMixer:
    """Mixes a narration overlay into an assembled video"""

    def __init__(self, loader: SourceLoader):
        self.loader = loader

    async def mix(self,
                  workspace: Workspace,
                  video_name: str,
                  overlay: AudioOverlayInput,
                  output_format: OutputFormat,
                  video_duration: Optional[float] = None) -> MixOutcome:
        profile = ENCODING_PROFILES[output_format]
        overlay_name = workspace.name('overlay', overlay_extension(overlay))
        mixed_name = workspace.name('final_with_audio', output_format.value)

        # A narration source that cannot be read fails the export
        overlay_data = await self.loader.load(overlay.source)

        try:
            await workspace.write(overlay_name, overlay_data)
            if overlay.offset_ms < 0:
                await self._check_trimmed_length(workspace, overlay_name, overlay)

            plan = build_mix_plan(overlay, duration=video_duration or 0.0)
            args = render_mix_args(plan, video_name, overlay_name, mixed_name, profile)
            logger.info(
                f"Mixing narration: offset={overlay.offset_ms}ms, volume={overlay.volume}"
            )
            await workspace.execute(args, outputs=[mixed_name], expected_duration=video_duration)

            mixed = await workspace.read(mixed_name)
            if not mixed:
                raise MixVerificationError("Mixed output file is empty")
        except Exception as e:
            warning = f"Audio mixing failed, using video without mixed audio: {e}"
            workspace.warn(warning)
            await workspace.release(mixed_name)
            await workspace.release(overlay_name)
            return MixOutcome(None, warning)

        await workspace.release(overlay_name)
        return MixOutcome(mixed_name)

    async def _check_trimmed_length(self,
                                    workspace: Workspace,
                                    overlay_name: str,
                                    overlay: AudioOverlayInput) -> None:
        """Reject an overlay whose lead-in trim leaves nothing to mix"""
        duration = overlay.duration
        if duration is None:
            duration = await workspace.session.engine.probe_duration(overlay_name)
        if duration is None:
            logger.debug("Overlay duration unknown, skipping trimmed-length check")
            return

        skip = abs(overlay.offset_ms) / 1000
        if skip >= duration:
            raise MixVerificationError(
                f"Overlay offset {overlay.offset_ms}ms discards the whole {duration:.3f}s track"
            )
