"""
Video Assembly Pipeline

This module handles the final export of generated scene clips, combining:
- Scene ordering and trimming
- Crossfade transitions (video and audio)
- Resolution normalization
- Narration mixing
- Last-frame extraction for scene chaining
"""

from .video_assembler import VideoAssembler
from .video_models import (
    AudioOverlayInput, ClipInput, ClipTransition, ExportOptions, ExportProgress,
    ExportResult, ExtractedFrame, OutputFormat, TransitionKind
)
from .session import TranscodingSession
from .errors import ExportError

__all__ = [
    'VideoAssembler',
    'TranscodingSession',
    'ClipInput',
    'ClipTransition',
    'AudioOverlayInput',
    'ExportOptions',
    'ExportProgress',
    'ExportResult',
    'ExtractedFrame',
    'OutputFormat',
    'TransitionKind',
    'ExportError'
]
