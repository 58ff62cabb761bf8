"""Timeline Builder

Computes where each crossfade starts on the output timeline and how long it
lasts. Offsets are cumulative: every transition overlaps two clips and so
shortens the output by its own duration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .video_models import ClipInput, TransitionKind

# Audio crossfade curve paired with every video transition
AUDIO_CROSSFADE_CURVE = "exp"


@dataclass(frozen=True)
class TransitionSlot:
    """Transition between clip `index` and clip `index + 1`"""
    index: int
    offset: float    # seconds on the output timeline
    duration: float  # 0 for a hard cut
    kind: TransitionKind

    @property
    def is_cut(self) -> bool:
        return self.kind == TransitionKind.NONE


def sort_clips(clips: Sequence[ClipInput]) -> List[ClipInput]:
    """Ascending scene order; stable for equal scene numbers"""
    return sorted(clips, key=lambda clip: clip.scene_number)


def effective_lengths(clips: Sequence[ClipInput]) -> List[float]:
    lengths = []
    for clip in clips:
        length = clip.effective_length
        if length <= 0:
            raise ValueError(f"scene {clip.scene_number} has non-positive length {length}")
        lengths.append(length)
    return lengths


def resolve_transition(clip: ClipInput,
                       default_duration: float,
                       default_kind: TransitionKind = TransitionKind.FADE) -> Tuple[TransitionKind, float]:
    """Requested (kind, duration) for the transition leaving `clip`"""
    transition = clip.transition_out
    if transition is None:
        return default_kind, default_duration
    if transition.kind == TransitionKind.NONE:
        return TransitionKind.NONE, 0.0
    return transition.kind, transition.duration


def compute_transitions(clips: Sequence[ClipInput],
                        default_duration: float = 0.5,
                        default_kind: TransitionKind = TransitionKind.FADE) -> List[TransitionSlot]:
    """Offsets and clamped durations for every adjacent pair.

    `clips` must already be in scene order. A transition never takes more
    than half of either neighbouring clip.
    """
    if not clips:
        raise ValueError("cannot build a timeline without clips")

    lengths = effective_lengths(clips)
    slots: List[TransitionSlot] = []
    accumulated = 0.0

    for i in range(len(clips) - 1):
        kind, requested = resolve_transition(clips[i], default_duration, default_kind)
        if kind == TransitionKind.NONE:
            duration = 0.0
        else:
            duration = min(requested, lengths[i] * 0.5, lengths[i + 1] * 0.5)

        offset = accumulated + lengths[i] - duration
        slots.append(TransitionSlot(index=i, offset=offset, duration=duration, kind=kind))
        accumulated = offset

    return slots


def total_duration(clips: Sequence[ClipInput],
                   slots: Optional[Sequence[TransitionSlot]] = None) -> float:
    """Output length once every transition overlap is removed"""
    overlap = sum(slot.duration for slot in slots or ())
    return sum(effective_lengths(clips)) - overlap
