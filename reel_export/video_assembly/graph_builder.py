"""
Graph Builder

Turns a clip list into one whole-pipeline plan. Plan selection is feature
detection over all clips, in this precedence:

- crossfade: some clip transitions into its successor
- trim: no transitions, but a trim, mute or silence removal is requested
- simple: direct concatenation, or a stream-copy re-wrap for one clip

Everything here is pure. The graph is a typed intermediate representation;
ffmpeg_render turns it into transcoder arguments.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Tuple, Union

from ..utils.config import ExportConfig
from .timeline_builder import (
    AUDIO_CROSSFADE_CURVE, TransitionSlot, compute_transitions, sort_clips, total_duration
)
from .transforms import (
    ATrim, AResetTimestamps, Delay, StreamOp, Volume, describe_clip
)
from .video_models import AudioOverlayInput, ClipInput, ExportOptions, TransitionKind


class PlanKind(str, Enum):
    REWRAP = "rewrap"        # simple plan, one clip, stream copy
    CONCAT = "concat"        # simple plan, several clips
    TRIM = "trim"
    CROSSFADE = "crossfade"
    NORMALIZE = "normalize"  # one clip of the re-encode fallback
    MIX = "mix"              # narration overlay pass


class StreamType(str, Enum):
    VIDEO = "v"
    AUDIO = "a"


@dataclass(frozen=True)
class InputRef:
    """A stream of one of the command's inputs"""
    index: int
    stream: StreamType

    def __str__(self) -> str:
        return f"{self.index}:{self.stream.value}"


# Either an input stream or the label of an intermediate/final output
Label = Union[InputRef, str]


@dataclass(frozen=True)
class ClipChainNode:
    """Linear chain of primitive ops on one input stream"""
    source: InputRef
    ops: Tuple[StreamOp, ...]
    output: str


@dataclass(frozen=True)
class CrossfadeNode:
    """Paired video xfade and audio acrossfade of two segments"""
    video_inputs: Tuple[Label, Label]
    audio_inputs: Tuple[Label, Label]
    transition: TransitionKind
    offset: float
    duration: float
    video_output: str
    audio_output: str
    audio_curve: str = AUDIO_CROSSFADE_CURVE


@dataclass(frozen=True)
class ConcatNode:
    """Hard-cut concatenation of (video, audio) segment pairs"""
    segments: Tuple[Tuple[Label, Label], ...]
    video_output: str
    audio_output: str


@dataclass(frozen=True)
class MixNode:
    """Mix two audio streams; output length follows the first one"""
    inputs: Tuple[Label, Label]
    output: str
    duration: str = "first"
    dropout_transition: int = 0


MergeNode = Union[CrossfadeNode, ConcatNode, MixNode]


@dataclass(frozen=True)
class PlanGraph:
    kind: PlanKind
    input_count: int
    clip_nodes: Tuple[ClipChainNode, ...]
    merge_nodes: Tuple[MergeNode, ...]
    video_out: Label
    audio_out: Label
    transitions: Tuple[TransitionSlot, ...] = ()
    duration: float = 0.0

    @property
    def is_passthrough(self) -> bool:
        return not self.clip_nodes and not self.merge_nodes


@dataclass(frozen=True)
class PlanFeatures:
    has_trim: bool
    has_mute: bool
    remove_silence: bool
    has_transitions: bool

    @property
    def needs_transform(self) -> bool:
        return self.has_trim or self.has_mute or self.remove_silence


def detect_features(clips: Sequence[ClipInput], options: ExportOptions) -> PlanFeatures:
    # The last clip has no successor, so its transition_out is ignored
    with_successor = list(clips)[:-1]
    return PlanFeatures(
        has_trim=any(clip.has_trim for clip in clips),
        has_mute=any(clip.mute for clip in clips),
        remove_silence=options.remove_silence,
        has_transitions=any(
            clip.transition_out is not None and clip.transition_out.kind != TransitionKind.NONE
            for clip in with_successor
        ),
    )


def _chains(transform, index: int) -> List[ClipChainNode]:
    return [
        ClipChainNode(InputRef(index, StreamType.VIDEO), transform.video_ops, f"v{index}"),
        ClipChainNode(InputRef(index, StreamType.AUDIO), transform.audio_ops, f"a{index}"),
    ]


def _transformed_chains(clips: Sequence[ClipInput],
                        options: ExportOptions,
                        config: ExportConfig) -> Tuple[ClipChainNode, ...]:
    nodes: List[ClipChainNode] = []
    for index, clip in enumerate(clips):
        transform = describe_clip(clip, index, config, normalize=True,
                                  remove_silence=options.remove_silence)
        nodes.extend(_chains(transform, index))
    return tuple(nodes)


def _crossfade_plan(clips: List[ClipInput], options: ExportOptions, config: ExportConfig) -> PlanGraph:
    clip_nodes = _transformed_chains(clips, options, config)
    slots = compute_transitions(
        clips,
        default_duration=config.default_transition_duration,
        default_kind=TransitionKind(config.default_transition),
    )

    merges: List[MergeNode] = []
    last = len(clips) - 2
    for slot in slots:
        i = slot.index
        video_in = "v0" if i == 0 else f"vt{i - 1}"
        audio_in = "a0" if i == 0 else f"at{i - 1}"
        video_out = "vfinal" if i == last else f"vt{i}"
        audio_out = "afinal" if i == last else f"at{i}"

        if slot.is_cut:
            merges.append(ConcatNode(
                segments=((video_in, audio_in), (f"v{i + 1}", f"a{i + 1}")),
                video_output=video_out,
                audio_output=audio_out,
            ))
        else:
            merges.append(CrossfadeNode(
                video_inputs=(video_in, f"v{i + 1}"),
                audio_inputs=(audio_in, f"a{i + 1}"),
                transition=slot.kind,
                offset=slot.offset,
                duration=slot.duration,
                video_output=video_out,
                audio_output=audio_out,
            ))

    return PlanGraph(
        kind=PlanKind.CROSSFADE,
        input_count=len(clips),
        clip_nodes=clip_nodes,
        merge_nodes=tuple(merges),
        video_out="vfinal",
        audio_out="afinal",
        transitions=tuple(slots),
        duration=total_duration(clips, slots),
    )


def _trim_plan(clips: List[ClipInput], options: ExportOptions, config: ExportConfig) -> PlanGraph:
    clip_nodes = _transformed_chains(clips, options, config)
    if len(clips) == 1:
        merges: Tuple[MergeNode, ...] = ()
        video_out, audio_out = "v0", "a0"
    else:
        merges = (ConcatNode(
            segments=tuple((f"v{i}", f"a{i}") for i in range(len(clips))),
            video_output="vfinal",
            audio_output="afinal",
        ),)
        video_out, audio_out = "vfinal", "afinal"

    return PlanGraph(
        kind=PlanKind.TRIM,
        input_count=len(clips),
        clip_nodes=clip_nodes,
        merge_nodes=merges,
        video_out=video_out,
        audio_out=audio_out,
        duration=total_duration(clips),
    )


def _simple_plan(clips: List[ClipInput]) -> PlanGraph:
    if len(clips) == 1:
        return PlanGraph(
            kind=PlanKind.REWRAP,
            input_count=1,
            clip_nodes=(),
            merge_nodes=(),
            video_out=InputRef(0, StreamType.VIDEO),
            audio_out=InputRef(0, StreamType.AUDIO),
            duration=total_duration(clips),
        )

    concat = ConcatNode(
        segments=tuple(
            (InputRef(i, StreamType.VIDEO), InputRef(i, StreamType.AUDIO))
            for i in range(len(clips))
        ),
        video_output="vfinal",
        audio_output="afinal",
    )
    return PlanGraph(
        kind=PlanKind.CONCAT,
        input_count=len(clips),
        clip_nodes=(),
        merge_nodes=(concat,),
        video_out="vfinal",
        audio_out="afinal",
        duration=total_duration(clips),
    )


def build_plan(clips: Sequence[ClipInput], options: ExportOptions, config: ExportConfig) -> PlanGraph:
    """Select and build the whole-pipeline plan for `clips`.

    Clips are put in scene order first; input index i of the plan is the
    i-th clip in that order.
    """
    if not clips:
        raise ValueError("cannot build a plan without clips")

    ordered = sort_clips(clips)
    features = detect_features(ordered, options)

    if features.has_transitions:
        return _crossfade_plan(ordered, options, config)
    if features.needs_transform:
        return _trim_plan(ordered, options, config)
    return _simple_plan(ordered)


def build_fallback_plans(clips: Sequence[ClipInput],
                         options: ExportOptions,
                         config: ExportConfig) -> List[PlanGraph]:
    """One single-input normalization graph per clip, in scene order.

    Trim, mute and silence removal survive; transitions become hard cuts.
    """
    plans = []
    for clip in sort_clips(clips):
        transform = describe_clip(clip, 0, config, normalize=True,
                                  remove_silence=options.remove_silence)
        plans.append(PlanGraph(
            kind=PlanKind.NORMALIZE,
            input_count=1,
            clip_nodes=tuple(_chains(transform, 0)),
            merge_nodes=(),
            video_out="v0",
            audio_out="a0",
            duration=clip.effective_length,
        ))
    return plans


def overlay_ops(overlay: AudioOverlayInput) -> Tuple[StreamOp, ...]:
    """Ops placing the narration track on the video timeline"""
    volume = Volume(overlay.volume)
    if overlay.offset_ms < 0:
        skip = abs(overlay.offset_ms) / 1000
        return (ATrim(skip), AResetTimestamps(), volume)
    return (Delay(overlay.offset_ms), volume)


def build_mix_plan(overlay: AudioOverlayInput, duration: float = 0.0) -> PlanGraph:
    """Input 0 is the assembled video, input 1 the narration track.

    The video stream is carried through untouched.
    """
    chain = ClipChainNode(InputRef(1, StreamType.AUDIO), overlay_ops(overlay), "overlay")
    mix = MixNode(inputs=(InputRef(0, StreamType.AUDIO), "overlay"), output="aout")
    return PlanGraph(
        kind=PlanKind.MIX,
        input_count=2,
        clip_nodes=(chain,),
        merge_nodes=(mix,),
        video_out=InputRef(0, StreamType.VIDEO),
        audio_out="aout",
        duration=duration,
    )


__all__ = [
    'PlanKind', 'StreamType', 'InputRef', 'ClipChainNode', 'CrossfadeNode',
    'ConcatNode', 'MixNode', 'PlanGraph', 'PlanFeatures', 'detect_features',
    'build_plan', 'build_fallback_plans', 'build_mix_plan', 'overlay_ops',
]
