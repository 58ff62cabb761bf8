"""
FFmpeg command rendering

Converts PlanGraph values into ffmpeg-python stream graphs and from there
into argument lists for the transcoding engine. This is the only place that
knows the transcoder's concrete filter syntax.
"""

from typing import Dict, List, Sequence, Tuple

import ffmpeg

from .graph_builder import (
    ConcatNode, CrossfadeNode, InputRef, MixNode, PlanGraph
)
from .transforms import StreamOp, seconds
from .video_models import EncodingProfile


def _apply_ops(stream, ops: Sequence[StreamOp]):
    for op in ops:
        args, kwargs = op.filter_args()
        stream = stream.filter(op.filter_name, *args, **kwargs)
    return stream


def build_streams(plan: PlanGraph, input_names: Sequence[str]) -> Tuple[object, object]:
    """Wire the plan's nodes into ffmpeg-python streams.

    Returns the (video, audio) streams named by plan.video_out/audio_out.
    """
    if len(input_names) != plan.input_count:
        raise ValueError(
            f"{plan.kind.value} plan expects {plan.input_count} inputs, got {len(input_names)}"
        )

    inputs = [ffmpeg.input(name) for name in input_names]
    labels: Dict[str, object] = {}

    def resolve(label):
        if isinstance(label, InputRef):
            return inputs[label.index][label.stream.value]
        if label not in labels:
            raise KeyError(f"label '{label}' is used before it is produced")
        return labels[label]

    for node in plan.clip_nodes:
        labels[node.output] = _apply_ops(resolve(node.source), node.ops)

    for node in plan.merge_nodes:
        if isinstance(node, CrossfadeNode):
            labels[node.video_output] = ffmpeg.filter(
                [resolve(label) for label in node.video_inputs], 'xfade',
                transition=node.transition.value,
                duration=seconds(node.duration),
                offset=seconds(node.offset),
            )
            labels[node.audio_output] = ffmpeg.filter(
                [resolve(label) for label in node.audio_inputs], 'acrossfade',
                d=seconds(node.duration),
                c1=node.audio_curve,
                c2=node.audio_curve,
            )
        elif isinstance(node, ConcatNode):
            streams = []
            for video, audio in node.segments:
                streams.extend([resolve(video), resolve(audio)])
            joined = ffmpeg.concat(*streams, v=1, a=1).node
            labels[node.video_output] = joined[0]
            labels[node.audio_output] = joined[1]
        elif isinstance(node, MixNode):
            labels[node.output] = ffmpeg.filter(
                [resolve(label) for label in node.inputs], 'amix',
                inputs=len(node.inputs),
                duration=node.duration,
                dropout_transition=node.dropout_transition,
            )
        else:
            raise TypeError(f"unknown graph node {node!r}")

    return resolve(plan.video_out), resolve(plan.audio_out)


def render_plan_args(plan: PlanGraph,
                     input_names: Sequence[str],
                     output_name: str,
                     profile: EncodingProfile,
                     fallback: bool = False) -> List[str]:
    """Arguments running a whole-pipeline or per-clip normalization plan.

    A re-wrap maps nothing explicitly, so a clip without an audio track is
    copied as-is.
    """
    if plan.is_passthrough:
        (name,) = input_names
        return (
            ffmpeg
            .input(name)
            .output(output_name, c='copy')
            .overwrite_output()
            .get_args()
        )

    video, audio = build_streams(plan, input_names)
    return (
        ffmpeg
        .output(video, audio, output_name, **profile.output_kwargs(fallback=fallback))
        .overwrite_output()
        .get_args()
    )


def render_mix_args(plan: PlanGraph,
                    video_name: str,
                    overlay_name: str,
                    output_name: str,
                    profile: EncodingProfile) -> List[str]:
    """Arguments for the narration pass; the video stream is copied"""
    video, audio = build_streams(plan, [video_name, overlay_name])
    return (
        ffmpeg
        .output(video, audio, output_name,
                vcodec='copy', acodec=profile.audio_codec, audio_bitrate=profile.audio_bitrate)
        .overwrite_output()
        .get_args()
    )


def concat_list(names: Sequence[str]) -> str:
    """Concat demuxer list file contents"""
    return "".join(f"file '{name}'\n" for name in names)


def render_concat_demuxer_args(list_name: str, output_name: str, profile: EncodingProfile) -> List[str]:
    """Copy-only concatenation of inputs that already share one format"""
    output_args = {'c': 'copy'}
    if profile.faststart:
        output_args['movflags'] = '+faststart'
    return (
        ffmpeg
        .input(list_name, f='concat', safe=0)
        .output(output_name, **output_args)
        .overwrite_output()
        .get_args()
    )


def render_last_frame_args(input_name: str, output_name: str, seek_from_end: float = 0.1) -> List[str]:
    """Seek just before end-of-stream and write one JPEG frame"""
    return (
        ffmpeg
        .input(input_name, sseof=f"-{seek_from_end:g}")
        .output(output_name, vframes=1, **{'q:v': 2})
        .overwrite_output()
        .get_args()
    )


def render_filter_complex(plan: PlanGraph, input_names: Sequence[str]) -> str:
    """The textual filter graph of a plan, empty for a pure re-wrap"""
    if plan.is_passthrough:
        return ""
    video, audio = build_streams(plan, input_names)
    args = ffmpeg.output(video, audio, 'out').get_args()
    return args[args.index('-filter_complex') + 1]

