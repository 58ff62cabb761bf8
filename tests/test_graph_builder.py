import pytest

from reel_export.utils.config import ExportConfig
from reel_export.video_assembly.graph_builder import (
    ConcatNode, CrossfadeNode, InputRef, PlanKind, StreamType,
    build_fallback_plans, build_mix_plan, build_plan, overlay_ops
)
from reel_export.video_assembly.transforms import ATrim, Delay, SilenceRemove, Trim, Volume
from reel_export.video_assembly.video_models import AudioOverlayInput, ExportOptions, TransitionKind

from conftest import make_clip

CONFIG = ExportConfig()


def test_single_clip_is_a_stream_copy_rewrap():
    plan = build_plan([make_clip(1)], ExportOptions(), CONFIG)

    assert plan.kind == PlanKind.REWRAP
    assert plan.is_passthrough
    assert plan.video_out == InputRef(0, StreamType.VIDEO)
    assert plan.audio_out == InputRef(0, StreamType.AUDIO)


def test_plain_clips_concatenate_inputs_directly():
    plan = build_plan([make_clip(1), make_clip(2), make_clip(3)], ExportOptions(), CONFIG)

    assert plan.kind == PlanKind.CONCAT
    assert plan.clip_nodes == ()
    (concat,) = plan.merge_nodes
    assert isinstance(concat, ConcatNode)
    assert concat.segments[2] == (InputRef(2, StreamType.VIDEO), InputRef(2, StreamType.AUDIO))


def test_trim_selects_trim_plan():
    plan = build_plan([make_clip(1, trim_end=3.0), make_clip(2)], ExportOptions(), CONFIG)

    assert plan.kind == PlanKind.TRIM
    assert plan.duration == pytest.approx(8.0)
    assert plan.clip_nodes[0].ops[0] == Trim(0.0, 3.0)


def test_mute_alone_selects_trim_plan():
    plan = build_plan([make_clip(1, mute=True)], ExportOptions(), CONFIG)

    assert plan.kind == PlanKind.TRIM
    audio_chain = plan.clip_nodes[1]
    assert Volume(0) in audio_chain.ops


def test_silence_removal_selects_trim_plan():
    plan = build_plan([make_clip(1), make_clip(2)], ExportOptions(remove_silence=True), CONFIG)

    assert plan.kind == PlanKind.TRIM
    assert any(isinstance(op, SilenceRemove) for op in plan.clip_nodes[1].ops)


def test_mute_wins_over_silence_removal():
    plan = build_plan([make_clip(1, mute=True)], ExportOptions(remove_silence=True), CONFIG)
    audio_ops = plan.clip_nodes[1].ops

    assert Volume(0) in audio_ops
    assert not any(isinstance(op, SilenceRemove) for op in audio_ops)


def test_transitions_take_precedence_over_trim():
    clips = [make_clip(1, transition=TransitionKind.FADE, trim_start=1.0), make_clip(2)]
    plan = build_plan(clips, ExportOptions(), CONFIG)

    assert plan.kind == PlanKind.CROSSFADE


def test_transition_on_last_clip_is_ignored():
    clips = [make_clip(1), make_clip(2, transition=TransitionKind.WIPE_RIGHT)]
    plan = build_plan(clips, ExportOptions(), CONFIG)

    assert plan.kind == PlanKind.CONCAT


def test_crossfade_labels_thread_through_the_chain():
    clips = [
        make_clip(1, transition=TransitionKind.FADE),
        make_clip(2, transition=TransitionKind.SLIDE_LEFT),
        make_clip(3, transition=TransitionKind.CIRCLE_OPEN),
        make_clip(4),
    ]
    plan = build_plan(clips, ExportOptions(), CONFIG)
    merges = plan.merge_nodes

    assert [m.video_inputs for m in merges] == [("v0", "v1"), ("vt0", "v2"), ("vt1", "v3")]
    assert [m.audio_inputs for m in merges] == [("a0", "a1"), ("at0", "a2"), ("at1", "a3")]
    assert [m.video_output for m in merges] == ["vt0", "vt1", "vfinal"]
    assert [m.audio_output for m in merges] == ["at0", "at1", "afinal"]
    assert plan.video_out == "vfinal"
    assert plan.audio_out == "afinal"
    # The last clip has no transition of its own; the default applies to no pair
    assert [m.transition for m in merges] == [
        TransitionKind.FADE, TransitionKind.SLIDE_LEFT, TransitionKind.CIRCLE_OPEN
    ]


def test_cut_inside_crossfade_chain_is_a_concat():
    clips = [
        make_clip(1, transition=TransitionKind.NONE),
        make_clip(2, transition=TransitionKind.FADE),
        make_clip(3),
    ]
    plan = build_plan(clips, ExportOptions(), CONFIG)
    first, second = plan.merge_nodes

    assert plan.kind == PlanKind.CROSSFADE
    assert isinstance(first, ConcatNode)
    assert first.segments == (("v0", "a0"), ("v1", "a1"))
    assert isinstance(second, CrossfadeNode)
    assert second.video_inputs == ("vt0", "v2")
    assert plan.duration == pytest.approx(14.5)


def test_clips_are_sorted_by_scene_number():
    clips = [make_clip(3, 3.0), make_clip(1, 1.0, trim_end=0.5), make_clip(2, 2.0)]
    plan = build_plan(clips, ExportOptions(), CONFIG)

    assert plan.clip_nodes[0].ops[0] == Trim(0.0, 0.5)


def test_plan_is_deterministic():
    clips = [make_clip(1, transition=TransitionKind.DISSOLVE), make_clip(2, mute=True)]

    assert build_plan(clips, ExportOptions(), CONFIG) == build_plan(list(clips), ExportOptions(), CONFIG)


def test_fallback_plans_keep_trim_and_drop_transitions():
    clips = [make_clip(2, transition=TransitionKind.FADE), make_clip(1, trim_start=1.0)]
    plans = build_fallback_plans(clips, ExportOptions(), CONFIG)

    assert [p.kind for p in plans] == [PlanKind.NORMALIZE, PlanKind.NORMALIZE]
    assert all(p.merge_nodes == () and p.input_count == 1 for p in plans)
    assert plans[0].clip_nodes[0].ops[0] == Trim(1.0, 5.0)
    assert plans[0].duration == pytest.approx(4.0)


def test_overlay_ops_for_negative_offset():
    overlay = AudioOverlayInput(source=b"narration", offset_ms=-500, volume=0.8)

    assert overlay_ops(overlay)[0] == ATrim(0.5)
    assert overlay_ops(overlay)[-1] == Volume(0.8)


def test_overlay_ops_for_positive_offset():
    overlay = AudioOverlayInput(source=b"narration", offset_ms=1200)

    assert overlay_ops(overlay) == (Delay(1200), Volume(1.0))


def test_mix_plan_copies_the_video_stream():
    plan = build_mix_plan(AudioOverlayInput(source=b"narration"))

    assert plan.kind == PlanKind.MIX
    assert plan.input_count == 2
    assert plan.video_out == InputRef(0, StreamType.VIDEO)
    assert plan.audio_out == "aout"
