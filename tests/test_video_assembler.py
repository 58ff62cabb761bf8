import asyncio

import pytest

from reel_export.video_assembly.errors import (
    EmptyOutputError, EngineInitError, ExportError, GraphExecutionError, InputFetchError
)
from reel_export.video_assembly.session import TranscodingSession
from reel_export.video_assembly.video_assembler import VideoAssembler
from reel_export.video_assembly.video_models import (
    ExportOptions, ExportPhase, OutputFormat, TransitionKind
)

from conftest import FakeEngine, joined, make_clip


def run_export(assembler, clips, options=None):
    events = []
    result = asyncio.run(assembler.export(clips, options, events.append))
    return result, events


def make_assembler(engine, config):
    return VideoAssembler(TranscodingSession(lambda: engine), config)


def test_single_clip_rewrap(assembler, engine):
    result, events = run_export(assembler, [make_clip(1)])

    assert result.data == b'fake-media'
    assert result.plan == "rewrap"
    assert result.mime_type == "video/mp4"
    assert not result.used_fallback
    assert len(engine.calls) == 1
    assert "-c copy" in joined(engine.calls[0])
    assert engine.files == {}


def test_inputs_are_staged_in_scene_order(assembler, engine):
    clips = [make_clip(3), make_clip(1), make_clip(2)]
    run_export(assembler, clips)

    staged = [data for name, data in engine.writes if "_input_" in name]
    assert staged == [b"clip-1", b"clip-2", b"clip-3"]


def test_progress_phases_are_ordered(assembler):
    clips = [make_clip(1, transition=TransitionKind.FADE), make_clip(2)]
    _, events = run_export(assembler, clips)

    ranks = [event.phase.rank for event in events]
    assert ranks == sorted(ranks)
    assert events[0].phase == ExportPhase.LOADING
    assert events[-1].phase == ExportPhase.COMPLETE
    assert events[-1].progress == 100

    preparing = [e for e in events if e.phase == ExportPhase.PREPARING and e.current_file]
    assert [(e.current_file, e.total_files, e.progress) for e in preparing] == [(1, 2, 20), (2, 2, 40)]

    concatenating = [e.progress for e in events if e.phase == ExportPhase.CONCATENATING]
    assert min(concatenating) >= 45 and max(concatenating) <= 90


def test_crossfade_export_reports_timeline_duration(assembler, engine):
    clips = [make_clip(1, 10.0, TransitionKind.FADE, 1.0), make_clip(2, 10.0)]
    result, _ = run_export(assembler, clips)

    assert result.plan == "crossfade"
    assert result.duration == pytest.approx(19.0)
    assert "xfade" in joined(engine.calls[0])


def test_fallback_reencodes_each_clip_then_joins(config):
    engine = FakeEngine(fail_when=lambda args, index: index == 0)
    assembler = make_assembler(engine, config)
    clips = [make_clip(2), make_clip(1, transition=TransitionKind.FADE, trim_start=1.0)]

    result, _ = run_export(assembler, clips)

    assert result.used_fallback
    assert result.plan == "crossfade"
    assert len(engine.calls) == 4
    first, second = engine.calls[1], engine.calls[2]
    assert "-preset fast" in joined(first)
    assert "trim=end=5.000:start=1.000" in joined(first)
    assert "xfade" not in joined(first) + joined(second)
    assert joined(engine.calls[3]).startswith("-f concat -safe 0")

    concat_lists = [data.decode() for name, data in engine.writes if name.endswith("concat_list.txt")]
    assert len(concat_lists) == 1
    assert "_normalized_0.mp4" in concat_lists[0].splitlines()[0]
    assert engine.files == {}


def test_original_error_survives_failed_fallback(config):
    engine = FakeEngine(fail_when=lambda args, index: True)
    assembler = make_assembler(engine, config)
    events = []

    with pytest.raises(GraphExecutionError, match="command 0") as excinfo:
        asyncio.run(assembler.export([make_clip(1, trim_start=1.0), make_clip(2)], None, events.append))

    assert excinfo.value.stderr == "Error while filtering"
    # Primary attempt plus exactly one fallback attempt
    assert len(engine.calls) == 2
    assert events[-1].phase == ExportPhase.ERROR
    assert events[-1].message.startswith("Error:")
    assert engine.files == {}


def test_failed_concat_plan_is_not_retried(config):
    engine = FakeEngine(fail_when=lambda args, index: True)
    assembler = make_assembler(engine, config)

    with pytest.raises(GraphExecutionError, match="command 0"):
        asyncio.run(assembler.export([make_clip(1), make_clip(2)]))

    assert len(engine.calls) == 1
    assert engine.files == {}


def test_empty_output_fails_export(config):
    engine = FakeEngine(output_data=lambda args: b'')
    assembler = make_assembler(engine, config)
    events = []

    with pytest.raises(EmptyOutputError):
        asyncio.run(assembler.export([make_clip(1)], None, events.append))

    assert events[-1].phase == ExportPhase.ERROR
    assert engine.files == {}


def test_unreadable_input_fails_before_execution(assembler, engine, tmp_path):
    missing = make_clip(1).model_copy(update={"source": str(tmp_path / "missing.mp4")})

    with pytest.raises(InputFetchError, match="missing.mp4"):
        asyncio.run(assembler.export([make_clip(2), missing]))

    assert engine.calls == []
    assert engine.files == {}


def test_empty_clip_list_rejected(assembler, engine):
    events = []
    with pytest.raises(ExportError, match="No clips"):
        asyncio.run(assembler.export([], None, events.append))

    assert [e.phase for e in events] == [ExportPhase.ERROR]
    assert engine.load_calls == 0


def test_engine_init_failure_propagates(config):
    assembler = make_assembler(FakeEngine(fail_load=True), config)
    events = []

    with pytest.raises(EngineInitError):
        asyncio.run(assembler.export([make_clip(1)], None, events.append))

    assert events[-1].phase == ExportPhase.ERROR


def test_non_export_errors_are_wrapped(assembler, engine):
    async def broken_write(name, data):
        raise OSError("disk full")

    engine.write_file = broken_write

    with pytest.raises(ExportError, match="disk full") as excinfo:
        asyncio.run(assembler.export([make_clip(1)]))

    assert isinstance(excinfo.value.__cause__, OSError)


def test_concurrent_exports_do_not_collide(assembler, engine):
    async def run():
        return await asyncio.gather(
            assembler.export([make_clip(1), make_clip(2)]),
            assembler.export([make_clip(1, transition=TransitionKind.FADE), make_clip(2)]),
        )

    first, second = asyncio.run(run())

    assert first.plan == "concat"
    assert second.plan == "crossfade"
    assert engine.load_calls == 1
    input_names = [name for name, _ in engine.writes]
    assert len(set(input_names)) == len(input_names)
    assert engine.files == {}


def test_webm_output(assembler, engine):
    options = ExportOptions(output_format=OutputFormat.WEBM)
    result, _ = run_export(assembler, [make_clip(1, trim_end=2.0)], options)

    assert result.mime_type == "video/webm"
    assert "-vcodec libvpx-vp9" in joined(engine.calls[0])
    assert engine.calls[0][-2].endswith("_output.webm")


def test_start_export_streams_events(assembler):
    async def run():
        job = assembler.start_export([make_clip(1), make_clip(2)])
        events = [event async for event in job.events()]
        return events, await job.result(), job.done

    events, result, done = asyncio.run(run())

    assert done
    assert result.plan == "concat"
    assert events[-1].phase == ExportPhase.COMPLETE
    assert assembler.get_export_status() == events[-1]
