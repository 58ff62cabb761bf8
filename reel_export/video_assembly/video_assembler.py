"""
Video Assembler

Exports an ordered list of generated clips as one short-form video:
- Scene ordering and input staging
- Plan selection (re-wrap, concat, trim, crossfade)
- Per-clip re-encode fallback when the primary graph fails
- Optional narration mixing
- Last-frame extraction for scene chaining

All engine work of one call happens under the session's exclusive lock and
inside a private Workspace, so temporary files never collide and are always
removed.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from ..utils.config import Config
from .audio_mixer import AudioMixer
from .errors import EmptyOutputError, ExportError, GraphExecutionError
from .ffmpeg_render import (
    concat_list, render_concat_demuxer_args, render_filter_complex, render_plan_args
)
from .frame_extractor import FrameExtractor
from .graph_builder import PlanGraph, PlanKind, build_fallback_plans, build_plan
from .progress import ExportJob, ProgressCallback, ProgressReporter
from .session import TranscodingSession, Workspace
from .sources import SourceLoader
from .timeline_builder import sort_clips
from .video_models import (
    ClipInput, ENCODING_PROFILES, EncodingProfile, ExportOptions, ExportPhase,
    ExportProgress, ExportResult, ExtractedFrame, SourceHandle
)

PREPARE_BAND = (0.0, 40.0)
EXECUTE_BAND = (45.0, 90.0)
MIX_PROGRESS = 92.0
READ_PROGRESS = 96.0

# Simple plans are already stream copies or plain concatenations
FALLBACK_PLANS = (PlanKind.CROSSFADE, PlanKind.TRIM)


class ExportState(str, Enum):
    PREPARING = "preparing"
    EXECUTING = "executing"
    RETRYING = "retrying"
    MIXING = "mixing"
    SUCCESS = "success"
    FAILED = "failed"


class VideoAssembler:
    """
    Short-form video exporter on top of a shared transcoding session.

    Features:
    - Lazy, shared engine initialization
    - Crossfade transitions with matching audio crossfades
    - Trim, mute and silence removal per clip
    - Automatic re-encode fallback when a crossfade or trim graph fails
    - Narration overlay with signed offset and volume
    """

    def __init__(self,
                 session: TranscodingSession,
                 config: Config,
                 loader: Optional[SourceLoader] = None):
        self.config = config
        self.session = session
        self.loader = loader or SourceLoader()
        self.logger = logging.getLogger(__name__)

        self.mixer = AudioMixer(self.loader)
        self.frames = FrameExtractor(session, self.loader, config.frames, temp_dir=config.paths.temp)

        # Last progress event of the export in flight
        self.current_export: Optional[ExportProgress] = None

    async def export(self,
                     clips: Sequence[ClipInput],
                     options: Optional[ExportOptions] = None,
                     progress_callback: Optional[ProgressCallback] = None) -> ExportResult:
        """
        Export `clips` as a single video.

        Args:
            clips: Clips to assemble; reordered by scene number
            options: Output format, narration overlay, silence removal
            progress_callback: Receives every ExportProgress event

        Returns:
            ExportResult with the artifact bytes and any warnings

        Raises:
            ExportError: on any failure, after an `error` progress event
        """
        options = options or ExportOptions()

        def sink(event: ExportProgress) -> None:
            self.current_export = event
            if progress_callback:
                progress_callback(event)

        reporter = ProgressReporter(sink)
        start_time = time.time()

        try:
            result = await self._export(clips, options, reporter)
        except ExportError as e:
            self._state(ExportState.FAILED, str(e))
            reporter.error(f"Error: {e}")
            raise
        except Exception as e:
            self._state(ExportState.FAILED, str(e))
            reporter.error(f"Error: {e}")
            raise ExportError(f"Export failed: {e}") from e

        self._state(ExportState.SUCCESS, f"{result.size_mb:.2f} MB in {time.time() - start_time:.1f}s")
        return result

    def start_export(self,
                     clips: Sequence[ClipInput],
                     options: Optional[ExportOptions] = None) -> ExportJob:
        """Start an export in the background; progress is delivered as a stream"""
        job = ExportJob()
        task = asyncio.get_running_loop().create_task(self.export(clips, options, job.send))
        job.attach(task)
        return job

    async def extract_last_frame(self,
                                 handle: SourceHandle,
                                 timeout_ms: Optional[int] = None) -> ExtractedFrame:
        """Last frame of a clip as JPEG, used to seed the next scene"""
        return await self.frames.extract_last_frame(handle, timeout_ms)

    def get_export_status(self) -> Optional[ExportProgress]:
        return self.current_export

    def _state(self, state: ExportState, detail: str = "") -> None:
        if state == ExportState.FAILED:
            self.logger.error(f"Export {state.value}: {detail}")
        elif state == ExportState.RETRYING:
            self.logger.warning(f"Export {state.value}: {detail}")
        else:
            self.logger.info(f"Export {state.value}" + (f": {detail}" if detail else ""))

    async def _export(self,
                      clips: Sequence[ClipInput],
                      options: ExportOptions,
                      reporter: ProgressReporter) -> ExportResult:
        if not clips:
            raise ExportError("No clips provided for export")

        ordered = sort_clips(clips)
        profile = ENCODING_PROFILES[options.output_format]

        reporter.emit(ExportPhase.LOADING, 0, "Loading transcoding engine...")
        await self.session.acquire()
        try:
            reporter.emit(ExportPhase.LOADING, 100, "Transcoding engine ready")

            async with self.session.exclusive():
                workspace = Workspace(self.session, max_warnings=self.config.export.max_warnings)
                try:
                    data, plan, used_fallback = await self._run(
                        ordered, options, profile, workspace, reporter
                    )
                finally:
                    warnings = await workspace.cleanup()
        finally:
            await self.session.release()

        reporter.emit(ExportPhase.COMPLETE, 100, "Export complete!")
        return ExportResult(
            data=data,
            mime_type=options.output_format.mime_type,
            output_format=options.output_format,
            plan=plan.kind.value,
            used_fallback=used_fallback,
            duration=plan.duration,
            warnings=list(warnings),
        )

    async def _run(self,
                   clips: List[ClipInput],
                   options: ExportOptions,
                   profile: EncodingProfile,
                   workspace: Workspace,
                   reporter: ProgressReporter) -> Tuple[bytes, PlanGraph, bool]:
        self._state(ExportState.PREPARING, f"{len(clips)} clip(s), call {workspace.call_id}")
        input_names = await self._stage_inputs(clips, workspace, reporter)

        plan = build_plan(clips, options, self.config.export)
        output_name = workspace.name('output', options.output_format.value)
        self._state(ExportState.EXECUTING, f"{plan.kind.value} plan, {plan.duration:.2f}s expected")

        reporter.emit(ExportPhase.CONCATENATING, EXECUTE_BAND[0], "Applying transitions...")
        used_fallback = False
        try:
            await self._execute_plan(plan, input_names, output_name, profile, workspace, reporter)
        except GraphExecutionError as primary:
            if plan.kind not in FALLBACK_PLANS:
                raise
            self._state(ExportState.RETRYING, f"{plan.kind.value} plan failed ({primary}), re-encoding clips")
            await workspace.release(output_name)
            try:
                await self._reencode_fallback(clips, options, input_names, output_name,
                                              profile, workspace, reporter)
            except Exception as fallback_error:
                self.logger.error(f"Re-encode fallback failed: {fallback_error}")
                raise primary
            used_fallback = True

        final_name = output_name
        if options.audio_overlay is not None:
            self._state(ExportState.MIXING)
            reporter.emit(ExportPhase.FINALIZING, MIX_PROGRESS, "Mixing audio...")
            outcome = await self.mixer.mix(
                workspace, output_name, options.audio_overlay,
                options.output_format, plan.duration
            )
            if outcome.mixed:
                await workspace.release(output_name)
                final_name = outcome.output_name

        reporter.emit(ExportPhase.FINALIZING, READ_PROGRESS, "Finalizing...")
        data = await workspace.read(final_name)
        if not data:
            raise EmptyOutputError("FFmpeg produced empty output file")

        return data, plan, used_fallback

    async def _stage_inputs(self,
                            clips: List[ClipInput],
                            workspace: Workspace,
                            reporter: ProgressReporter) -> List[str]:
        """Fetch every clip and write it into the workspace, in scene order"""
        total = len(clips)
        low, high = PREPARE_BAND
        reporter.emit(ExportPhase.PREPARING, low, "Preparing clips...", 0, total)

        input_names = []
        for i, clip in enumerate(clips):
            data = await self.loader.load(clip.source)
            name = await workspace.write(workspace.name(f'input_{i}', 'mp4'), data)
            input_names.append(name)
            reporter.emit(
                ExportPhase.PREPARING,
                round(low + (i + 1) / total * (high - low)),
                f"Prepared scene {clip.scene_number} ({i + 1}/{total})",
                i + 1, total
            )
        return input_names

    async def _execute_plan(self,
                            plan: PlanGraph,
                            input_names: List[str],
                            output_name: str,
                            profile: EncodingProfile,
                            workspace: Workspace,
                            reporter: ProgressReporter) -> None:
        args = render_plan_args(plan, input_names, output_name, profile)
        if not plan.is_passthrough:
            self.logger.debug(f"Filter graph: {render_filter_complex(plan, input_names)}")

        await workspace.execute(
            args,
            outputs=[output_name],
            band=EXECUTE_BAND,
            on_progress=lambda p: reporter.emit(ExportPhase.CONCATENATING, p, "Applying transitions..."),
            expected_duration=plan.duration,
        )

    async def _reencode_fallback(self,
                                 clips: List[ClipInput],
                                 options: ExportOptions,
                                 input_names: List[str],
                                 output_name: str,
                                 profile: EncodingProfile,
                                 workspace: Workspace,
                                 reporter: ProgressReporter) -> None:
        """Normalize every clip on its own, then join them with a stream copy"""
        plans = build_fallback_plans(clips, options, self.config.export)
        extension = options.output_format.value
        total = len(plans)
        low, high = EXECUTE_BAND
        step = (high - low) / total

        normalized = []
        for i, (clip_plan, input_name) in enumerate(zip(plans, input_names)):
            name = workspace.name(f'normalized_{i}', extension)
            band = (low + i * step, low + (i + 1) * step)
            message = f"Re-encoding scene {clips[i].scene_number}..."
            reporter.emit(ExportPhase.CONCATENATING, band[0], message, i + 1, total)

            args = render_plan_args(clip_plan, [input_name], name, profile, fallback=True)
            await workspace.execute(
                args,
                outputs=[name],
                band=band,
                on_progress=lambda p, m=message: reporter.emit(ExportPhase.CONCATENATING, p, m),
                expected_duration=clip_plan.duration,
            )
            normalized.append(name)

        list_name = workspace.name('concat_list', 'txt')
        await workspace.write(list_name, concat_list(normalized).encode('utf-8'))
        await workspace.execute(
            render_concat_demuxer_args(list_name, output_name, profile),
            outputs=[output_name],
        )

        for name in normalized + [list_name]:
            await workspace.release(name)
