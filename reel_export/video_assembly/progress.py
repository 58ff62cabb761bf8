"""
Export progress

ProgressReporter enforces the phase order of an export (any phase may still
jump to error). ExportJob exposes the events of a running export as an async
stream next to its eventual result.
"""

import asyncio
from typing import AsyncIterator, Callable, Optional

from .video_models import ExportPhase, ExportProgress, ExportResult

ProgressCallback = Callable[[ExportProgress], None]

_DONE = object()


class ProgressReporter:
    """Builds progress events and forwards them to a sink"""

    def __init__(self, sink: Optional[ProgressCallback] = None):
        self._sink = sink
        self.last: Optional[ExportProgress] = None

    @property
    def phase(self) -> Optional[ExportPhase]:
        return self.last.phase if self.last else None

    def emit(self,
             phase: ExportPhase,
             progress: float,
             message: str,
             current_file: Optional[int] = None,
             total_files: Optional[int] = None) -> ExportProgress:
        if self.last is not None and phase != ExportPhase.ERROR:
            previous = self.last.phase
            if previous == ExportPhase.ERROR or phase.rank < previous.rank:
                raise ValueError(f"progress phase cannot go from {previous.value} to {phase.value}")

        event = ExportProgress(
            phase=phase,
            progress=min(max(progress, 0.0), 100.0),
            message=message,
            current_file=current_file,
            total_files=total_files,
        )
        self.last = event
        if self._sink is not None:
            self._sink(event)
        return event

    def error(self, message: str) -> ExportProgress:
        return self.emit(ExportPhase.ERROR, 0.0, message)


class ExportJob:
    """A running export: iterate events() for progress, await result() for the artifact"""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    def send(self, event: ExportProgress) -> None:
        self._queue.put_nowait(event)

    def attach(self, task: asyncio.Task) -> None:
        self._task = task
        task.add_done_callback(lambda _: self._queue.put_nowait(_DONE))

    async def events(self) -> AsyncIterator[ExportProgress]:
        """Progress events in emission order; ends when the export finishes"""
        while True:
            item = await self._queue.get()
            if item is _DONE:
                return
            yield item

    async def result(self) -> ExportResult:
        if self._task is None:
            raise RuntimeError("export job has not been started")
        return await self._task

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()
