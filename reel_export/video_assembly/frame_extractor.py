"""
Last-frame extraction

Grabs the final frame of a clip, used to seed the next scene's generation.
A lightweight OpenCV snapshot is tried first; when it fails the transcoding
engine seeks near end-of-stream and writes one JPEG frame. Every
asynchronous step runs under its own deadline.
"""

import asyncio
import logging
import os
import tempfile
from functools import partial
from typing import Any, Optional, Tuple

import cv2

from ..utils.config import FrameExtractionConfig
from .errors import FrameExtractionError
from .ffmpeg_render import render_last_frame_args
from .session import TranscodingSession, Workspace
from .sources import SourceLoader
from .video_models import ExtractedFrame, SourceHandle

logger = logging.getLogger(__name__)


async def with_deadline(awaitable, timeout: float, message: str):
    """Await with a deadline; a timeout becomes a FrameExtractionError naming the step"""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise FrameExtractionError(message) from e


class OpenCvSnapshot:
    """Blocking OpenCV steps; run in an executor by FrameExtractor"""

    def open(self, path: str) -> Tuple[Any, float]:
        """Open the video and return (capture, duration in seconds)"""
        capture = cv2.VideoCapture(path)
        if not capture.isOpened():
            capture.release()
            raise FrameExtractionError("Failed to load video metadata")
        fps = capture.get(cv2.CAP_PROP_FPS) or 0.0
        frame_count = capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0
        duration = frame_count / fps if fps > 0 else 0.0
        return capture, duration

    def grab(self, capture: Any, duration: float, seek_back: float, jpeg_quality: int) -> bytes:
        """Seek to just before the end and encode that frame as JPEG"""
        target_ms = max(0.0, duration - seek_back) * 1000
        capture.set(cv2.CAP_PROP_POS_MSEC, target_ms)
        ok, frame = capture.read()
        if not ok or frame is None:
            # Some containers only seek reliably by frame index
            frame_count = int(capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
            capture.set(cv2.CAP_PROP_POS_FRAMES, max(0, frame_count - 1))
            ok, frame = capture.read()
        if not ok or frame is None:
            raise FrameExtractionError("Failed to seek video")

        ok, buffer = cv2.imencode('.jpg', frame, [cv2.IMWRITE_JPEG_QUALITY, jpeg_quality])
        if not ok:
            raise FrameExtractionError("Failed to encode frame as JPEG")
        return buffer.tobytes()

    def close(self, capture: Any) -> None:
        capture.release()


class FrameExtractor:
    """Extracts the last frame of a video"""

    def __init__(self,
                 session: TranscodingSession,
                 loader: SourceLoader,
                 config: FrameExtractionConfig,
                 temp_dir: Optional[str] = None,
                 snapshot: Optional[OpenCvSnapshot] = None):
        self.session = session
        self.loader = loader
        self.config = config
        self.temp_dir = temp_dir
        self.snapshot = snapshot or OpenCvSnapshot()

    async def extract_last_frame(self, handle: SourceHandle, timeout_ms: Optional[int] = None) -> ExtractedFrame:
        timeout = (timeout_ms or self.config.timeout_ms) / 1000

        try:
            return await self._extract_via_snapshot(handle, timeout)
        except Exception as e:
            logger.warning(f"Snapshot frame extraction failed, falling back to FFmpeg: {e}")

        return await self._extract_via_engine(handle, timeout)

    async def _extract_via_snapshot(self, handle: SourceHandle, timeout: float) -> ExtractedFrame:
        loop = asyncio.get_running_loop()
        data = await with_deadline(
            self.loader.load(handle), timeout, "Timeout fetching video for frame extraction"
        )

        if self.temp_dir:
            os.makedirs(self.temp_dir, exist_ok=True)
        fd, path = tempfile.mkstemp(suffix='.mp4', dir=self.temp_dir)
        capture = None
        pending = None
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)

            # Shielded so a deadline abandons the worker instead of losing its result
            pending = loop.run_in_executor(None, self.snapshot.open, path)
            capture, duration = await with_deadline(
                asyncio.shield(pending), timeout, "Timeout waiting for video metadata"
            )
            pending = loop.run_in_executor(
                None, self.snapshot.grab, capture, duration,
                self.config.snapshot_seek_back, self.config.jpeg_quality
            )
            image = await with_deadline(
                asyncio.shield(pending), timeout, "Timeout seeking video"
            )
        finally:
            if pending is not None and not pending.done():
                # The worker still owns the capture and the file
                pending.add_done_callback(partial(self._release_late, capture, path))
            else:
                self._release(capture, path)

        return ExtractedFrame(image_bytes=image, mime_type='image/jpeg', method='snapshot')

    def _release(self, capture: Any, path: str) -> None:
        if capture is not None:
            self.snapshot.close(capture)
        os.unlink(path)

    def _release_late(self, capture: Any, path: str, future: asyncio.Future) -> None:
        """Release resources of a step that finished after its deadline"""
        if not future.cancelled() and future.exception() is None and capture is None:
            capture, _ = future.result()
        try:
            self._release(capture, path)
        except OSError as e:
            logger.warning(f"Could not release abandoned snapshot resources: {e}")

    async def _extract_via_engine(self, handle: SourceHandle, timeout: float) -> ExtractedFrame:
        await with_deadline(self.session.acquire(), timeout, "Timeout initializing FFmpeg")
        try:
            async with self.session.exclusive():
                workspace = Workspace(self.session)
                input_name = workspace.name('frame_input', 'mp4')
                output_name = workspace.name('frame_output', 'jpg')
                try:
                    data = await with_deadline(
                        self.loader.load(handle), timeout, "Timeout loading video into FFmpeg"
                    )
                    await with_deadline(
                        workspace.write(input_name, data), timeout, "Timeout writing video into FFmpeg"
                    )
                    args = render_last_frame_args(input_name, output_name, self.config.engine_seek_from_end)
                    await with_deadline(
                        workspace.execute(args, outputs=[output_name]),
                        timeout, "Timeout extracting last frame via FFmpeg"
                    )
                    image = await with_deadline(
                        workspace.read(output_name), timeout, "Timeout reading extracted frame from FFmpeg"
                    )
                finally:
                    await workspace.cleanup()
        finally:
            await self.session.release()

        if not image:
            raise FrameExtractionError("FFmpeg produced an empty frame")
        return ExtractedFrame(image_bytes=image, mime_type='image/jpeg', method='engine')
