"""
Transcoding Engine

The export pipeline talks to the transcoder only through the
TranscodingEngine contract: named files in the engine's own storage, argument
lists to execute, and a progress subscription. FfmpegEngine implements it on
top of the local ffmpeg binary with a private working directory as storage.
"""

import abc
import asyncio
import re
import shutil
import subprocess
import tempfile
from functools import partial
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import ffmpeg

from ..utils.config import EngineConfig
from ..utils.logger import LoggerMixin
from .errors import EngineInitError, GraphExecutionError

ProgressHandler = Callable[[float], None]

_SAFE_NAME = re.compile(r'^[A-Za-z0-9_.\-]+$')
_STDERR_TAIL = 2000


class TranscodingEngine(abc.ABC):
    """Opaque transcoding service: named files, commands, progress"""

    def __init__(self):
        self._progress_handlers: List[ProgressHandler] = []

    @abc.abstractmethod
    async def load(self) -> None:
        """Prepare the engine; raise on failure"""

    @abc.abstractmethod
    async def write_file(self, name: str, data: bytes) -> None:
        ...

    @abc.abstractmethod
    async def read_file(self, name: str) -> bytes:
        ...

    @abc.abstractmethod
    async def delete_file(self, name: str) -> None:
        ...

    @abc.abstractmethod
    async def list_files(self) -> List[str]:
        ...

    @abc.abstractmethod
    async def exec(self, args: Sequence[str], expected_duration: Optional[float] = None) -> None:
        """Run one command; raise GraphExecutionError when it fails"""

    async def probe_duration(self, name: str) -> Optional[float]:
        """Media duration in seconds, or None when unknown"""
        return None

    async def close(self) -> None:
        pass

    def on_progress(self, handler: ProgressHandler) -> None:
        self._progress_handlers.append(handler)

    def off_progress(self, handler: ProgressHandler) -> None:
        if handler in self._progress_handlers:
            self._progress_handlers.remove(handler)

    @property
    def progress_listener_count(self) -> int:
        return len(self._progress_handlers)

    def _emit_progress(self, ratio: float) -> None:
        for handler in list(self._progress_handlers):
            handler(ratio)


class FfmpegEngine(TranscodingEngine, LoggerMixin):
    """Runs the ffmpeg binary as a subprocess inside a private directory"""

    def __init__(self, config: EngineConfig, temp_root: Optional[str] = None):
        super().__init__()
        self.config = config
        self.binary = config.binary
        self.temp_root = temp_root
        self.working_dir: Optional[Path] = None
        self._owns_working_dir = False

    async def load(self) -> None:
        """Check the binary and create the working directory"""
        try:
            process = await asyncio.create_subprocess_exec(
                self.binary, '-version',
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
            stdout, _ = await process.communicate()
        except (FileNotFoundError, PermissionError) as e:
            raise EngineInitError(f"FFmpeg binary not available: {self.binary} ({e})") from e

        if process.returncode != 0:
            raise EngineInitError(f"FFmpeg binary failed to start: {self.binary}")

        version_line = stdout.decode(errors='replace').splitlines()[0] if stdout else "unknown"
        self.logger.info(f"FFmpeg available: {version_line}")

        if self.config.working_dir:
            self.working_dir = Path(self.config.working_dir)
            self.working_dir.mkdir(parents=True, exist_ok=True)
        else:
            if self.temp_root:
                Path(self.temp_root).mkdir(parents=True, exist_ok=True)
            self.working_dir = Path(tempfile.mkdtemp(prefix='reel_export_', dir=self.temp_root))
            self._owns_working_dir = True

    def _path(self, name: str) -> Path:
        if self.working_dir is None:
            raise RuntimeError("engine used before load()")
        if not _SAFE_NAME.match(name):
            raise ValueError(f"invalid engine file name: {name!r}")
        return self.working_dir / name

    async def write_file(self, name: str, data: bytes) -> None:
        path = self._path(name)
        await asyncio.get_running_loop().run_in_executor(None, path.write_bytes, data)

    async def read_file(self, name: str) -> bytes:
        path = self._path(name)
        return await asyncio.get_running_loop().run_in_executor(None, path.read_bytes)

    async def delete_file(self, name: str) -> None:
        self._path(name).unlink()

    async def list_files(self) -> List[str]:
        if self.working_dir is None:
            return []
        return sorted(p.name for p in self.working_dir.iterdir() if p.is_file())

    async def exec(self, args: Sequence[str], expected_duration: Optional[float] = None) -> None:
        if self.working_dir is None:
            raise RuntimeError("engine used before load()")

        cmd = [self.binary, '-hide_banner', '-nostats', '-progress', 'pipe:1', *args]
        self.logger.debug(f"FFmpeg exec: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(self.working_dir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise GraphExecutionError(f"Could not start FFmpeg: {e}") from e

        try:
            _, stderr = await asyncio.gather(
                self._pump_progress(process.stdout, expected_duration),
                process.stderr.read()
            )
            await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        if process.returncode != 0:
            error_msg = stderr.decode(errors='replace')[-_STDERR_TAIL:]
            self.logger.error(f"FFmpeg failed ({process.returncode}): {error_msg}")
            raise GraphExecutionError(
                f"FFmpeg exited with code {process.returncode}", stderr=error_msg
            )

    async def _pump_progress(self, stream, expected_duration: Optional[float]) -> None:
        """Forward `out_time_us` lines as a raw ratio of the expected duration.

        The ratio is not clamped; chained filters can report past the end.
        """
        while True:
            line = await stream.readline()
            if not line:
                break
            key, _, value = line.decode(errors='replace').strip().partition('=')
            if key in ('out_time_us', 'out_time_ms') and expected_duration:
                try:
                    # Both keys are microseconds in current ffmpeg builds
                    elapsed = int(value) / 1_000_000
                except ValueError:
                    continue
                self._emit_progress(elapsed / expected_duration)
            elif key == 'progress' and value == 'end':
                self._emit_progress(1.0)

    async def probe_duration(self, name: str) -> Optional[float]:
        """Duration via ffprobe, like the assembler's audio length check"""
        path = self._path(name)
        probe_call = partial(ffmpeg.probe, str(path), cmd=self.config.probe_binary)
        try:
            probe = await asyncio.get_running_loop().run_in_executor(None, probe_call)
        except ffmpeg.Error as e:
            self.logger.warning(f"Could not probe {name}: {e.stderr.decode(errors='replace') if e.stderr else e}")
            return None
        except OSError as e:
            self.logger.warning(f"ffprobe not available ({self.config.probe_binary}): {e}")
            return None

        duration = probe.get('format', {}).get('duration')
        if duration is None:
            durations = [float(s['duration']) for s in probe.get('streams', []) if 'duration' in s]
            return max(durations) if durations else None
        return float(duration)

    async def close(self) -> None:
        if self.working_dir is not None and self._owns_working_dir:
            shutil.rmtree(self.working_dir, ignore_errors=True)
            self.logger.info(f"Removed engine working dir {self.working_dir}")
        self.working_dir = None


def ffmpeg_version(binary: str = 'ffmpeg') -> Optional[str]:
    """First line of `ffmpeg -version`, or None when the binary is missing"""
    try:
        result = subprocess.run([binary, '-version'], capture_output=True, text=True, timeout=10)
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.splitlines()[0] if result.stdout else None
