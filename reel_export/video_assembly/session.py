"""
Transcoding Session

Owns the one shared transcoding engine. The engine is created lazily on the
first acquire(); concurrent callers wait on the in-flight initialization
instead of starting another one. Runs are serialized through exclusive().

Workspace gives one export call its own file namespace inside the engine
storage and remembers every name it touched so that cleanup can remove them
all, whatever the outcome.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import Callable, List, Optional, Sequence, Tuple

from ..utils.config import Config
from ..utils.logger import LoggerMixin
from .errors import EngineInitError, GraphExecutionError
from .ffmpeg_engine import FfmpegEngine, TranscodingEngine

PercentCallback = Callable[[float], None]


class TranscodingSession(LoggerMixin):
    """Reference-counted handle to a lazily loaded transcoding engine"""

    def __init__(self,
                 engine_factory: Callable[[], TranscodingEngine],
                 init_timeout: Optional[float] = None,
                 close_when_idle: bool = False):
        self._engine_factory = engine_factory
        self._engine: Optional[TranscodingEngine] = None
        self._init_timeout = init_timeout
        self._close_when_idle = close_when_idle
        self._init_lock = asyncio.Lock()
        self._run_lock = asyncio.Lock()
        self._refs = 0
        self.init_count = 0

    @classmethod
    def from_config(cls, config: Config) -> "TranscodingSession":
        return cls(
            lambda: FfmpegEngine(config.engine, temp_root=config.paths.temp),
            init_timeout=config.engine.init_timeout_seconds,
            close_when_idle=config.engine.close_when_idle,
        )

    @property
    def is_loaded(self) -> bool:
        return self._engine is not None

    @property
    def refs(self) -> int:
        return self._refs

    @property
    def engine(self) -> TranscodingEngine:
        if self._engine is None:
            raise RuntimeError("transcoding session used before acquire()")
        return self._engine

    async def acquire(self) -> TranscodingEngine:
        """Return the ready engine, loading it on first use"""
        if self._engine is None:
            async with self._init_lock:
                # Another caller may have finished loading while we waited
                if self._engine is None:
                    self._engine = await self._load()
        self._refs += 1
        return self._engine

    async def _load(self) -> TranscodingEngine:
        engine = self._engine_factory()
        self.init_count += 1
        self.logger.info("Loading transcoding engine...")
        try:
            if self._init_timeout:
                await asyncio.wait_for(engine.load(), timeout=self._init_timeout)
            else:
                await engine.load()
        except EngineInitError:
            raise
        except asyncio.TimeoutError as e:
            raise EngineInitError(
                f"Transcoding engine did not load within {self._init_timeout}s"
            ) from e
        except Exception as e:
            raise EngineInitError(f"Failed to load transcoding engine: {e}") from e
        self.logger.info("Transcoding engine loaded")
        return engine

    async def release(self) -> None:
        self._refs = max(0, self._refs - 1)
        if self._refs == 0 and self._close_when_idle:
            await self.close()

    async def close(self) -> None:
        if self._engine is not None:
            engine, self._engine = self._engine, None
            await engine.close()

    async def __aenter__(self) -> "TranscodingSession":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release()

    @asynccontextmanager
    async def exclusive(self):
        """Hold the engine for one export or frame extraction"""
        async with self._run_lock:
            yield self.engine

    async def execute(self,
                      args: Sequence[str],
                      band: Tuple[float, float] = (0.0, 100.0),
                      on_progress: Optional[PercentCallback] = None,
                      expected_duration: Optional[float] = None) -> None:
        """Run one command, reporting progress inside `band`.

        Exactly one progress listener is installed for the duration of the
        run and removed afterwards, on failure as well.

        Only I/O and timeout failures become GraphExecutionError; misuse
        such as an invalid file name propagates as-is.
        """
        engine = self.engine
        low, high = band

        def handler(ratio: float) -> None:
            # Chained filter stages can report past 1.0
            clamped = min(max(ratio, 0.0), 1.0)
            if on_progress is not None:
                on_progress(round(low + clamped * (high - low), 1))

        engine.on_progress(handler)
        try:
            await engine.exec(args, expected_duration)
        except (OSError, asyncio.TimeoutError) as e:
            raise GraphExecutionError(f"Transcoding command failed: {e}") from e
        finally:
            engine.off_progress(handler)


class Workspace(LoggerMixin):
    """Per-call namespace of temporary files in engine storage"""

    def __init__(self, session: TranscodingSession, call_id: Optional[str] = None, max_warnings: int = 20):
        self.session = session
        self.call_id = call_id or uuid.uuid4().hex[:12]
        self.max_warnings = max_warnings
        self.warnings: List[str] = []
        self._names: List[str] = []

    @property
    def tracked_names(self) -> List[str]:
        return list(self._names)

    def name(self, stem: str, extension: str) -> str:
        return f"{self.call_id}_{stem}.{extension}"

    def track(self, name: str) -> str:
        if name not in self._names:
            self._names.append(name)
        return name

    def warn(self, message: str) -> None:
        self.logger.warning(message)
        if len(self.warnings) < self.max_warnings:
            self.warnings.append(message)

    async def write(self, name: str, data: bytes) -> str:
        self.track(name)
        await self.session.engine.write_file(name, data)
        return name

    async def read(self, name: str) -> bytes:
        return await self.session.engine.read_file(name)

    async def execute(self, args: Sequence[str], outputs: Sequence[str] = (), **kwargs) -> None:
        # A failed run can still leave partial outputs behind
        for name in outputs:
            self.track(name)
        await self.session.execute(args, **kwargs)

    async def release(self, name: str) -> bool:
        """Best-effort delete; failures become warnings, never exceptions"""
        try:
            await self.session.engine.delete_file(name)
        except FileNotFoundError:
            pass
        except Exception as e:
            self.warn(f"Could not delete temporary file {name}: {e}")
            return False
        if name in self._names:
            self._names.remove(name)
        return True

    async def cleanup(self) -> List[str]:
        """Delete every file this call touched and return the warnings"""
        if not self.session.is_loaded:
            return self.warnings
        for name in list(self._names):
            await self.release(name)
        if self._names:
            self.logger.debug(f"Leftover temporary files: {self._names}")
        else:
            self.logger.debug(f"Workspace {self.call_id} cleaned up")
        return self.warnings
