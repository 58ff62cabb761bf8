import asyncio
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import pytest

from reel_export.utils.config import Config, PathsConfig
from reel_export.video_assembly.errors import GraphExecutionError
from reel_export.video_assembly.ffmpeg_engine import TranscodingEngine
from reel_export.video_assembly.session import TranscodingSession
from reel_export.video_assembly.video_assembler import VideoAssembler
from reel_export.video_assembly.video_models import ClipInput, ClipTransition, TransitionKind


def output_name_of(args: Sequence[str]) -> str:
    """The output file of an ffmpeg argument list (last non-option argument)"""
    return [arg for arg in args if not arg.startswith('-')][-1]


class FakeEngine(TranscodingEngine):
    """In-memory engine: records commands and fabricates their outputs"""

    def __init__(self,
                 fail_when: Optional[Callable[[List[str], int], bool]] = None,
                 output_data: Callable[[List[str]], bytes] = lambda args: b'fake-media',
                 durations: Optional[Dict[str, float]] = None,
                 progress: Sequence[float] = (0.5, 1.3),
                 fail_load: bool = False,
                 load_delay: float = 0.0):
        super().__init__()
        self.files: Dict[str, bytes] = {}
        self.writes: List[Tuple[str, bytes]] = []
        self.calls: List[List[str]] = []
        self.fail_when = fail_when or (lambda args, index: False)
        self.output_data = output_data
        self.durations = durations or {}
        self.progress = progress
        self.fail_load = fail_load
        self.load_delay = load_delay
        self.load_calls = 0
        self.closed = False

    async def load(self) -> None:
        self.load_calls += 1
        await asyncio.sleep(self.load_delay)
        if self.fail_load:
            raise RuntimeError("ffmpeg binary missing")

    async def write_file(self, name: str, data: bytes) -> None:
        self.writes.append((name, bytes(data)))
        self.files[name] = bytes(data)

    async def read_file(self, name: str) -> bytes:
        if name not in self.files:
            raise FileNotFoundError(name)
        return self.files[name]

    async def delete_file(self, name: str) -> None:
        if name not in self.files:
            raise FileNotFoundError(name)
        del self.files[name]

    async def list_files(self) -> List[str]:
        return sorted(self.files)

    async def exec(self, args, expected_duration=None) -> None:
        args = list(args)
        index = len(self.calls)
        self.calls.append(args)
        for ratio in self.progress:
            self._emit_progress(ratio)

        output = output_name_of(args)
        if self.fail_when(args, index):
            self.files[output] = b'partial'
            raise GraphExecutionError(f"scripted failure of command {index}", stderr="Error while filtering")
        self.files[output] = self.output_data(args)

    async def probe_duration(self, name: str) -> Optional[float]:
        for suffix, duration in self.durations.items():
            if name.endswith(suffix):
                return duration
        return None

    async def close(self) -> None:
        self.closed = True


def make_clip(scene: int, duration: float = 5.0, transition: Optional[TransitionKind] = None,
              transition_duration: float = 0.5, **kwargs) -> ClipInput:
    transition_out = ClipTransition(kind=transition, duration=transition_duration) if transition else None
    return ClipInput(
        source=f"clip-{scene}".encode(),
        scene_number=scene,
        duration=duration,
        transition_out=transition_out,
        **kwargs
    )


def joined(args: Sequence[str]) -> str:
    return ' '.join(args)


@pytest.fixture
def config(tmp_path):
    return Config(paths=PathsConfig(
        temp=str(tmp_path / "temp"),
        output=str(tmp_path / "output"),
        logs=str(tmp_path / "logs"),
    ))


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def session(engine):
    return TranscodingSession(lambda: engine)


@pytest.fixture
def assembler(session, config):
    return VideoAssembler(session, config)
