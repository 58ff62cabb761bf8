"""Configuration management for the export pipeline"""

import yaml
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class EngineConfig(BaseModel):
    binary: str = "ffmpeg"
    probe_binary: str = "ffprobe"
    working_dir: Optional[str] = None  # defaults to a fresh dir under paths.temp
    init_timeout_seconds: float = 30.0
    close_when_idle: bool = False


class ExportConfig(BaseModel):
    target_width: int = 1080
    target_height: int = 1920
    fps: int = Field(default=30, ge=1, le=120)
    pixel_format: str = "yuv420p"
    audio_sample_rate: int = 44100
    default_transition: str = "fade"
    default_transition_duration: float = Field(default=0.5, gt=0.0)
    silence_threshold: str = "-50dB"
    max_warnings: int = Field(default=20, ge=1)


class FrameExtractionConfig(BaseModel):
    timeout_ms: int = Field(default=20000, gt=0)
    snapshot_seek_back: float = 0.05  # seconds before end-of-stream
    engine_seek_from_end: float = 0.1
    jpeg_quality: int = Field(default=92, ge=1, le=100)


class PathsConfig(BaseModel):
    """Storage paths configuration"""
    temp: str = "./temp"
    output: str = "./output"
    logs: str = "./logs"


class Config(BaseModel):
    engine: EngineConfig = Field(default_factory=EngineConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    frames: FrameExtractionConfig = Field(default_factory=FrameExtractionConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    logging: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def load(cls, config_path: str) -> "Config":
        """Load configuration from YAML file"""
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    def save(self, config_path: str):
        """Save configuration to YAML file"""
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self.model_dump(), f, default_flow_style=False)
