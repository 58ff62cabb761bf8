import logging
from pathlib import Path

import pytest

from reel_export.utils.config import Config
from reel_export.utils.logger import LoggerMixin, setup_logging

CONFIG_PATH = Path(__file__).parent.parent / "configs" / "config.yaml"


def test_shipped_config_matches_defaults():
    config = Config.load(str(CONFIG_PATH))

    assert config.export.target_width == 1080
    assert config.export.target_height == 1920
    assert config.export.fps == 30
    assert config.export.default_transition == "fade"
    assert config.export.default_transition_duration == 0.5
    assert config.export.silence_threshold == "-50dB"
    assert config.frames.timeout_ms == 20000
    assert config.engine.binary == "ffmpeg"
    assert config.engine.probe_binary == "ffprobe"


def test_missing_config_file():
    with pytest.raises(FileNotFoundError):
        Config.load("does/not/exist.yaml")


def test_empty_config_uses_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")

    config = Config.load(str(path))
    assert config.export.audio_sample_rate == 44100
    assert config.frames.jpeg_quality == 92


def test_save_and_reload(tmp_path):
    config = Config()
    config.export.fps = 24
    config.engine.binary = "/opt/ffmpeg/bin/ffmpeg"

    path = tmp_path / "nested" / "config.yaml"
    config.save(str(path))
    reloaded = Config.load(str(path))

    assert reloaded.export.fps == 24
    assert reloaded.engine.binary == "/opt/ffmpeg/bin/ffmpeg"


def test_setup_logging_writes_rotating_file(tmp_path):
    config = Config()
    config.paths.logs = str(tmp_path / "logs")
    config.logging = {'level': 'DEBUG', 'console': False}

    logger = setup_logging(config)
    logging.getLogger('reel_export.video_assembly.test').info("hello")
    for handler in logger.handlers:
        handler.flush()

    assert (tmp_path / "logs" / "reel_export.log").read_text().strip().endswith("hello")
    assert len(logger.handlers) == 1
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_logger_mixin_names_logger_after_class():
    class Probe(LoggerMixin):
        pass

    assert Probe().logger.name == "reel_export.Probe"
