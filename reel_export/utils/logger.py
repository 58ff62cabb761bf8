"""
Logging setup for the reel export pipeline
"""

import logging
import logging.handlers
from pathlib import Path

ROOT_LOGGER = 'reel_export'


def setup_logging(config: 'Config') -> logging.Logger:
    """Set up logging configuration"""

    log_config = config.logging
    level = log_config.get('level', 'INFO')
    format_str = log_config.get('format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    log_file = log_config.get('file', str(Path(config.paths.logs) / 'reel_export.log'))
    max_size_mb = log_config.get('max_size_mb', 50)
    backup_count = log_config.get('backup_count', 5)

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    # Module loggers (reel_export.video_assembly.*) propagate here
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()

    formatter = logging.Formatter(format_str)

    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if log_config.get('console', True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


class LoggerMixin:
    """Mixin class to add logging capabilities to other classes"""

    @property
    def logger(self) -> logging.Logger:
        """Get logger instance"""
        if not hasattr(self, '_logger'):
            self._logger = logging.getLogger(f'{ROOT_LOGGER}.{self.__class__.__name__}')
        return self._logger
