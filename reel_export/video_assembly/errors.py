"""
Export error taxonomy.

Every error raised out of the export pipeline derives from ExportError and
carries a human-readable message suitable for a progress UI.
"""

from typing import Optional


class ExportError(Exception):
    """Unrecoverable failure of an export call"""


class EngineInitError(ExportError):
    """The transcoding engine could not be loaded. Never retried."""


class InputFetchError(ExportError):
    """A source clip or overlay track could not be read"""


class GraphExecutionError(ExportError):
    """The transcoding engine failed while running a command"""

    def __init__(self, message: str, stderr: Optional[str] = None):
        super().__init__(message)
        self.stderr = stderr


class MixVerificationError(ExportError):
    """The narration mix was rejected; recovered by keeping the pre-mix video"""


class EmptyOutputError(ExportError):
    """The final artifact has zero length"""


class FrameExtractionError(ExportError):
    """The last frame of a video could not be extracted"""
