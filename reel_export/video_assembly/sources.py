"""
Source loading

Resolves a source handle to bytes: raw bytes pass through, http(s) URLs are
downloaded, anything else is read as a local file.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import aiohttp

from .errors import InputFetchError
from .video_models import SourceHandle

logger = logging.getLogger(__name__)

_PREVIEW_LENGTH = 80


def describe_handle(handle: SourceHandle) -> str:
    """Short printable form of a handle for error messages"""
    if isinstance(handle, (bytes, bytearray)):
        return f"<{len(handle)} bytes>"
    text = str(handle)
    return f"{text[:_PREVIEW_LENGTH]}..." if len(text) > _PREVIEW_LENGTH else text


class SourceLoader:
    """Loads clip and overlay sources; owns an aiohttp session when used as a context manager"""

    def __init__(self, timeout_seconds: float = 60.0):
        self.timeout_seconds = timeout_seconds
        self.session: Optional[aiohttp.ClientSession] = None
        self._owns_session = False

    async def __aenter__(self):
        """Async context manager entry"""
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            headers={'User-Agent': 'reel-export/0.1'}
        )
        self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    async def load(self, handle: SourceHandle) -> bytes:
        try:
            if isinstance(handle, (bytes, bytearray)):
                data = bytes(handle)
            elif isinstance(handle, str) and handle.startswith(('http://', 'https://')):
                data = await self._fetch(handle)
            else:
                data = await self._read_file(Path(handle))
        except InputFetchError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise InputFetchError(f"Failed to load source ({describe_handle(handle)}): {e}") from e

        if not data:
            raise InputFetchError(f"Failed to load source ({describe_handle(handle)}): empty file")
        return data

    async def _fetch(self, url: str) -> bytes:
        if self.session is None:
            # One-off use outside the context manager
            async with SourceLoader(self.timeout_seconds) as loader:
                return await loader._fetch(url)

        async with self.session.get(url) as response:
            if response.status >= 400:
                raise InputFetchError(
                    f"Failed to load source ({describe_handle(url)}): HTTP {response.status} {response.reason}"
                )
            return await response.read()

    async def _read_file(self, path: Path) -> bytes:
        logger.debug(f"Reading source file {path}")
        return await asyncio.get_running_loop().run_in_executor(None, path.read_bytes)
