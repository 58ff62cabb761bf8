import asyncio

import pytest

from reel_export.video_assembly.errors import InputFetchError
from reel_export.video_assembly.sources import SourceLoader, describe_handle


def test_loader_passes_bytes_through():
    assert asyncio.run(SourceLoader().load(b"abc")) == b"abc"


def test_loader_reads_local_files(tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"movie")

    assert asyncio.run(SourceLoader().load(path)) == b"movie"
    assert asyncio.run(SourceLoader().load(str(path))) == b"movie"


def test_loader_rejects_empty_sources(tmp_path):
    path = tmp_path / "empty.mp4"
    path.write_bytes(b"")

    with pytest.raises(InputFetchError, match="empty file"):
        asyncio.run(SourceLoader().load(path))
    with pytest.raises(InputFetchError):
        asyncio.run(SourceLoader().load(b""))


def test_describe_handle_truncates():
    url = "https://cdn.example.com/" + "a" * 200

    assert len(describe_handle(url)) == 83
    assert describe_handle(b"12345") == "<5 bytes>"
