"""Content-addressed names for intermediate and final artifacts."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

CHUNK_SIZE = 1024
FINAL_BASE_NAME = 'discord_ready_video'
AUDIO_EXTENSION = '.aac'
VIDEO_EXTENSION = '.mp4'

__all__ = [
    'WorkPaths',
    'content_hash',
    'derive_work_paths',
]


@dataclass(frozen=True)
class WorkPaths:
    audio_path: Path
    pass_output_path: Path
    final_path: Path


def content_hash(path: Union[str, Path]) -> str:
    """SHA-1 hex digest of the file's bytes."""
    hasher = hashlib.sha1()
    with open(path, 'rb') as file:
        for chunk in iter(lambda: file.read(CHUNK_SIZE), b''):
            hasher.update(chunk)
    return hasher.hexdigest()


def derive_work_paths(source: Union[str, Path], final_path: Optional[Union[str, Path]] = None) -> WorkPaths:
    """
    Place the intermediate audio artifact and the per-pass output beside the source,
    named after the source's content hash.

    Without an explicit final path the result lands in 'discord_ready_video.mp4'
    next to the source.
    """
    source = Path(source)
    digest = content_hash(source)
    parent = source.parent
    return WorkPaths(
        audio_path=parent / f"{digest}{AUDIO_EXTENSION}",
        pass_output_path=parent / f"{digest}{VIDEO_EXTENSION}",
        final_path=Path(final_path) if final_path else parent / f"{FINAL_BASE_NAME}{VIDEO_EXTENSION}",
    )
