from __future__ import annotations

import logging
import shutil
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import unquote, urlparse

from dtbmerge.daisy202.builder import BuildState
from dtbmerge.model import AudioSegment, MediaEntry
from dtbmerge.settings import allowed_tail_audio as configured_tail_audio
from dtbmerge.utils import serialize_smil, serialize_xhtml

logger = logging.getLogger(__name__)


class AudioMappingError(RuntimeError):
    """Raised when the audio segments of a unit cannot be mapped onto a single output file."""

    def __init__(self, message: str, *, file_name: str, segments: Sequence[AudioSegment]) -> None:
        super().__init__(message)
        self.file_name = file_name
        self.segments = list(segments)


class UnsupportedAudioMappingError(AudioMappingError):
    """Raised when producing an output file would require editing audio."""


class MediaPlacementError(RuntimeError):
    """Raised when a media file cannot be placed inside the package directory."""

    def __init__(self, message: str, *, href: str) -> None:
        super().__init__(message)
        self.href = href


def clear_directory(destination: Path) -> None:
    if destination.exists():
        for child in destination.iterdir():
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()
    destination.mkdir(parents=True, exist_ok=True)


def media_targets(entries: Sequence[MediaEntry], destination: Path) -> List[Tuple[Path, Path]]:
    """Map media entries onto ``(source, target)`` pairs inside ``destination``.

    Hrefs must be relative paths that stay inside the package. Two different
    sources claiming the same target are rejected.
    """
    root = destination.resolve()
    claimed: Dict[Path, Path] = {}
    targets: List[Tuple[Path, Path]] = []
    for entry in entries:
        parsed = urlparse(entry.href)
        relative = unquote(parsed.path)
        if parsed.scheme or parsed.netloc or not relative or PurePosixPath(relative).is_absolute():
            raise MediaPlacementError(
                f"Media reference {entry.href!r} is not a relative path inside the package",
                href=entry.href,
            )
        target = (destination / relative).resolve()
        if not target.is_relative_to(root) or target == root:
            raise MediaPlacementError(
                f"Media reference {entry.href!r} resolves outside the package directory",
                href=entry.href,
            )
        previous = claimed.get(target)
        if previous is None:
            claimed[target] = entry.source
            targets.append((entry.source, target))
        elif previous != entry.source:
            raise MediaPlacementError(
                f"Media reference {entry.href!r} is used for both {previous} and {entry.source}",
                href=entry.href,
            )
    return targets


def copy_audio_file(
    file_name: str,
    segments: Sequence[AudioSegment],
    destination: Path,
    tolerance: float,
) -> Path:
    if len(segments) == 1:
        segment = segments[0]
        if segment.file_duration < segment.clip_end:
            raise AudioMappingError(
                f"Audio segment clip-end {segment.clip_end:.3f}s is beyond the end of audio file "
                f"{segment.audio_file} ({segment.file_duration:.3f}s)",
                file_name=file_name,
                segments=segments,
            )
        if segment.file_duration < segment.clip_end + tolerance:
            target = destination / file_name
            shutil.copy2(segment.audio_file, target)
            logger.debug("Copied %s to %s (%.3fs of audio used)", segment.audio_file, target, segment.duration)
            return target
        raise UnsupportedAudioMappingError(
            f"{file_name}: {segment.file_duration - segment.clip_end:.3f}s of audio after clip-end "
            f"{segment.clip_end:.3f}s in {segment.audio_file} exceeds the allowed {tolerance:.3f}s; "
            "trimming audio files is not supported",
            file_name=file_name,
            segments=segments,
        )
    bounds = ", ".join(
        f"{segment.audio_file.name} [{segment.clip_begin:.3f}s-{segment.clip_end:.3f}s, {segment.duration:.3f}s]"
        for segment in segments
    )
    raise UnsupportedAudioMappingError(
        f"{file_name}: expected exactly one audio segment, got {len(segments)} ({bounds}); "
        "only DTBs with one audio file per heading are supported",
        file_name=file_name,
        segments=segments,
    )


def save_package(
    state: BuildState,
    destination,
    *,
    allowed_tail_audio: Optional[float] = None,
) -> Path:
    """Write a built DTB into ``destination``, replacing whatever the directory held."""
    destination = Path(destination)
    tolerance = configured_tail_audio(allowed_tail_audio)
    media = media_targets(state.media_entries, destination)
    clear_directory(destination)

    timing_names = set(state.timing_files)
    for name, document in state.xml_documents.items():
        if name in timing_names:
            text = serialize_smil(document)
        else:
            text = serialize_xhtml(document)
        (destination / name).write_text(text, encoding="utf-8")

    for name, segments in state.audio_files.items():
        copy_audio_file(name, segments, destination, tolerance)

    for source, target in media:
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, target)

    logger.info(
        "Saved DTB to %s (%d xml documents, %d audio files, %d media files)",
        destination,
        len(state.xml_documents),
        len(state.audio_segments),
        len(media),
    )
    return destination
