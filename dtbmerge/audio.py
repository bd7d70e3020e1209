from __future__ import annotations

import logging
from pathlib import Path

import soundfile as sf

logger = logging.getLogger(__name__)


def read_audio_duration(path: Path) -> float:
    """Return the duration in seconds of the audio file at ``path``."""
    info = sf.info(str(path))
    logger.debug("Read %s: %.3fs (%s frames at %s Hz)", path, info.duration, info.frames, info.samplerate)
    return float(info.duration)
