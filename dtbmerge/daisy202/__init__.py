from dtbmerge.daisy202.builder import BuildCursor, BuildState, DtbBuilder, build_dtb
from dtbmerge.daisy202.package import (
    AudioMappingError,
    MediaPlacementError,
    UnsupportedAudioMappingError,
    save_package,
)
from dtbmerge.daisy202.timeline import DtbBuildError

__all__ = [
    "AudioMappingError",
    "BuildCursor",
    "BuildState",
    "DtbBuildError",
    "DtbBuilder",
    "MediaPlacementError",
    "UnsupportedAudioMappingError",
    "build_dtb",
    "save_package",
]
