from __future__ import annotations

import copy
from typing import Optional, Sequence
from xml.etree import ElementTree as ET

from dtbmerge.model import SourceElement
from dtbmerge.utils import (
    ceil_seconds,
    find_child,
    format_hhmmss,
    format_seconds,
    generate_skeleton_smil,
    iter_named,
    parse_clip,
    set_meta,
    to_milliseconds,
)


class DtbBuildError(RuntimeError):
    """Raised when a DTB cannot be assembled from the supplied merge units."""


def time_in_unit(sync_elements: Sequence[SourceElement]) -> int:
    """Total clip time in milliseconds of every audio reference in ``sync_elements``."""
    total = 0
    for item in sync_elements:
        for audio in iter_named(item.element, "audio"):
            clip_begin = to_milliseconds(parse_clip(audio.get("clip-begin")))
            clip_end = to_milliseconds(parse_clip(audio.get("clip-end")))
            total += clip_end - clip_begin
    return total


def main_seq(smil: ET.Element) -> Optional[ET.Element]:
    return find_child(find_child(smil, "body"), "seq")


def build_timing_document(
    sync_elements: Sequence[SourceElement],
    elapsed_seconds: int,
    *,
    generator: str,
    identifier: str,
    time_ms: Optional[int] = None,
) -> ET.Element:
    if time_ms is None:
        time_ms = time_in_unit(sync_elements)
    smil = generate_skeleton_smil()
    set_meta(smil, "ncc:totalElapsedTime", format_hhmmss(elapsed_seconds * 1000))
    set_meta(smil, "ncc:timeInThisSmil", format_hhmmss(time_ms))
    seq = main_seq(smil)
    if seq is None:
        raise DtbBuildError("Generated smil document contains no main seq")
    seq.set("dur", format_seconds(time_ms))
    set_meta(smil, "ncc:generator", generator)
    set_meta(smil, "dc:identifier", identifier)
    # SMIL ids are copied as they are; units sharing a source SMIL may collide.
    seq.extend(copy.deepcopy(item.element) for item in sync_elements)
    return smil


def advance(elapsed_seconds: int, time_ms: int) -> int:
    return elapsed_seconds + ceil_seconds(time_ms)
