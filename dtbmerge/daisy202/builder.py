from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from xml.etree import ElementTree as ET

from dtbmerge import GENERATOR
from dtbmerge.daisy202.rewrite import (
    CONTENT_ID_PREFIX,
    NAVIGATION_ID_PREFIX,
    assign_ids,
    clone_all,
    rewrite_sync_references,
    rewrite_timing_links,
)
from dtbmerge.daisy202.timeline import DtbBuildError, advance, build_timing_document, time_in_unit
from dtbmerge.model import AudioSegment, MediaEntry, MergeUnit
from dtbmerge.utils import (
    MAX_HEADING_DEPTH,
    XHTML_NS,
    adopt_namespace,
    find_child,
    format_hhmmss,
    generate_skeleton_xhtml,
    get_meta_content,
    is_heading,
    local_name,
    set_meta,
    unique,
)

logger = logging.getLogger(__name__)

DEFAULT_NAVIGATION_NAME = "ncc.html"
DEFAULT_CONTENT_NAME = "text.html"
PAGE_TYPES = ("Front", "Normal", "Special")


def timing_file_name(index: int) -> str:
    return f"SM{index:05d}.smil"


def audio_file_name(index: int, extension: str) -> str:
    return f"AUD{index:05d}{extension}"


@dataclass(frozen=True)
class BuildCursor:
    """Running counters of a build pass, advanced once per merge unit."""

    unit_index: int = 0
    navigation_id: int = 0
    content_id: int = 0
    elapsed_seconds: int = 0


@dataclass
class UnitOutput:
    navigation_elements: List[ET.Element]
    content_elements: List[ET.Element]
    timing_document: ET.Element
    audio_segments: List[AudioSegment]
    media_entries: List[MediaEntry]
    depth: int
    time_ms: int


@dataclass
class BuildState:
    navigation_document: ET.Element
    navigation_name: str = DEFAULT_NAVIGATION_NAME
    content_name: str = DEFAULT_CONTENT_NAME
    content_document: Optional[ET.Element] = None
    timing_documents: List[ET.Element] = field(default_factory=list)
    audio_segments: List[List[AudioSegment]] = field(default_factory=list)
    media_entries: List[MediaEntry] = field(default_factory=list)
    cursor: BuildCursor = field(default_factory=BuildCursor)

    @property
    def total_elapsed_seconds(self) -> int:
        return self.cursor.elapsed_seconds

    @property
    def audio_file_extension(self) -> str:
        for segments in self.audio_segments:
            if segments:
                return segments[0].audio_file.suffix.lower()
        return ""

    @property
    def timing_files(self) -> Dict[str, ET.Element]:
        return {timing_file_name(index): doc for index, doc in enumerate(self.timing_documents)}

    @property
    def audio_files(self) -> Dict[str, List[AudioSegment]]:
        extension = self.audio_file_extension
        return {audio_file_name(index, extension): segments for index, segments in enumerate(self.audio_segments)}

    @property
    def xml_documents(self) -> Dict[str, ET.Element]:
        documents = dict(self.timing_files)
        documents[self.navigation_name] = self.navigation_document
        if self.content_document is not None:
            documents[self.content_name] = self.content_document
        return documents


def process_unit(
    unit: MergeUnit,
    cursor: BuildCursor,
    *,
    navigation_name: str,
    content_name: str,
    generator: str,
    identifier: str,
) -> Tuple[UnitOutput, BuildCursor]:
    """Relabel one merge unit's fragments and produce its timing document.

    Returns the unit's output and the cursor advanced past it.
    """
    timing_name = timing_file_name(cursor.unit_index)
    sync_elements = clone_all(unit.sync_elements())
    navigation_elements = clone_all(unit.navigation_elements())
    content_elements = clone_all(unit.text_elements())

    navigation_ids, next_navigation_id = assign_ids(
        navigation_elements, NAVIGATION_ID_PREFIX, cursor.navigation_id, navigation_name
    )
    content_ids, next_content_id = assign_ids(
        content_elements, CONTENT_ID_PREFIX, cursor.content_id, content_name
    )
    rewrite_sync_references(sync_elements, navigation_ids, content_ids)
    rewrite_timing_links(navigation_elements, unit.smil.location, timing_name)
    rewrite_timing_links(content_elements, unit.smil.location, timing_name)

    time_ms = time_in_unit(sync_elements)
    timing_document = build_timing_document(
        sync_elements,
        cursor.elapsed_seconds,
        generator=generator,
        identifier=identifier,
        time_ms=time_ms,
    )

    output = UnitOutput(
        navigation_elements=[item.element for item in navigation_elements],
        content_elements=[item.element for item in content_elements],
        timing_document=timing_document,
        audio_segments=unit.audio_segments(),
        media_entries=unit.media_entries(),
        depth=unit.depth,
        time_ms=time_ms,
    )
    logger.debug(
        "Unit %d -> %s: %d navigation ids, %d content ids, %.3fs",
        cursor.unit_index,
        timing_name,
        len(navigation_ids),
        len(content_ids),
        time_ms / 1000,
    )
    next_cursor = replace(
        cursor,
        unit_index=cursor.unit_index + 1,
        navigation_id=next_navigation_id,
        content_id=next_content_id,
        elapsed_seconds=advance(cursor.elapsed_seconds, time_ms),
    )
    return output, next_cursor


class DtbBuilder:
    """Merges a tree of merge units into a single Daisy 2.02 DTB."""

    def __init__(
        self,
        units: Iterable[MergeUnit] = (),
        *,
        navigation_name: str = DEFAULT_NAVIGATION_NAME,
        content_name: str = DEFAULT_CONTENT_NAME,
        generator: Optional[str] = None,
    ) -> None:
        self.units: List[MergeUnit] = list(units or [])
        self.navigation_name = navigation_name
        self.content_name = content_name
        self.generator = generator or GENERATOR
        self.state: Optional[BuildState] = None

    def reset(self) -> None:
        self.state = None

    def build(self) -> BuildState:
        if not self.units:
            raise DtbBuildError("No merge units added to builder")
        self.reset()

        entries = [entry for unit in self.units for entry in unit.flatten()]
        first_ncc = entries[0].ncc.root
        identifier = get_meta_content(first_ncc, "dc:identifier") or str(uuid.uuid4())

        state = BuildState(
            navigation_document=generate_skeleton_xhtml(),
            navigation_name=self.navigation_name,
            content_name=self.content_name,
        )
        navigation_body = find_child(state.navigation_document, "body")
        depths: List[int] = []
        file_media = 0
        cursor = state.cursor
        for unit in entries:
            output, cursor = process_unit(
                unit,
                cursor,
                navigation_name=self.navigation_name,
                content_name=self.content_name,
                generator=self.generator,
                identifier=identifier,
            )
            _retag_heading(output.navigation_elements, output.depth)
            navigation_body.extend(adopt_namespace(element) for element in output.navigation_elements)
            if output.content_elements:
                if state.content_document is None:
                    state.content_document = generate_skeleton_xhtml()
                content_body = find_child(state.content_document, "body")
                content_body.extend(adopt_namespace(element) for element in output.content_elements)
            state.timing_documents.append(output.timing_document)
            state.audio_segments.append(output.audio_segments)
            state.media_entries.extend(output.media_entries)
            file_media += len(output.media_entries)
            depths.append(output.depth)
        state.cursor = cursor
        state.media_entries = unique(state.media_entries)

        self._write_navigation_metadata(state, first_ncc, depths, file_media)
        logger.info(
            "Built DTB with %d units, total time %s",
            len(entries),
            format_hhmmss(state.total_elapsed_seconds * 1000),
        )
        self.state = state
        return state

    def save(self, destination, *, allowed_tail_audio: Optional[float] = None) -> Path:
        from dtbmerge.daisy202.package import save_package

        state = self.state if self.state is not None else self.build()
        return save_package(state, destination, allowed_tail_audio=allowed_tail_audio)

    # ------------------------------------------------------------------
    def _write_navigation_metadata(
        self,
        state: BuildState,
        source_ncc: ET.Element,
        depths: Sequence[int],
        media_count: int,
    ) -> None:
        ncc = state.navigation_document
        head = find_child(ncc, "head")
        source_head = find_child(source_ncc, "head")
        if source_head is not None:
            for element in source_head:
                if local_name(element) in {"title", "meta"} and element.get("http-equiv") is None:
                    head.append(adopt_namespace(copy.deepcopy(element)))

        file_count = (
            1
            + 2 * len(state.timing_documents)
            + (0 if state.content_document is None else 1)
            + media_count
        )
        set_meta(ncc, "ncc:totalTime", format_hhmmss(state.total_elapsed_seconds * 1000))
        set_meta(ncc, "ncc:files", file_count)
        set_meta(ncc, "ncc:depth", min(max(depths), MAX_HEADING_DEPTH))
        set_meta(ncc, "ncc:tocItems", len(depths))
        body = find_child(ncc, "body")
        for page_type in PAGE_TYPES:
            css_class = f"page-{page_type.lower()}"
            count = sum(
                1 for element in body if local_name(element) == "span" and element.get("class") == css_class
            )
            set_meta(ncc, f"ncc:page{page_type}", count)
        set_meta(
            ncc,
            "ncc:multimediaType",
            "audioNCC" if state.content_document is None else "audioFullText",
        )
        set_meta(ncc, "ncc:generator", self.generator)


def _retag_heading(elements: Sequence[ET.Element], depth: int) -> None:
    level = min(max(depth, 1), MAX_HEADING_DEPTH)
    for element in elements:
        if is_heading(element):
            element.tag = f"{{{XHTML_NS}}}h{level}"
            return


def build_dtb(units: Iterable[MergeUnit], **kwargs) -> BuildState:
    return DtbBuilder(units, **kwargs).build()
