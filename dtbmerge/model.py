from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence
from xml.etree import ElementTree as ET

from dtbmerge.audio import read_audio_duration
from dtbmerge.utils import (
    find_child,
    html_entity_parser,
    is_heading,
    iter_named,
    location_to_path,
    parse_clip,
    path_to_location,
    resolve_reference,
    same_document,
    split_reference,
    unique,
)


@dataclass
class SourceDocument:
    location: str  # absolute file: URI
    root: ET.Element

    @classmethod
    def load(cls, path) -> "SourceDocument":
        tree = ET.parse(str(path), parser=html_entity_parser())
        return cls(location=path_to_location(path), root=tree.getroot())

    @property
    def body(self) -> Optional[ET.Element]:
        return find_child(self.root, "body")

    def resolve(self, href: str) -> str:
        return resolve_reference(self.location, href)


@dataclass
class SourceElement:
    """An element together with the location of the document it was taken from."""

    element: ET.Element
    base: str

    def clone(self) -> "SourceElement":
        return SourceElement(copy.deepcopy(self.element), self.base)

    def resolve(self, href: str) -> str:
        return resolve_reference(self.base, href)


@dataclass(frozen=True)
class AudioSegment:
    audio_file: Path
    clip_begin: float
    clip_end: float
    file_duration: float

    @property
    def duration(self) -> float:
        return self.clip_end - self.clip_begin


@dataclass(frozen=True)
class MediaEntry:
    source: Path
    href: str


@dataclass
class MergeUnit:
    """One heading-level chunk of a source DTB, with its ordered sub-units."""

    ncc: SourceDocument
    heading_id: str
    smil: SourceDocument
    depth: int = 1
    content_documents: List[SourceDocument] = field(default_factory=list)
    children: List["MergeUnit"] = field(default_factory=list)
    duration_reader: Callable[[Path], float] = read_audio_duration

    def flatten(self) -> List["MergeUnit"]:
        return list(self._iter_preorder())

    def _iter_preorder(self) -> Iterator["MergeUnit"]:
        yield self
        for child in self.children:
            yield from child._iter_preorder()

    # ------------------------------------------------------------------
    def heading(self) -> Optional[ET.Element]:
        body = self.ncc.body
        if body is None:
            return None
        for element in body:
            if element.get("id") == self.heading_id:
                return element
        return None

    def navigation_elements(self) -> List[SourceElement]:
        body = self.ncc.body
        heading = self.heading()
        if body is None or heading is None:
            return []
        children = list(body)
        start = children.index(heading)
        elements = [heading]
        for element in children[start + 1:]:
            if is_heading(element):
                break
            elements.append(element)
        return [SourceElement(element, self.ncc.location) for element in elements]

    def sync_elements(self) -> List[SourceElement]:
        seq = find_child(find_child(self.smil.root, "body"), "seq")
        if seq is None:
            return []
        children = list(seq)
        start = self._first_sync_index(children)
        other_headings = self._other_heading_ids()
        other_targets = self._other_heading_targets()
        elements = []
        for position, element in enumerate(children[start:]):
            if position > 0 and self._starts_other_heading(element, other_headings, other_targets):
                break
            elements.append(element)
        return [SourceElement(element, self.smil.location) for element in elements]

    def text_elements(self) -> List[SourceElement]:
        targets = [self._text_target(item.element) for item in self.sync_elements()]
        targets = [target for target in targets if target is not None]
        elements: List[SourceElement] = []
        for document in self.content_documents:
            wanted = {fragment for location, fragment in targets if same_document(location, document.location)}
            body = document.body
            if not wanted or body is None:
                continue
            for element in body:
                if any(candidate.get("id") in wanted for candidate in element.iter()):
                    elements.append(SourceElement(element, document.location))
        return elements

    def audio_segments(self) -> List[AudioSegment]:
        runs: List[List] = []
        for item in self.sync_elements():
            for audio in iter_named(item.element, "audio"):
                src = audio.get("src")
                if not src:
                    continue
                location = split_reference(item.resolve(src))[0]
                clip_begin = parse_clip(audio.get("clip-begin"))
                clip_end = parse_clip(audio.get("clip-end"))
                if runs and runs[-1][0] == location:
                    runs[-1][2] = clip_end
                else:
                    runs.append([location, clip_begin, clip_end])
        segments = []
        for location, clip_begin, clip_end in runs:
            audio_file = location_to_path(location)
            segments.append(
                AudioSegment(
                    audio_file=audio_file,
                    clip_begin=clip_begin,
                    clip_end=clip_end,
                    file_duration=self.duration_reader(audio_file),
                )
            )
        return segments

    def media_entries(self) -> List[MediaEntry]:
        entries = []
        for item in self.navigation_elements() + self.text_elements():
            for img in iter_named(item.element, "img"):
                src = img.get("src")
                if not src:
                    continue
                location = split_reference(item.resolve(src))[0]
                entries.append(MediaEntry(source=location_to_path(location), href=src))
        return unique(entries)

    # ------------------------------------------------------------------
    def _first_sync_index(self, children: Sequence[ET.Element]) -> int:
        fragment = self._timing_fragment(self.heading())
        if fragment is None:
            return 0
        for index, element in enumerate(children):
            if any(candidate.get("id") == fragment for candidate in element.iter()):
                return index
        return 0

    def _timing_fragment(self, heading: Optional[ET.Element]) -> Optional[str]:
        """Fragment of ``heading``'s link when it points into this unit's timing document."""
        link = next(iter_named(heading, "a"), None) if heading is not None else None
        href = link.get("href") if link is not None else None
        if not href:
            return None
        document, fragment = split_reference(self.ncc.resolve(href))
        if not fragment or not same_document(document, self.smil.location):
            return None
        return fragment

    def _other_headings(self) -> List[ET.Element]:
        body = self.ncc.body
        if body is None:
            return []
        return [
            element
            for element in body
            if is_heading(element) and element.get("id") and element.get("id") != self.heading_id
        ]

    def _other_heading_ids(self) -> set:
        return {element.get("id") for element in self._other_headings()}

    def _other_heading_targets(self) -> set:
        targets = {self._timing_fragment(element) for element in self._other_headings()}
        targets.discard(None)
        return targets

    def _starts_other_heading(self, element: ET.Element, heading_ids: set, heading_targets: set) -> bool:
        if any(candidate.get("id") in heading_targets for candidate in element.iter()):
            return True
        target = self._text_target(element)
        if target is None:
            return False
        document, fragment = target
        return same_document(document, self.ncc.location) and fragment in heading_ids

    def _text_target(self, element: ET.Element):
        text = find_child(element, "text")
        src = text.get("src") if text is not None else None
        if not src:
            return None
        return split_reference(resolve_reference(self.smil.location, src))
