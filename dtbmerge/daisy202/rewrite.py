"""Id minting and cross-reference repair for fragments copied into a merged DTB.

Rewriting happens in stages: :func:`assign_ids` first records every minted id in
an :class:`IdTable` keyed by ``(source document, old id)``; references are then
repaired by table lookup. No reference is ever matched against an id that has
already been overwritten.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence, Tuple

from dtbmerge.model import SourceElement
from dtbmerge.utils import find_child, iter_named, split_reference

NAVIGATION_ID_PREFIX = "NCCID"
CONTENT_ID_PREFIX = "TEXTID"


@dataclass
class IdTable:
    document_name: str
    entries: Dict[Tuple[str, str], str] = field(default_factory=dict)

    def lookup(self, reference: str):
        document, fragment = split_reference(reference)
        if not fragment:
            return None
        return self.entries.get((document, fragment))

    def target(self, new_id: str) -> str:
        return f"{self.document_name}#{new_id}"

    def __len__(self) -> int:
        return len(self.entries)


def clone_all(elements: Iterable[SourceElement]) -> List[SourceElement]:
    return [element.clone() for element in elements]


def assign_ids(
    elements: Sequence[SourceElement],
    prefix: str,
    counter: int,
    document_name: str,
) -> Tuple[IdTable, int]:
    """Give every id-bearing element a fresh ``{prefix}{counter:05d}`` id.

    Returns the table of ``(source document, old id) -> new id`` and the next
    free counter value. The first element holding a given old id keeps the
    mapping.
    """
    table = IdTable(document_name)
    for item in elements:
        document = split_reference(item.base)[0]
        for element in item.element.iter():
            old_id = element.get("id")
            if old_id is None:
                continue
            new_id = f"{prefix}{counter:05d}"
            counter += 1
            table.entries.setdefault((document, old_id), new_id)
            element.set("id", new_id)
    return table, counter


def rewrite_sync_references(sync_elements: Sequence[SourceElement], *tables: IdTable) -> int:
    """Point ``text/@src`` of each sync element at the renamed navigation/content ids."""
    rewritten = 0
    for item in sync_elements:
        text = find_child(item.element, "text")
        src = text.get("src") if text is not None else None
        if not src:
            continue
        reference = item.resolve(src)
        for table in tables:
            new_id = table.lookup(reference)
            if new_id is not None:
                text.set("src", table.target(new_id))
                rewritten += 1
                break
    return rewritten


def rewrite_timing_links(
    elements: Sequence[SourceElement],
    timing_location: str,
    timing_name: str,
) -> int:
    """Redirect ``a/@href`` links into the unit's source SMIL file to the generated one."""
    timing_document = split_reference(timing_location)[0]
    rewritten = 0
    for item in elements:
        for link in iter_named(item.element, "a"):
            href = link.get("href")
            if href is None:
                continue
            document, fragment = split_reference(item.resolve(href))
            if document != timing_document:
                continue
            link.set("href", f"{timing_name}#{fragment}" if fragment else timing_name)
            rewritten += 1
    return rewritten
