import copy
import math
import os
import re
from html.entities import name2codepoint
from pathlib import Path
from typing import Iterable, Iterator, Optional, Tuple
from urllib.parse import unquote, urldefrag, urljoin, urlparse
from urllib.request import url2pathname
from xml.etree import ElementTree as ET

from dotenv import find_dotenv, load_dotenv


def _load_environment() -> None:
    explicit_path = os.environ.get("DTBMERGE_ENV_FILE")
    if explicit_path:
        load_dotenv(explicit_path, override=False)
        return
    dotenv_path = find_dotenv(usecwd=True)
    if dotenv_path:
        load_dotenv(dotenv_path, override=False)


_load_environment()


XHTML_NS = "http://www.w3.org/1999/xhtml"

XHTML_DOCTYPE = (
    '<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.0 Transitional//EN" '
    '"http://www.w3.org/TR/xhtml1/DTD/xhtml1-transitional.dtd">'
)
SMIL_DOCTYPE = '<!DOCTYPE smil PUBLIC "-//W3C//DTD SMIL 1.0//EN" "http://www.w3.org/TR/REC-SMIL/SMIL10.dtd">'

MAX_HEADING_DEPTH = 6
HEADING_PATTERN = re.compile(r"^h[1-6]$")


# ---------------------------------------------------------------------------
# Element names


def split_tag(tag: str) -> Tuple[str, str]:
    """Return ``(namespace, local name)`` for an ElementTree tag."""
    if isinstance(tag, str) and tag.startswith("{"):
        namespace, _, local = tag[1:].partition("}")
        return namespace, local
    return "", tag if isinstance(tag, str) else ""


def local_name(element: ET.Element) -> str:
    return split_tag(element.tag)[1]


def qualified(element: ET.Element, name: str) -> str:
    """Build a tag named ``name`` in the namespace of ``element``."""
    namespace = split_tag(element.tag)[0]
    return f"{{{namespace}}}{name}" if namespace else name


def is_heading(element: ET.Element) -> bool:
    return bool(HEADING_PATTERN.match(local_name(element)))


def find_child(element: Optional[ET.Element], name: str) -> Optional[ET.Element]:
    if element is None:
        return None
    for child in element:
        if local_name(child) == name:
            return child
    return None


def iter_named(element: ET.Element, name: str) -> Iterator[ET.Element]:
    """Iterate ``element`` and its descendants with the given local name, any namespace."""
    for candidate in element.iter():
        if local_name(candidate) == name:
            yield candidate


def adopt_namespace(element: ET.Element, namespace: str = XHTML_NS) -> ET.Element:
    for candidate in element.iter():
        if isinstance(candidate.tag, str) and not candidate.tag.startswith("{"):
            candidate.tag = f"{{{namespace}}}{candidate.tag}"
    return element


# ---------------------------------------------------------------------------
# Meta elements


def get_meta(root: ET.Element, name: str, create_if_missing: bool = True) -> Optional[ET.Element]:
    """Find the ``<meta name=...>`` element in the head of ``root``, creating it if asked to."""
    head = find_child(root, "head")
    if head is None:
        return None
    for meta in head:
        if local_name(meta) == "meta" and meta.get("name") == name:
            return meta
    if not create_if_missing:
        return None
    meta = ET.SubElement(head, qualified(head, "meta"), {"name": name})
    return meta


def get_meta_content(root: ET.Element, name: str) -> Optional[str]:
    meta = get_meta(root, name, create_if_missing=False)
    return meta.get("content") if meta is not None else None


def set_meta(root: ET.Element, name: str, content) -> Optional[ET.Element]:
    meta = get_meta(root, name)
    if meta is not None:
        meta.set("content", str(content))
    return meta


# ---------------------------------------------------------------------------
# Skeleton documents


def generate_skeleton_xhtml() -> ET.Element:
    html = ET.Element(f"{{{XHTML_NS}}}html")
    head = ET.SubElement(html, f"{{{XHTML_NS}}}head")
    ET.SubElement(
        head,
        f"{{{XHTML_NS}}}meta",
        {"http-equiv": "Content-type", "content": "text/html; charset=utf-8"},
    )
    ET.SubElement(html, f"{{{XHTML_NS}}}body")
    return html


def generate_skeleton_smil() -> ET.Element:
    smil = ET.Element("smil")
    head = ET.SubElement(smil, "head")
    ET.SubElement(head, "meta", {"name": "dc:format", "content": "Daisy 2.02"})
    layout = ET.SubElement(head, "layout")
    ET.SubElement(layout, "region", {"id": "txtView"})
    body = ET.SubElement(smil, "body")
    ET.SubElement(body, "seq")
    return smil


def html_entity_parser() -> ET.XMLParser:
    """An XMLParser that knows the HTML named entities used throughout DAISY 2.02 files."""
    parser = ET.XMLParser()
    parser.entity.update({name: chr(codepoint) for name, codepoint in name2codepoint.items()})
    return parser


def serialize_xhtml(root: ET.Element) -> str:
    """Serialise an XHTML tree with the XHTML namespace as the default ``xmlns``."""
    document = copy.deepcopy(root)
    prefix = f"{{{XHTML_NS}}}"
    for element in document.iter():
        if isinstance(element.tag, str) and element.tag.startswith(prefix):
            element.tag = element.tag[len(prefix):]
    document.set("xmlns", XHTML_NS)
    body = ET.tostring(document, encoding="unicode")
    return f'<?xml version="1.0" encoding="utf-8"?>\n{XHTML_DOCTYPE}\n{body}\n'


def serialize_smil(root: ET.Element) -> str:
    body = ET.tostring(root, encoding="unicode")
    return f'<?xml version="1.0" encoding="utf-8"?>\n{SMIL_DOCTYPE}\n{body}\n'


# ---------------------------------------------------------------------------
# Clip values and time formatting

_CLOCK_PATTERN = re.compile(r"^(?:(\d+):)?(\d{1,2}):(\d{1,2}(?:\.\d+)?)$")


def parse_clip(value: Optional[str]) -> float:
    """Parse a SMIL clip value (``npt=12.345s``, ``250ms``, ``0:01:02.5``...) into seconds."""
    if value is None:
        raise ValueError("Missing clip value")
    text = value.strip()
    if text.startswith("npt="):
        text = text[4:].strip()
    if not text:
        raise ValueError(f"Empty clip value {value!r}")
    try:
        if text.endswith("ms"):
            return float(text[:-2]) / 1000.0
        if text.endswith("s"):
            return float(text[:-1])
        if text.endswith("min"):
            return float(text[:-3]) * 60.0
        if text.endswith("h"):
            return float(text[:-1]) * 3600.0
        match = _CLOCK_PATTERN.match(text)
        if match:
            hours = int(match.group(1) or 0)
            minutes = int(match.group(2))
            seconds = float(match.group(3))
            return hours * 3600 + minutes * 60 + seconds
        return float(text)
    except ValueError:
        raise ValueError(f"Value {value!r} is not a valid Daisy 2.02 smil clip value") from None


def to_milliseconds(seconds: float) -> int:
    return int(round(seconds * 1000))


def format_hhmmss(milliseconds: int) -> str:
    """Format a duration as ``HH:MM:SS`` with seconds rounded half up."""
    total_seconds = (max(milliseconds, 0) + 500) // 1000
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_seconds(milliseconds: int) -> str:
    return f"{milliseconds / 1000:.3f}s"


def ceil_seconds(milliseconds: int) -> int:
    return math.ceil(milliseconds / 1000) if milliseconds > 0 else 0


# ---------------------------------------------------------------------------
# Locations


def path_to_location(path) -> str:
    return Path(path).resolve().as_uri()


def location_to_path(location: str) -> Path:
    return Path(url2pathname(urlparse(location).path))


def resolve_reference(base: Optional[str], href: str) -> str:
    return urljoin(base, href) if base else href


def split_reference(reference: str) -> Tuple[str, str]:
    """Split a resolved reference into ``(document, fragment)``, unquoting the document part."""
    document, fragment = urldefrag(reference)
    return unquote(document), fragment


def same_document(reference: str, location: str) -> bool:
    return split_reference(reference)[0] == split_reference(location)[0]


def unique(values: Iterable) -> list:
    seen = set()
    result = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result
