from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import numpy as np
import pytest
import soundfile as sf

from dtbmerge import settings
from dtbmerge.model import MergeUnit, SourceDocument

SAMPLE_RATE = 8000

NCC = """<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.0 Transitional//EN" "http://www.w3.org/TR/xhtml1/DTD/xhtml1-transitional.dtd">
<html xmlns="http://www.w3.org/1999/xhtml">
<head>
<title>Sample Book</title>
<meta http-equiv="Content-type" content="text/html; charset=utf-8"/>
<meta name="dc:format" content="Daisy 2.02"/>
<meta name="dc:identifier" content="sample-book-001"/>
<meta name="ncc:generator" content="Source Generator"/>
<meta name="ncc:totalTime" content="00:00:20"/>
</head>
<body>
<h1 class="title" id="h1_1"><a href="sm0001.smil#par_h1_1">Chapter&nbsp;One</a></h1>
<span class="page-normal" id="page_1"><a href="sm0001.smil#par_page_1">1</a></span>
<h2 id="h2_1"><a href="sm0002.smil#par_h2_1">Section One</a></h2>
</body>
</html>
"""

SMIL_1 = """<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE smil PUBLIC "-//W3C//DTD SMIL 1.0//EN" "http://www.w3.org/TR/REC-SMIL/SMIL10.dtd">
<smil>
<head><meta name="dc:format" content="Daisy 2.02"/></head>
<body>
<seq dur="12.345s">
<par endsync="last" id="par_h1_1"><text src="ncc.html#h1_1" id="txt_h1_1"/><audio src="aud0001.wav" clip-begin="npt=0.000s" clip-end="npt=10.000s" id="aud_1"/></par>
<par endsync="last" id="par_page_1"><text src="ncc.html#page_1" id="txt_page_1"/><audio src="aud0001.wav" clip-begin="npt=10.000s" clip-end="npt=12.345s" id="aud_2"/></par>
</seq>
</body>
</smil>
"""

SMIL_2 = """<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE smil PUBLIC "-//W3C//DTD SMIL 1.0//EN" "http://www.w3.org/TR/REC-SMIL/SMIL10.dtd">
<smil>
<head><meta name="dc:format" content="Daisy 2.02"/></head>
<body>
<seq dur="7.250s">
<par endsync="last" id="par_h2_1"><text src="content.html#c_h2" id="txt_h2_1"/><audio src="aud0002.wav" clip-begin="npt=0.000s" clip-end="npt=4.500s" id="aud_3"/></par>
<par endsync="last" id="par_p1"><text src="content.html#c_p1" id="txt_p1"/><audio src="aud0002.wav" clip-begin="npt=4.500s" clip-end="npt=7.250s" id="aud_4"/></par>
</seq>
</body>
</smil>
"""

CONTENT = """<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.0 Transitional//EN" "http://www.w3.org/TR/xhtml1/DTD/xhtml1-transitional.dtd">
<html xmlns="http://www.w3.org/1999/xhtml">
<head><title>Sample Book</title></head>
<body>
<h1 id="c_h1">Chapter One</h1>
<h2 id="c_h2"><a href="sm0002.smil#par_h2_1">Section One</a></h2>
<p id="c_p1"><img src="images/figure.png" alt="figure"/>Some text.</p>
</body>
</html>
"""


def write_wav(path: Path, seconds: float) -> Path:
    frames = int(round(seconds * SAMPLE_RATE))
    sf.write(str(path), np.zeros(frames, dtype="int16"), SAMPLE_RATE)
    return path


@dataclass
class SampleBook:
    root: Path
    ncc: SourceDocument
    content: SourceDocument
    smil_1: SourceDocument
    smil_2: SourceDocument

    def units(self, *, with_content: bool = True, second_depth: int = 2):
        content = [self.content] if with_content else []
        section = MergeUnit(
            ncc=self.ncc,
            heading_id="h2_1",
            smil=self.smil_2,
            depth=second_depth,
            content_documents=content,
        )
        chapter = MergeUnit(
            ncc=self.ncc,
            heading_id="h1_1",
            smil=self.smil_1,
            depth=1,
            content_documents=content,
            children=[section],
        )
        return [chapter]


def write_sample_book(root: Path, durations: Optional[Dict[str, float]] = None) -> SampleBook:
    durations = {"aud0001.wav": 12.5, "aud0002.wav": 7.5, **(durations or {})}
    root.mkdir(parents=True, exist_ok=True)
    (root / "ncc.html").write_text(NCC, encoding="utf-8")
    (root / "sm0001.smil").write_text(SMIL_1, encoding="utf-8")
    (root / "sm0002.smil").write_text(SMIL_2, encoding="utf-8")
    (root / "content.html").write_text(CONTENT, encoding="utf-8")
    (root / "images").mkdir(exist_ok=True)
    (root / "images" / "figure.png").write_bytes(b"\x89PNG\r\n\x1a\n")
    for name, seconds in durations.items():
        write_wav(root / name, seconds)
    return SampleBook(
        root=root,
        ncc=SourceDocument.load(root / "ncc.html"),
        content=SourceDocument.load(root / "content.html"),
        smil_1=SourceDocument.load(root / "sm0001.smil"),
        smil_2=SourceDocument.load(root / "sm0002.smil"),
    )


@pytest.fixture
def sample_book(tmp_path) -> SampleBook:
    return write_sample_book(tmp_path / "book")


@pytest.fixture(autouse=True)
def clear_settings_cache(monkeypatch):
    monkeypatch.delenv("DTBMERGE_ALLOWED_TAIL_AUDIO", raising=False)
    settings.clear_cached_settings()
    yield
    settings.clear_cached_settings()
