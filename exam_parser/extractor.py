"""
Paragraph Extractor
===================
Walks the main document part (WordprocessingML) and produces one
ParagraphRecord per physical paragraph: normalized text, image
relationship ids and underline metadata.

Equations (OMML) are flattened to their text; they are not rebuilt
from structure.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from lxml import etree

from .exceptions import ArchiveError
from .models import ParagraphRecord
from .text import normalize_text

logger = logging.getLogger(__name__)

# ─── Namespaces ───────────────────────────────────────────────────────────────

W_NS = "{http://schemas.openxmlformats.org/wordprocessingml/2006/main}"
M_NS = "{http://schemas.openxmlformats.org/officeDocument/2006/math}"
R_NS = "{http://schemas.openxmlformats.org/officeDocument/2006/relationships}"
A_NS = "{http://schemas.openxmlformats.org/drawingml/2006/main}"
V_NS = "{urn:schemas-microsoft-com:vml}"
O_NS = "{urn:schemas-microsoft-com:office:office}"
MC_NS = "{http://schemas.openxmlformats.org/markup-compatibility/2006}"

W_P = f"{W_NS}p"
W_R = f"{W_NS}r"
W_T = f"{W_NS}t"
W_BR = f"{W_NS}br"
W_CR = f"{W_NS}cr"
W_TAB = f"{W_NS}tab"
W_RPR = f"{W_NS}rPr"
W_U = f"{W_NS}u"
W_VAL = f"{W_NS}val"
M_R = f"{M_NS}r"
M_T = f"{M_NS}t"
A_BLIP = f"{A_NS}blip"
V_IMAGEDATA = f"{V_NS}imagedata"
MC_FALLBACK = f"{MC_NS}Fallback"

RUN_TAGS = (W_R, M_R)

# Textual underline convention: "[B]{.underline}"
MARKDOWN_UNDERLINE_PATTERN = re.compile(r"\[([A-Da-d])\]\{\.underline\}")
NEWLINE_SPACING_PATTERN = re.compile(r"[ \t]*\n[ \t]*")


def _in_fallback(el: etree._Element) -> bool:
    """True inside mc:Fallback, a duplicate rendering of mc:Choice."""
    return next(el.iterancestors(MC_FALLBACK), None) is not None


def _owner(el: etree._Element, *tags: str) -> Optional[etree._Element]:
    return next(el.iterancestors(*tags), None)


class ParagraphExtractor:
    """
    Converts document.xml into an ordered list of ParagraphRecords.
    """

    def __init__(self, recover: bool = True):
        self.recover = recover

    def extract(self, document_xml: bytes) -> list[ParagraphRecord]:
        """
        Extract all non-empty paragraphs in document order.

        Raises:
            ArchiveError: If the part cannot be parsed even in recover mode.
        """
        parser = etree.XMLParser(recover=self.recover, huge_tree=True)
        try:
            root = etree.fromstring(document_xml, parser=parser)
        except etree.XMLSyntaxError as e:
            raise ArchiveError(f"Main document part is not valid XML: {e}") from e
        if root is None:
            raise ArchiveError("Main document part is empty")

        records: list[ParagraphRecord] = []
        total = 0
        for p in root.iter(W_P):
            if _in_fallback(p):
                continue
            total += 1
            record = self._extract_paragraph(p)
            if record is not None:
                records.append(record)

        logger.info(
            f"Extracted {len(records)} paragraphs "
            f"({total - len(records)} empty skipped)"
        )
        return records

    def _extract_paragraph(self, p: etree._Element) -> Optional[ParagraphRecord]:
        parts: list[str] = []
        underlined_segments: list[str] = []
        has_underline = False

        for run in p.iter(*RUN_TAGS):
            if _owner(run, W_P) is not p or _owner(run, *RUN_TAGS) is not None:
                continue
            if _in_fallback(run):
                continue

            run_text = self._run_text(run)
            if self._is_underlined(run) and run_text.strip():
                has_underline = True
                underlined_segments.append(normalize_text(run_text))
            parts.append(run_text)

        image_ids = self._image_ids(p)

        text = normalize_text("".join(parts).strip())

        for match in MARKDOWN_UNDERLINE_PATTERN.finditer(text):
            has_underline = True
            underlined_segments.append(match.group(1))
        text = MARKDOWN_UNDERLINE_PATTERN.sub(r"\1", text)

        text = NEWLINE_SPACING_PATTERN.sub("\n", text).strip()

        if not text and not image_ids:
            return None

        return ParagraphRecord(
            text=text,
            image_ids=image_ids,
            has_underline=has_underline,
            underlined_segments=underlined_segments,
        )

    @staticmethod
    def _run_text(run: etree._Element) -> str:
        """Text of a run: w:t / m:t, line breaks as newlines, tabs as tabs."""
        chunks: list[str] = []
        for el in run.iter(W_T, M_T, W_BR, W_CR, W_TAB):
            if _owner(el, *RUN_TAGS) is not run:
                continue
            if el.tag in (W_T, M_T):
                chunks.append(el.text or "")
            elif el.tag == W_TAB:
                chunks.append("\t")
            else:
                chunks.append("\n")
        return "".join(chunks)

    @staticmethod
    def _is_underlined(run: etree._Element) -> bool:
        rpr = run.find(W_RPR)
        if rpr is None:
            return False
        u = rpr.find(W_U)
        if u is None:
            return False
        return u.get(W_VAL, "single") != "none"

    @staticmethod
    def _image_ids(p: etree._Element) -> list[str]:
        """
        Relationship ids of images drawn in this paragraph, in order.

        Covers a:blip (inline and w:drawing-wrapped) and legacy
        v:imagedata (r:id or o:relid).
        """
        image_ids: list[str] = []
        for el in p.iter(A_BLIP, V_IMAGEDATA):
            if _owner(el, W_P) is not p or _in_fallback(el):
                continue
            if el.tag == A_BLIP:
                rid = el.get(f"{R_NS}embed")
            else:
                rid = el.get(f"{R_NS}id") or el.get(f"{O_NS}relid")
            if rid and rid not in image_ids:
                image_ids.append(rid)
        return image_ids
