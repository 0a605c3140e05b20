"""
Shared fixtures: in-memory .docx documents built from WordprocessingML
snippets, so the tests never depend on binary files in the repo.
"""

from __future__ import annotations

import io
import zipfile
from xml.sax.saxutils import escape

import pytest

NAMESPACES = {
    "w": "http://schemas.openxmlformats.org/wordprocessingml/2006/main",
    "r": "http://schemas.openxmlformats.org/officeDocument/2006/relationships",
    "a": "http://schemas.openxmlformats.org/drawingml/2006/main",
    "wp": "http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing",
    "pic": "http://schemas.openxmlformats.org/drawingml/2006/picture",
    "m": "http://schemas.openxmlformats.org/officeDocument/2006/math",
    "mc": "http://schemas.openxmlformats.org/markup-compatibility/2006",
    "v": "urn:schemas-microsoft-com:vml",
    "o": "urn:schemas-microsoft-com:office:office",
}

IMAGE_REL_TYPE = (
    "http://schemas.openxmlformats.org/officeDocument/2006/relationships/image"
)

CONTENT_TYPES_XML = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    '<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">'
    '<Default Extension="rels" '
    'ContentType="application/vnd.openxmlformats-package.relationships+xml"/>'
    '<Default Extension="xml" ContentType="application/xml"/>'
    '<Default Extension="png" ContentType="image/png"/>'
    '<Override PartName="/word/document.xml" ContentType="application/'
    'vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml"/>'
    "</Types>"
)


class Markup(str):
    """Already-built XML, inserted into a paragraph as is."""


class DocxBuilder:
    """Builds minimal but well-formed .docx containers."""

    def raw(self, xml: str) -> Markup:
        return Markup(xml)

    def run(self, text: str, underline=False) -> Markup:
        rpr = ""
        if underline:
            val = underline if isinstance(underline, str) else "single"
            rpr = f'<w:rPr><w:u w:val="{val}"/></w:rPr>'
        return Markup(
            f'<w:r>{rpr}<w:t xml:space="preserve">{escape(text)}</w:t></w:r>'
        )

    def image(self, rid: str) -> Markup:
        return Markup(
            "<w:r><w:drawing><wp:inline>"
            '<wp:docPr id="1" name="Picture 1"/>'
            "<a:graphic><a:graphicData>"
            "<pic:pic><pic:blipFill>"
            f'<a:blip r:embed="{rid}"/>'
            "</pic:blipFill></pic:pic>"
            "</a:graphicData></a:graphic>"
            "</wp:inline></w:drawing></w:r>"
        )

    def para(self, *content) -> Markup:
        body = "".join(
            c if isinstance(c, Markup) else self.run(c) for c in content
        )
        return Markup(f"<w:p>{body}</w:p>")

    def document(self, paragraphs) -> bytes:
        ns = " ".join(f'xmlns:{k}="{v}"' for k, v in NAMESPACES.items())
        body = "".join(
            p if isinstance(p, Markup) else self.para(p) for p in paragraphs
        )
        return (
            '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
            f"<w:document {ns}><w:body>{body}</w:body></w:document>"
        ).encode("utf-8")

    def relationships(self, rels: dict) -> bytes:
        entries = "".join(
            f'<Relationship Id="{rid}" Type="{IMAGE_REL_TYPE}" Target="{target}"/>'
            for rid, target in rels.items()
        )
        return (
            '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
            '<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">'
            f"{entries}</Relationships>"
        ).encode("utf-8")

    def build(
        self,
        paragraphs=(),
        media: dict = None,
        rels: dict = None,
        rels_xml: bytes = None,
        include_document: bool = True,
    ) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
            zf.writestr("[Content_Types].xml", CONTENT_TYPES_XML)
            if include_document:
                zf.writestr("word/document.xml", self.document(paragraphs))
            if rels_xml is not None:
                zf.writestr("word/_rels/document.xml.rels", rels_xml)
            elif rels is not None:
                zf.writestr("word/_rels/document.xml.rels", self.relationships(rels))
            for filename, payload in (media or {}).items():
                zf.writestr(f"word/media/{filename}", payload)
        return buffer.getvalue()


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


@pytest.fixture
def builder() -> DocxBuilder:
    return DocxBuilder()


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES


@pytest.fixture
def full_exam_docx(builder) -> bytes:
    """A three-section exam covering every answer convention."""
    b = builder
    paragraphs = [
        "PHẦN 1. Trắc nghiệm nhiều lựa chọn",
        b.para(
            b.run("Câu 1. 2+2=? A. 3 "),
            b.run("B. 4", underline=True),
            b.run(" C. 5 D. 6"),
        ),
        "Câu 2. Xem hình bên.",
        b.para(b.run("Hình 1"), b.image("rId5")),
        "A. 1",
        "B. 2",
        "C. 3",
        "D. 4",
        "Lời giải",
        "Chọn C",
        "PHẦN 2. Đúng sai",
        "Câu 1. Cho hàm số f(x) = 2x.",
        b.para(b.run("a) f(0) = 0", underline=True)),
        "b) f(1) = 3",
        b.para(b.run("c) f(2) = 4", underline=True)),
        "d) f(3) = 5",
        "PHẦN 3. Trả lời ngắn",
        "Câu 1. Tính 3 + 4.",
        "Đáp án: 7",
    ]
    return b.build(
        paragraphs,
        media={"image1.png": PNG_BYTES},
        rels={"rId5": "media/image1.png"},
    )


@pytest.fixture
def headerless_docx(builder) -> bytes:
    """Questions without any section header."""
    return builder.build([
        "Câu 1. Tính 1 + 1.",
        "A. 1",
        "B. 2",
        "Câu 2. Tính 2 + 2.",
        "A. 3",
        "B. 4",
    ])
