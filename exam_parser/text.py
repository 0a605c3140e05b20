"""
Text Utilities
==============
Pure text transforms used by the extractor and the assembler.

    - normalize_text: Unicode NFC + LaTeX delimiter canonicalization
    - escape_html_preserve_latex: HTML-escape everything outside math regions
"""

from __future__ import annotations

import html
import re
import unicodedata

# ─── LaTeX Normalization ──────────────────────────────────────────────────────

# Ordered: each rule sees the output of the previous one.
LATEX_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\\\[([\s\S]*?)\\\]"), r"$$\1$$"),
    (re.compile(r"\\\(([\s\S]*?)\\\)"), r"$\1$"),
    # align is not allowed inside $...$, aligned is
    (re.compile(r"\\begin\{align\*?\}"), r"\\begin{aligned}"),
    (re.compile(r"\\end\{align\*?\}"), r"\\end{aligned}"),
    (re.compile(r"\${3,}"), "$$"),
    (re.compile(r"[^\S\n]+"), " "),
    (re.compile(r"\n{3,}"), "\n\n"),
]

# $$...$$ first so a block is never read as two inline regions
MATH_REGION_PATTERN = re.compile(r"(\$\$[\s\S]*?\$\$|\$(?!\$)[\s\S]*?\$(?!\$))")


def normalize_unicode(text: str) -> str:
    if not text:
        return ""
    return unicodedata.normalize("NFC", text)


def normalize_latex(text: str) -> str:
    """
    Canonicalize math delimiters and whitespace.

        \\[...\\]  -> $$...$$
        \\(...\\)  -> $...$
        align      -> aligned
        $$$        -> $$
    Spaces and tabs are compressed; newlines are kept (at most two in a row).
    """
    if not text:
        return ""
    for pattern, replacement in LATEX_RULES:
        text = pattern.sub(replacement, text)
    return text.strip()


def normalize_text(text: str) -> str:
    """NFC composition followed by LaTeX canonicalization."""
    return normalize_latex(normalize_unicode(text))


# ─── HTML Sanitizer ───────────────────────────────────────────────────────────


def split_math_regions(text: str) -> list[str]:
    """
    Split text into alternating plain/math chunks.
    Odd indices are math regions (`$...$` or `$$...$$`), kept verbatim.
    """
    return MATH_REGION_PATTERN.split(text)


def count_math_regions(text: str) -> int:
    return len(MATH_REGION_PATTERN.findall(text or ""))


def escape_html_preserve_latex(text: str) -> str:
    """Escape `&`, `<` and `>` outside math regions; math is untouched."""
    if not text:
        return ""
    chunks = split_math_regions(text)
    return "".join(
        chunk if index % 2 else html.escape(chunk, quote=False)
        for index, chunk in enumerate(chunks)
    )
