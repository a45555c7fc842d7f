# pdf_text_extractor.py
import re
import logging
from typing import List, Protocol

logger = logging.getLogger(__name__)

# Content streams: everything between 'stream' and 'endstream'
_STREAM_PATTERN = re.compile(r'stream\r?\n(.*?)\r?\n?endstream', re.DOTALL)
# Literal string body: escapes, plain characters, or one level of balanced (nested) parentheses
_LITERAL_BODY = r'(?:\\.|[^\\()]|\((?:\\.|[^\\()])*\))*'
# (literal) Tj  |  [(lit) -250 (lit)] TJ
_SHOW_TEXT_PATTERN = re.compile(
    r'\((' + _LITERAL_BODY + r')\)\s*Tj'
    r'|\[((?:\\.|[^\]\\])*)\]\s*TJ',
    re.DOTALL,
)
_LITERAL_PATTERN = re.compile(r'\((' + _LITERAL_BODY + r')\)', re.DOTALL)
_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "(": "(", ")": ")", "\\": "\\"}


class TextExtractor(Protocol):
    """Anything that can pull embedded text out of document bytes. Returns "" when it finds none."""

    def extract(self, data: bytes) -> str:
        ...


def decode_pdf_literal(literal: str) -> str:
    """Resolves the \\n \\r \\t \\( \\) \\\\ escapes of a PDF literal string. Unknown escapes keep the character."""
    return re.sub(r'\\(.)', lambda m: _ESCAPES.get(m.group(1), m.group(1)), literal, flags=re.DOTALL)


class RegexPdfTextExtractor:
    """
    Best-effort text recovery from uncompressed PDF content streams.

    Only literal-string Tj/TJ operands are read. Unescaped parentheses may nest one
    level deep; a literal nested deeper than that is skipped. Compressed (FlateDecode),
    encrypted or hex/CID-encoded content yields "", which sends the caller to OCR instead.
    """

    def extract(self, data: bytes) -> str:
        if not data:
            return ""
        content = data.decode("latin-1")
        fragments: List[str] = []

        for stream in _STREAM_PATTERN.finditer(content):
            for show in _SHOW_TEXT_PATTERN.finditer(stream.group(1)):
                if show.group(1) is not None:
                    fragment = decode_pdf_literal(show.group(1))
                else:
                    # TJ arrays interleave kerning numbers with pieces of one run of text
                    fragment = "".join(decode_pdf_literal(m.group(1)) for m in _LITERAL_PATTERN.finditer(show.group(2)))
                if fragment:
                    fragments.append(fragment)

        text = " ".join(fragments).strip()
        logger.debug(f"PDF text extractor recovered {len(fragments)} fragments ({len(text)} chars).",
                     extra={"event": "pdf_text_extracted", "fragment_count": len(fragments)})
        return text


def extract_pdf_text(data: bytes) -> str:
    return RegexPdfTextExtractor().extract(data)
