import asyncio
import io

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from conftest import FakeOcr
from errors import InvalidInput, ConfigurationError
from ingestor import (
    IngestedFile, ingest_upload, extract_text, resolve_media_type, sniff_media_type, require_visual_media,
)


def _upload(data, filename="page.png", content_type=None):
    headers = Headers({"content-type": content_type}) if content_type else None
    return UploadFile(file=io.BytesIO(data), filename=filename, headers=headers)


PDF_WITH_TEXT = b"%PDF-1.4\nstream\nBT (Embedded words) Tj ET\nendstream\n%%EOF"
PDF_WITHOUT_TEXT = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\n%%EOF"


def test_declared_type_wins():
    assert resolve_media_type(b"x", "image/jpeg; charset=binary", "a.png") == "image/jpeg"


def test_generic_type_falls_back_to_filename_then_content(png_bytes):
    assert resolve_media_type(b"x", "application/octet-stream", "sheet.pdf") == "application/pdf"
    assert resolve_media_type(png_bytes, "application/octet-stream", "upload") == "image/png"
    assert resolve_media_type(b"plain bytes", None, None) == "application/octet-stream"


def test_sniff_media_type(png_bytes):
    assert sniff_media_type(png_bytes) == "image/png"
    assert sniff_media_type(PDF_WITH_TEXT) == "application/pdf"
    assert sniff_media_type(b"not an image") is None


def test_ingest_upload(png_bytes):
    ingested = asyncio.run(ingest_upload(_upload(png_bytes, content_type="image/png")))
    assert ingested.data == png_bytes
    assert ingested.is_image and not ingested.is_pdf
    assert ingested.data_uri.startswith("data:image/png;base64,")


def test_missing_or_empty_upload_is_invalid_input():
    with pytest.raises(InvalidInput, match="No image file provided"):
        asyncio.run(ingest_upload(None, "image"))
    with pytest.raises(InvalidInput):
        asyncio.run(ingest_upload(_upload(b"")))


def test_require_visual_media():
    require_visual_media(IngestedFile(data=b"x", media_type="application/pdf"))
    with pytest.raises(InvalidInput):
        require_visual_media(IngestedFile(data=b"x", media_type="text/plain"))


def test_pdf_with_embedded_text_skips_ocr():
    ocr = FakeOcr("should not be used")
    ingested = IngestedFile(data=PDF_WITH_TEXT, media_type="application/pdf", filename="sheet.pdf")
    assert asyncio.run(extract_text(ingested, False, ocr)) == ("Embedded words", "pdf-text")
    assert ocr.calls == []


def test_pdf_without_text_falls_back_to_ocr():
    ocr = FakeOcr("OCR words")
    ingested = IngestedFile(data=PDF_WITHOUT_TEXT, media_type="application/pdf")
    assert asyncio.run(extract_text(ingested, False, ocr)) == ("OCR words", "ocr")
    assert ocr.calls == ["application/pdf"]


def test_force_ocr_and_images_go_to_ocr(png_bytes):
    ocr = FakeOcr("OCR words")
    asyncio.run(extract_text(IngestedFile(data=PDF_WITH_TEXT, media_type="application/pdf"), True, ocr))
    asyncio.run(extract_text(IngestedFile(data=png_bytes, media_type="image/png"), False, ocr))
    assert ocr.calls == ["application/pdf", "image/png"]


def test_ocr_needed_without_client_is_configuration_error(png_bytes):
    with pytest.raises(ConfigurationError, match="GOOGLE_VISION_API_KEY"):
        asyncio.run(extract_text(IngestedFile(data=png_bytes, media_type="image/png"), False, None))
