# ingestor.py
import io # For handling image bytes
import base64 # For encoding file bytes to base64
import logging
import mimetypes # For guessing MIME types
from typing import Optional, Tuple

from fastapi import UploadFile
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel

import config
from errors import InvalidInput
from ocr_service import VisionOcrClient
from pdf_text_extractor import TextExtractor, RegexPdfTextExtractor

logger = logging.getLogger(__name__)

PDF_MEDIA_TYPE = "application/pdf"
GENERIC_MEDIA_TYPE = "application/octet-stream"


class IngestedFile(BaseModel):
    data: bytes
    media_type: str
    filename: Optional[str] = None

    @property
    def data_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @property
    def data_uri(self) -> str:
        return f"data:{self.media_type};base64,{self.data_base64}"

    @property
    def is_image(self) -> bool:
        return self.media_type.startswith("image/")

    @property
    def is_pdf(self) -> bool:
        return self.media_type == PDF_MEDIA_TYPE


def sniff_media_type(data: bytes) -> Optional[str]:
    """Identifies PDFs by their magic prefix and images by letting Pillow open them."""
    if data[:1024].lstrip().startswith(b"%PDF-"):
        return PDF_MEDIA_TYPE
    try:
        with Image.open(io.BytesIO(data)) as img:
            return Image.MIME.get(img.format or "")
    except (UnidentifiedImageError, OSError, ValueError):
        return None


def resolve_media_type(data: bytes, declared: Optional[str], filename: Optional[str]) -> str:
    declared = (declared or "").split(";")[0].strip().lower()
    if declared and declared != GENERIC_MEDIA_TYPE:
        return declared
    if filename:
        guessed = mimetypes.guess_type(filename)[0]
        if guessed:
            return guessed
    return sniff_media_type(data) or GENERIC_MEDIA_TYPE


async def ingest_upload(upload: Optional[UploadFile], field_name: str = "file") -> IngestedFile:
    """
    Reads an uploaded file into memory with a resolved media type.

    Raises:
        InvalidInput: when no file (or an empty one) was uploaded.
    """
    if upload is None:
        logger.warning(f"No '{field_name}' file provided.", extra={"event": "no_file_provided", "field": field_name})
        raise InvalidInput(f"No {field_name} file provided")

    data = await upload.read()
    if not data:
        logger.warning(f"Received empty file: '{upload.filename}'.", extra={"doc_filename": upload.filename, "event": "empty_file_received"})
        raise InvalidInput(f"Empty {field_name} file received")

    media_type = resolve_media_type(data, upload.content_type, upload.filename)
    logger.info(f"Received file '{upload.filename}' ({media_type}, {len(data)} bytes).",
                extra={"doc_filename": upload.filename, "content_type": media_type, "event": "file_received"})
    return IngestedFile(data=data, media_type=media_type, filename=upload.filename)


def require_visual_media(ingested: IngestedFile) -> None:
    """The multimodal endpoints accept images and PDFs only."""
    if not (ingested.is_image or ingested.is_pdf):
        raise InvalidInput(f"Unsupported file type '{ingested.media_type}'; upload an image or a PDF")


async def extract_text(ingested: IngestedFile, force_ocr: bool, ocr: Optional[VisionOcrClient],
                       extractor: Optional[TextExtractor] = None) -> Tuple[str, str]:
    """
    Recovers the raw text of an upload, returning (text, method).

    Images, and anything when force_ocr is set, go straight to OCR. Other files get the
    embedded-text extractor first and fall back to OCR when it finds only whitespace.
    """
    if not force_ocr and not ingested.is_image:
        extractor = extractor or RegexPdfTextExtractor()
        text = extractor.extract(ingested.data)
        if text.strip():
            logger.info(f"Extracted {len(text)} chars of embedded text from '{ingested.filename}'.",
                        extra={"event": "embedded_text_extracted", "doc_filename": ingested.filename})
            return text, "pdf-text"
        logger.info(f"No embedded text in '{ingested.filename}', falling back to OCR.",
                    extra={"event": "ocr_fallback", "doc_filename": ingested.filename})

    if ocr is None:
        raise config.missing_credential("google_vision")
    media_type = ingested.media_type if (ingested.is_image or ingested.is_pdf) else "image/png"
    text = await ocr.detect_text(ingested.data_base64, media_type)
    return text, "ocr"
