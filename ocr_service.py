# ocr_service.py
import logging
import time # For performance logging
from typing import List, Dict, Optional, Any

import httpx # For making asynchronous HTTP requests to the Vision API

import config
from errors import ProviderError, http_error_message

logger = logging.getLogger(__name__)

PROVIDER = "google_vision"


def _text_from_annotation(response: Dict[str, Any]) -> str:
    """Pulls the recognized text out of one AnnotateImageResponse."""
    if response.get("error"):
        error = response["error"]
        raise ProviderError(PROVIDER, f"Vision API error: {error.get('message', 'unknown error')}",
                            upstream_status=error.get("code"))
    full_text = (response.get("fullTextAnnotation") or {}).get("text")
    if full_text:
        return full_text
    annotations = response.get("textAnnotations") or []
    if annotations:
        return annotations[0].get("description", "") or ""
    return ""


class VisionOcrClient:
    """
    Document-text-detection against the Google Cloud Vision REST API.

    Images go to images:annotate; PDFs go to files:annotate, which reads the first five pages.
    Returns the full recognized text, or "" when the service saw no text.
    Network failures and non-2xx answers raise ProviderError.
    """

    def __init__(self, api_key: str, base_url: str = config.GOOGLE_VISION_API_URL,
                 language_hints: Optional[List[str]] = None,
                 timeout: float = config.PROVIDER_TIMEOUT_SECONDS,
                 client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.language_hints = language_hints or list(config.OCR_LANGUAGE_HINTS)
        self.timeout = timeout
        self.client = client

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/{path}"
        headers = {"x-goog-api-key": self.api_key}
        try:
            if self.client is not None:
                response = await self.client.post(url, json=payload, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"Vision API request timed out after {self.timeout}s.", extra={"event": "ocr_timeout", "path": path})
            raise ProviderError(PROVIDER, "Vision API request timed out.") from e
        except httpx.RequestError as e:
            logger.error(f"Could not reach Vision API: {e}", extra={"event": "ocr_connect_failed", "error_detail": str(e)})
            raise ProviderError(PROVIDER, f"Could not reach Vision API: {e}") from e

        if response.status_code != 200:
            logger.error(f"HTTP error from Vision API: {response.status_code} - {response.text[:500]}",
                         extra={"event": "ocr_http_error", "status_code": response.status_code})
            raise ProviderError(PROVIDER, http_error_message("Vision API", response), upstream_status=response.status_code)
        return response.json()

    async def detect_text(self, data_base64: str, media_type: str) -> str:
        start_time = time.perf_counter()
        if media_type == "application/pdf":
            text = await self._detect_pdf_text(data_base64)
        else:
            text = await self._detect_image_text(data_base64)
        logger.info(f"OCR recognized {len(text)} chars in {time.perf_counter() - start_time:.2f} seconds.",
                    extra={"event": "ocr_complete", "media_type": media_type, "char_count": len(text)})
        return text

    async def _detect_image_text(self, data_base64: str) -> str:
        payload = {
            "requests": [{
                "image": {"content": data_base64},
                "features": [{"type": "DOCUMENT_TEXT_DETECTION"}],
                "imageContext": {"languageHints": self.language_hints},
            }]
        }
        result = await self._post("images:annotate", payload)
        responses = result.get("responses") or [{}]
        return _text_from_annotation(responses[0])

    async def _detect_pdf_text(self, data_base64: str) -> str:
        payload = {
            "requests": [{
                "inputConfig": {"content": data_base64, "mimeType": "application/pdf"},
                "features": [{"type": "DOCUMENT_TEXT_DETECTION"}],
                "imageContext": {"languageHints": self.language_hints},
            }]
        }
        result = await self._post("files:annotate", payload)
        file_responses = result.get("responses") or [{}]
        page_texts = []
        for page_response in file_responses[0].get("responses") or []:
            page_text = _text_from_annotation(page_response).strip()
            if page_text:
                page_texts.append(page_text)
        return "\n\n".join(page_texts)
