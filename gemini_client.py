# gemini_client.py
import logging
import time # For performance logging
from typing import Dict, Optional, Any

import httpx # For making asynchronous HTTP requests to the model provider

import config
from errors import ProviderError, http_error_message

logger = logging.getLogger(__name__)

PROVIDER = "gemini"


def first_candidate_text(data: Dict[str, Any]) -> str:
    """Text of the first content part of the first candidate, "" if the response has none."""
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    if not parts:
        return ""
    return parts[0].get("text") or ""


class GeminiClient:
    """Single-shot multimodal generateContent calls: one text prompt plus one inline image or PDF."""

    def __init__(self, api_key: str, base_url: str = config.GEMINI_API_URL,
                 timeout: float = config.PROVIDER_TIMEOUT_SECONDS,
                 client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client

    async def generate(self, model: str, prompt: str, data_base64: str, media_type: str,
                       temperature: float = 0.1, max_output_tokens: Optional[int] = None) -> str:
        """
        Returns the model's answer text.

        Raises:
            ProviderError: on network failure, timeout or a non-2xx status (429 included,
                see ProviderError.rate_limited).
        """
        generation_config: Dict[str, Any] = {"temperature": temperature}
        if max_output_tokens:
            generation_config["maxOutputTokens"] = max_output_tokens
        payload = {
            "contents": [{
                "parts": [
                    {"text": prompt},
                    {"inlineData": {"mimeType": media_type, "data": data_base64}},
                ]
            }],
            "generationConfig": generation_config,
        }
        url = f"{self.base_url}/models/{model}:generateContent"
        headers = {"x-goog-api-key": self.api_key}

        start_time = time.perf_counter()
        try:
            if self.client is not None:
                response = await self.client.post(url, json=payload, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"Gemini request to '{model}' timed out after {self.timeout}s.",
                         extra={"event": "model_timeout", "model": model})
            raise ProviderError(PROVIDER, f"Gemini request to {model} timed out.") from e
        except httpx.RequestError as e:
            logger.error(f"Could not reach Gemini for '{model}': {e}",
                         extra={"event": "model_connect_failed", "model": model, "error_detail": str(e)})
            raise ProviderError(PROVIDER, f"Could not reach Gemini: {e}") from e

        if response.status_code != 200:
            logger.error(f"Gemini error for '{model}': {response.status_code} - {response.text[:500]}",
                         extra={"event": "model_http_error", "model": model, "status_code": response.status_code})
            raise ProviderError(PROVIDER, http_error_message("Gemini API", response), upstream_status=response.status_code)

        text = first_candidate_text(response.json())
        logger.info(f"Gemini '{model}' answered with {len(text)} chars in {time.perf_counter() - start_time:.2f} seconds.",
                    extra={"event": "model_response", "model": model, "char_count": len(text)})
        return text
