import io
import json

import httpx
import pytest
from PIL import Image


@pytest.fixture
def mock_client():
    """Builds an httpx.AsyncClient whose requests are answered by `handler` instead of the network."""
    def _build(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return _build


@pytest.fixture
def png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color="white").save(buffer, format="PNG")
    return buffer.getvalue()


def gemini_answer(text):
    """A generateContent response body whose first candidate says `text`."""
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def gemini_json_answer(payload, fenced=True):
    body = json.dumps(payload, ensure_ascii=False)
    return gemini_answer(f"```json\n{body}\n```" if fenced else body)


class FakeOcr:
    """Stands in for VisionOcrClient; counts calls."""

    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.calls = []

    async def detect_text(self, data_base64, media_type):
        self.calls.append(media_type)
        if self.error is not None:
            raise self.error
        return self.text


class FakeResolver:
    """Stands in for SefariaResolver."""

    def __init__(self, lookups=None, hits=None):
        self.lookups = lookups or {}
        self.hits = hits or []
        self.queries = []

    async def lookup(self, ref):
        from source_schema import ReferenceLookup
        return self.lookups.get(ref, ReferenceLookup(found=False, ref=ref))

    async def search(self, query, size=5):
        self.queries.append(query)
        return list(self.hits)
