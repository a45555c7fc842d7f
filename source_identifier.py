# source_identifier.py
import re
from abc import ABC, abstractmethod
import logging
from typing import List, Optional, Sequence

import httpx

import config
from errors import ProviderError, ParseError, ConfigurationError
from gemini_client import GeminiClient
from ingestor import IngestedFile
from llm_json_utils import parse_model_json
from ocr_service import VisionOcrClient
from rapidfuzz_fuzzy import dedupe_references
from reference_resolver import SefariaResolver, canonical_ref, public_url
from source_schema import ReferenceCandidate, IdentifyResponse

logger = logging.getLogger(__name__)

SEARCH_QUERY_WORDS = 8
PREVIEW_CHARS = 200

IDENTIFY_PROMPT = """Identify this Hebrew/Aramaic Torah source. Return ONLY JSON:
{"candidates":[{"sourceName":"Name","sefariaRef":"Ref like Berakhot 55a","previewText":"First words"}]}

Examples: "Berakhot 55a", "Rashi on Genesis 1:1", "Shulchan Arukh, Orach Chayim 1:1"
"""

# Cantillation marks, vowel points, sof pasuq
_HEBREW_MARKS_PATTERN = re.compile(r'[\u0591-\u05bd\u05bf-\u05c7]')
MAQAF = '\u05be'


def clean_ocr_text(text: str) -> str:
    """Strips nikud, trope and punctuation and collapses whitespace, leaving searchable words."""
    text = (text or '').replace(MAQAF, ' ')
    text = _HEBREW_MARKS_PATTERN.sub('', text)
    # Abbreviation marks sit inside words
    text = re.sub(r'["\'\u05f3\u05f4]', '', text)
    text = re.sub(r'[^\w\s]', ' ', text)
    return ' '.join(text.split())


class IdentificationContext:
    """Per-request state shared by the strategies: the image, the debug trail, and OCR text fetched at most once."""

    def __init__(self, ingested: IngestedFile, ocr: Optional[VisionOcrClient] = None):
        self.ingested = ingested
        self.ocr = ocr
        self.debug: List[str] = []
        self._ocr_text: Optional[str] = None
        self._ocr_error: Optional[Exception] = None

    def note(self, message: str) -> None:
        self.debug.append(message)
        logger.info(message, extra={"event": "identify_attempt"})

    async def ocr_text(self) -> str:
        """OCR text of the upload. A failure is remembered and re-raised instead of calling the provider again."""
        if self._ocr_error is not None:
            raise self._ocr_error
        if self._ocr_text is None:
            try:
                if self.ocr is None:
                    raise config.missing_credential("google_vision")
                self._ocr_text = await self.ocr.detect_text(self.ingested.data_base64, self.ingested.media_type)
            except (ProviderError, ConfigurationError) as e:
                self._ocr_error = e
                raise
        return self._ocr_text

    @property
    def cleaned_ocr_text(self) -> Optional[str]:
        return clean_ocr_text(self._ocr_text) if self._ocr_text is not None else None


class IdentificationStrategy(ABC):
    """One way of naming a source. attempt() returns candidates, or None/[] to pass to the next strategy."""
    name = "strategy"

    @abstractmethod
    async def attempt(self, context: IdentificationContext) -> Optional[List[ReferenceCandidate]]:
        ...


class ModelIdentificationStrategy(IdentificationStrategy):
    """Asks one model variant, with one credential, to name the source in the image."""

    def __init__(self, gemini: GeminiClient, model: str, credential_label: str = "key1"):
        self.gemini = gemini
        self.model = model
        self.credential_label = credential_label
        self.name = f"model:{model}"

    async def attempt(self, context: IdentificationContext) -> Optional[List[ReferenceCandidate]]:
        context.note(f"Trying {self.model} ({self.credential_label})...")
        try:
            response_text = await self.gemini.generate(
                self.model, IDENTIFY_PROMPT, context.ingested.data_base64, context.ingested.media_type,
                max_output_tokens=1024,
            )
        except ProviderError as e:
            if e.rate_limited:
                context.note(f"{self.model} rate limited, trying next...")
            else:
                context.note(f"{self.model}: {e.message}")
            return None

        try:
            parsed = parse_model_json(response_text)
        except ParseError as e:
            context.note(f"{self.model}: parse error: {e.message}")
            return None

        raw_candidates = parsed.get("candidates") if isinstance(parsed, dict) else None
        candidates = []
        for raw in raw_candidates or []:
            if not isinstance(raw, dict):
                continue
            ref = str(raw.get("sefariaRef") or "").strip()
            candidates.append(ReferenceCandidate(
                source_name=str(raw.get("sourceName") or ref or "Unknown"),
                canonical_ref=canonical_ref(ref) if ref else "",
                preview_text=str(raw.get("previewText") or "")[:PREVIEW_CHARS],
                origin="model",
                url=public_url(ref) if ref else None,
                model=self.model,
            ))
        context.note(f"{self.model}: found {len(candidates)} candidates")
        return candidates


class TextSearchStrategy(IdentificationStrategy):
    """OCR the image and look the leading words up in the text database."""
    name = "text-search"

    def __init__(self, resolver: SefariaResolver, query_words: int = SEARCH_QUERY_WORDS):
        self.resolver = resolver
        self.query_words = query_words

    async def attempt(self, context: IdentificationContext) -> Optional[List[ReferenceCandidate]]:
        try:
            text = await context.ocr_text()
        except (ProviderError, ConfigurationError) as e:
            context.note(f"OCR unavailable: {e.message}")
            return None

        query = " ".join(clean_ocr_text(text).split()[:self.query_words])
        if not query:
            context.note("OCR found no text to search for")
            return None

        context.note(f"Searching text database for '{query}'")
        hits = await self.resolver.search(query)
        return [
            ReferenceCandidate(
                source_name=hit.ref,
                canonical_ref=canonical_ref(hit.ref),
                preview_text=hit.text[:PREVIEW_CHARS],
                origin="text-search",
                url=hit.url,
            )
            for hit in hits
        ]


class OcrOnlyStrategy(IdentificationStrategy):
    """Last resort: hand the cleaned OCR text back so the caller can identify the source by hand."""
    name = "ocr-only"

    async def attempt(self, context: IdentificationContext) -> Optional[List[ReferenceCandidate]]:
        try:
            text = clean_ocr_text(await context.ocr_text())
        except (ProviderError, ConfigurationError) as e:
            context.note(f"OCR unavailable: {e.message}")
            return None
        if not text:
            return None
        return [ReferenceCandidate(
            source_name="Unidentified source",
            preview_text=text[:PREVIEW_CHARS],
            origin="ocr-only",
        )]


def suppress_duplicates(candidates: List[ReferenceCandidate]) -> List[ReferenceCandidate]:
    keys = [c.canonical_ref or c.source_name for c in candidates]
    return [candidates[i] for i in dedupe_references(keys)]


class SourceIdentifier:
    """
    Runs the strategies in order and stops at the first that yields candidates.
    Calls are sequential; a failed strategy only moves the chain along.
    """

    def __init__(self, strategies: Sequence[IdentificationStrategy]):
        self.strategies = list(strategies)

    @property
    def has_model_strategies(self) -> bool:
        return any(isinstance(s, ModelIdentificationStrategy) for s in self.strategies)

    async def identify(self, context: IdentificationContext) -> IdentifyResponse:
        for strategy in self.strategies:
            candidates = await strategy.attempt(context)
            if candidates:
                candidates = suppress_duplicates(candidates)
                logger.info(f"Strategy '{strategy.name}' identified {len(candidates)} candidates.",
                            extra={"event": "source_identified", "strategy": strategy.name, "candidate_count": len(candidates)})
                return IdentifyResponse(
                    candidates=candidates,
                    strategy=strategy.name,
                    raw_text=context.cleaned_ocr_text,
                    debug=context.debug,
                )

        logger.warning("Every identification strategy came back empty.", extra={"event": "source_unidentified"})
        return IdentifyResponse(candidates=[], raw_text=context.cleaned_ocr_text or "", debug=context.debug)


def build_identifier(gemini_keys: Sequence[str], models: Sequence[str], resolver: SefariaResolver,
                     client: Optional[httpx.AsyncClient] = None) -> SourceIdentifier:
    """Model variants first (each tried with every credential, in order), then OCR + search, then raw OCR text."""
    strategies: List[IdentificationStrategy] = []
    for model in models:
        for idx, key in enumerate(gemini_keys):
            strategies.append(ModelIdentificationStrategy(GeminiClient(key, client=client), model, f"key{idx + 1}"))
    strategies.append(TextSearchStrategy(resolver))
    strategies.append(OcrOnlyStrategy())
    return SourceIdentifier(strategies)
