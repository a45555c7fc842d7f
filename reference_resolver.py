# reference_resolver.py
import logging
from typing import List, Dict, Optional, Any, Union
from urllib.parse import quote

import httpx # For making asynchronous HTTP requests to the text database

import config
from source_schema import ReferenceLookup, SearchHit

logger = logging.getLogger(__name__)

MIN_QUERY_CHARS = 3
NestedText = Union[str, List[Any], None]


def flatten_text(value: NestedText) -> str:
    """
    Joins the leaf strings of Sefaria's nested text arrays (chapter -> verse -> ...)
    with single spaces, in order, skipping empty leaves.
    """
    if not value:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return " ".join(part for part in (flatten_text(item) for item in value) if part)
    return ""


def canonical_ref(ref: str) -> str:
    """'Berakhot 55a' -> 'Berakhot_55a', the form Sefaria uses in page URLs."""
    return "_".join(ref.strip().split())


def public_url(ref: str, site_url: str = config.SEFARIA_SITE_URL) -> str:
    return f"{site_url.rstrip('/')}/{quote(canonical_ref(ref), safe='_.,:')}"


class SefariaResolver:
    """
    Client for the Sefaria public REST API.

    Lookups and searches never raise: any failure is reported as found=False / no results.
    """

    def __init__(self, api_url: str = config.SEFARIA_API_URL, site_url: str = config.SEFARIA_SITE_URL,
                 timeout: float = config.SEFARIA_TIMEOUT_SECONDS,
                 client: Optional[httpx.AsyncClient] = None):
        self.api_url = api_url.rstrip("/")
        self.site_url = site_url
        self.timeout = timeout
        self.client = client

    async def _get_json(self, url: str, params: Dict[str, Any]) -> Any:
        headers = {"Accept": "application/json"}
        if self.client is not None:
            response = await self.client.get(url, params=params, headers=headers, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, params=params, headers=headers)
        response.raise_for_status()
        return response.json()

    async def lookup(self, ref: str) -> ReferenceLookup:
        """Fetches one reference with its English and Hebrew text."""
        url = f"{self.api_url}/texts/{quote(ref.strip(), safe='')}"
        try:
            data = await self._get_json(url, {"context": 0, "pad": 0})
        except httpx.HTTPStatusError as e:
            logger.warning(f"Sefaria lookup for '{ref}' returned {e.response.status_code}.",
                           extra={"event": "sefaria_lookup_http_error", "ref": ref, "status_code": e.response.status_code})
            return ReferenceLookup(found=False, ref=ref)
        except (httpx.RequestError, ValueError) as e:
            logger.error(f"Sefaria lookup for '{ref}' failed: {e}",
                         extra={"event": "sefaria_lookup_failed", "ref": ref, "error_detail": str(e)})
            return ReferenceLookup(found=False, ref=ref, error=str(e))

        # Unknown refs come back as 200 with an "error" message
        if not isinstance(data, dict) or data.get("error") or not data.get("ref"):
            message = data.get("error") if isinstance(data, dict) else None
            logger.info(f"Sefaria has no text for '{ref}': {message}", extra={"event": "sefaria_ref_not_found", "ref": ref})
            return ReferenceLookup(found=False, ref=ref, error=message)

        return ReferenceLookup(
            found=True,
            ref=data["ref"],
            he_ref=data.get("heRef"),
            text=flatten_text(data.get("text")),
            he=flatten_text(data.get("he")),
            url=public_url(data["ref"], self.site_url),
            book=data.get("book"),
            categories=data.get("categories"),
        )

    async def search(self, query: str, size: int = config.SEARCH_RESULT_LIMIT) -> List[SearchHit]:
        """Keyword search, best score first, one hit per ref."""
        query = (query or "").strip()
        if len(query) < MIN_QUERY_CHARS:
            return []

        url = f"{self.api_url}/search-wrapper/{quote(query, safe='')}"
        try:
            data = await self._get_json(url, {"size": size, "type": "text"})
        except httpx.HTTPStatusError as e:
            logger.warning(f"Sefaria search returned {e.response.status_code}.",
                           extra={"event": "sefaria_search_http_error", "status_code": e.response.status_code})
            return []
        except (httpx.RequestError, ValueError) as e:
            logger.error(f"Sefaria search failed: {e}", extra={"event": "sefaria_search_failed", "error_detail": str(e)})
            return []

        hits = data.get("hits") if isinstance(data, dict) else None
        raw_hits = [h for h in (hits.get("hits") or []) if isinstance(h, dict)] if isinstance(hits, dict) else []
        results: List[SearchHit] = []
        seen_refs = set()
        for hit in sorted(raw_hits, key=lambda h: h.get("_score") or 0, reverse=True):
            source = hit.get("_source") or {}
            ref = source.get("ref")
            if not ref or ref in seen_refs:
                continue
            seen_refs.add(ref)
            results.append(SearchHit(
                ref=ref,
                he_ref=source.get("heRef"),
                text=source.get("exact") or source.get("naive_lemmatizer") or "",
                score=hit.get("_score"),
                url=public_url(ref, self.site_url),
            ))
            if len(results) >= size:
                break

        logger.info(f"Sefaria search returned {len(results)} hits.", extra={"event": "sefaria_search", "hit_count": len(results)})
        return results
