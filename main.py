import logging
import os
import uvicorn
from typing import Optional, Dict, Any
from pydantic import ValidationError
from fastapi import FastAPI, Depends, UploadFile, File, Form, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

import config
from errors import SourceSheetError, ConfigurationError, ProviderError, InvalidInput
from gemini_client import GeminiClient
from ingestor import ingest_upload, require_visual_media, extract_text
from layout_detector_service import LayoutDetector
from ocr_service import VisionOcrClient
from reference_resolver import SefariaResolver
from result_normalizer import normalize_regions, normalize_wire_regions
from source_identifier import SourceIdentifier, IdentificationContext, build_identifier
from source_schema import (
    AnalyzeResponse, ParseResponse, RegionsResponse, IdentifyResponse, ReferenceLookup, SearchRequest, SearchResponse,
)
from source_splitter import split_sources

# Set up logging for the FastAPI application
logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s')
logger = logging.getLogger(__name__)

# ==============================================================================
# ====== FastAPI APP SETUP ======
# ==============================================================================

app = FastAPI(
    title="Source Sheet Ingestion API",
    description="Extracts the individual sources from an uploaded source-sheet image or PDF and resolves them against Sefaria.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SourceSheetError)
async def source_sheet_error_handler(request: Request, exc: SourceSheetError):
    return error_response(exc)


# Empty collection each upload endpoint promises alongside an error
EMPTY_FIELDS_BY_PATH = {
    "/api/sources/analyze": "sources",
    "/api/sources/parse": "sources",
    "/api/sources/regions": "regions",
    "/api/sources/identify": "candidates",
}


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed form fields (e.g. text where a file belongs) are InvalidInput, not a bare 422."""
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ())[1:]) or 'body'}: {error.get('msg')}"
        for error in exc.errors()
    )
    empty_field = EMPTY_FIELDS_BY_PATH.get(request.url.path)
    empty_fields = {empty_field: []} if empty_field else {}
    return error_response(InvalidInput(f"Invalid request: {problems}"), **empty_fields)


def form_flag(value: Optional[str]) -> bool:
    """Multipart boolean flags are on only for the literal string 'true'."""
    return (value or "").strip().lower() == "true"


def error_response(exc: SourceSheetError, **empty_fields: Any) -> JSONResponse:
    """{success: false, error, error_type} plus whatever empty collections the endpoint's schema promises."""
    extra = {"event": "request_failed", "error_type": exc.error_type}
    if isinstance(exc, ProviderError):
        extra.update({"provider": exc.provider, "upstream_status": exc.upstream_status})
    logger.error(f"Request failed ({exc.error_type}): {exc.message}", extra=extra)
    content: Dict[str, Any] = {"success": False, "error": exc.message, "error_type": exc.error_type}
    content.update(empty_fields)
    return JSONResponse(status_code=exc.status_code, content=content)


# =============================================================================
# ====== PROVIDER DEPENDENCIES ======
# =============================================================================
# Credentials are read per request, so a missing key shows up as a ConfigurationError
# on the endpoint that needs it rather than at startup.

def get_layout_detector() -> Optional[LayoutDetector]:
    keys = config.gemini_api_keys()
    if not keys:
        return None
    return LayoutDetector(GeminiClient(keys[0]))


def get_ocr_client() -> Optional[VisionOcrClient]:
    key = config.google_vision_api_key()
    if not key:
        return None
    return VisionOcrClient(key)


def get_sefaria_resolver() -> SefariaResolver:
    return SefariaResolver()


def get_source_identifier(resolver: SefariaResolver = Depends(get_sefaria_resolver)) -> SourceIdentifier:
    return build_identifier(config.gemini_api_keys(), config.GEMINI_IDENTIFY_MODELS, resolver)


# =============================================================================
# ====== API ENDPOINTS ======
# =============================================================================

@app.get("/api/health", summary="Get health status of the API and its providers")
async def get_health_status():
    """Reports which providers are configured; it does not call them."""
    providers = {
        "gemini": bool(config.gemini_api_keys()),
        "google_vision": bool(config.google_vision_api_key()),
        "sefaria": True, # public API, no credential
    }
    for name, configured in providers.items():
        if not configured:
            logger.warning(f"Provider '{name}' is not configured.", extra={"provider": name, "status": "unconfigured"})
    return {
        "status": "healthy",
        "message": "API is running.",
        "providers": providers,
        "layout_convention": config.LAYOUT_BOX_CONVENTION,
        "identify_models": config.GEMINI_IDENTIFY_MODELS,
    }


@app.post("/api/sources/analyze", response_model=AnalyzeResponse, summary="Detect the source regions on a sheet")
async def analyze_source_sheet(
    image: Optional[UploadFile] = File(None),
    resolve: str = Form("false"),
    detector: Optional[LayoutDetector] = Depends(get_layout_detector),
    resolver: SefariaResolver = Depends(get_sefaria_resolver),
):
    """
    Runs layout detection on one page and returns every source as a clamped percentage box.
    With resolve=true, each region carrying a reference is looked up in Sefaria.
    """
    try:
        if detector is None:
            raise config.missing_credential("gemini")
        ingested = await ingest_upload(image, "image")
        require_visual_media(ingested)
        raw_regions = await detector.detect_regions(ingested.data_base64, ingested.media_type)
    except SourceSheetError as e:
        return error_response(e, sources=[])

    regions = normalize_regions(raw_regions, detector.convention, id_prefix="gemini")

    if form_flag(resolve):
        for region in regions:
            if region.reference:
                region.resolved = await resolver.lookup(region.reference)
        logger.info(f"Resolved references for {sum(1 for r in regions if r.resolved and r.resolved.found)} of {len(regions)} regions.",
                    extra={"event": "regions_resolved"})

    return AnalyzeResponse(success=True, sources=regions, count=len(regions))


@app.post("/api/sources/parse", response_model=ParseResponse, response_model_exclude_none=True,
          summary="Recover the text of a sheet and split it into sources")
async def parse_source_sheet(
    file: Optional[UploadFile] = File(None),
    use_ocr: str = Form("false", alias="useOCR"),
    ocr: Optional[VisionOcrClient] = Depends(get_ocr_client),
):
    try:
        ingested = await ingest_upload(file, "file")
        raw_text, method = await extract_text(ingested, form_flag(use_ocr), ocr)
    except SourceSheetError as e:
        return error_response(e, sources=[])

    blocks = split_sources(raw_text)
    return ParseResponse(raw_text=raw_text, sources=blocks, method=method)


@app.post("/api/sources/regions", response_model=RegionsResponse, summary="Find source bands / boxes on a sheet image")
async def detect_source_regions(
    file: Optional[UploadFile] = File(None),
    detector: Optional[LayoutDetector] = Depends(get_layout_detector),
):
    """
    Returns the page as a data URI together with its regions, in the schema of the configured
    convention: {title, box_2d} or {title, y, height}.
    """
    try:
        if detector is None:
            raise config.missing_credential("gemini")
        ingested = await ingest_upload(file, "file")
        require_visual_media(ingested)
    except SourceSheetError as e:
        return error_response(e, regions=[])

    try:
        raw_regions = await detector.detect_regions(ingested.data_base64, ingested.media_type)
    except ProviderError as e:
        logger.warning(f"Region detection failed, returning the full page: {e.message}",
                       extra={"event": "region_detection_degraded", "upstream_status": e.upstream_status})
        raw_regions = []

    regions = normalize_wire_regions(raw_regions, detector.convention)
    return RegionsResponse(image=ingested.data_uri, regions=regions, convention=detector.convention)


@app.post("/api/sources/identify", response_model=IdentifyResponse, summary="Name the source shown in a cropped image")
async def identify_source(
    image: Optional[UploadFile] = File(None),
    identifier: SourceIdentifier = Depends(get_source_identifier),
    ocr: Optional[VisionOcrClient] = Depends(get_ocr_client),
):
    """
    Tries the model variants first, then OCR + text search, then hands back the raw OCR text.
    Only a missing file or a total absence of credentials is an error.
    """
    try:
        ingested = await ingest_upload(image, "image")
        require_visual_media(ingested)
        if not identifier.has_model_strategies and ocr is None:
            raise ConfigurationError("Neither GEMINI_API_KEY nor GOOGLE_VISION_API_KEY is configured")
    except SourceSheetError as e:
        return error_response(e, candidates=[])

    context = IdentificationContext(ingested, ocr)
    if not identifier.has_model_strategies:
        context.note("No GEMINI_API_KEY")
    return await identifier.identify(context)


@app.get("/api/sources/sefaria", response_model=ReferenceLookup, response_model_exclude_none=True,
         summary="Look up one reference in Sefaria")
async def lookup_reference(
    ref: Optional[str] = Query(None),
    resolver: SefariaResolver = Depends(get_sefaria_resolver),
):
    if not ref or not ref.strip():
        return ReferenceLookup(found=False, error="No reference provided")
    return await resolver.lookup(ref)


@app.post("/api/sources/sefaria", response_model=SearchResponse, response_model_exclude_none=True,
          summary="Search Sefaria for a text snippet")
async def search_references(request: Request, resolver: SefariaResolver = Depends(get_sefaria_resolver)):
    try:
        body = await request.json()
    except ValueError as e:
        logger.warning(f"Search request body was not JSON: {e}", extra={"event": "search_bad_body"})
        return SearchResponse(results=[], error="Request body must be JSON")
    try:
        search = SearchRequest.model_validate(body)
    except ValidationError as e:
        logger.warning(f"Search request body has the wrong shape: {e.errors()}", extra={"event": "search_bad_body"})
        return SearchResponse(results=[], error="Request body must be an object with a string 'query'")
    if not search.query:
        return SearchResponse(results=[])
    return SearchResponse(results=await resolver.search(search.query))


if __name__ == "__main__":
    logger.info(f"Gemini configured: {bool(config.gemini_api_keys())}; Vision configured: {bool(config.google_vision_api_key())}")
    logger.info(f"Sefaria API URL: {config.SEFARIA_API_URL}")
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", 8000)))
