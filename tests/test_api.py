import pytest
from fastapi.testclient import TestClient

import main
from conftest import FakeOcr, FakeResolver
from errors import ProviderError
from result_normalizer import BOX_2D, BAND
from source_identifier import SourceIdentifier, OcrOnlyStrategy, TextSearchStrategy
from source_schema import ReferenceLookup, SearchHit

PDF_WITH_TEXT = b"%PDF-1.4\nstream\nBT (1. Rashi on Bereishit) Tj ET\nendstream\n%%EOF"


class FakeDetector:
    def __init__(self, regions=None, error=None, convention=BOX_2D):
        self.regions = regions or []
        self.error = error
        self.convention = convention

    async def detect_regions(self, data_base64, media_type):
        if self.error is not None:
            raise self.error
        return self.regions


@pytest.fixture
def client():
    main.app.dependency_overrides[main.get_sefaria_resolver] = lambda: FakeResolver()
    main.app.dependency_overrides[main.get_ocr_client] = lambda: None
    main.app.dependency_overrides[main.get_layout_detector] = lambda: None
    yield TestClient(main.app)
    main.app.dependency_overrides = {}


def _override(dependency, value):
    main.app.dependency_overrides[dependency] = lambda: value


def _image(png_bytes, field="image"):
    return {field: ("sheet.png", png_bytes, "image/png")}


def test_health(client, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "g")
    monkeypatch.delenv("GEMINI_API_KEYS", raising=False)
    monkeypatch.delenv("GOOGLE_VISION_API_KEY", raising=False)
    body = client.get("/api/health").json()
    assert body["status"] == "healthy"
    assert body["providers"] == {"gemini": True, "google_vision": False, "sefaria": True}


def test_analyze_returns_clamped_regions(client, png_bytes):
    _override(main.get_layout_detector, FakeDetector([
        {"box_2d": [0, 0, 500, 1000], "title": "1", "text": "שלום עולם", "reference": "Berakhot 55a"},
        {"box_2d": [500, 0, 1200, 1000], "title": "2", "text": "second"},
    ]))
    response = client.post("/api/sources/analyze", files=_image(png_bytes))
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["count"] == 2
    assert body["sources"][0]["box"] == {"x": 0, "y": 0, "width": 100, "height": 50}
    assert body["sources"][1]["box"]["height"] == 70
    assert body["sources"][0]["language"] == "hebrew"
    assert body["sources"][0]["resolved"] is None


def test_analyze_resolves_references(client, png_bytes):
    _override(main.get_layout_detector, FakeDetector([{"box_2d": [0, 0, 500, 1000], "reference": "Berakhot 55a"}]))
    _override(main.get_sefaria_resolver, FakeResolver(lookups={
        "Berakhot 55a": ReferenceLookup(found=True, ref="Berakhot 55a", url="https://www.sefaria.org/Berakhot_55a"),
    }))
    body = client.post("/api/sources/analyze", files=_image(png_bytes), data={"resolve": "true"}).json()
    assert body["sources"][0]["resolved"]["found"] is True
    assert body["sources"][0]["resolved"]["url"] == "https://www.sefaria.org/Berakhot_55a"


def test_analyze_with_no_regions_gives_full_page(client, png_bytes):
    _override(main.get_layout_detector, FakeDetector([]))
    body = client.post("/api/sources/analyze", files=_image(png_bytes)).json()
    assert body["count"] == 1
    assert body["sources"][0]["box"] == {"x": 0, "y": 0, "width": 100, "height": 100}


def test_analyze_without_credential_is_503(client, png_bytes):
    response = client.post("/api/sources/analyze", files=_image(png_bytes))
    assert response.status_code == 503
    body = response.json()
    assert body["success"] is False
    assert body["error_type"] == "configuration"
    assert "GEMINI_API_KEY" in body["error"]
    assert body["sources"] == []


def test_analyze_without_file_is_400(client):
    _override(main.get_layout_detector, FakeDetector())
    response = client.post("/api/sources/analyze")
    assert response.status_code == 400
    assert response.json()["error"] == "No image file provided"


def test_analyze_provider_failure_is_502(client, png_bytes):
    _override(main.get_layout_detector, FakeDetector(error=ProviderError("gemini", "Gemini API error: 500", 500)))
    response = client.post("/api/sources/analyze", files=_image(png_bytes))
    assert response.status_code == 502
    assert response.json()["error_type"] == "provider"


def test_parse_uses_embedded_pdf_text(client):
    files = {"file": ("sheet.pdf", PDF_WITH_TEXT, "application/pdf")}
    body = client.post("/api/sources/parse", files=files).json()
    assert body["success"] is True
    assert body["method"] == "pdf-text"
    assert body["rawText"] == "1. Rashi on Bereishit"
    assert body["sources"][0]["text"] == "1. Rashi on Bereishit"


def test_parse_with_ocr(client, png_bytes):
    ocr = FakeOcr("First block of the sheet text\n\nSecond block of the sheet text")
    _override(main.get_ocr_client, ocr)
    body = client.post("/api/sources/parse", files=_image(png_bytes, "file"), data={"useOCR": "true"}).json()
    assert body["method"] == "ocr"
    assert [s["text"] for s in body["sources"]] == ["First block of the sheet text", "Second block of the sheet text"]
    assert ocr.calls == ["image/png"]


def test_parse_image_without_ocr_credential_is_503(client, png_bytes):
    response = client.post("/api/sources/parse", files=_image(png_bytes, "file"))
    assert response.status_code == 503
    assert response.json()["sources"] == []


def test_regions_box_2d(client, png_bytes):
    _override(main.get_layout_detector, FakeDetector([{"title": "1", "box_2d": [0, 0, 400, 1000]}]))
    body = client.post("/api/sources/regions", files=_image(png_bytes, "file")).json()
    assert body["convention"] == "box_2d"
    assert body["image"].startswith("data:image/png;base64,")
    assert body["regions"] == [{"title": "1", "box_2d": [0, 0, 400, 1000]}]


def test_regions_band(client, png_bytes):
    _override(main.get_layout_detector, FakeDetector([{"title": "A", "y": 10, "height": 30}], convention=BAND))
    body = client.post("/api/sources/regions", files=_image(png_bytes, "file")).json()
    assert body["regions"] == [{"title": "A", "y": 10, "height": 30}]


def test_regions_provider_failure_returns_full_page(client, png_bytes):
    _override(main.get_layout_detector, FakeDetector(error=ProviderError("gemini", "Gemini API error: 429", 429)))
    response = client.post("/api/sources/regions", files=_image(png_bytes, "file"))
    assert response.status_code == 200
    assert response.json()["regions"] == [{"title": "Source 1", "box_2d": [0, 0, 1000, 1000]}]


def test_identify_without_any_credential_is_503(client, png_bytes):
    _override(main.get_source_identifier, SourceIdentifier([TextSearchStrategy(FakeResolver()), OcrOnlyStrategy()]))
    response = client.post("/api/sources/identify", files=_image(png_bytes))
    assert response.status_code == 503
    assert response.json()["candidates"] == []


def test_identify_with_ocr_only(client, png_bytes):
    resolver = FakeResolver(hits=[SearchHit(ref="Genesis 1:1", text="In the beginning", url="https://www.sefaria.org/Genesis_1:1")])
    _override(main.get_source_identifier, SourceIdentifier([TextSearchStrategy(resolver), OcrOnlyStrategy()]))
    _override(main.get_ocr_client, FakeOcr("בראשית ברא אלהים"))
    body = client.post("/api/sources/identify", files=_image(png_bytes)).json()
    assert body["success"] is True
    assert body["strategy"] == "text-search"
    assert body["candidates"][0]["canonicalRef"] == "Genesis_1:1"
    assert body["rawText"] == "בראשית ברא אלהים"
    assert body["debug"][0] == "No GEMINI_API_KEY"


def test_sefaria_lookup(client):
    _override(main.get_sefaria_resolver, FakeResolver(lookups={
        "Genesis 1:1": ReferenceLookup(found=True, ref="Genesis 1:1", text="In the beginning"),
    }))
    body = client.get("/api/sources/sefaria", params={"ref": "Genesis 1:1"}).json()
    assert body == {"found": True, "ref": "Genesis 1:1", "text": "In the beginning"}


def test_sefaria_lookup_without_ref(client):
    assert client.get("/api/sources/sefaria").json() == {"found": False, "error": "No reference provided"}


def test_sefaria_search(client):
    resolver = FakeResolver(hits=[SearchHit(ref="Genesis 1:1", text="In the beginning", score=2.0,
                                            url="https://www.sefaria.org/Genesis_1:1")])
    _override(main.get_sefaria_resolver, resolver)
    body = client.post("/api/sources/sefaria", json={"query": "in the beginning"}).json()
    assert body["results"][0]["ref"] == "Genesis 1:1"
    assert resolver.queries == ["in the beginning"]


def test_sefaria_search_bad_body(client):
    response = client.post("/api/sources/sefaria", content=b"not json", headers={"content-type": "application/json"})
    assert response.status_code == 200
    assert response.json() == {"results": [], "error": "Request body must be JSON"}
    assert client.post("/api/sources/sefaria", json={}).json() == {"results": []}


def test_search_with_non_string_query(client):
    body = client.post("/api/sources/sefaria", json={"query": 42}).json()
    assert body["results"] == []
    assert "query" in body["error"]


def test_text_in_place_of_file_is_invalid_input(client):
    _override(main.get_layout_detector, FakeDetector())
    response = client.post("/api/sources/analyze", data={"image": "not a file"})
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error_type"] == "invalid_input"
    assert body["error"].startswith("Invalid request: image")
    assert body["sources"] == []


def test_non_boolean_flag_reads_as_false(client):
    ocr = FakeOcr("should not be used")
    _override(main.get_ocr_client, ocr)
    files = {"file": ("sheet.pdf", PDF_WITH_TEXT, "application/pdf")}
    response = client.post("/api/sources/parse", files=files, data={"useOCR": "maybe"})
    assert response.status_code == 200
    assert response.json()["method"] == "pdf-text"
    assert ocr.calls == []


def test_flag_is_case_insensitive(client, png_bytes):
    _override(main.get_layout_detector, FakeDetector([{"box_2d": [0, 0, 500, 1000], "reference": "Berakhot 55a"}]))
    _override(main.get_sefaria_resolver, FakeResolver(lookups={
        "Berakhot 55a": ReferenceLookup(found=True, ref="Berakhot 55a"),
    }))
    on = client.post("/api/sources/analyze", files=_image(png_bytes), data={"resolve": "TRUE"}).json()
    off = client.post("/api/sources/analyze", files=_image(png_bytes), data={"resolve": "yes"}).json()
    assert on["sources"][0]["resolved"]["found"] is True
    assert off["sources"][0]["resolved"] is None
