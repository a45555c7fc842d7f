from typing import Optional, List, Literal, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for models that go over the wire; JSON keys are camelCase."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Geometry ---

class PercentBox(WireModel):
    """Box in percentage-of-page units, the single internal representation."""
    x: float
    y: float
    width: float
    height: float


class ZeroToThousandBox(BaseModel):
    """[ymin, xmin, ymax, xmax] on a 0-1000 grid, as the box_2d prompt returns it."""
    kind: Literal["box_2d"] = "box_2d"
    ymin: float
    xmin: float
    ymax: float
    xmax: float


class PercentBand(BaseModel):
    """Full-width band: where a source starts (y) and how tall it is, both in percent."""
    kind: Literal["band"] = "band"
    y: float
    height: float


BoxSpec = Union[ZeroToThousandBox, PercentBand]


# --- Detection output ---

class ReferenceLookup(WireModel):
    found: bool
    ref: Optional[str] = None
    he_ref: Optional[str] = None
    text: Optional[str] = None
    he: Optional[str] = None
    url: Optional[str] = None
    book: Optional[str] = None
    categories: Optional[List[str]] = None
    error: Optional[str] = None


class SourceRegion(WireModel):
    id: str
    box: PercentBox
    text: str = ""
    title: Optional[str] = None
    reference: Optional[str] = None
    language: Literal["hebrew", "english"] = "english"
    resolved: Optional[ReferenceLookup] = None


class ParsedBlock(WireModel):
    id: str
    text: str
    type: Literal["hebrew", "english"]
    title: Optional[str] = None


class BandRegion(WireModel):
    title: str
    y: float
    height: float


class BoxRegion(WireModel):
    title: str
    box_2d: List[float] = Field(alias="box_2d")


# --- Reference resolution ---

class SearchHit(WireModel):
    ref: str
    he_ref: Optional[str] = None
    text: str = ""
    score: Optional[float] = None
    url: str


class ReferenceCandidate(WireModel):
    source_name: str
    canonical_ref: str = ""
    preview_text: str = ""
    origin: Literal["model", "text-search", "ocr-only"]
    url: Optional[str] = None
    model: Optional[str] = None


# --- Request / response bodies ---

class AnalyzeResponse(WireModel):
    success: bool
    sources: List[SourceRegion]
    count: int


class ParseResponse(WireModel):
    success: bool = True
    raw_text: str
    sources: List[ParsedBlock]
    method: Literal["ocr", "pdf-text"]


class RegionsResponse(WireModel):
    success: bool = True
    image: str
    regions: List[Union[BoxRegion, BandRegion]]
    convention: Literal["box_2d", "band"]


class IdentifyResponse(WireModel):
    success: bool = True
    candidates: List[ReferenceCandidate]
    strategy: Optional[str] = None
    raw_text: Optional[str] = None
    debug: List[str] = []


class SearchRequest(BaseModel):
    query: Optional[str] = None


class SearchResponse(BaseModel):
    results: List[SearchHit]
    error: Optional[str] = None
