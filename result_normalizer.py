# result_normalizer.py
import logging
import uuid # For unique IDs in regions
from typing import List, Dict, Optional, Any, Union

from source_schema import (
    PercentBox, ZeroToThousandBox, PercentBand, BoxSpec, SourceRegion, BandRegion, BoxRegion,
)
from source_splitter import is_hebrew

logger = logging.getLogger(__name__)

MIN_EXTENT = 5.0
MAX_PERCENT = 100.0
GRID_SCALE = 10.0 # 0-1000 grid -> percent

BOX_2D = "box_2d"
BAND = "band"
CONVENTIONS = (BOX_2D, BAND)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_box_spec(raw: Dict[str, Any], convention: str) -> Optional[BoxSpec]:
    """
    Reads the box of one raw model region in the convention its prompt asked for.
    A region with no box_2d at all covers the full page; a malformed box gives None.
    """
    if convention == BOX_2D:
        coords = raw.get("box_2d")
        if coords is None:
            return ZeroToThousandBox(ymin=0, xmin=0, ymax=1000, xmax=1000)
        if not isinstance(coords, (list, tuple)) or len(coords) != 4:
            return None
        numbers = [_as_number(c) for c in coords]
        if any(n is None for n in numbers):
            return None
        ymin, xmin, ymax, xmax = numbers
        return ZeroToThousandBox(ymin=ymin, xmin=xmin, ymax=ymax, xmax=xmax)

    y, height = _as_number(raw.get("y")), _as_number(raw.get("height"))
    if y is None or height is None:
        return None
    return PercentBand(y=y, height=height)


def zero_to_thousand_to_percent(box_spec: ZeroToThousandBox) -> PercentBox:
    return PercentBox(
        x=box_spec.xmin / GRID_SCALE,
        y=box_spec.ymin / GRID_SCALE,
        width=(box_spec.xmax - box_spec.xmin) / GRID_SCALE,
        height=(box_spec.ymax - box_spec.ymin) / GRID_SCALE,
    )


def band_to_percent(box_spec: PercentBand) -> PercentBox:
    # Bands always span the full page width
    return PercentBox(x=0, y=box_spec.y, width=MAX_PERCENT, height=box_spec.height)


def to_percent_box(box_spec: BoxSpec) -> PercentBox:
    if isinstance(box_spec, ZeroToThousandBox):
        return zero_to_thousand_to_percent(box_spec)
    return band_to_percent(box_spec)


def clamp_box(box: PercentBox) -> PercentBox:
    """x, y into [0, 100]; width, height into [5, 100]. Each field independently."""
    return PercentBox(
        x=max(0.0, min(MAX_PERCENT, box.x)),
        y=max(0.0, min(MAX_PERCENT, box.y)),
        width=max(MIN_EXTENT, min(MAX_PERCENT, box.width)),
        height=max(MIN_EXTENT, min(MAX_PERCENT, box.height)),
    )


def normalize_box(raw: Dict[str, Any], convention: str) -> Optional[PercentBox]:
    """Raw model region -> clamped PercentBox, or None when the region must be discarded."""
    box_spec = parse_box_spec(raw, convention)
    if box_spec is None:
        logger.debug(f"Discarding region with malformed box: {raw}", extra={"event": "region_malformed"})
        return None
    box = to_percent_box(box_spec)
    if box.width <= 0 or box.height <= 0:
        logger.debug(f"Discarding zero-area region: {raw}", extra={"event": "region_zero_area"})
        return None
    return clamp_box(box)


def full_page_region(run_id: str) -> SourceRegion:
    return SourceRegion(
        id=f"{run_id}-0",
        box=PercentBox(x=0, y=0, width=MAX_PERCENT, height=MAX_PERCENT),
        title="Source 1",
    )


def normalize_regions(raw_regions: List[Any], convention: str = BOX_2D, id_prefix: str = "region") -> List[SourceRegion]:
    """
    Turns the raw region list of a layout model into SourceRegions.

    Never returns an empty list: when nothing survives, the whole page is one region.
    """
    run_id = f"{id_prefix}-{uuid.uuid4().hex[:8]}"
    regions: List[SourceRegion] = []

    for idx, raw in enumerate(raw_regions or []):
        if not isinstance(raw, dict):
            logger.debug(f"Skipping non-object region entry: {raw!r}")
            continue
        box = normalize_box(raw, convention)
        if box is None:
            continue
        text = raw.get("text") if isinstance(raw.get("text"), str) else ""
        reference = raw.get("reference") if isinstance(raw.get("reference"), str) and raw.get("reference").strip() else None
        title = raw.get("title") if isinstance(raw.get("title"), str) and raw.get("title").strip() else None
        regions.append(SourceRegion(
            id=f"{run_id}-{idx}",
            box=box,
            text=text,
            title=title,
            reference=reference,
            language="hebrew" if is_hebrew(text) else "english",
        ))

    if not regions:
        logger.info("No usable regions detected; falling back to a single full-page region.",
                    extra={"event": "full_page_fallback", "raw_region_count": len(raw_regions or [])})
        return [full_page_region(run_id)]

    logger.info(f"Normalized {len(regions)} of {len(raw_regions)} detected regions.",
                extra={"event": "regions_normalized", "region_count": len(regions)})
    return regions


def percent_box_to_box_2d(box: PercentBox) -> List[float]:
    # Rounded so integer grid coordinates come back without float drift
    return [
        round(box.y * GRID_SCALE, 3),
        round(box.x * GRID_SCALE, 3),
        round(min(MAX_PERCENT, box.y + box.height) * GRID_SCALE, 3),
        round(min(MAX_PERCENT, box.x + box.width) * GRID_SCALE, 3),
    ]


def normalize_wire_regions(raw_regions: List[Any], convention: str = BOX_2D) -> List[Union[BoxRegion, BandRegion]]:
    """
    Sanity-checks regions for the region-detect endpoint, keeping the wire schema of `convention`.
    Same clamping and full-page fallback as normalize_regions.
    """
    regions: List[Union[BoxRegion, BandRegion]] = []
    for raw in raw_regions or []:
        if not isinstance(raw, dict):
            continue
        box = normalize_box(raw, convention)
        if box is None:
            continue
        title = raw.get("title") if isinstance(raw.get("title"), str) and raw.get("title").strip() else f"Source {len(regions) + 1}"
        if convention == BOX_2D:
            regions.append(BoxRegion(title=title, box_2d=percent_box_to_box_2d(box)))
        else:
            regions.append(BandRegion(title=title, y=box.y, height=box.height))

    if not regions:
        logger.info("No usable regions detected; falling back to a single full-page region.",
                    extra={"event": "full_page_fallback", "convention": convention})
        if convention == BOX_2D:
            return [BoxRegion(title="Source 1", box_2d=[0, 0, 1000, 1000])]
        return [BandRegion(title="Source 1", y=0, height=MAX_PERCENT)]
    return regions
