# layout_detector_service.py
import logging
from typing import List, Dict, Any

import config
from errors import ParseError
from gemini_client import GeminiClient
from llm_json_utils import parse_model_json
from result_normalizer import BOX_2D, BAND, CONVENTIONS

logger = logging.getLogger(__name__)

BOX_2D_PROMPT = """Analyze this Torah/Jewish source sheet image. Find all distinct text sources on the page.

For EACH source you find, return:
1. box_2d: Bounding box as [ymin, xmin, ymax, xmax] where values are 0-1000 (normalized coordinates)
2. title: A short label for the source (its number, header or name)
3. text: The Hebrew/Aramaic text content (OCR it)
4. reference: The source reference if you can identify it (e.g., "Bereishit 1:1", "Rashi on Shemot 3:14", "Gemara Berachot 5a")

Detection rules:
- Each numbered section (1, 2, 3 or א, ב, ג or circled numbers) is a SEPARATE source
- Sources laid out side by side in columns are SEPARATE sources
- Include headers/titles with their associated text as ONE source
- Skip page numbers, decorative elements, and watermarks
- Sources may be in Hebrew, Aramaic, Yiddish or English

Return ONLY a JSON object in this exact format, no other text:
{"sources":[{"box_2d":[ymin,xmin,ymax,xmax],"title":"...","text":"...","reference":"..."}]}"""

BAND_PROMPT = """This is a Hebrew source sheet with multiple sources.

Find each source and give me its bounding box as percentages (0-100).
Sources are separated by whitespace, headers, numbers, or lines.

Return ONLY a JSON array like this:
[
  {"title": "Source name or number", "y": 0, "height": 25},
  {"title": "Next source", "y": 26, "height": 30}
]

y = where this source STARTS (% from top)
height = how TALL this source is (%)

Sources go full width, so no x/width needed.
Return [] if you can't identify sources."""

PROMPTS = {BOX_2D: BOX_2D_PROMPT, BAND: BAND_PROMPT}


def extract_raw_regions(response_text: str, convention: str) -> List[Dict[str, Any]]:
    """
    Pulls the region list out of a model answer.
    box_2d answers are {"sources": [...]}; band answers are a bare array. Either shape is accepted.

    Raises:
        ParseError: when the answer holds no JSON or no region array.
    """
    parsed = parse_model_json(response_text)
    if isinstance(parsed, dict):
        parsed = parsed.get("sources", parsed.get("regions"))
    if not isinstance(parsed, list):
        raise ParseError(f"Expected a list of regions for the {convention} prompt.")
    return [region for region in parsed if isinstance(region, dict)]


class LayoutDetector:
    """
    Asks a multimodal model where the sources on a page are.

    The coordinate convention of the answer is the one the issued prompt asked for;
    nothing here inspects an answer to guess it.
    """

    def __init__(self, gemini: GeminiClient, model: str = config.GEMINI_LAYOUT_MODEL,
                 convention: str = config.LAYOUT_BOX_CONVENTION):
        if convention not in CONVENTIONS:
            logger.warning(f"Unknown box convention '{convention}', using '{BOX_2D}'.",
                           extra={"event": "unknown_box_convention", "convention": convention})
            convention = BOX_2D
        self.gemini = gemini
        self.model = model
        self.convention = convention

    async def detect_regions(self, data_base64: str, media_type: str) -> List[Dict[str, Any]]:
        """
        Raw regions in self.convention. An unparseable answer is "no regions", not an error;
        provider failures (ProviderError) propagate so the route can report them.
        """
        response_text = await self.gemini.generate(
            self.model, PROMPTS[self.convention], data_base64, media_type, max_output_tokens=8192,
        )
        try:
            regions = extract_raw_regions(response_text, self.convention)
        except ParseError as e:
            logger.warning(f"Layout response could not be parsed, treating as no regions: {e}. Response: '{response_text[:500]}'",
                           extra={"event": "layout_parse_failed", "model": self.model, "convention": self.convention})
            return []
        logger.info(f"Layout detector found {len(regions)} raw regions.",
                    extra={"event": "layout_detected", "model": self.model, "convention": self.convention, "region_count": len(regions)})
        return regions
