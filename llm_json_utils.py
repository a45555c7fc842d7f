# llm_json_utils.py

import re
import json
import logging
import unicodedata # For robust string cleaning
from typing import Any

from errors import ParseError

# Initialize logger for this module
logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r'```(?:json)?\s*([\s\S]*?)\s*```', re.IGNORECASE)


def strip_code_fence(text: str) -> str:
    """Returns the body of the first fenced code block, or the text unchanged when there is none."""
    match = _FENCE_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def _clean_json_string(raw_json_str: str) -> str:
    """
    Cleans a raw model response so that it is more likely to be valid JSON.

    Strips code fences, drops any prose before the first '{' / '[' and after the
    matching last '}' / ']', removes trailing commas and control characters.

    Args:
        raw_json_str (str): The raw text of the model response.

    Returns:
        str: A cleaned string, or "" when no JSON structure is present at all.
    """
    if not isinstance(raw_json_str, str):
        logger.warning(f"Expected string for _clean_json_string, got {type(raw_json_str)}. Returning empty string.")
        return ""

    cleaned_str = strip_code_fence(raw_json_str)

    first_brace = cleaned_str.find('{')
    first_bracket = cleaned_str.find('[')

    start_index = -1
    if first_brace != -1 and (first_bracket == -1 or first_brace < first_bracket):
        start_index = first_brace
    elif first_bracket != -1:
        start_index = first_bracket

    if start_index == -1:
        logger.warning(f"No starting JSON brace/bracket found. Snippet: '{cleaned_str[:100]}'")
        return ""

    closing = '}' if cleaned_str[start_index] == '{' else ']'
    end_index = cleaned_str.rfind(closing)
    if end_index <= start_index:
        logger.warning(f"Could not find matching closing brace/bracket. Snippet: '{cleaned_str[:100]}'")
        return ""
    cleaned_str = cleaned_str[start_index:end_index + 1]

    # Trailing commas before closing braces/brackets break json.loads
    cleaned_str = re.sub(r',\s*([}\]])', r'\1', cleaned_str)

    def replace_newlines(match):
        return match.group(0).replace('\n', '\\n')

    cleaned_str = re.sub(r'"(?:\\.|[^"\\])*"', replace_newlines, cleaned_str)

    # Control characters (but not the text itself, Hebrew is category L/M)
    cleaned_str = ''.join(c for c in cleaned_str if unicodedata.category(c)[0] != 'C')

    return cleaned_str


def parse_model_json(response_text: str) -> Any:
    """
    Parses the JSON payload out of a model response.

    Raises:
        ParseError: when nothing in the response decodes as JSON.
    """
    cleaned = _clean_json_string(response_text or "")
    if not cleaned:
        raise ParseError("Model response contained no JSON structure.")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to decode model JSON: {e}. Snippet: '{cleaned[:100]}'",
                       extra={"event": "model_json_decode_failed"})
        raise ParseError(f"Model response was not valid JSON: {e}") from e
