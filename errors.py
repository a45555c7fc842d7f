# errors.py
from typing import Optional


class SourceSheetError(Exception):
    """Base class for every error the ingestion pipeline reports to a caller."""
    status_code = 500
    error_type = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(SourceSheetError):
    """A required file or field was not supplied."""
    status_code = 400
    error_type = "invalid_input"


class ProviderError(SourceSheetError):
    """
    An upstream service (OCR, multimodal model, text database) failed.
    `upstream_status` is None when the request never got a response (network error, timeout).
    """
    status_code = 502
    error_type = "provider"

    def __init__(self, provider: str, message: str, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.upstream_status = upstream_status

    @property
    def rate_limited(self) -> bool:
        return self.upstream_status == 429


class ParseError(SourceSheetError):
    """A provider answered, but not with JSON of the expected shape. Callers treat it as zero results."""
    status_code = 502
    error_type = "parse"


class ConfigurationError(SourceSheetError):
    """A required credential is missing from the environment."""
    status_code = 503
    error_type = "configuration"

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


def http_error_message(label: str, response) -> str:
    """
    '<label> error: <status> - <detail>' for a failed httpx response.
    The detail is Google's error.message when the body carries one, else a snippet of the body.
    """
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict) and body["error"].get("message"):
        detail = str(body["error"]["message"])
    else:
        detail = response.text[:200].strip()
    message = f"{label} error: {response.status_code}"
    return f"{message} - {detail}" if detail else message
