"""
Structured Output Parsing

Converts the LLM's extraction response into article fields. The model is not
guaranteed to return valid JSON, so parsing runs through three stages, each
of which always terminates:

1. STRICT: JSON object from a fenced block or the outermost braces
2. PATTERN: regex field extraction from free text
3. STUB: "Untitled" plus the leading raw text
"""

import re
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from ..errors import ExtractionError

logger = logging.getLogger(__name__)

STUB_TITLE = "Untitled"
EMPTY_CONTENT_PLACEHOLDER = "No readable content could be extracted from this page."

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)
_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")

_FIELD_NAMES = r"(?:title|content|summary|date|published_?at)"
_PATTERNS = {
    'title': re.compile(r"^\W*title\W*?[:=]\s*(.+)$", re.IGNORECASE | re.MULTILINE),
    'content': re.compile(
        r"^\W*content\W*?[:=]\s*([\s\S]*?)(?=\n\s*\n|\n\W*" + _FIELD_NAMES + r"\W*?[:=]|\Z)",
        re.IGNORECASE | re.MULTILINE
    ),
    'summary': re.compile(
        r"^\W*summary\W*?[:=]\s*([\s\S]*?)(?=\n\s*\n|\n\W*" + _FIELD_NAMES + r"\W*?[:=]|\Z)",
        re.IGNORECASE | re.MULTILINE
    ),
    'published_at': re.compile(
        r"(?:published_?at|date)\W*?[:=]\s*\W*(\d{4}-\d{2}-\d{2})",
        re.IGNORECASE
    ),
}


class ParseMethod(str, Enum):
    """Which parsing stage produced the fields."""
    STRICT = "strict"
    PATTERN = "pattern"
    STUB = "stub"


@dataclass(frozen=True)
class ParsedArticle:
    """Article fields recovered from an LLM response."""
    title: str
    content: str
    method: ParseMethod
    summary: Optional[str] = None
    published_at: Optional[str] = None


def _json_value(value) -> str:
    if value is None:
        return ''
    return str(value).strip()


def _pattern_value(value) -> str:
    # Strip JSON/markdown residue around a regex-matched value
    text = _json_value(value).rstrip(',').strip()
    return text.strip('"\'*` ').strip()


def _normalize_date(value) -> Optional[str]:
    match = _DATE_RE.search(str(value or ''))
    return match.group(0) if match else None


def parse_strict(response_text: str) -> Dict[str, Optional[str]]:
    """
    Decode the JSON object in a response.

    Raises:
        ExtractionError: If no JSON object with a title or content is found
    """
    fenced = _JSON_FENCE_RE.search(response_text or '')
    if fenced:
        candidate = fenced.group(1)
    else:
        start = response_text.find('{') if response_text else -1
        end = response_text.rfind('}') if response_text else -1
        if start == -1 or end <= start:
            raise ExtractionError("No JSON object in response")
        candidate = response_text[start:end + 1]

    try:
        data = json.loads(candidate.strip())
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Invalid JSON in response: {e}") from e

    if not isinstance(data, dict):
        raise ExtractionError(f"Expected a JSON object, got {type(data).__name__}")

    fields = {
        'title': _json_value(data.get('title')),
        'content': _json_value(data.get('content')),
        'summary': _json_value(data.get('summary')) or None,
        'published_at': _normalize_date(
            data.get('published_at') or data.get('publishedAt') or data.get('date')
        ),
    }
    if not fields['title'] and not fields['content']:
        raise ExtractionError("JSON object has neither title nor content")
    return fields


def parse_pattern(response_text: str) -> Dict[str, Optional[str]]:
    """
    Pull labelled fields out of free text.

    Raises:
        ExtractionError: If neither a title nor content label is found
    """
    fields: Dict[str, Optional[str]] = {}
    for name, pattern in _PATTERNS.items():
        match = pattern.search(response_text or '')
        fields[name] = _pattern_value(match.group(1)) if match else ''

    fields['summary'] = fields['summary'] or None
    fields['published_at'] = fields['published_at'] or None

    if not fields['title'] and not fields['content']:
        raise ExtractionError("No labelled title or content in response")
    return fields


def build_stub(raw_text: str, max_chars: int = 5000) -> ParsedArticle:
    """Minimal article built from the raw page text alone."""
    content = (raw_text or '').strip()[:max_chars] or EMPTY_CONTENT_PLACEHOLDER
    return ParsedArticle(title=STUB_TITLE, content=content, method=ParseMethod.STUB)


def parse_article_response(
    response_text: str,
    raw_text: str,
    content_fallback_chars: int = 1000,
    stub_chars: int = 5000
) -> ParsedArticle:
    """
    Parse an extraction response, degrading through STRICT, PATTERN and STUB.

    Never raises. Content is always non-empty in the result.

    Args:
        response_text: Raw LLM output
        raw_text: Page text that was sent to the LLM
        content_fallback_chars: Raw text used when a parse has no content
        stub_chars: Raw text kept by the STUB stage

    Returns:
        ParsedArticle tagged with the stage that produced it
    """
    stages = (
        (ParseMethod.STRICT, parse_strict),
        (ParseMethod.PATTERN, parse_pattern),
    )
    for method, parser in stages:
        try:
            fields = parser(response_text)
        except ExtractionError as e:
            logger.debug(f"{method.value} parse failed: {e}")
            continue

        content = (
            fields['content']
            or (raw_text or '').strip()[:content_fallback_chars]
            or EMPTY_CONTENT_PLACEHOLDER
        )
        return ParsedArticle(
            title=fields['title'] or STUB_TITLE,
            content=content,
            method=method,
            summary=fields.get('summary'),
            published_at=fields.get('published_at')
        )

    logger.warning("Could not parse extraction response, using stub article")
    return build_stub(raw_text, stub_chars)
