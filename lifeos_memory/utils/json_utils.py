"""
JSON utilities for parsing language-model responses.
"""

import json
from typing import Any

from .errors import ParseError


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers and surrounding prose.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    response = (response or '').strip()

    # Remove ```json and ``` markers
    if response.startswith('```json'):
        response = response[7:]
    elif response.startswith('```'):
        response = response[3:]

    if response.endswith('```'):
        response = response[:-3]

    response = response.strip()

    # Models sometimes wrap the object in a sentence; keep the outermost braces
    if response and response[0] not in '{[':
        start = response.find('{')
        end = response.rfind('}')
        if start != -1 and end > start:
            response = response[start:end + 1]

    return response


def parse_json_object(response: str) -> dict:
    """Parse an LLM response that must contain a single JSON object.

    Args:
        response: Raw LLM response

    Returns:
        Parsed dictionary

    Raises:
        ParseError: If the response is not a JSON object
    """
    cleaned = clean_json_response(response)
    try:
        data: Any = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ParseError(f'Response is not valid JSON: {e}')

    if not isinstance(data, dict):
        raise ParseError(f'Expected JSON object, got {type(data).__name__}')

    return data
