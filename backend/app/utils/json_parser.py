"""
Robust JSON extraction utilities for LLM responses.
Handles the formats small models wrap their JSON in.
"""
import json
import re
from typing import Dict, Any, Optional
import logging

logger = logging.getLogger(__name__)


def extract_json_from_llm_response(
    response: str,
    fallback: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Extract JSON from LLM response with multiple fallback strategies.

    Tries:
    1. Markdown code blocks (```json)
    2. Standard { } extraction
    3. First balanced JSON object
    4. Returns fallback if all fail

    Args:
        response: Raw LLM response string
        fallback: Default value if extraction fails

    Returns:
        Parsed JSON dictionary or fallback

    Raises:
        ValueError: If extraction fails and no fallback provided
    """
    if not response or not isinstance(response, str):
        if fallback is not None:
            return fallback
        raise ValueError("Empty or invalid response")

    for strategy in (_extract_markdown_json, _extract_standard_json, _extract_first_json_object):
        try:
            result = strategy(response)
        except (json.JSONDecodeError, ValueError) as e:
            logger.debug(f"{strategy.__name__} failed: {e}")
            continue
        if isinstance(result, dict):
            return result

    # All strategies failed
    if fallback is not None:
        logger.warning("All JSON extraction strategies failed, using fallback")
        return fallback

    raise ValueError(f"Could not extract JSON from response: {response[:200]}...")


def _loads_with_fix(json_str: str) -> Any:
    try:
        return json.loads(json_str)
    except json.JSONDecodeError:
        logger.debug("Initial JSON parse failed, attempting fix...")
        return json.loads(_fix_common_json_errors(json_str))


def _extract_markdown_json(response: str) -> Optional[Dict[str, Any]]:
    """Extract JSON from markdown code blocks."""
    match = re.search(r'```(?:json)?\s*(.*?)```', response, re.DOTALL)
    if not match:
        return None
    content = match.group(1).strip()
    if not content.startswith('{'):
        return None
    return _loads_with_fix(content)


def _extract_standard_json(response: str) -> Optional[Dict[str, Any]]:
    """Extract JSON using standard { } markers."""
    json_start = response.find('{')
    json_end = response.rfind('}') + 1

    if json_start >= 0 and json_end > json_start:
        return _loads_with_fix(response[json_start:json_end])
    return None


def _extract_first_json_object(response: str) -> Optional[Dict[str, Any]]:
    """Find the first complete JSON object by tracking brace depth."""
    start = response.find('{')
    if start < 0:
        return None

    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(response)):
        char = response[i]
        if escape:
            escape = False
            continue
        if char == '\\':
            escape = True
        elif char == '"':
            in_string = not in_string
        elif not in_string:
            if char == '{':
                depth += 1
            elif char == '}':
                depth -= 1
                if depth == 0:
                    return _loads_with_fix(response[start:i + 1])
    return None


def _fix_common_json_errors(json_str: str) -> str:
    """
    Fix common JSON errors that LLMs make.

    Common issues:
    - Trailing commas
    - Single-quoted strings
    - Doubled braces copied from prompt templates
    """
    json_str = json_str.replace('{{', '{').replace('}}', '}')
    # Remove trailing commas before } or ]
    json_str = re.sub(r',(\s*[}\]])', r'\1', json_str)
    # Single quotes around keys and simple values
    json_str = re.sub(r"'([^'\"]*)'(\s*[:,}\]])", r'"\1"\2', json_str)
    return json_str


def validate_json_schema(
    data: Dict[str, Any],
    required_fields: list,
    raise_on_missing: bool = True
) -> bool:
    """
    Check that required fields are present.

    Raises:
        ValueError: If a field is missing and raise_on_missing is set
    """
    missing = [field for field in required_fields if field not in data]
    if missing:
        if raise_on_missing:
            raise ValueError(f"Missing required fields: {missing}")
        logger.warning(f"Missing fields in LLM JSON: {missing}")
        return False

    return True


# Convenience function for common use case
def parse_llm_json(
    response: str,
    required_fields: Optional[list] = None,
    fallback: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Parse LLM JSON response and optionally validate schema.

    Args:
        response: Raw LLM response
        required_fields: Optional list of required fields
        fallback: Fallback value if parsing fails

    Returns:
        Parsed and validated JSON dictionary
    """
    result = extract_json_from_llm_response(response, fallback=fallback)

    if required_fields:
        validate_json_schema(result, required_fields, raise_on_missing=fallback is None)

    return result
