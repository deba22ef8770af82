"""
LLM Output Handler - Safe access, extraction and validation for classifier output.

CORE PRINCIPLE:
    LLM output is untrusted data.
    LLM output → extract → validate → then act

This module provides:
1. Safe access helpers (no dot access on LLM dicts)
2. JSON extraction from fenced or chatty responses
3. Cleanup of comments and trailing commas
4. Schema validation of the routing payload
"""

from typing import Any, Dict, List
import json
import re

from intent_engine.models import ENDPOINT_OPERATIONS


# ============================================
# SAFE ACCESS LAYER
# ============================================

def safe_get(data: Any, key: str, default: Any = None) -> Any:
    """
    Safely access a key from LLM output dict.

    Returns default when data is not a dict or the key is missing.
    """
    if not isinstance(data, dict):
        return default
    return data.get(key, default)


def safe_get_nested(data: Any, *keys: str, default: Any = None) -> Any:
    """
    Safely access nested keys from LLM output.

    Example:
        safe_get_nested(payload, "parameters", "imageSize", default="square_hd")
    """
    current = data
    for key in keys:
        current = safe_get(current, key)
        if current is None:
            return default
    return current if current is not None else default


# ============================================
# EXTRACTION
# ============================================

RE_FENCED_BLOCK = re.compile(r'```(?:json)?\s*([\s\S]*?)```', re.IGNORECASE)
RE_LINE_COMMENT = re.compile(r'(?m)^\s*//.*$|(?<=[,{\[])\s*//[^\n]*')
RE_BLOCK_COMMENT = re.compile(r'/\*[\s\S]*?\*/')
RE_TRAILING_COMMA = re.compile(r',\s*([}\]])')


class LLMOutputError(ValueError):
    """Raised when LLM output cannot be turned into a valid payload"""


def extract_json_text(raw: str) -> str:
    """Pull the JSON object out of a response: fenced block first, then the outermost braces."""
    if not raw:
        raise LLMOutputError("empty response")

    fenced = RE_FENCED_BLOCK.search(raw)
    candidate = fenced.group(1) if fenced else raw

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end <= start:
        raise LLMOutputError("no JSON object in response")
    return candidate[start:end + 1]


def clean_json_text(text: str) -> str:
    """Strip comments and trailing commas that models like to emit."""
    text = RE_BLOCK_COMMENT.sub("", text)
    text = RE_LINE_COMMENT.sub("", text)
    return RE_TRAILING_COMMA.sub(r"\1", text)


def parse_llm_json(raw: str) -> Dict[str, Any]:
    """Parse raw model output into a dict, repairing it once if plain parsing fails."""
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        try:
            parsed = json.loads(clean_json_text(extract_json_text(raw or "")))
        except json.JSONDecodeError as exc:
            raise LLMOutputError(f"invalid JSON after repair: {exc}") from exc

    if not isinstance(parsed, dict):
        raise LLMOutputError("response is not a JSON object")
    return parsed


# ============================================
# SCHEMA VALIDATION
# ============================================

REQUIRED_FIELDS = ("intent", "confidence", "endpoint", "parameters", "requiresFiles", "explanation")


def validate_routing_payload(payload: Dict[str, Any]) -> List[str]:
    """Return every schema violation in a routing payload (empty list = valid)."""
    problems = [f"missing field '{name}'" for name in REQUIRED_FIELDS if name not in payload]
    if problems:
        return problems

    confidence = safe_get(payload, "confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or not 0 <= confidence <= 1:
        problems.append(f"confidence must be a number in [0, 1], got {confidence!r}")

    if not isinstance(safe_get(payload, "requiresFiles"), bool):
        problems.append("requiresFiles must be a boolean")

    if not isinstance(safe_get(payload, "parameters"), dict):
        problems.append("parameters must be an object")

    endpoint = safe_get(payload, "endpoint")
    if not isinstance(endpoint, str) or endpoint not in ENDPOINT_OPERATIONS:
        problems.append(f"unknown endpoint {endpoint!r}")

    if endpoint == "multi_step":
        steps = safe_get_nested(payload, "parameters", "steps")
        if not isinstance(steps, list) or not steps:
            problems.append("multi_step requires parameters.steps")
        else:
            for i, step in enumerate(steps):
                if not isinstance(step, dict):
                    problems.append(f"step {i + 1} must be an object")
                    continue
                step_endpoint = step.get("endpoint")
                if (
                    not isinstance(step_endpoint, str)
                    or step_endpoint not in ENDPOINT_OPERATIONS
                    or not step_endpoint.startswith("/api/")
                ):
                    problems.append(f"step {i + 1} has unknown endpoint {step_endpoint!r}")
                if not isinstance(step.get("parameters", {}), (dict, type(None))):
                    problems.append(f"step {i + 1} parameters must be an object")

    return problems
