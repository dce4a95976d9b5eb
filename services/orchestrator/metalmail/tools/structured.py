"""
Best-effort decoding of JSON embedded in LLM output.

Every decoder here returns ``None`` (or the caller's fallback) instead of raising:
a model that answers in prose must never break the primary response path.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..errors import ParseError
from ..protocol.envelope import SuggestedAction


logger = logging.getLogger(__name__)

T = TypeVar("T")

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL | re.IGNORECASE)
_SUGGESTED_RE = re.compile(r"suggestedActions:\s*(\[.*?\])", re.DOTALL)


def decode_json_object(text: str) -> Dict[str, Any]:
    """Decode a JSON object, tolerating a surrounding markdown code fence. Raises ParseError."""
    if not text or not text.strip():
        raise ParseError("empty response")
    candidate = text.strip()
    m = _FENCE_RE.match(candidate)
    if m:
        candidate = m.group(1)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        # Prose around a single object: take the outermost braces
        start, end = candidate.find("{"), candidate.rfind("}")
        if start == -1 or end <= start:
            raise ParseError(str(e)) from e
        try:
            data = json.loads(candidate[start:end + 1])
        except json.JSONDecodeError as inner:
            raise ParseError(str(inner)) from inner
    if not isinstance(data, dict):
        raise ParseError(f"expected a JSON object, got {type(data).__name__}")
    return data


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        return decode_json_object(text)
    except ParseError as e:
        logger.debug("[structured] not a JSON object: %s", e)
        return None


def coerce_suggestions(items: Any) -> List[SuggestedAction]:
    """
    Normalize loose suggestion items into SuggestedAction.

    Accepts {label, prompt, description?} as well as the {action, description} shape,
    where ``action`` becomes the label and ``description`` the prompt.
    """
    if not isinstance(items, list):
        return []
    out: List[SuggestedAction] = []
    for item in items:
        if isinstance(item, str) and item.strip():
            out.append(SuggestedAction(label=item, prompt=item))
            continue
        if not isinstance(item, dict):
            continue
        label = item.get("label") or item.get("action")
        prompt = item.get("prompt") or item.get("description") or label
        if not label or not isinstance(label, str):
            continue
        description = item.get("description") if item.get("prompt") else None
        out.append(SuggestedAction(label=label, prompt=str(prompt), description=description))
    return out


def extract_suggested_actions(text: str) -> Optional[List[SuggestedAction]]:
    """Find a literal ``suggestedActions: [...]`` marker in free text."""
    if not text:
        return None
    m = _SUGGESTED_RE.search(text)
    if not m:
        return None
    try:
        items = json.loads(m.group(1))
    except json.JSONDecodeError as e:
        logger.warning("[structured] could not parse suggestedActions: %s", e)
        return None
    return coerce_suggestions(items)


async def structured_call(
    complete: Callable[[str], Any],
    prompt: str,
    model: Type[BaseModel],
    fallback: Callable[[str], T],
    coerce: Optional[Callable[[Dict[str, Any]], T]] = None,
) -> T:
    """
    Ask the LLM for JSON matching ``model``.

    The raw text goes to ``fallback`` when it is not a JSON object or does not validate.
    ``coerce`` replaces plain ``model.model_validate`` when the caller needs lenient mapping.
    """
    raw = await complete(prompt)
    data = parse_json_object(raw)
    if data is not None:
        try:
            return coerce(data) if coerce else model.model_validate(data)  # type: ignore[return-value]
        except (PydanticValidationError, ValueError, TypeError) as e:
            logger.warning("[structured] %s output did not validate: %s", model.__name__, e)
    else:
        logger.warning("[structured] %s output was not JSON, using fallback", model.__name__)
    return fallback(raw)
