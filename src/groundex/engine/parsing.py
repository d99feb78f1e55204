"""Parse model responses into Extraction objects."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from ..errors import ResponseParseError
from ..types import Extraction

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_ATTRIBUTES_SUFFIX = "_attributes"
_RESERVED_KEYS = frozenset({
    "extraction_class", "class", "extraction_text", "text", "attributes",
    "confidence", "description", "group_index", "extraction_index",
})


def _load_json(response: str) -> Any:
    """First JSON value found in the response: fenced block, object, then array."""
    response = response.strip()
    candidates = [m.group(1).strip() for m in _FENCE_RE.finditer(response)]
    candidates.append(response)

    for text in candidates:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass

        # Try {...}
        obj_match = re.search(r"\{.*\}", text, re.DOTALL)
        if obj_match:
            try:
                return json.loads(obj_match.group())
            except json.JSONDecodeError:
                pass

        # Try bare [...]
        arr_match = re.search(r"\[.*\]", text, re.DOTALL)
        if arr_match:
            try:
                return json.loads(arr_match.group())
            except json.JSONDecodeError:
                pass

    raise ResponseParseError("no JSON found in model response", raw=response[:500])


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return min(1.0, max(0.0, f))


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _from_item(item: dict[str, Any]) -> list[Extraction]:
    """One response item; either explicit fields or the flat ``{"CLASS": "text"}`` form."""
    cls = item.get("extraction_class", item.get("class"))
    text = item.get("extraction_text", item.get("text"))
    if cls is not None and text is not None:
        attributes = dict(item.get("attributes") or {})
        confidence = _as_float(item.get("confidence", attributes.pop("confidence", None)))
        return [Extraction(
            extraction_class=str(cls),
            extraction_text=str(text),
            confidence=confidence,
            group_index=_as_int(item.get("group_index")),
            description=item.get("description"),
            attributes=attributes,
        )]

    # Flat form: only string values are extraction texts; metadata keys apply to all of them.
    out = []
    for key, value in item.items():
        if key in _RESERVED_KEYS or key.endswith(_ATTRIBUTES_SUFFIX) or not isinstance(value, str):
            continue
        attributes = dict(item.get(key + _ATTRIBUTES_SUFFIX) or {})
        confidence = _as_float(attributes.pop("confidence", item.get("confidence")))
        out.append(Extraction(
            extraction_class=key,
            extraction_text=value,
            confidence=confidence,
            group_index=_as_int(item.get("group_index")),
            attributes=attributes,
        ))
    return out


def parse_extractions(response: str) -> list[Extraction]:
    """Parse a model response into extractions in the order the model emitted them.

    Accepts ``{"extractions": [...]}``, a bare list of items, or a single
    item object. Items with empty text are dropped.

    Raises:
        ResponseParseError: No JSON, or JSON of an unrecognised shape.
    """
    data = _load_json(response)

    if isinstance(data, dict) and "extractions" in data:
        items = data["extractions"]
    elif isinstance(data, list):
        items = data
    elif isinstance(data, dict):
        items = [data]
    else:
        raise ResponseParseError(f"unexpected JSON type: {type(data).__name__}", raw=response[:500])

    if not isinstance(items, list):
        raise ResponseParseError("'extractions' is not a list", raw=response[:500])

    extractions: list[Extraction] = []
    for item in items:
        if not isinstance(item, dict):
            logger.debug("[parse] skipping non-object item: %r", item)
            continue
        for ext in _from_item(item):
            if not ext.extraction_text.strip():
                continue
            ext.extraction_index = len(extractions)
            extractions.append(ext)
    return extractions
