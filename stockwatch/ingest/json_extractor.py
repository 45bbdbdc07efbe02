"""Embedded JSON helpers: script state, array literals and bounded tree walks."""

import json
import logging
import math
import re
from typing import Any, Dict, Iterator, List, Optional, Union

from selectolax.parser import HTMLParser

logger = logging.getLogger(__name__)

JsonValue = Union[None, bool, int, float, str, List["JsonValue"], Dict[str, "JsonValue"]]

# Walks never descend further than this
MAX_JSON_DEPTH = 12

STATE_VARIABLES = ("__NUXT__", "__NEXT_DATA__", "__INITIAL_STATE__", "__PRELOADED_STATE__")

STORE_NAME_FIELDS = ("storeName", "name", "store", "location")

_CLOSERS = {"[": "]", "{": "}"}


def to_number(value: Any, default: float = 0) -> float:
    """Coerce a JSON scalar to a number; anything unusable becomes ``default``.

    Non-finite values (``1e999``, ``Infinity``, ``NaN``) are unusable.
    """
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else default
    if isinstance(value, str):
        try:
            number = float(value.strip().replace(",", ""))
        except ValueError:
            return default
        return number if math.isfinite(number) else default
    return default


def first_text(obj: Dict[str, Any], keys) -> Optional[str]:
    """First key whose value is a non-empty string."""
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def element_store_name(element: Any) -> Optional[str]:
    """
    Resolve one store-array element to a name.

    Strings are taken as-is. Objects use the first present of storeName,
    name, store or location, else any string field of plausible length.
    """
    if isinstance(element, str):
        return element.strip() or None
    if not isinstance(element, dict):
        return None
    name = first_text(element, STORE_NAME_FIELDS)
    if name:
        return name
    for value in element.values():
        if isinstance(value, str) and 3 <= len(value.strip()) <= 50:
            return value.strip()
    return None


def extract_balanced(text: str, start: int) -> Optional[str]:
    """
    Return the bracketed literal opening at ``text[start]``.

    Brackets inside JSON strings are ignored. None when unbalanced.
    """
    if start >= len(text) or text[start] not in _CLOSERS:
        return None
    stack = [_CLOSERS[text[start]]]
    in_string = False
    escaped = False
    for i in range(start + 1, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in "]}":
            if ch != stack.pop():
                return None
            if not stack:
                return text[start:i + 1]
    return None


def find_array_literals(text: str, keys) -> List[list]:
    """Parse every JSON array literal that follows one of ``keys`` in raw text."""
    arrays = []
    pattern = re.compile(
        r'(?<![A-Za-z0-9_])["\']?(?:' + "|".join(re.escape(k) for k in keys) + r')["\']?\s*[:=]\s*\[',
    )
    for match in pattern.finditer(text):
        literal = extract_balanced(text, match.end() - 1)
        if literal is None:
            continue
        try:
            value = json.loads(literal)
        except json.JSONDecodeError:
            logger.debug(f"Skipping unparseable array literal near offset {match.start()}")
            continue
        if isinstance(value, list):
            arrays.append(value)
    return arrays


def walk_keyed_arrays(
    obj: JsonValue,
    key_fragment: str,
    max_depth: int = MAX_JSON_DEPTH,
) -> Iterator[list]:
    """
    Yield every list stored under a key containing ``key_fragment``.

    Iterative, depth-capped walk; nodes deeper than ``max_depth`` are skipped.
    """
    fragment = key_fragment.lower()
    stack: list[tuple[Any, int]] = [(obj, 0)]
    while stack:
        node, depth = stack.pop()
        if depth > max_depth:
            continue
        if isinstance(node, dict):
            for key, value in node.items():
                if isinstance(value, list) and fragment in str(key).lower():
                    yield value
                if isinstance(value, (dict, list)):
                    stack.append((value, depth + 1))
        elif isinstance(node, list):
            for item in node:
                if isinstance(item, (dict, list)):
                    stack.append((item, depth + 1))


def extract_script_states(html: str) -> List[JsonValue]:
    """
    Collect embedded state objects from a page.

    Covers ``script#__NEXT_DATA__``, ``application/json`` and ``ld+json``
    script blocks, and ``window.__NUXT__ = {...}``-style assignments.
    """
    states: List[JsonValue] = []
    try:
        tree = HTMLParser(html)
    except (TypeError, ValueError) as e:
        logger.debug(f"Failed to parse markup for script state: {e}")
        return states

    for script in tree.css("script"):
        text = script.text() or ""
        if not text.strip():
            continue
        script_type = (script.attributes.get("type") or "").lower()
        if script.attributes.get("id") == "__NEXT_DATA__" or script_type in (
            "application/json",
            "application/ld+json",
        ):
            try:
                states.append(json.loads(text))
            except json.JSONDecodeError:
                logger.debug("Skipping unparseable JSON script block")
            continue

        for variable in STATE_VARIABLES:
            for match in re.finditer(re.escape(variable) + r"\s*=\s*", text):
                literal = extract_balanced(text, match.end())
                if literal is None:
                    continue
                try:
                    states.append(json.loads(literal))
                except json.JSONDecodeError:
                    logger.debug(f"Skipping non-JSON {variable} assignment")
    return states
