"""
Tolerant JSON extraction for model output.

Model responses wrap JSON in prose, code fences, trailing commas or get
cut off mid-array. parse_or_fallback() is the single entry point: it tries
a greedy bracket match, then a structural repair, then salvages partial
objects of the expected shape, and only then returns the fallback payload.
The path taken is reported so callers can tell degraded output apart.

Dependencies: json, re
System role: Parsing layer of the resilient generation client
"""

import copy
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from testgen.core.exceptions import MalformedResponseError

logger = logging.getLogger(__name__)

PATH_DIRECT = "direct"
PATH_REPAIRED = "repaired"
PATH_SALVAGED = "salvaged"
PATH_FALLBACK = "fallback"

_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*\s*\n?(.*?)```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_FLAT_OBJECT_RE = re.compile(r"\{[^{}]*\}")


@dataclass(frozen=True)
class ParseOutcome:
    """Parsed value and the path that produced it."""

    data: Any
    path: str

    @property
    def is_fallback(self) -> bool:
        return self.path == PATH_FALLBACK


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or the text unchanged."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    # An opening fence without a closing one (truncated output)
    if text.lstrip().startswith("```"):
        return text.lstrip().split("\n", 1)[-1] if "\n" in text else ""
    return text.strip()


def extract_bracketed(text: str) -> str | None:
    """
    Greedy match of the outermost JSON value.

    Takes whichever of '{' or '[' appears first and extends to the last
    matching closer. When no closer exists the tail is returned so
    repair_json() can close it.
    """
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return None
    start = min(starts)
    closer = "}" if text[start] == "{" else "]"
    end = text.rfind(closer)
    if end <= start:
        return text[start:]
    return text[start:end + 1]


def repair_json(text: str) -> str:
    """
    Structural repair of almost-JSON.

    Removes trailing commas, terminates an open string, drops a dangling
    comma or key separator, and closes unterminated arrays and objects in
    nesting order.
    """
    repaired = _TRAILING_COMMA_RE.sub(r"\1", text.strip())

    stack: list[str] = []
    in_string = False
    escaped = False
    for char in repaired:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack and stack[-1] == char:
            stack.pop()

    if in_string:
        repaired += '"'
    repaired = repaired.rstrip()
    while repaired.endswith((",", ":")):
        repaired = repaired[:-1].rstrip()
    repaired += "".join(reversed(stack))
    return _TRAILING_COMMA_RE.sub(r"\1", repaired)


def salvage_objects(text: str, required_keys: Iterable[str]) -> list[dict[str, Any]]:
    """
    Collect flat JSON objects that carry every required key.

    Used when the surrounding array is beyond repair but individual items
    are intact.
    """
    keys = tuple(required_keys)
    salvaged = []
    for candidate in _FLAT_OBJECT_RE.findall(text):
        try:
            obj = json.loads(_TRAILING_COMMA_RE.sub(r"\1", candidate))
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict) and all(key in obj for key in keys):
            salvaged.append(obj)
    return salvaged


def extract_json(
    text: str,
    salvage_keys: Iterable[str] | None = None,
) -> ParseOutcome:
    """
    Parse model output into JSON without a fallback.

    Args:
        text: Raw model output
        salvage_keys: Keys a partial object must have to be salvaged;
            None disables salvage

    Returns:
        ParseOutcome: Parsed value with path direct, repaired or salvaged

    Raises:
        MalformedResponseError: If no strategy produced a value
    """
    if not text or not text.strip():
        raise MalformedResponseError("Empty model response")

    body = strip_code_fences(text)
    candidate = extract_bracketed(body)
    if candidate is None:
        raise MalformedResponseError("No JSON value in model response", raw_excerpt=text)

    try:
        return ParseOutcome(json.loads(candidate), PATH_DIRECT)
    except json.JSONDecodeError:
        pass

    try:
        return ParseOutcome(json.loads(repair_json(candidate)), PATH_REPAIRED)
    except json.JSONDecodeError as e:
        logger.debug(f"{__name__}:extract_json - Repair failed: {e}")

    if salvage_keys is not None:
        salvaged = salvage_objects(candidate, salvage_keys)
        if salvaged:
            return ParseOutcome(salvaged, PATH_SALVAGED)

    raise MalformedResponseError("Unparseable model response", raw_excerpt=text)


def parse_or_fallback(
    text: str,
    fallback: Any,
    salvage_keys: Iterable[str] | None = None,
    validate: Callable[[Any], bool] | None = None,
) -> ParseOutcome:
    """
    Parse model output, returning a copy of fallback when every strategy fails.

    Args:
        text: Raw model output
        fallback: Deterministic payload used when parsing fails
        salvage_keys: Keys a partial object must have to be salvaged
        validate: Predicate the parsed value must satisfy to be accepted

    Returns:
        ParseOutcome: Never raises for malformed input
    """
    try:
        outcome = extract_json(text, salvage_keys)
    except MalformedResponseError as e:
        logger.warning(f"{__name__}:parse_or_fallback - Using fallback: {e.message}")
        return ParseOutcome(copy.deepcopy(fallback), PATH_FALLBACK)

    if validate is not None and not validate(outcome.data):
        # A parseable array can still mix intact items with malformed ones
        if salvage_keys is not None and outcome.path != PATH_SALVAGED:
            salvaged = salvage_objects(strip_code_fences(text), salvage_keys)
            if salvaged and validate(salvaged):
                logger.info(f"{__name__}:parse_or_fallback - Salvaged {len(salvaged)} item(s) from invalid shape")
                return ParseOutcome(salvaged, PATH_SALVAGED)
        logger.warning(
            f"{__name__}:parse_or_fallback - Parsed value has unexpected shape, using fallback"
        )
        return ParseOutcome(copy.deepcopy(fallback), PATH_FALLBACK)

    if outcome.path != PATH_DIRECT:
        logger.info(f"{__name__}:parse_or_fallback - Parsed via {outcome.path} path")
    return outcome
