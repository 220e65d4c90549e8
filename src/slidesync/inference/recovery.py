"""Salvage of structured transition records from raw model text.

Model output is requested as JSON, but arrives wrapped in Markdown fences,
sprinkled with comments, missing separators, or cut off at the output-size
ceiling.  :func:`repair_json_text` fixes what can be fixed without inventing
content; :func:`recover_transitions` parses the result.

Repairs, in order:

1. strip fenced code-block markers outside string literals,
2. strip ``//`` and ``/* */`` comments outside string literals,
3. drop prose before the first ``{``,
4. insert the missing ``,`` between adjacent objects (``}{``) and drop
   trailing commas before a closer,
5. cut trailing prose after the root object, or, when the root never
   closes, cut back to the last complete record and append the closers
   needed to rebalance.  An incomplete first record yields no records.

Pure text processing on the standard library only, so it can be fuzzed
without a backend.  Well-formed JSON passes through unchanged.
"""

import json
import logging
import re

from slidesync.errors import RecoverableParseError
from slidesync.models import RawTransitionRecord

logger = logging.getLogger(__name__)

EMPTY_RESULT = '{"transitions": []}'

_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*")
_CLOSERS = {"{": "}", "[": "]"}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def repair_json_text(raw_text: str) -> str:
    """Return a best-effort well-formed JSON rendering of *raw_text*.

    Raises
    ------
    RecoverableParseError
        If the text contains no object at all.
    """
    text = _strip_noise(raw_text)

    start = text.find("{")
    if start == -1:
        raise RecoverableParseError(raw_text, "no JSON object found in the model output")
    text = text[start:].rstrip()

    text = _repair_separators(text)

    balanced = _close_truncated(text)
    if balanced is None:
        logger.debug("model output truncated before the first complete record")
        return EMPTY_RESULT
    if balanced != text:
        logger.debug("model output rebalanced: dropped %d trailing chars", max(0, len(text) - len(balanced)))
    return balanced


def recover_transitions(raw_text: str) -> list[RawTransitionRecord]:
    """Parse *raw_text* into transition records, salvaging as much as possible.

    Entries of ``transitions`` that are not objects are skipped; a root
    object without ``transitions`` yields no records.

    Raises
    ------
    RecoverableParseError
        If the text is still not parseable after repair. ``raw_text`` is kept
        on the exception for diagnostics.
    """
    text = repair_json_text(raw_text)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise RecoverableParseError(raw_text, f"invalid JSON after repair: {exc}") from exc

    if not isinstance(data, dict):
        raise RecoverableParseError(raw_text, f"expected a JSON object, got {type(data).__name__}")
    items = data.get("transitions")
    if items is None:
        return []
    if not isinstance(items, list):
        raise RecoverableParseError(raw_text, "'transitions' is not a list")

    return [RawTransitionRecord.model_validate(item) for item in items if isinstance(item, dict)]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _strip_noise(text: str) -> str:
    """Remove code fences and comments that sit outside JSON string literals.

    Quotes only open strings once the first ``{`` has been seen, so quoted
    words in leading prose do not hide the fences or comments that follow them.
    """
    out: list[str] = []
    i = 0
    n = len(text)
    in_string = False
    in_json = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue

        fence = _FENCE_RE.match(text, i)
        if fence:
            i = fence.end()
            continue
        if text.startswith("//", i):
            end = text.find("\n", i)
            if end == -1:
                break
            i = end
            continue
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end == -1:
                break
            i = end + 2
            continue

        if ch == "{":
            in_json = True
        elif ch == '"' and in_json:
            in_string = True
        out.append(ch)
        i += 1
    return "".join(out)


def _repair_separators(text: str) -> str:
    """Insert ``,`` in ``}{`` adjacency and drop ``,`` directly before a closer."""
    out: list[str] = []
    i = 0
    n = len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
        elif ch in "}," and i + 1 < n:
            j = i + 1
            while j < n and text[j].isspace():
                j += 1
            nxt = text[j] if j < n else ""
            if ch == "}" and nxt == "{":
                out.append("},")
                out.append(text[i + 1:j])
                i = j
                continue
            if ch == "," and nxt in ("]", "}"):
                out.append(text[i + 1:j])
                i = j
                continue
        out.append(ch)
        i += 1
    return "".join(out)


def _close_truncated(text: str) -> str | None:
    """Balance *text*, which starts with ``{``.

    Returns the text up to the root object's closing brace when it closes.
    Otherwise returns the text up to the last record that completed directly
    inside a root-level array, followed by the missing closers, or None when
    no record completed.  Text with mismatched closers is returned as-is for
    the parser to reject.
    """
    stack: list[str] = []
    in_string = False
    escaped = False
    boundary: int | None = None
    boundary_stack: list[str] = []

    for i, ch in enumerate(text):
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
            stack.append(ch)
        elif ch in "}]":
            if not stack or _CLOSERS[stack[-1]] != ch:
                return text
            stack.pop()
            if not stack:
                return text[:i + 1]
            if ch == "}" and stack == ["{", "["]:
                boundary = i + 1
                boundary_stack = list(stack)

    if boundary is None:
        return None
    closers = "".join(_CLOSERS[opener] for opener in reversed(boundary_stack))
    return text[:boundary] + closers
