"""
Masking of JSON documents embedded in free text.

Messages such as ``'User payload {"email": "a@b.io"}'`` carry structured
data inside a string. Balanced ``{...}`` and ``[...]`` spans are located,
decoded, masked as context data and re-encoded compactly. Spans that do
not decode are left untouched.

Locating spans is a single pass over the text. Decoding is bounded by a
character budget proportional to the text length, so messages full of
unbalanced or undecodable brackets cost linear time.
"""

import json
from typing import Any, Callable, Iterator, List, Tuple

_OPENERS = {"{": "}", "[": "]"}
_CLOSERS = frozenset("}]")

# Characters decoded per character of input before the scan gives up
DECODE_BUDGET_FACTOR = 2

_decoder = json.JSONDecoder()


def find_balanced_spans(text: str) -> List[Tuple[int, int]]:
    """
    Return ``(start, end)`` of every balanced bracket pair, ordered by start.

    Strings are only tracked inside an open bracket. A mismatched closer
    discards every open bracket; unclosed brackets are dropped at the end.
    """
    spans: List[Tuple[int, int]] = []
    stack: List[Tuple[int, str]] = []
    in_string = False
    escaped = False

    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char in _OPENERS:
            stack.append((index, _OPENERS[char]))
        elif not stack:
            continue
        elif char == '"':
            in_string = True
        elif char in _CLOSERS:
            start, expected = stack.pop()
            if char != expected:
                stack.clear()
                continue
            spans.append((start, index + 1))

    spans.sort()
    return spans


def iter_json_spans(text: str) -> Iterator[Tuple[int, int, Any]]:
    """
    Yield ``(start, end, decoded)`` for each JSON object or array in ``text``.

    ``end`` is exclusive. Spans never overlap; an outer document that
    decodes hides the spans nested in it.
    """
    budget = DECODE_BUDGET_FACTOR * len(text)
    cursor = 0

    for start, end in find_balanced_spans(text):
        if start < cursor:
            continue
        if budget < end - start:
            continue
        budget -= end - start

        try:
            decoded, decoded_end = _decoder.raw_decode(text, start)
        except (ValueError, RecursionError):
            continue
        if decoded_end != end:
            continue

        yield start, end, decoded
        cursor = end


def encode_compact(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def mask_json_in_text(text: str, mask: Callable[[Any], Any]) -> str:
    """
    Replace every embedded JSON document with its masked encoding.

    Args:
        text: Message text
        mask: Called with each decoded document, returns the masked document

    Returns:
        The text with masked documents; unchanged documents keep their
        original formatting
    """
    pieces = []
    cursor = 0
    for start, end, decoded in iter_json_spans(text):
        masked = mask(decoded)
        if masked == decoded:
            continue
        pieces.append(text[cursor:start])
        pieces.append(encode_compact(masked))
        cursor = end

    if not pieces:
        return text
    pieces.append(text[cursor:])
    return "".join(pieces)
