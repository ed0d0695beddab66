"""Decoding of streamed recognizer responses.

The recognizer answers with a run of JSON objects, either back to back or
separated by newlines, each one a partial or final hypothesis::

    {"text": "hi", "is_final": false}
    {"text": "hi there", "is_final": true}

A single ``json.loads`` on the body fails as soon as two objects are
concatenated, so the body is first cut into complete object spans and each
span is decoded on its own.
"""

import json
import logging
from typing import Iterator

from voice_scribe._types import TranscriptFragment

logger = logging.getLogger(__name__)


def split_json_objects(text: str) -> Iterator[str]:
    """Yield every top-level ``{...}`` span of ``text``.

    Tracks brace depth, ignoring braces inside string literals. A span is
    emitted each time depth returns to zero; an unterminated trailing object
    yields nothing and stray closing braces are skipped.
    """
    depth = 0
    start = -1
    in_string = False
    escaped = False

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
            if depth > 0:
                in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}":
            if depth == 0:
                continue
            depth -= 1
            if depth == 0:
                yield text[start : i + 1]
                start = -1


def parse_fragments(text: str) -> list[TranscriptFragment]:
    """Decode all well-formed fragments in arrival order.

    Spans that are not valid JSON, or are not objects with a string ``text``
    field, are skipped.
    """
    fragments = []
    for span in split_json_objects(text):
        try:
            payload = json.loads(span)
        except ValueError:
            logger.debug("Skipping malformed fragment: %.80s", span)
            continue

        if not isinstance(payload, dict) or not isinstance(payload.get("text"), str):
            logger.debug("Skipping fragment without text: %.80s", span)
            continue

        fragments.append(
            TranscriptFragment(
                text=payload["text"],
                is_final=payload.get("is_final") is True,
                sequence_index=len(fragments),
            )
        )
    return fragments


def resolve_transcript(fragments: list[TranscriptFragment]) -> str:
    """Pick the best transcript from decoded fragments.

    Final fragments win and are joined with single spaces; without any, the
    last fragment stands in. Empty input gives an empty string.
    """
    finals = [f.text.strip() for f in fragments if f.is_final]
    if finals:
        return " ".join(t for t in finals if t).strip()
    if fragments:
        return fragments[-1].text.strip()
    return ""


def parse_transcript(text: str) -> str:
    """Decode a raw recognizer response body into transcript text."""
    return resolve_transcript(parse_fragments(text))
