"""Streaming merge parser for narrator output.

The narrator answers with prose followed by a fenced JSON directive:

    The inspector's gaze slides past you.
    ```json
    {"effects": {"noise": 5}, "next": null, "ending": null}
    ```

Deltas arrive one at a time. After each one the parser recomputes the
visible narrative: everything before the first ```json fence, with complete
<think>...</think> spans removed, anything after an unclosed <think> held
back, and stray </think> tags dropped. The directive is only read once its
closing fence has arrived, and only parsed when the stream is finished, so a
half-received block can never change the world state.

Model output is untrusted. repair_directive_json() does one best-effort
normalisation pass (drop "+" signs before numbers, close one missing brace);
anything that still fails to parse is logged and treated as no directive.
"""

import json
import logging
import re

from pydantic import ValidationError

from .models import Directive

logger = logging.getLogger(__name__)

_FENCE_OPEN_RE = re.compile(r"```json", re.IGNORECASE)
_FENCE_CLOSE = "```"

_THINK_BLOCK_RE = re.compile(r"<\s*think\s*>[\s\S]*?<\s*/\s*think\s*>", re.IGNORECASE)
_THINK_OPEN_RE = re.compile(r"<\s*think", re.IGNORECASE)
_THINK_CLOSE_RE = re.compile(r"<\s*/\s*think\s*>", re.IGNORECASE)

_PLUS_NUMBER_RE = re.compile(r":\s*\+(\d)")


def split_narrative(raw: str) -> tuple[str, str | None]:
    """Split raw output at the first fence: (narrative, block-or-None).

    The block excludes the opening marker and includes everything after it,
    closing fence and trailing text included.
    """
    match = _FENCE_OPEN_RE.search(raw)
    if match is None:
        return raw, None
    return raw[:match.start()], raw[match.end():]


def visible_narrative(candidate: str) -> str:
    """Strip reasoning spans from candidate narrative text."""
    text = _THINK_BLOCK_RE.sub("", candidate)
    opening = _THINK_OPEN_RE.search(text)
    if opening is not None:
        text = text[:opening.start()]
    text = _THINK_CLOSE_RE.sub("", text)
    return text.strip()


def closed_block(block: str | None) -> str | None:
    """The directive body if its closing fence has arrived, else None."""
    if block is None:
        return None
    end = block.find(_FENCE_CLOSE)
    if end == -1:
        return None
    return block[:end].strip()


def repair_directive_json(text: str) -> str:
    """Best-effort cleanup of model-written JSON. No guarantee of validity."""
    text = _PLUS_NUMBER_RE.sub(r": \1", text.strip())
    if text.count("{") > text.count("}"):
        text += "}"
    return text


def parse_directive(body: str) -> Directive | None:
    """Parse a directive body, returning None on any failure."""
    repaired = repair_directive_json(body)
    try:
        data = json.loads(repaired)
        return Directive.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("Failed to parse directive JSON: %s", e)
        logger.debug("Directive body was %r", body)
        return None


class StreamMergeParser:
    """Incrementally separates visible narrative from the trailing directive."""

    def __init__(self) -> None:
        self.raw = ""
        self.display = ""
        self._block: str | None = None

    def feed(self, delta: str) -> str | None:
        """Add one delta. Returns the new display text if it changed, else None."""
        if not delta:
            return None
        self.raw += delta
        candidate, self._block = split_narrative(self.raw)
        display = visible_narrative(candidate)
        if display == self.display:
            return None
        self.display = display
        return display

    @property
    def has_block(self) -> bool:
        return self._block is not None

    @property
    def block_complete(self) -> bool:
        return closed_block(self._block) is not None

    def directive(self) -> Directive | None:
        """Parse the directive. Call once the stream has ended."""
        body = closed_block(self._block)
        if body is None:
            if self._block is not None:
                logger.warning("Directive block never closed, ignoring it")
            return None
        return parse_directive(body)
