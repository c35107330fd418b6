"""Incremental extraction of tip objects from streamed model text."""

import json
from typing import Any

from pydantic import ValidationError

from snapedit.domain import Tip
from snapedit.logging import get_logger

logger = get_logger("tips.parser")


def extract_json_objects(text: str, emitted: int) -> tuple[list[dict[str, Any]], int]:
    """Return the complete top-level JSON objects in ``text`` after the first ``emitted``.

    ``text`` is the whole accumulated stream so far. Objects are delimited by
    balanced braces; braces inside string literals are ignored, and so are
    enclosing array brackets or code fences. The returned count includes
    objects that failed to decode, so they are never revisited.
    """
    found: list[dict[str, Any]] = []
    seen = 0
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
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                seen += 1
                if seen <= emitted:
                    continue
                try:
                    obj = json.loads(text[start : i + 1])
                except json.JSONDecodeError:
                    logger.warning("dropping malformed tip object")
                    continue
                if isinstance(obj, dict):
                    found.append(obj)

    return found, max(seen, emitted)


# Preview fields are owned by the editor, never by the model.
_SERVER_OWNED = frozenset({"previewStatus", "previewImage", "preview_status", "preview_image"})


def parse_tip(obj: dict[str, Any]) -> Tip | None:
    """Validate one decoded object; tips without label, editPrompt or category are dropped."""
    obj = {k: v for k, v in obj.items() if k not in _SERVER_OWNED}
    try:
        return Tip.model_validate(obj)
    except ValidationError as e:
        logger.warning(f"dropping invalid tip: {e.error_count()} error(s)")
        return None
