"""Pull a JSON value out of an oracle response.

Models do not always answer with bare JSON: the object may sit in a
fenced code block or between sentences of prose. Candidates are tried
from most to least literal and the first one that parses wins.
"""

import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional

from config import get_settings
from utils.logging import get_logger

logger = get_logger(__name__)

# ```json ... ``` or an untyped ``` ... ``` fence
_FENCED_BLOCK = re.compile(r"```(?:json)?[ \t]*\n?(.*?)\n?```", re.DOTALL | re.IGNORECASE)


def _dump_raw_response(response: str, context: str) -> None:
    """Save the response under llm_response_log_dir, when that is set."""
    log_dir = get_settings().llm_response_log_dir
    if not log_dir:
        return

    now = datetime.now()
    path = Path(log_dir) / f"{context}_{now.strftime('%Y%m%d_%H%M%S_%f')}.txt"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            f"context: {context}\ncaptured: {now.isoformat()}\nlength: {len(response)}\n\n{response}\n",
            encoding="utf-8",
        )
    except OSError as e:
        logger.warning(f"Could not save raw oracle response: {e}")
        return
    logger.debug(f"Saved raw oracle response to {path}")


def _candidates(text: str) -> Iterator[str]:
    yield text
    for match in _FENCED_BLOCK.finditer(text):
        yield match.group(1).strip()
    # Outermost braces, so nested optionAnalyses objects stay intact
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        yield text[start : end + 1]


def extract_json_from_response(response: str, context: str = "extraction") -> Optional[Any]:
    """Parsed JSON (object or array) from the response, or None.

    Args:
        response: Raw model output, thinking blocks already removed
        context: Label for logs and raw-response dumps ("clarify", "decide")
    """
    if not response:
        return None

    _dump_raw_response(response, context)

    text = response.strip()
    for candidate in _candidates(text):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    logger.warning(
        f"No JSON found in {context} response ({len(text)} chars), starts {text[:200]!r}"
    )
    return None
