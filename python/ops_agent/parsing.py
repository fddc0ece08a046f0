"""Pulling structured answers out of free-form model replies."""

import json
import re
from typing import Any, Dict

from .errors import ModelResponseError

# BOM and zero-width characters some providers leak into replies
_INVISIBLE = dict.fromkeys(map(ord, '\ufeff\u200b\u200c\u200d'))
_YAML_FENCE = re.compile(r'```(?:ya?ml)?[ \t]*\n(.*?)```', re.DOTALL)
_DECODER = json.JSONDecoder()


def parse_json_object(response: str, what: str = "model response") -> Dict[str, Any]:
    """Return the first JSON object embedded in `response`.

    Replies often wrap the object in prose or a markdown fence, so every
    opening brace is tried in turn. Raises ModelResponseError when nothing
    decodes.
    """
    text = (response or "").translate(_INVISIBLE).strip()
    if not text:
        raise ModelResponseError(f"Empty {what}")

    start = text.find('{')
    while start != -1:
        try:
            data, _ = _DECODER.raw_decode(text, start)
            return data
        except json.JSONDecodeError:
            start = text.find('{', start + 1)

    raise ModelResponseError(f"No JSON object found in {what}", detail={"raw": text[:500]})


def extract_yaml_block(response: str) -> str:
    """Return the YAML inside a ```yaml fence, or the text itself."""
    match = _YAML_FENCE.search(response)
    body = match.group(1) if match else response
    return body.strip() + "\n"
