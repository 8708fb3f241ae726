"""JSON extraction from LLM responses.

Shared by every pipeline stage, the feedback validator and the chat
insight extractor, regardless of which provider produced the text.
"""

import json
import re
from typing import Any


def extract_json_from_response(text: str, *, expect_array: bool = False) -> Any:
    """Extract and parse JSON from an LLM response.

    Models in JSON mode usually return a bare object, but Claude and
    older prompts still wrap it in code fences or add a preamble.
    This function tries, in order:

    1. Content inside a ```json ... ``` (or bare ```) fence.
    2. The outermost raw JSON object ``{...}`` or array ``[...]``.
    3. The entire text.

    Args:
        text: Raw LLM response text.
        expect_array: When ``True``, prefer a JSON array in step 2.

    Returns:
        Parsed Python object (dict or list).

    Raises:
        json.JSONDecodeError: If no valid JSON could be found.
    """
    if not text or not text.strip():
        raise json.JSONDecodeError("Empty response", text or "", 0)

    fence_match = re.search(r"```(?:json)?\s*(.*?)\s*```", text, re.DOTALL)
    if fence_match:
        return json.loads(fence_match.group(1))

    if expect_array:
        raw_match = re.search(r"\[.*]", text, re.DOTALL)
    else:
        raw_match = re.search(r"\{.*}", text, re.DOTALL)

    if raw_match:
        return json.loads(raw_match.group(0))

    return json.loads(text)
