"""
Tolerant JSON extraction from model responses

Models wrap JSON in prose and code fences, leave trailing commas, and get
cut off mid-object. parse_json_response never raises on such input; it tags
what it could recover instead.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

EMPTY = 'empty'
PARTIAL = 'partial'
COMPLETE = 'complete'

FENCE_PATTERN = re.compile(r'```(?:json|JSON)?\s*(.*?)```', re.DOTALL)
CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f]')
TRAILING_COMMA = re.compile(r',\s*([}\]])')
KEY_VALUE_PATTERN = re.compile(r'"([^"\\]+)"\s*:\s*"((?:[^"\\]|\\.)*)"')


@dataclass(frozen=True)
class ParseResult:
    """
    Tagged parse outcome.

    status is one of:
    - complete: the response held well-formed JSON (after cleanup)
    - partial: JSON was repaired or salvaged; data may be incomplete
    - empty: nothing usable; data is {}
    """
    status: str
    data: Any = field(default_factory=dict)

    @classmethod
    def empty(cls) -> 'ParseResult':
        return cls(EMPTY, {})

    @classmethod
    def partial(cls, data) -> 'ParseResult':
        return cls(PARTIAL, data)

    @classmethod
    def complete(cls, data) -> 'ParseResult':
        return cls(COMPLETE, data)

    @property
    def is_empty(self) -> bool:
        return self.status == EMPTY

    @property
    def is_complete(self) -> bool:
        return self.status == COMPLETE

    def as_list(self) -> List:
        """The payload as a list; a dict wrapping one list is unwrapped"""
        if isinstance(self.data, list):
            return self.data
        if isinstance(self.data, dict):
            for value in self.data.values():
                if isinstance(value, list):
                    return value
        return []

    def as_mapping(self) -> Dict:
        return self.data if isinstance(self.data, dict) else {}


def _extract_candidate(text: str) -> Optional[str]:
    """Cut the JSON-looking part out of a response"""
    fence = FENCE_PATTERN.search(text)
    if fence:
        text = fence.group(1)
    elif '```' in text:
        # Unterminated fence
        text = text.split('```', 1)[1]
        if text[:4].lower() == 'json':
            text = text[4:]

    text = text.strip()
    starts = [i for i in (text.find('{'), text.find('[')) if i >= 0]
    if not starts:
        return None

    start = min(starts)
    closer = '}' if text[start] == '{' else ']'
    end = text.rfind(closer)
    if end > start:
        return text[start:end + 1]
    return text[start:]


def _clean(candidate: str) -> str:
    candidate = CONTROL_CHARS.sub(' ', candidate)
    return TRAILING_COMMA.sub(r'\1', candidate)


def _loads(candidate: str):
    data = json.loads(candidate)
    # "Return string formatted JSON" sometimes comes back double encoded
    if isinstance(data, str):
        data = json.loads(_clean(data))
    if not isinstance(data, (dict, list)):
        raise ValueError("Not a JSON object or array")
    return data


def _close_brackets(candidate: str) -> str:
    """Append whatever closers an unterminated object/array needs"""
    stack = []
    in_string = False
    escaped = False

    for char in candidate:
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in '{[':
            stack.append('}' if char == '{' else ']')
        elif char in '}]' and stack:
            stack.pop()

    repaired = candidate + ('"' if in_string else '')
    repaired = repaired.rstrip().rstrip(',')
    return TRAILING_COMMA.sub(r'\1', repaired + ''.join(reversed(stack)))


def _salvage_pairs(text: str) -> Dict[str, str]:
    pairs = {}
    for key, value in KEY_VALUE_PATTERN.findall(text):
        try:
            pairs[key] = json.loads(f'"{value}"')
        except ValueError:
            pairs[key] = value
    return pairs


def parse_json_response(text) -> ParseResult:
    """
    Pull structured data out of a model response.

    Args:
        text: Raw response text

    Returns:
        ParseResult tagged complete, partial or empty
    """
    if not text or not isinstance(text, str):
        return ParseResult.empty()

    candidate = _extract_candidate(text)

    if candidate is not None:
        cleaned = _clean(candidate)
        try:
            return ParseResult.complete(_loads(cleaned))
        except ValueError:
            pass

        try:
            return ParseResult.partial(_loads(_close_brackets(cleaned)))
        except ValueError:
            pass

    salvaged = _salvage_pairs(text)
    if salvaged:
        return ParseResult.partial(salvaged)

    return ParseResult.empty()
