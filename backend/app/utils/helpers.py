from typing import Any, Optional
from datetime import datetime, timezone
import re
import json


_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_CLOSERS = {"{": "}", "[": "]"}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime as an ISO-8601 string (None passes through)."""
    if dt is None:
        return None
    return dt.isoformat()


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def truncate_text(text: str, max_length: int = 100, suffix: str = "...") -> str:
    """
    Truncate text to specified length
    """
    if not text or len(text) <= max_length:
        return text

    return text[:max_length - len(suffix)] + suffix


def parse_json_safely(json_str: str, default: Any = None) -> Any:
    """
    Safely parse JSON string
    """
    try:
        return json.loads(json_str)
    except (json.JSONDecodeError, TypeError):
        return default


def strip_code_fences(text: str) -> str:
    """Return the body of the first markdown code fence, or the text unchanged."""
    m = _FENCE_RE.search(text or "")
    return m.group(1).strip() if m else (text or "").strip()


def find_balanced_block(text: str) -> Optional[str]:
    """
    Return the first balanced {...} or [...] block in text.

    Brackets inside JSON string literals are ignored. Returns None when no
    opening bracket is found or the first block never closes.
    """
    start = None
    for i, ch in enumerate(text):
        if ch in _CLOSERS:
            start = i
            break
    if start is None:
        return None

    stack = []
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
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
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return text[start:i + 1]
    return None


def parse_llm_json(text: str) -> Any:
    """
    Best-effort JSON recovery from free-text model output.

    Order: strict parse, fence-stripped parse, first balanced block, then
    the span between the first opening bracket and the last matching
    closing bracket. Returns None when nothing parses; never raises.
    """
    if not text or not isinstance(text, str):
        return None

    parsed = parse_json_safely(text.strip())
    if parsed is not None:
        return parsed

    body = strip_code_fences(text)
    parsed = parse_json_safely(body)
    if parsed is not None:
        return parsed

    block = find_balanced_block(body)
    if block is not None:
        parsed = parse_json_safely(block)
        if parsed is not None:
            return parsed

    for opener, closer in _CLOSERS.items():
        first = body.find(opener)
        last = body.rfind(closer)
        if first != -1 and last > first:
            parsed = parse_json_safely(body[first:last + 1])
            if parsed is not None:
                return parsed

    return None
