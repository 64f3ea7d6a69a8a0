import json, math, re
from typing import Any, Dict

_CURRENCY_PREFIX_RE = re.compile(r"^(?:₹|rs\.?|inr)\s*", re.IGNORECASE)
_LEADING_NUMBER_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def clean_json_string(s: str) -> str:
    s = s.strip()
    if s.startswith("```json"):
        s = s[7:]
    elif s.startswith("```"):
        s = s[3:]
    if s.endswith("```"):
        s = s[:-3]
    return s.strip()


def extract_json_object(s: str) -> str:
    if not s:
        raise ValueError("Model returned no JSON object")

    fence_match = re.search(r"```(?:json)?\s*([\s\S]+?)```", s, re.IGNORECASE)
    if fence_match:
        s = fence_match.group(1)
    else:
        s = clean_json_string(s)

    start = s.find("{")
    end = s.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise ValueError("Model returned no JSON object")
    return s[start:end + 1]


def parse_json_object(text: str) -> Dict[str, Any]:
    """Parse *text* as a JSON object, falling back to the outermost ``{...}`` span."""
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        data = json.loads(extract_json_object(text or ""))
    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object")
    return data


def parse_number(value: Any) -> float:
    """Lenient number parsing: leading numeric prefix wins, anything else is 0.

    ``"1,250.50"`` -> 1250.5, ``"₹ 90/mtr"`` -> 90.0, ``"abc"`` -> 0.0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else 0.0
    text = _CURRENCY_PREFIX_RE.sub("", str(value).strip()).replace(",", "")
    match = _LEADING_NUMBER_RE.match(text)
    if not match:
        return 0.0
    try:
        number = float(match.group(0))
    except ValueError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def format_number(value: float) -> str:
    """Plain decimal rendering: integers without a fraction, floats as-is."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def format_amount(value: float) -> str:
    return f"{float(value):.2f}"
