from __future__ import annotations

"""Pipe description formatting shared by the table renderer and manual quotes."""

import re
from typing import Any, Mapping

_FRACTION_MAP = {
    "¼": "1/4",
    "½": "1/2",
    "¾": "3/4",
    "⅛": "1/8",
    "⅜": "3/8",
    "⅝": "5/8",
    "⅞": "7/8",
    "⅓": "1/3",
    "⅔": "2/3",
}
_FRACTION_CHARS = "".join(_FRACTION_MAP)
_RE_DIGIT_FRACTION = re.compile(rf"(\d)([{_FRACTION_CHARS}])")
_RE_FRACTION_CHAR = re.compile(rf"[{_FRACTION_CHARS}]")
_RE_WHITESPACE = re.compile(r"\s+")
_RE_MIXED_SPACED = re.compile(r"(\d+)\s+(\d+/\d+)")
_RE_MIXED_GLUED = re.compile(r"(\d)(\d)/(\d)(?=\D|$)")
_RE_NON_ALNUM = re.compile(r"[^a-z0-9]")

_NUMBER_TOKEN = r"\d+(?:\.\d+)?|\d+-\d+/\d+|\d+/\d+"
_RE_X_SPLIT = re.compile(rf"({_NUMBER_TOKEN})\s*[xX]\s*([A-Za-z0-9./-]+)")
_RE_HEAVY = re.compile(rf"^({_NUMBER_TOKEN})\s*(h|hv|hvy|heavy|hevy)$", re.IGNORECASE)
_RE_MEDIUM = re.compile(rf"^({_NUMBER_TOKEN})\s*(m|med|medium)$", re.IGNORECASE)
_RE_SCHEDULE = re.compile(
    rf"^({_NUMBER_TOKEN})\s*(?:sch|schedule)\s*(\d+(?:\.\d+)?)$", re.IGNORECASE
)
_RE_NUMERIC_LIKE = (
    re.compile(r"^\d+(\.\d+)?$"),
    re.compile(r"^\d+/\d+$"),
    re.compile(r"^\d+-\d+/\d+$"),
)

HEAVY_TOKENS = {"h", "hv", "hvy", "heavy", "hevy"}
MEDIUM_TOKENS = {"m", "med", "medium"}


def normalize_fraction_text(text: str) -> str:
    """Rewrite unicode fractions and mixed numbers into ``1-1/2`` form.

    ``"1½"`` and ``"1 1/2"`` both become ``"1-1/2"``; non-breaking spaces and
    the fraction slash are folded to their ASCII counterparts first.
    """

    if not text:
        return text
    normalized = str(text).replace("\u00a0", " ").replace("\u2044", "/")
    normalized = _RE_DIGIT_FRACTION.sub(r"\1 \2", normalized)
    normalized = _RE_FRACTION_CHAR.sub(lambda m: _FRACTION_MAP.get(m.group(0), m.group(0)), normalized)
    normalized = _RE_WHITESPACE.sub(" ", normalized).strip()
    normalized = _RE_MIXED_SPACED.sub(r"\1-\2", normalized)
    normalized = _RE_MIXED_GLUED.sub(r"\1-\2/\3", normalized)
    return normalized


def is_numeric_like_token(token: str) -> bool:
    if not token:
        return False
    return any(pattern.match(token) for pattern in _RE_NUMERIC_LIKE)


def format_item_description(item: Mapping[str, Any]) -> str:
    """Format ``originalDescription`` according to ``identifiedPipeType``.

    ``{"originalDescription": "1XH", "identifiedPipeType": "ERW"}`` yields
    ``'1" NB X Heavy -- ERW'``. Descriptions that do not follow a
    ``<size> x <class>`` shape are returned normalized but otherwise untouched.
    """

    raw = str(item.get("originalDescription") or "").strip()
    if not raw:
        return raw

    pipe_type = str(item.get("identifiedPipeType") or "").lower()
    normalized = normalize_fraction_text(raw.replace('"', "").strip())

    is_heavy = is_medium = is_schedule = False
    x_match = _RE_X_SPLIT.search(normalized)
    if x_match:
        first = x_match.group(1)
        second_display = normalize_fraction_text((x_match.group(2) or "").strip())
        second_clean = _RE_NON_ALNUM.sub("", second_display.lower())
    else:
        match = _RE_HEAVY.match(normalized)
        if match:
            is_heavy = True
        else:
            match = _RE_MEDIUM.match(normalized)
            if match:
                is_medium = True
            else:
                match = _RE_SCHEDULE.match(normalized)
                if match is None:
                    return normalized
                is_schedule = True
        first, second_display = match.group(1), match.group(2)
        second_clean = second_display.lower()

    if "seamless" in pipe_type:
        if is_schedule or is_numeric_like_token(second_clean):
            return f'{first}" NB X Sch {second_display or second_clean}'
        return normalized

    is_gi = "gi" in pipe_type or "galvanized" in pipe_type
    is_erw = "erw" in pipe_type
    if not is_gi and not is_erw:
        return raw

    label = "GI" if is_gi else "ERW"
    if is_heavy or second_clean in HEAVY_TOKENS:
        return f'{first}" NB X Heavy -- {label}'
    if is_medium or second_clean in MEDIUM_TOKENS:
        return f'{first}" NB X Medium -- {label}'
    if is_numeric_like_token(second_clean):
        return f'{first}" NB X {second_display or second_clean}mm thk -- {label}'
    return normalized


def pipe_header_label(pipe_type: str | None) -> str:
    value = (pipe_type or "").lower()
    if "seamless" in value:
        return "CS Seamless Pipe as per ASTM 106 Gr. B"
    if "gi" in value or "galvanized" in value:
        return "MS GI Pipe as per IS 1239/ 3589"
    if "erw" in value:
        return "MS ERW Pipe as per IS 1239/ 3589"
    return pipe_type or "Items"
