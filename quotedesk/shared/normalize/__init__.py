"""Text helpers for pipe descriptions and header labels."""

from .descriptions import (
    format_item_description,
    is_numeric_like_token,
    normalize_fraction_text,
    pipe_header_label,
)

__all__ = [
    "format_item_description",
    "is_numeric_like_token",
    "normalize_fraction_text",
    "pipe_header_label",
]
