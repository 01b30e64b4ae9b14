"""Text utilities."""

import re


_slug_pattern = re.compile(r"[^a-z0-9-]+")


def slugify(label: str) -> str:
    """Create a filename-safe slug from a label.

    - Lowercase
    - Replace whitespace with '-'
    - Remove invalid chars
    - Collapse multiple dashes
    """

    s = label.strip().lower()
    s = re.sub(r"\s+", "-", s)
    s = _slug_pattern.sub("", s)
    s = re.sub(r"-+", "-", s).strip("-")
    return s or "untitled"
