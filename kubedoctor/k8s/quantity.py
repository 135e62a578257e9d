"""Kubernetes resource quantity parsing and formatting.

CPU is normalised to integer millicores, memory to integer bytes. Unparseable
input yields 0 (or None from ``parse_quantity``) rather than raising, so a
single odd value never aborts a report.
"""

from __future__ import annotations

import re

_BINARY_SUFFIXES: dict[str, int] = {
    "Ki": 1024,
    "Mi": 1024**2,
    "Gi": 1024**3,
    "Ti": 1024**4,
    "Pi": 1024**5,
    "Ei": 1024**6,
}

# Memory strings with a single-letter suffix are decimal. Lower-case letters
# are accepted as aliases of their upper-case forms, so "1m" is one megabyte
# here, not one millibyte.
_MEMORY_DECIMAL_SUFFIXES: dict[str, int] = {
    "K": 1000,
    "M": 1000**2,
    "G": 1000**3,
    "T": 1000**4,
    "P": 1000**5,
    "E": 1000**6,
    "k": 1000,
    "m": 1000**2,
    "g": 1000**3,
    "t": 1000**4,
}

# Generic SI suffixes for quota arithmetic, where "m" is milli.
_SI_SUFFIXES: dict[str, float] = {
    "n": 1e-9,
    "u": 1e-6,
    "m": 1e-3,
    "k": 1e3,
    "K": 1e3,
    "M": 1e6,
    "G": 1e9,
    "T": 1e12,
    "P": 1e15,
    "E": 1e18,
}

_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


def _to_float(text: str) -> float | None:
    text = text.strip()
    if not _NUMBER_RE.match(text):
        return None
    return float(text)


def parse_cpu(value: str | int | float | None) -> int:
    """Parse a CPU quantity into millicores ("250m" -> 250, "1" -> 1000, "5000000n" -> 5)."""
    if value is None:
        return 0
    if isinstance(value, int | float):
        return round(value * 1000)
    text = value.strip()
    if not text:
        return 0
    if text.endswith("n"):
        number = _to_float(text[:-1])
        return round(number / 1_000_000) if number is not None else 0
    if text.endswith("u"):
        number = _to_float(text[:-1])
        return round(number / 1_000) if number is not None else 0
    if text.endswith("m"):
        number = _to_float(text[:-1])
        return round(number) if number is not None else 0
    number = _to_float(text)
    return round(number * 1000) if number is not None else 0


def parse_memory(value: str | int | float | None) -> int:
    """Parse a memory quantity into bytes ("128Mi" -> 134217728, "1G" -> 10**9)."""
    if value is None:
        return 0
    if isinstance(value, int | float):
        return round(value)
    text = value.strip()
    if not text:
        return 0
    for suffix, multiplier in _BINARY_SUFFIXES.items():
        if text.endswith(suffix):
            number = _to_float(text[: -len(suffix)])
            return round(number * multiplier) if number is not None else 0
    for suffix, multiplier in _MEMORY_DECIMAL_SUFFIXES.items():
        if text.endswith(suffix):
            number = _to_float(text[: -len(suffix)])
            return round(number * multiplier) if number is not None else 0
    number = _to_float(text)
    return round(number) if number is not None else 0


def parse_quantity(value: str | int | float | None) -> float | None:
    """Parse any quantity into a plain float in base units.

    Used for quota arithmetic where the resource type is not known up front
    ("requests.cpu", "pods", "requests.storage"...). Returns None when the
    value cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, int | float):
        return float(value)
    text = value.strip()
    if not text:
        return None
    for suffix, multiplier in _BINARY_SUFFIXES.items():
        if text.endswith(suffix):
            number = _to_float(text[: -len(suffix)])
            return number * multiplier if number is not None else None
    number = _to_float(text)
    if number is not None:
        return number
    suffix = text[-1]
    if suffix in _SI_SUFFIXES:
        number = _to_float(text[:-1])
        return number * _SI_SUFFIXES[suffix] if number is not None else None
    return None


def usage_percentage(used: str | None, hard: str | None) -> float | None:
    """Return used/hard as a percentage, or None when it cannot be computed."""
    used_value = parse_quantity(used if used is not None else "0")
    hard_value = parse_quantity(hard)
    if used_value is None or hard_value is None or hard_value <= 0:
        return None
    return used_value / hard_value * 100.0


def format_bytes(num_bytes: int | float) -> str:
    """Format bytes with one decimal in the largest binary unit up to Gi."""
    if num_bytes >= 1024**3:
        return f"{num_bytes / 1024**3:.1f}Gi"
    if num_bytes >= 1024**2:
        return f"{num_bytes / 1024**2:.1f}Mi"
    if num_bytes >= 1024:
        return f"{num_bytes / 1024:.1f}Ki"
    return f"{int(num_bytes)}B"


def format_cpu(millicores: int) -> str:
    return f"{millicores}m"
