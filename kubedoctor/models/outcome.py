"""Typed fetch outcomes.

An optional collector either returns ``Collected`` with its value or
``Unavailable`` describing why the section is missing. Callers branch on
the type; nothing is silently dropped.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Collected(Generic[T]):
    source: str
    value: T


@dataclass(frozen=True)
class Unavailable:
    """A source that could not be read.

    ``error_code`` is the surface error code of the underlying failure
    (FORBIDDEN, UNAVAILABLE, RESOURCE_NOT_FOUND, ...).
    """

    source: str
    reason: str
    error_code: str = "UNAVAILABLE"


Outcome = Collected[T] | Unavailable
