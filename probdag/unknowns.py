"""
Arrays with unknown entries.

Nodes whose numeric value is not known before the model is evaluated hold an
:class:`.Unknowns` array. Unknown entries are stored as ``NaN`` and printed
as ``?``.
"""

from __future__ import annotations

from typing import Any

import numpy as np

__all__ = ["Unknowns", "as_unknowns", "strip_unknowns", "unknowns"]


class Unknowns(np.ndarray):
    """
    A :class:`numpy.ndarray` whose ``NaN`` entries are treated as unknown.

    Behaves like a regular float array. Reshaping, slicing and transposing keep
    the class, so the unknown entries keep printing as ``?``.

    Examples
    --------
    >>> print(unknowns((2, 2)))
    [[? ?]
     [? ?]]
    """

    def __new__(cls, data: Any) -> Unknowns:
        return np.asarray(data, dtype=float).view(cls)

    def _formatted(self) -> np.ndarray:
        plain = strip_unknowns(self)
        out = np.empty(plain.shape, dtype=object)
        for index, entry in np.ndenumerate(plain):
            out[index] = "?" if np.isnan(entry) else str(entry)
        return out

    def __str__(self) -> str:
        formatted = self._formatted()
        return np.array2string(formatted, formatter={"all": str})

    def __repr__(self) -> str:
        return f"{type(self).__name__}(\n{self}\n)"


def unknowns(dim: tuple[int, ...] = (1, 1), data: Any = np.nan) -> Unknowns:
    """Creates an :class:`.Unknowns` array of shape ``dim`` filled with ``data``."""
    return Unknowns(np.full(tuple(dim), data, dtype=float))


def as_unknowns(x: Any) -> Unknowns:
    """Views ``x`` as an :class:`.Unknowns` array. Idempotent."""
    if isinstance(x, Unknowns):
        return x
    return Unknowns(x)


def strip_unknowns(x: Any) -> np.ndarray:
    """Returns ``x`` as a plain :class:`numpy.ndarray`."""
    return np.asarray(x).view(np.ndarray)
