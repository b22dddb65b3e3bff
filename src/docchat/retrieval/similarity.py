"""Cosine similarity and linear-scan ranking."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TypeVar

import numpy as np

T = TypeVar("T")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return ``dot(a, b) / (|a| * |b|)``.

    Returns ``0.0`` instead of NaN when either vector has zero magnitude
    or the vectors have different lengths.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def rank_by_similarity(
    query: Sequence[float],
    candidates: Sequence[tuple[T, Sequence[float]]],
    limit: int | None = None,
) -> list[tuple[T, float]]:
    """Score every ``(item, vector)`` candidate against *query*, best first.

    Ties keep the candidates' original order.
    """
    if not candidates:
        return []
    scored = [(item, cosine_similarity(query, vector)) for item, vector in candidates]
    order = np.argsort([-score for _, score in scored], kind="stable")
    ranked = [scored[i] for i in order]
    return ranked if limit is None else ranked[:limit]
