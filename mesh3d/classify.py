"""Interior classification of lattice points by ray-parity voting.

Two strategies are available:

``"six_axis"`` (default)
    One ray along each of ±X, ±Y, ±Z.  A direction votes *inside* when its
    crossing count is odd; the point is accepted when at least *tolerance*
    directions agree.  The vote tolerates leaky or self-intersecting shells
    where a single parity test flips.

``"single_ray"``
    One parity test along a fixed irrational direction; *tolerance* is
    ignored.

With ``invert=True`` the decision is inverted (solid interior instead of
the air volume).  A point whose rays hit nothing at all is unresolved and is
rejected in both modes.

A ray that grazes the shell at a silhouette edge or vertex touches it
without crossing it.  Such a direction is unresolved and abstains from the
vote, so a tangent contact can never flip a point to inside.  The guarantee
that points outside the mesh bounding box are rejected holds in air mode
only; inverted mode accepts any point whose rays reach the shell with an
even crossing count, wherever it lies.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

import numpy as np

from _field_common import as_points
from .bvh import GeometryIndex
from .errors import ConfigurationError
from .mesh import BoundaryMesh
from ._math import _AXIS_DIRS, _RAY_DIR

logger = logging.getLogger(__name__)

STRATEGIES = ("six_axis", "single_ray")
DEFAULT_BATCH_SIZE = 2048
DEFAULT_PROGRESS_INTERVAL = 0.1

ProgressCallback = Callable[[int, int, float], None]


# ---------------------------------------------------------------------------
# Progress throttling
# ---------------------------------------------------------------------------

class ProgressThrottle:
    """Forward ``(processed, total, percentage)`` at most every *interval* seconds.

    The final update (``processed == total``) is always forwarded, and
    ``processed`` never goes backwards.
    """

    def __init__(
        self,
        callback: Optional[ProgressCallback],
        total: int,
        interval: float = DEFAULT_PROGRESS_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._callback = callback
        self._total = int(total)
        self._interval = float(interval)
        self._clock = clock
        self._last_time = clock()
        self._last_processed = 0

    def update(self, processed: int) -> bool:
        """Report *processed* items; returns True if an event was emitted."""
        if self._callback is None or processed <= self._last_processed:
            return False
        now = self._clock()
        final = processed >= self._total
        if not final and now - self._last_time < self._interval:
            return False
        percentage = 100.0 * processed / self._total if self._total else 100.0
        self._callback(processed, self._total, percentage)
        self._last_time = now
        self._last_processed = processed
        return True


# ---------------------------------------------------------------------------
# Voting
# ---------------------------------------------------------------------------

def direction_crossings(points, index: GeometryIndex, strategy: str = "six_axis"):
    """``(N, D)`` crossing counts and ``(N, D)`` unresolved flags per point and ray direction.

    ``D`` is 6 for ``"six_axis"`` (order +X, -X, +Y, -Y, +Z, -Z) and 1 for
    ``"single_ray"``.  A direction is unresolved when its ray grazes a
    silhouette edge or vertex of the shell.
    """
    P = as_points(points)
    directions = _AXIS_DIRS if strategy == "six_axis" else _RAY_DIR[None, :]
    per_dir = [index.crossings(P, d) for d in directions]
    hits = np.stack([c for c, _ in per_dir], axis=1)
    unresolved = np.stack([u for _, u in per_dir], axis=1)
    return hits, unresolved


def direction_hits(points, index: GeometryIndex, strategy: str = "six_axis") -> np.ndarray:
    """``(N, D)`` crossing counts per point and ray direction."""
    hits, _ = direction_crossings(points, index, strategy)
    return hits


def parity_votes(hits: np.ndarray, unresolved: np.ndarray):
    """Inside votes and total crossings over the resolved directions only.

    An unresolved direction abstains: it never casts an odd vote and its
    crossings do not count towards *total_hits*.
    """
    resolved = ~np.asarray(unresolved, dtype=bool)
    hits = np.where(resolved, hits, 0)
    return (hits % 2).sum(axis=1), hits.sum(axis=1)


def inside_votes(points, index: GeometryIndex, strategy: str = "six_axis"):
    """Per-point inside votes and total crossings.

    Returns
    -------
    votes : numpy.ndarray
        ``(N,)`` number of resolved directions with an odd crossing count.
    total_hits : numpy.ndarray
        ``(N,)`` crossings summed over the resolved directions.
    """
    return parity_votes(*direction_crossings(points, index, strategy))


def decide(votes: np.ndarray, total_hits: np.ndarray, tolerance: int, invert: bool) -> np.ndarray:
    """Turn votes into accept/reject; unresolved points are always rejected.

    In air mode a point outside the mesh bounding box is never accepted:
    every ray from it crosses the shell an even number of times or grazes
    it.  With *invert* that guarantee does not hold, since an outside point
    that hits the shell at all has zero odd votes and is accepted as solid.
    """
    inside = votes >= tolerance
    if invert:
        inside = ~inside
    return inside & (total_hits > 0)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

@dataclass
class ClassificationResult:
    """Outcome of :func:`classify_points`."""

    interior_points: np.ndarray
    total_processed: int
    total_inside: int
    accepted: np.ndarray
    votes: Optional[np.ndarray] = None

    @property
    def filter_percentage(self) -> float:
        """Share of points rejected, in percent."""
        if self.total_processed == 0:
            return 0.0
        return 100.0 * (self.total_processed - self.total_inside) / self.total_processed


def _validate(tolerance: int, strategy: str, batch_size: int) -> None:
    if strategy not in STRATEGIES:
        raise ConfigurationError(f"unknown classifier strategy {strategy!r}; expected one of {STRATEGIES}")
    if strategy == "six_axis" and not 1 <= int(tolerance) <= 6:
        raise ConfigurationError(f"tolerance must be in [1, 6], got {tolerance}")
    if int(batch_size) < 1:
        raise ConfigurationError(f"batch_size must be positive, got {batch_size}")


def classify_points(
    points,
    index: Union[GeometryIndex, BoundaryMesh, None],
    *,
    tolerance: int = 2,
    invert: bool = False,
    strategy: str = "six_axis",
    batch_size: int = DEFAULT_BATCH_SIZE,
    progress: Optional[ProgressCallback] = None,
    progress_interval: float = DEFAULT_PROGRESS_INTERVAL,
    return_votes: bool = False,
) -> ClassificationResult:
    """Classify *points* against the shell indexed by *index*.

    Parameters
    ----------
    points:
        ``(N, 3)`` points or a flat ``(3N,)`` buffer.
    index:
        A built :class:`GeometryIndex`; a :class:`BoundaryMesh` is indexed
        on the fly and ``None`` behaves as an empty mesh.
    tolerance:
        Minimum number of agreeing directions (1–6) for ``"six_axis"``.
    invert:
        Accept the solid interior instead of the enclosed air volume.
    strategy:
        ``"six_axis"`` or ``"single_ray"``.
    batch_size:
        Points per batch; progress is considered after each batch.
    progress:
        Optional ``callback(processed, total, percentage)``, throttled to
        *progress_interval* seconds and always called for the final batch.
    return_votes:
        Keep the per-point vote counts in the result.
    """
    _validate(tolerance, strategy, batch_size)
    if not isinstance(index, GeometryIndex):
        index = GeometryIndex.build(index)

    P = as_points(points)
    total = len(P)
    throttle = ProgressThrottle(progress, total, progress_interval)
    accepted = np.zeros(total, dtype=bool)
    votes_all = np.zeros(total, dtype=np.int64) if return_votes else None

    t0 = time.perf_counter()
    for start in range(0, total, batch_size):
        stop = min(start + batch_size, total)
        votes, total_hits = inside_votes(P[start:stop], index, strategy)
        accepted[start:stop] = decide(votes, total_hits, 1 if strategy == "single_ray" else tolerance, invert)
        if votes_all is not None:
            votes_all[start:stop] = votes
        throttle.update(stop)

    interior = P[accepted]
    result = ClassificationResult(
        interior_points=interior,
        total_processed=total,
        total_inside=len(interior),
        accepted=accepted,
        votes=votes_all,
    )
    logger.info(
        "Classified %d points (%s, tolerance=%d/6, %s): %d inside, %.1f%% filtered in %.0f ms",
        total, strategy, tolerance, "solid" if invert else "air",
        result.total_inside, result.filter_percentage,
        (time.perf_counter() - t0) * 1e3,
    )
    return result
