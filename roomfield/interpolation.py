"""Scattered-data interpolation of anchor readings over query points.

Two methods share the call signature ``interpolator(query) -> values``:

- :class:`IDWInterpolator` (Shepard inverse-distance weighting).  Exact at
  the anchors and bounded by the anchor range.
- :class:`RBFInterpolator` (radial basis functions).  Exact at the anchors
  for a well-conditioned system, but may overshoot between them; callers
  clamp afterwards (:func:`roomfield.aggregate.clamp_to_range`).

Both are vectorised with numpy over chunks of query points, so memory stays
at ``chunk_size * K`` distances for ``K`` anchors.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict

import numpy as np
import numpy.typing as npt

from _field_common import as_points, length
from .errors import ConfigurationError, SingularSystemError

logger = logging.getLogger(__name__)

_Array = npt.NDArray[np.floating]

METHODS = ("idw", "rbf")
KERNELS = ("gaussian", "multiquadric", "inverse_multiquadric", "thin_plate_spline")

DEFAULT_POWER = 2.0
DEFAULT_EPSILON = 1.0
COINCIDENCE_EPS = 1e-6
MAX_CONDITION = 1e12
_CHUNK = 8192


def _distances(query: _Array, anchors: _Array) -> _Array:
    """``(Q, K)`` Euclidean distances."""
    return length(query[:, None, :] - anchors[None, :, :])


def _check_anchors(positions, values):
    P = as_points(positions)
    v = np.asarray(values, dtype=np.float64).reshape(-1)
    if len(P) != len(v):
        raise ConfigurationError(f"{len(P)} anchor positions but {len(v)} values")
    if len(P) == 0:
        raise ConfigurationError("interpolation needs at least one anchor")
    return P, v


# ---------------------------------------------------------------------------
# Inverse distance weighting
# ---------------------------------------------------------------------------

def interpolate_idw(
    positions,
    values,
    query,
    power: float = DEFAULT_POWER,
    epsilon: float = COINCIDENCE_EPS,
) -> _Array:
    """Shepard interpolation ``sum(w_i v_i) / sum(w_i)`` with ``w_i = 1 / d_i**power``.

    A query closer than *epsilon* to an anchor takes that anchor's value
    exactly (the first such anchor when several qualify).

    Parameters
    ----------
    positions:
        ``(K, 3)`` anchor coordinates.
    values:
        ``(K,)`` anchor values.
    query:
        ``(Q, 3)`` points or a flat ``(3Q,)`` buffer.

    Returns
    -------
    numpy.ndarray
        ``(Q,)`` interpolated values, each within ``[min(values), max(values)]``.
    """
    P, v = _check_anchors(positions, values)
    Q = as_points(query)
    out = np.empty(len(Q), dtype=np.float64)
    for start in range(0, len(Q), _CHUNK):
        stop = min(start + _CHUNK, len(Q))
        d = _distances(Q[start:stop], P)
        near = d < epsilon
        hit = near.any(axis=1)
        far = d[~hit]
        # scaled so the nearest anchor weighs 1
        w = 1.0 / (far / far.min(axis=1, keepdims=True)) ** power
        chunk = np.empty(stop - start, dtype=np.float64)
        chunk[~hit] = (w @ v) / w.sum(axis=1)
        chunk[hit] = v[np.argmax(near[hit], axis=1)]
        out[start:stop] = chunk
    return out


class IDWInterpolator:
    """Callable IDW interpolator bound to a fixed anchor set."""

    def __init__(self, positions, values, power: float = DEFAULT_POWER, epsilon: float = COINCIDENCE_EPS) -> None:
        self.positions, self.values = _check_anchors(positions, values)
        if power <= 0:
            raise ConfigurationError(f"IDW power must be positive, got {power}")
        self.power = float(power)
        self.epsilon = float(epsilon)

    def __call__(self, query) -> _Array:
        return interpolate_idw(self.positions, self.values, query, self.power, self.epsilon)


# ---------------------------------------------------------------------------
# Radial basis functions
# ---------------------------------------------------------------------------

def _gaussian(r, eps):
    return np.exp(-((eps * r) ** 2))


def _multiquadric(r, eps):
    return np.sqrt(1.0 + (eps * r) ** 2)


def _inverse_multiquadric(r, eps):
    return 1.0 / np.sqrt(1.0 + (eps * r) ** 2)


def _thin_plate_spline(r, eps):
    # r^2 log r, continuous extension 0 at r = 0
    r = np.asarray(r, dtype=np.float64)
    out = np.zeros_like(r)
    pos = r > 0
    out[pos] = r[pos] ** 2 * np.log(r[pos])
    return out


_KERNEL_FUNCS: Dict[str, Callable] = {
    "gaussian": _gaussian,
    "multiquadric": _multiquadric,
    "inverse_multiquadric": _inverse_multiquadric,
    "thin_plate_spline": _thin_plate_spline,
}


def rbf_kernel(r, kernel: str = "multiquadric", epsilon: float = DEFAULT_EPSILON):
    """Evaluate the radial basis function *kernel* at distances *r*."""
    try:
        func = _KERNEL_FUNCS[kernel]
    except KeyError:
        raise ConfigurationError(f"unknown RBF kernel {kernel!r}; expected one of {KERNELS}") from None
    return func(np.asarray(r, dtype=np.float64), epsilon)


class RBFInterpolator:
    """Radial basis function interpolator ``f(q) = sum_i w_i phi(|q - x_i|)``.

    The weights solve ``(A + smoothing * I) w = f`` with
    ``A_ij = phi(|x_i - x_j|)`` by LU decomposition with partial pivoting
    (:func:`numpy.linalg.solve`), once at construction.

    Parameters
    ----------
    positions, values:
        Anchor coordinates ``(K, 3)`` and values ``(K,)``.
    kernel:
        One of :data:`KERNELS`.
    epsilon:
        Shape parameter (ignored by ``thin_plate_spline``).
    smoothing:
        Diagonal regularisation.  ``0`` interpolates exactly; a positive
        value trades exactness for a solvable system when anchors nearly
        coincide.
    max_condition:
        Largest acceptable condition number of the system matrix.

    Raises
    ------
    SingularSystemError
        The system is singular, too ill-conditioned, or its solution is
        not finite.
    """

    def __init__(
        self,
        positions,
        values,
        kernel: str = "multiquadric",
        epsilon: float = DEFAULT_EPSILON,
        smoothing: float = 0.0,
        max_condition: float = MAX_CONDITION,
    ) -> None:
        self.positions, self.values = _check_anchors(positions, values)
        if kernel not in _KERNEL_FUNCS:
            raise ConfigurationError(f"unknown RBF kernel {kernel!r}; expected one of {KERNELS}")
        if smoothing < 0:
            raise ConfigurationError(f"RBF smoothing must be non-negative, got {smoothing}")
        self.kernel = kernel
        self.epsilon = float(epsilon)
        self.smoothing = float(smoothing)
        self.weights = self._solve(max_condition)

    def _solve(self, max_condition: float) -> _Array:
        A = rbf_kernel(_distances(self.positions, self.positions), self.kernel, self.epsilon)
        if self.smoothing:
            A = A + self.smoothing * np.eye(len(A))
        cond = float(np.linalg.cond(A))
        if not np.isfinite(cond) or cond > max_condition:
            raise SingularSystemError(
                f"RBF system is ill-conditioned (cond={cond:.3g}, {len(A)} anchors, "
                f"kernel={self.kernel}); check for coincident anchors or set smoothing > 0",
                condition=cond,
            )
        try:
            w = np.linalg.solve(A, self.values)
        except np.linalg.LinAlgError as exc:
            raise SingularSystemError(f"RBF system is singular: {exc}", condition=cond) from exc
        if not np.all(np.isfinite(w)):
            raise SingularSystemError("RBF weights are not finite", condition=cond)
        logger.debug("RBF weights solved: %d anchors, kernel=%s, cond=%.3g", len(w), self.kernel, cond)
        return w

    def __call__(self, query) -> _Array:
        Q = as_points(query)
        out = np.empty(len(Q), dtype=np.float64)
        for start in range(0, len(Q), _CHUNK):
            stop = min(start + _CHUNK, len(Q))
            phi = rbf_kernel(_distances(Q[start:stop], self.positions), self.kernel, self.epsilon)
            out[start:stop] = phi @ self.weights
        return out


def make_interpolator(
    method: str,
    positions,
    values,
    *,
    power: float = DEFAULT_POWER,
    kernel: str = "multiquadric",
    epsilon: float = DEFAULT_EPSILON,
    smoothing: float = 0.0,
):
    """Build the interpolator named by *method* (``"idw"`` or ``"rbf"``)."""
    if method == "idw":
        return IDWInterpolator(positions, values, power=power)
    if method == "rbf":
        return RBFInterpolator(positions, values, kernel=kernel, epsilon=epsilon, smoothing=smoothing)
    raise ConfigurationError(f"unknown interpolation method {method!r}; expected one of {METHODS}")
