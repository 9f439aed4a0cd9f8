import logging
from typing import Callable, Sequence, Tuple

import numpy as np

from .errors import CoincidentPoint, ConfigurationError, EmptySources, InterpolationError

logger = logging.getLogger(__name__)

Estimator = Callable[[float, float], float]

MAX_LAGS = 30


def _training_arrays(t_values, x_values, y_values) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    t = np.asarray(t_values, dtype=float)
    x = np.asarray(x_values, dtype=float)
    y = np.asarray(y_values, dtype=float)
    if not (t.shape == x.shape == y.shape) or t.ndim != 1:
        raise ConfigurationError(
            f"Training arrays must have equal lengths: t={t.shape}, x={x.shape}, y={y.shape}")
    if t.size == 0:
        raise EmptySources("No training samples")
    return t, x, y


# ---------------------------
# Inverse distance weighting
# ---------------------------

def idw(x: float, y: float, t_values: Sequence[float], x_values: Sequence[float],
        y_values: Sequence[float], power: float = 2.0) -> float:
    """
    Inverse distance weighted value at (x, y):
        sum(w_i * t_i) / sum(w_i),  w_i = 1 / d_i^power
    Raises CoincidentPoint (carrying the training value) when (x, y) equals a
    training location.
    """
    t, xs, ys = _training_arrays(t_values, x_values, y_values)
    d = np.hypot(x - xs, y - ys)
    hit = np.flatnonzero(d == 0.0)
    if hit.size:
        i = int(hit[0])
        raise CoincidentPoint(i, float(t[i]))
    # scaled by the nearest distance; the ratio is unchanged and never overflows
    w = (d.min() / d) ** power
    return float(np.sum(w * t) / np.sum(w))


class IdwInterpolator:
    name = "idw"

    def __init__(self, power: float = 2.0):
        if power <= 0:
            raise ConfigurationError(f"IDW power must be positive, got {power}")
        self.power = power

    def train(self, t_values, x_values, y_values) -> Estimator:
        t, xs, ys = _training_arrays(t_values, x_values, y_values)
        power = self.power

        def estimate(x: float, y: float) -> float:
            try:
                return idw(x, y, t, xs, ys, power)
            except CoincidentPoint as e:
                return e.value

        return estimate

    def __repr__(self):
        return f"IdwInterpolator(power={self.power})"


# ---------------------------
# Kriging
# ---------------------------

A = 1.0 / 3.0


def _gaussian(h, rng, nugget, sill):
    return nugget + ((sill - nugget) / rng) * (1.0 - np.exp(-(1.0 / A) * (h / rng) ** 2))


def _exponential(h, rng, nugget, sill):
    return nugget + ((sill - nugget) / rng) * (1.0 - np.exp(-(1.0 / A) * (h / rng)))


def _spherical(h, rng, nugget, sill):
    r = np.minimum(h / rng, 1.0)
    return nugget + ((sill - nugget) / rng) * (1.5 * r - 0.5 * r ** 3)


VARIOGRAM_MODELS = {
    "gaussian": _gaussian,
    "exponential": _exponential,
    "spherical": _spherical,
}


def _inverse(m: np.ndarray) -> np.ndarray:
    try:
        L = np.linalg.cholesky(m)
        Linv = np.linalg.inv(L)
        return Linv.T @ Linv
    except np.linalg.LinAlgError:
        try:
            return np.linalg.inv(m)
        except np.linalg.LinAlgError as e:
            raise InterpolationError(f"Singular kriging matrix: {e}") from e


def _lag_bins(dist: np.ndarray, semi: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Averages the (distance, semivariance) pairs, sorted by distance, into at
    most MAX_LAGS bins of equal width. With fewer pairs than that the raw
    pairs are used as they are.
    """
    npairs = dist.size
    if npairs < MAX_LAGS:
        return dist, semi
    tolerance = dist[-1] / MAX_LAGS
    idx = np.minimum(np.ceil(dist / tolerance).astype(int) - 1, MAX_LAGS - 1)
    idx = np.maximum(idx, 0)
    lags, semis = [], []
    for b in range(MAX_LAGS):
        sel = idx == b
        if sel.any():
            lags.append(dist[sel].mean())
            semis.append(semi[sel].mean())
    return np.array(lags), np.array(semis)


class Variogram:
    """
    A variogram model fitted to one set of samples, together with the weights
    needed to predict at arbitrary locations.
    """

    def __init__(self, t: np.ndarray, x: np.ndarray, y: np.ndarray,
                 model: str, sigma2: float, alpha: float):
        self.t, self.x, self.y = t, x, y
        self.model = model
        self._f = VARIOGRAM_MODELS[model]
        n = t.size

        iu, ju = np.triu_indices(n, k=1)
        dist = np.hypot(x[iu] - x[ju], y[iu] - y[ju])
        semi = np.abs(t[iu] - t[ju])
        order = np.argsort(dist, kind="stable")
        lag, semi = _lag_bins(dist[order], semi[order])
        if lag.size == 0:
            raise EmptySources(f"Kriging needs at least two samples, got {n}")

        self.range = float(lag[-1] - lag[0])
        if self.range <= 1e-9 * lag[-1]:
            # a single pair, or all pairs equally far apart
            self.range = float(lag[-1])
        if self.range <= 0:
            raise InterpolationError(f"All {n} kriging samples share one location")

        # regularized least squares fit of nugget and sill
        X = np.column_stack([np.ones(lag.size), self._f(lag, self.range, 0.0, 1.0)])
        Z = _inverse(X.T @ X + np.eye(2) / alpha)
        W = Z @ X.T @ semi
        self.nugget = float(W[0])
        self.sill = float(W[1] * self.range + self.nugget)

        dx = x[:, None] - x[None, :]
        dy = y[:, None] - y[None, :]
        K = self._f(np.hypot(dx, dy), self.range, self.nugget, self.sill)
        C = K + sigma2 * np.eye(n)
        self.M = _inverse(C) @ t

    def predict(self, x: float, y: float) -> float:
        k = self._f(np.hypot(x - self.x, y - self.y), self.range, self.nugget, self.sill)
        return float(k @ self.M)


class KrigingInterpolator:
    name = "kriging"

    def __init__(self, model: str = "exponential", sigma2: float = 0.0, alpha: float = 100.0):
        if model not in VARIOGRAM_MODELS:
            raise ConfigurationError(f"Unknown variogram model '{model}', expected one of {sorted(VARIOGRAM_MODELS)}")
        if alpha <= 0:
            raise ConfigurationError(f"alpha must be positive, got {alpha}")
        if sigma2 < 0:
            raise ConfigurationError(f"sigma2 must not be negative, got {sigma2}")
        self.model = model
        self.sigma2 = sigma2
        self.alpha = alpha

    def train(self, t_values, x_values, y_values) -> Estimator:
        t, xs, ys = _training_arrays(t_values, x_values, y_values)
        if np.all(t == t[0]):
            # flat field: the variogram degenerates, the estimate is the value itself
            value = float(t[0])
            logger.debug(f"Kriging on a constant field ({value}), {t.size} samples")
            return lambda x, y: value

        variogram = Variogram(t, xs, ys, self.model, self.sigma2, self.alpha)
        logger.debug(f"Kriging {self.model}: nugget={variogram.nugget:.4g}, sill={variogram.sill:.4g}, "
                     f"range={variogram.range:.4g}")
        return variogram.predict

    def __repr__(self):
        return f"KrigingInterpolator(model={self.model!r}, sigma2={self.sigma2}, alpha={self.alpha})"


def make_interpolator(name: str = "idw", **params):
    name = name.lower().strip()
    if name == "idw":
        return IdwInterpolator(**params)
    if name == "kriging":
        return KrigingInterpolator(**params)
    if name.startswith("kriging-"):
        return KrigingInterpolator(model=name.split("-", 1)[1], **params)
    raise ConfigurationError(f"Unknown interpolator '{name}'")
