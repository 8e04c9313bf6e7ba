"""
Stochastic Volatility Inspired (SVI) curve model.

The SVI model (Gatheral, 2004) parameterizes total implied variance
w(k) as a function of log-moneyness k = ln(K/F):

    w(k) = a + b * (rho * (k - m) + sqrt((k - m)^2 + sigma^2))

where:
    a     = overall variance level
    b     = slope of the wings
    rho   = rotation / skew (-1 <= rho <= 1)
    m     = translation (shifts the minimum)
    sigma = curvature / ATM smile

A slice is free of butterfly arbitrage when the implied density is
non-negative, which in terms of w is Gatheral & Jacquier's condition
g(k) >= 0 with

    g(k) = (1 - k w'/(2w))^2 - (w'^2 / 4) (1/w + 1/4) + w''/2

The check is sampled on a finite log-moneyness grid spanning the
observed strikes plus padding for extrapolation. ``is_valid`` combines
it with the parameter bounds into the one predicate the optimizer uses
at every candidate.

References:
    Gatheral, J. (2004). A parsimonious arbitrage-free implied volatility
    parameterization with application to the valuation of volatility derivatives.
    Gatheral, J. & Jacquier, A. (2014). Arbitrage-free SVI volatility surfaces.
"""

from functools import partial
from typing import Callable

import numpy as np

from . import config
from .records import SviParameters


# ════════════════════════════════════════════════════════════════════════
#  SVI EVALUATION
# ════════════════════════════════════════════════════════════════════════

def svi_total_variance(k: np.ndarray, params: SviParameters) -> np.ndarray:
    """
    Compute SVI total implied variance w(k).

    Parameters
    ----------
    k : log-moneyness array, k = ln(K/F)
    params : SVI parameters

    Returns
    -------
    np.ndarray : total implied variance w(k) = sigma_BS^2 * T
    """
    d = np.asarray(k, dtype=float) - params.m
    return params.a + params.b * (params.rho * d + np.sqrt(d**2 + params.sigma**2))


def svi_implied_vol(k: np.ndarray, T: float, params: SviParameters) -> np.ndarray:
    """
    Convert SVI total variance to implied volatility, sqrt(w(k) / T).

    Returns NaN wherever total variance is negative.
    """
    w = svi_total_variance(k, params)
    w = np.where(w >= 0, w, np.nan)
    return np.sqrt(w / T)


def svi_first_derivative(k: np.ndarray, params: SviParameters) -> np.ndarray:
    """dw/dk."""
    d = np.asarray(k, dtype=float) - params.m
    return params.b * (params.rho + d / np.sqrt(d**2 + params.sigma**2))


def svi_second_derivative(k: np.ndarray, params: SviParameters) -> np.ndarray:
    """d²w/dk²."""
    d = np.asarray(k, dtype=float) - params.m
    return params.b * params.sigma**2 / np.power(d**2 + params.sigma**2, 1.5)


# ════════════════════════════════════════════════════════════════════════
#  NO-ARBITRAGE CHECKS
# ════════════════════════════════════════════════════════════════════════

def g_function(k: np.ndarray, params: SviParameters) -> np.ndarray:
    """
    Evaluate the butterfly density condition g(k).

    The implied density is non-negative iff g(k) >= 0. Points where the
    expression is undefined (w <= 0, overflow) come back as -inf so they
    always count as violations.
    """
    k = np.asarray(k, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        w = svi_total_variance(k, params)
        wp = svi_first_derivative(k, params)
        wpp = svi_second_derivative(k, params)

        term1 = (1.0 - k * wp / (2.0 * w)) ** 2
        term2 = (wp**2 / 4.0) * (1.0 / w + 0.25)
        g = term1 - term2 + 0.5 * wpp

    g = np.where(np.isfinite(g) & (w > 0), g, -np.inf)
    return g


def arbitrage_check_grid(
    k_observed: np.ndarray,
    points: int = None,
    padding: float = None,
) -> np.ndarray:
    """
    Log-moneyness grid on which a slice's arbitrage check is sampled.

    Spans the observed log-moneyness range, widened on each side by
    max(padding, spread / 2) so the validated curve also covers the
    region a renderer will extrapolate into.

    Parameters
    ----------
    k_observed : log-moneyness of the group's members
    points : number of sample points (default: config.ARBITRAGE_CHECK_POINTS)
    padding : minimum widening per side (default: config.ARBITRAGE_K_PADDING)
    """
    if points is None:
        points = config.ARBITRAGE_CHECK_POINTS
    if padding is None:
        padding = config.ARBITRAGE_K_PADDING

    k_observed = np.asarray(k_observed, dtype=float)
    k_min, k_max = float(k_observed.min()), float(k_observed.max())
    pad = max(padding, 0.5 * (k_max - k_min))
    return np.linspace(k_min - pad, k_max + pad, points)


def has_butterfly_arbitrage(params: SviParameters, k_grid: np.ndarray) -> bool:
    """True if g(k) < 0 (or w(k) <= 0) at any sampled point."""
    return bool(np.any(g_function(k_grid, params) < 0))


def check_bounds(params: SviParameters) -> bool:
    """Parameter bounds: all finite, b >= 0, |rho| <= 1, sigma > 0."""
    values = params.as_array()
    if not np.all(np.isfinite(values)):
        return False
    return params.b >= 0 and -1.0 <= params.rho <= 1.0 and params.sigma > 0


def is_valid(params: SviParameters, k_grid: np.ndarray) -> bool:
    """Economic validity of a candidate: bounds first, then butterfly arbitrage."""
    if not check_bounds(params):
        return False
    return not has_butterfly_arbitrage(params, k_grid)


def make_validator(k_grid: np.ndarray) -> Callable[[SviParameters], bool]:
    """Bind ``is_valid`` to one slice's check grid."""
    return partial(is_valid, k_grid=np.asarray(k_grid, dtype=float))
