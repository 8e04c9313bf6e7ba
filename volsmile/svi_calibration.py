"""
SVI calibration: fit one arbitrage-free smile per expiry group.

The cost surface of raw SVI has several local minima, so a gradient
method started from a fixed guess often ends up somewhere poor. The
fit is therefore staged:

    1. Closed-form a. For fixed (b, rho, m, sigma) the least-squares
       optimal a is the mean of w_obs - b * shape(k), so only four
       dimensions are ever searched.
    2. Grid search. A coarse grid over (b, rho, m, sigma), with ranges
       derived from the observed strikes and variances, then finer grids
       around the best valid cell.
    3. Levenberg-Marquardt. Damped Gauss-Newton from the best grid point.
       A step is only taken if the new point is valid and cheaper.
    4. Restarts. The m range is split into independent starting
       regions; stages 2-3 run in each and the cheapest result wins.

Validity (bounds + no butterfly arbitrage) is a single predicate from
svi_model, injected into both search stages, so an invalid candidate is
never accepted, let alone returned.

The search reads no clock and draws no random numbers: identical input
gives an identical fit.
"""

from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np
from scipy import linalg

from . import config
from .errors import (
    InsufficientDataError,
    NumericDegeneracyError,
    UnfittableGroupError,
)
from .logging import get_logger
from .records import ExpiryGroup, FitResult, SviParameters
from .svi_model import (
    arbitrage_check_grid,
    has_butterfly_arbitrage,
    make_validator,
    svi_total_variance,
)

logger = get_logger(__name__)

Validator = Callable[[SviParameters], bool]

# searched dimensions, in candidate-column order; a is always derived
SEARCH_DIMS = ("b", "rho", "m", "sigma")


# ════════════════════════════════════════════════════════════════════════
#  OBJECTIVE
# ════════════════════════════════════════════════════════════════════════

def optimal_a(k: np.ndarray, w: np.ndarray, b, rho, m, sigma):
    """
    Least-squares optimal level a for fixed (b, rho, m, sigma).

    w_model = a + b * shape(k) is linear in a, so minimizing the squared
    residuals gives a = mean(w - b * shape(k)). Broadcasts over arrays of
    candidate parameters; returns one a per candidate.
    """
    k = np.asarray(k, dtype=float)
    w = np.asarray(w, dtype=float)
    b, rho, m, sigma = (np.asarray(x, dtype=float)[..., None] for x in (b, rho, m, sigma))
    d = k - m
    shape = rho * d + np.sqrt(d**2 + sigma**2)
    return np.mean(w - b * shape, axis=-1)


def _candidate_costs(k: np.ndarray, w: np.ndarray,
                     candidates: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Analytic a and sum of squared residuals for each (b, rho, m, sigma) row."""
    b, rho, m, sigma = candidates.T
    with np.errstate(all="ignore"):
        a = optimal_a(k, w, b, rho, m, sigma)
        d = k[None, :] - m[:, None]
        shape = rho[:, None] * d + np.sqrt(d**2 + sigma[:, None] ** 2)
        resid = a[:, None] + b[:, None] * shape - w[None, :]
        cost = np.sum(resid**2, axis=1)
    # NaN/inf cost -> candidate can never be chosen
    cost = np.where(np.isfinite(cost), cost, np.inf)
    return a, cost


def _residuals(k: np.ndarray, w: np.ndarray, x: np.ndarray) -> np.ndarray:
    a, b, rho, m, sigma = x
    d = k - m
    return a + b * (rho * d + np.sqrt(d**2 + sigma**2)) - w


def _jacobian(k: np.ndarray, x: np.ndarray) -> np.ndarray:
    """d(residual)/d(a, b, rho, m, sigma), one row per option."""
    _, b, rho, m, sigma = x
    d = k - m
    s = np.sqrt(d**2 + sigma**2)

    J = np.empty((k.shape[0], 5), dtype=float)
    J[:, 0] = 1.0
    J[:, 1] = rho * d + s
    J[:, 2] = b * d
    J[:, 3] = -b * (rho + d / s)
    J[:, 4] = b * sigma / s
    return J


# ════════════════════════════════════════════════════════════════════════
#  GRID SEARCH
# ════════════════════════════════════════════════════════════════════════

def search_bounds(k: np.ndarray, w: np.ndarray) -> Dict[str, Tuple[float, float]]:
    """
    Layer-0 search ranges derived from one slice's data.

    Parameters
    ----------
    k : observed log-moneyness
    w : observed total variance

    Returns
    -------
    dict : {dim: (low, high)} for b, rho, m, sigma
    """
    k_min, k_max = float(np.min(k)), float(np.max(k))
    spread = max(k_max - k_min, 1e-3)
    w_range = float(np.max(w) - np.min(w))

    # wings rise roughly b * (1 +- rho) per unit of k; Lee caps the slope at 2
    b_high = min(config.SVI_MAX_WING_SLOPE, max(4.0 * w_range / spread, 1e-4))

    return {
        "b": (0.0, b_high),
        "rho": (-config.SVI_RHO_BOUND, config.SVI_RHO_BOUND),
        "m": (k_min - 0.25 * spread, k_max + 0.25 * spread),
        "sigma": (max(config.SVI_SIGMA_MIN, 0.01 * spread), max(spread, 0.05)),
    }


def _hard_limits() -> Dict[str, Tuple[float, float]]:
    return {
        "b": (0.0, np.inf),
        "rho": (-config.SVI_RHO_BOUND, config.SVI_RHO_BOUND),
        "m": (-np.inf, np.inf),
        "sigma": (config.SVI_SIGMA_MIN, np.inf),
    }


def _cartesian(axes: List[np.ndarray]) -> np.ndarray:
    mesh = np.meshgrid(*axes, indexing="ij")
    return np.stack([g.ravel() for g in mesh], axis=1)


def _best_valid(k: np.ndarray, w: np.ndarray, candidates: np.ndarray,
                validator: Validator) -> Optional[Tuple[SviParameters, float]]:
    """
    Cheapest candidate that passes the validator, or None.

    Costs are computed for the whole grid at once; candidates are then
    validated in ascending cost order, so the first valid one is the
    best valid one.
    """
    a, cost = _candidate_costs(k, w, candidates)
    for idx in np.argsort(cost, kind="stable"):
        if not np.isfinite(cost[idx]):
            break
        b, rho, m, sigma = candidates[idx]
        params = SviParameters(a=float(a[idx]), b=float(b), rho=float(rho),
                               m=float(m), sigma=float(sigma))
        if validator(params):
            return params, float(cost[idx])
    return None


def grid_search(
    k: np.ndarray,
    w: np.ndarray,
    validator: Validator,
    bounds: Optional[Dict[str, Tuple[float, float]]] = None,
    points: int = None,
    refine_points: int = None,
    layers: int = None,
) -> Optional[Tuple[SviParameters, float]]:
    """
    Multi-layer grid search over (b, rho, m, sigma) with a derived analytically.

    Layer 0 sweeps ``points`` values per dimension across ``bounds``.
    Each following layer re-grids ``refine_points`` values per dimension
    within one previous grid step of the incumbent, so the window
    narrows geometrically. A layer only replaces the incumbent if it
    finds a cheaper valid candidate.

    Parameters
    ----------
    k, w : observed log-moneyness and total variance
    validator : params -> bool, the economic validity predicate
    bounds : layer-0 ranges (default: search_bounds(k, w))
    points : layer-0 resolution (default: config.SVI_GRID_POINTS)
    refine_points : refining-layer resolution (default: config.SVI_REFINE_POINTS)
    layers : total number of layers (default: config.SVI_GRID_LAYERS)

    Returns
    -------
    (SviParameters, cost) of the best valid candidate, or None if layer 0
    contains no valid candidate at all.
    """
    if bounds is None:
        bounds = search_bounds(k, w)
    if points is None:
        points = config.SVI_GRID_POINTS
    if refine_points is None:
        refine_points = config.SVI_REFINE_POINTS
    if layers is None:
        layers = config.SVI_GRID_LAYERS

    k = np.asarray(k, dtype=float)
    w = np.asarray(w, dtype=float)

    axes = [np.linspace(bounds[dim][0], bounds[dim][1], points) for dim in SEARCH_DIMS]
    best = _best_valid(k, w, _cartesian(axes), validator)
    if best is None:
        return None

    steps = [(ax[-1] - ax[0]) / max(points - 1, 1) for ax in axes]
    limits = _hard_limits()

    for _ in range(1, layers):
        centre = best[0]
        axes = []
        for dim, step in zip(SEARCH_DIMS, steps):
            c = getattr(centre, dim)
            lo = max(c - step, limits[dim][0])
            hi = min(c + step, limits[dim][1])
            axes.append(np.linspace(lo, hi, refine_points))
        steps = [(ax[-1] - ax[0]) / max(refine_points - 1, 1) for ax in axes]

        layer_best = _best_valid(k, w, _cartesian(axes), validator)
        if layer_best is not None and layer_best[1] < best[1]:
            best = layer_best

    return best


# ════════════════════════════════════════════════════════════════════════
#  LEVENBERG-MARQUARDT
# ════════════════════════════════════════════════════════════════════════

def _damped_step(J: np.ndarray, r: np.ndarray, damping: float) -> np.ndarray:
    """Solve (J'J + damping * diag(J'J)) step = -J'r."""
    if not (np.all(np.isfinite(J)) and np.all(np.isfinite(r))):
        raise NumericDegeneracyError("non-finite Jacobian or residuals")

    JtJ = J.T @ J
    grad = J.T @ r
    diag = np.diag(JtJ)
    # columns can vanish (b = 0 flattens rho/m/sigma); keep the system definite
    diag = np.maximum(diag, 1e-9 * max(float(diag.max()), 1e-300))

    try:
        step = linalg.solve(JtJ + damping * np.diag(diag), -grad, assume_a="pos")
    except (linalg.LinAlgError, ValueError) as exc:
        raise NumericDegeneracyError(f"damped normal equations are singular: {exc}") from exc

    if not np.all(np.isfinite(step)):
        raise NumericDegeneracyError("non-finite Levenberg-Marquardt step")
    return step


def levenberg_marquardt(
    k: np.ndarray,
    w: np.ndarray,
    start: SviParameters,
    validator: Validator,
    max_iter: int = None,
    damping: float = None,
    ftol: float = None,
) -> Tuple[SviParameters, float]:
    """
    Refine SVI parameters by damped Gauss-Newton on the squared residuals.

    A trial step is accepted only when the candidate passes the
    validator and strictly lowers the cost; the damping is then relaxed.
    Anything else (invalid candidate, higher cost, NaN/inf, singular
    system) rejects the step and stiffens the damping. The returned
    point is therefore valid and never more expensive than ``start``.

    Stops when an accepted step improves the cost by less than ``ftol``
    (relative), the cost reaches config.LM_COST_FLOOR, the damping
    exceeds config.LM_MAX_DAMPING, or ``max_iter`` iterations are spent.

    Parameters
    ----------
    k, w : observed log-moneyness and total variance
    start : starting point, assumed valid (the best grid cell)
    validator : params -> bool
    max_iter : iteration budget (default: config.LM_MAX_ITER)
    damping : initial damping (default: config.LM_INITIAL_DAMPING)
    ftol : relative improvement tolerance (default: config.LM_FTOL)

    Returns
    -------
    (SviParameters, cost)
    """
    if max_iter is None:
        max_iter = config.LM_MAX_ITER
    if damping is None:
        damping = config.LM_INITIAL_DAMPING
    if ftol is None:
        ftol = config.LM_FTOL

    k = np.asarray(k, dtype=float)
    w = np.asarray(w, dtype=float)

    x = start.as_array()
    r = _residuals(k, w, x)
    cost = float(np.sum(r**2))
    status = "budget"
    n_iter = 0

    for n_iter in range(1, max_iter + 1):
        if cost <= config.LM_COST_FLOOR:
            status = "exact"
            break

        accepted = False
        try:
            x_new = x + _damped_step(_jacobian(k, x), r, damping)
            candidate = SviParameters.from_array(x_new)
            if validator(candidate):
                with np.errstate(all="ignore"):
                    r_new = _residuals(k, w, x_new)
                    cost_new = float(np.sum(r_new**2))
                if not np.isfinite(cost_new):
                    raise NumericDegeneracyError("non-finite cost")
                accepted = cost_new < cost
        except NumericDegeneracyError:
            accepted = False

        if accepted:
            improvement = (cost - cost_new) / cost
            x, r, cost = x_new, r_new, cost_new
            damping /= config.LM_DAMPING_DOWN
            if improvement < ftol:
                status = "converged"
                break
        else:
            damping *= config.LM_DAMPING_UP
            if damping > config.LM_MAX_DAMPING:
                status = "stalled"
                break

    logger.debug("LM finished (%s) after %d iterations, cost=%.3e", status, n_iter, cost)
    return SviParameters.from_array(x), cost


# ════════════════════════════════════════════════════════════════════════
#  SLICE / GROUP CALIBRATION
# ════════════════════════════════════════════════════════════════════════

def _fit_from_region(k, w, validator, bounds, points, refine_points, layers, max_iter):
    seed = grid_search(k, w, validator, bounds=bounds, points=points,
                       refine_points=refine_points, layers=layers)
    if seed is None:
        return None
    return levenberg_marquardt(k, w, seed[0], validator, max_iter=max_iter)


def calibrate_svi_slice(
    log_moneyness: np.ndarray,
    total_variance: np.ndarray,
    validator: Validator,
    starting_regions: int = None,
    points: int = None,
    refine_points: int = None,
    layers: int = None,
    max_iter: int = None,
) -> Tuple[SviParameters, float]:
    """
    Fit SVI parameters to a single expiry slice of total variance.

    Splits the m range into ``starting_regions`` contiguous slices and
    runs grid search + Levenberg-Marquardt independently from each.
    The runs share nothing but the read-only input arrays; the cheapest
    valid result is kept.

    Parameters
    ----------
    log_moneyness : array of k = ln(K/F) values
    total_variance : corresponding observed total variances sigma^2 * T
    validator : params -> bool, see svi_model.make_validator
    starting_regions : number of restarts (default: config.SVI_STARTING_REGIONS)
    points, refine_points, layers : passed to grid_search
    max_iter : passed to levenberg_marquardt

    Returns
    -------
    (SviParameters, cost)

    Raises
    ------
    UnfittableGroupError
        If no region yields a single valid candidate.
    """
    if starting_regions is None:
        starting_regions = config.SVI_STARTING_REGIONS

    k = np.asarray(log_moneyness, dtype=float)
    w = np.asarray(total_variance, dtype=float)

    bounds = search_bounds(k, w)
    edges = np.linspace(bounds["m"][0], bounds["m"][1], starting_regions + 1)

    best = None
    for lo, hi in zip(edges[:-1], edges[1:]):
        region = dict(bounds, m=(float(lo), float(hi)))
        run = _fit_from_region(k, w, validator, region, points, refine_points, layers, max_iter)
        if run is not None and (best is None or run[1] < best[1]):
            best = run

    if best is None:
        raise UnfittableGroupError(
            f"no arbitrage-free SVI candidate in any of {starting_regions} starting regions"
        )
    return best


def fit_group(
    group: ExpiryGroup,
    as_of: datetime,
    min_options: int = None,
    check_points: int = None,
    check_padding: float = None,
    **search_kwargs,
) -> FitResult:
    """
    Fit an arbitrage-free SVI smile to one expiry group.

    Parameters
    ----------
    group : options sharing one expiry
    as_of : the run's as-of instant, recorded as the fit timestamp
    min_options : minimum member count (default: config.SMILE_MIN_OPTIONS)
    check_points, check_padding : arbitrage grid settings, see
        svi_model.arbitrage_check_grid
    **search_kwargs : forwarded to calibrate_svi_slice

    Returns
    -------
    FitResult

    Raises
    ------
    InsufficientDataError
        If the group is below the member threshold; no fit is attempted.
    UnfittableGroupError
        If no valid candidate exists.
    """
    if min_options is None:
        min_options = config.SMILE_MIN_OPTIONS
    if len(group) < min_options:
        raise InsufficientDataError(
            f"expiry {group.expiry.isoformat()} has {len(group)} options, need {min_options}"
        )

    k = group.log_moneyness()
    w = group.total_variance()
    k_grid = arbitrage_check_grid(k, points=check_points, padding=check_padding)

    params, cost = calibrate_svi_slice(k, w, make_validator(k_grid), **search_kwargs)
    residuals = svi_total_variance(k, params) - w

    logger.info(
        "fitted expiry %s (%d options): cost=%.3e a=%.5f b=%.5f rho=%.4f m=%.4f sigma=%.4f",
        group.expiry.isoformat(), len(group), cost,
        params.a, params.b, params.rho, params.m, params.sigma,
    )

    return FitResult(
        expiry=group.expiry,
        as_of=as_of,
        years_to_expiry=group.years_to_expiry,
        forward=group.forward,
        params=params,
        strikes=tuple(float(s) for s in group.strikes()),
        log_moneyness=tuple(float(v) for v in k),
        observed_variance=tuple(float(v) for v in w),
        residuals=tuple(float(v) for v in residuals),
        arbitrage_free=not has_butterfly_arbitrage(params, k_grid),
        cost=float(cost),
        check_range=(float(k_grid[0]), float(k_grid[-1])),
    )


def calibrate_svi_surface(
    groups: Iterable[ExpiryGroup],
    as_of: datetime,
    **fit_kwargs,
) -> Tuple[List[FitResult], Dict[datetime, str]]:
    """
    Fit every expiry group independently.

    A group that is undersized or unfittable is recorded in the returned
    failures (expiry -> reason) and skipped; the remaining groups are
    still fitted.

    Returns
    -------
    results : one FitResult per successfully fitted group
    failures : {expiry: reason} for the groups that were skipped
    """
    results = []
    failures = {}
    for group in groups:
        try:
            results.append(fit_group(group, as_of, **fit_kwargs))
        except (InsufficientDataError, UnfittableGroupError) as exc:
            logger.warning("skipping expiry %s: %s", group.expiry.isoformat(), exc)
            failures[group.expiry] = str(exc)
    return results, failures
