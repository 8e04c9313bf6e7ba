"""
Black (1976) forward pricing, greeks, and implied volatility inversion.

Prices are written against the forward F rather than spot, so no
dividend or carry term is needed:

    call = e^{-rT} [F N(d1) - K N(d2)]
    put  = e^{-rT} [K N(-d2) - F N(-d1)]

Everything here is closed-form except the IV solver, which is a
safeguarded Newton iteration: Newton steps while they stay inside a
shrinking bracket, bisection whenever they don't.

References:
    Black, F. (1976). The pricing of commodity contracts.
    Manaster, S. & Koehler, G. (1982). The calculation of implied variances
    from the Black-Scholes model: a note.
"""

import numpy as np
from scipy.stats import norm

from . import config
from .errors import UnsolvableError
from .records import CALL, parse_option_type


# ════════════════════════════════════════════════════════════════════════
#  PRICING
# ════════════════════════════════════════════════════════════════════════

def d1(F: float, K: float, T: float, sigma: float) -> float:
    """
    Compute d1 in the Black formula.

    Parameters
    ----------
    F : forward price
    K : strike price
    T : time to expiry in years
    sigma : volatility (annualized)

    Returns
    -------
    float
    """
    if T <= 0 or sigma <= 0:
        return 0.0
    return (np.log(F / K) + 0.5 * sigma**2 * T) / (sigma * np.sqrt(T))


def d2(F: float, K: float, T: float, sigma: float) -> float:
    """Compute d2 = d1 - sigma * sqrt(T)."""
    return d1(F, K, T, sigma) - sigma * np.sqrt(T)


def call_price(F: float, K: float, T: float, r: float, sigma: float) -> float:
    """
    European call price under Black (1976).

    Returns
    -------
    float : theoretical call price
    """
    if T <= 0:
        return max(F - K, 0.0)
    df = np.exp(-r * T)
    if sigma <= 0:
        return df * max(F - K, 0.0)

    _d1 = d1(F, K, T, sigma)
    _d2 = _d1 - sigma * np.sqrt(T)
    return df * (F * norm.cdf(_d1) - K * norm.cdf(_d2))


def put_price(F: float, K: float, T: float, r: float, sigma: float) -> float:
    """
    European put price under Black (1976).

        P = e^{-rT} [K N(-d2) - F N(-d1)]
    """
    if T <= 0:
        return max(K - F, 0.0)
    df = np.exp(-r * T)
    if sigma <= 0:
        return df * max(K - F, 0.0)

    _d1 = d1(F, K, T, sigma)
    _d2 = _d1 - sigma * np.sqrt(T)
    return df * (K * norm.cdf(-_d2) - F * norm.cdf(-_d1))


def black_price(F: float, K: float, T: float, r: float, sigma: float,
                option_type: str = "call") -> float:
    """Dispatch to call_price or put_price based on option_type."""
    if parse_option_type(option_type) == CALL:
        return call_price(F, K, T, r, sigma)
    return put_price(F, K, T, r, sigma)


# ════════════════════════════════════════════════════════════════════════
#  GREEKS
# ════════════════════════════════════════════════════════════════════════

def delta(F: float, K: float, T: float, r: float, sigma: float,
          option_type: str = "call") -> float:
    """
    Forward delta: dV/dF.

    Call delta is in [0, e^{-rT}]; put delta in [-e^{-rT}, 0].
    """
    is_call = parse_option_type(option_type) == CALL
    if T <= 0 or sigma <= 0:
        if is_call:
            return 1.0 if F > K else 0.0
        return -1.0 if F < K else 0.0

    df = np.exp(-r * T)
    _d1 = d1(F, K, T, sigma)
    if is_call:
        return df * norm.cdf(_d1)
    return df * (norm.cdf(_d1) - 1.0)


def gamma(F: float, K: float, T: float, r: float, sigma: float) -> float:
    """Forward gamma: d²V/dF². Same for calls and puts."""
    if T <= 0 or sigma <= 0 or F <= 0:
        return 0.0
    _d1 = d1(F, K, T, sigma)
    return np.exp(-r * T) * norm.pdf(_d1) / (F * sigma * np.sqrt(T))


def vega(F: float, K: float, T: float, r: float, sigma: float) -> float:
    """
    Vega: dV/dσ, per unit (100%) change in vol.

    Same for calls and puts. Underflows to ~0 deep out of the money,
    which is why the IV solver cannot rely on Newton alone.
    """
    if T <= 0 or sigma <= 0 or F <= 0:
        return 0.0
    _d1 = d1(F, K, T, sigma)
    return np.exp(-r * T) * F * norm.pdf(_d1) * np.sqrt(T)


def theta(F: float, K: float, T: float, r: float, sigma: float,
          option_type: str = "call") -> float:
    """
    Theta: -dV/dT with the forward held fixed (time decay per year).

    Divide by 365 for daily theta.
    """
    if T <= 0 or sigma <= 0:
        return 0.0

    df = np.exp(-r * T)
    _d1 = d1(F, K, T, sigma)
    _d2 = _d1 - sigma * np.sqrt(T)
    time_decay = -df * F * norm.pdf(_d1) * sigma / (2 * np.sqrt(T))

    if parse_option_type(option_type) == CALL:
        return time_decay + r * df * (F * norm.cdf(_d1) - K * norm.cdf(_d2))
    return time_decay + r * df * (K * norm.cdf(-_d2) - F * norm.cdf(-_d1))


def rho(F: float, K: float, T: float, r: float, sigma: float,
        option_type: str = "call") -> float:
    """
    Rho: dV/dr with the forward held fixed.

    Only discounting depends on r here, so rho = -T * V for both types.
    """
    if T <= 0:
        return 0.0
    return -T * black_price(F, K, T, r, sigma, option_type)


# ════════════════════════════════════════════════════════════════════════
#  IMPLIED VOLATILITY
# ════════════════════════════════════════════════════════════════════════

def price_bounds(F: float, K: float, T: float, r: float,
                 option_type: str = "call"):
    """
    No-arbitrage (lower, upper) price bounds for a European option.

    Lower is the discounted intrinsic value; upper is the discounted
    forward for calls and the discounted strike for puts.
    """
    df = np.exp(-r * T)
    if parse_option_type(option_type) == CALL:
        return df * max(F - K, 0.0), df * F
    return df * max(K - F, 0.0), df * K


def implied_vol(
    market_price: float,
    F: float,
    K: float,
    T: float,
    r: float,
    option_type: str = "call",
    vol_lower: float = None,
    vol_upper: float = None,
    price_tol: float = None,
    vol_tol: float = None,
    max_iter: int = None,
) -> float:
    """
    Compute implied volatility by inverting the Black formula.

    The volatility is first bracketed: the upper bound doubles until the
    model price at it reaches the market price. Then a safeguarded Newton
    iteration runs inside the bracket, each iterate shrinking it. When
    vega is too small or the Newton step lands outside the bracket, the
    step is replaced by bisection, so the search never diverges.

    Parameters
    ----------
    market_price : observed option price (mark or mid)
    F : forward price
    K : strike
    T : time to expiry (years)
    r : risk-free rate
    option_type : "call" or "put"
    vol_lower : lower bracket (default: config.IV_VOL_LOWER)
    vol_upper : initial upper bracket (default: config.IV_VOL_UPPER)
    price_tol : absolute price tolerance (default: config.IV_PRICE_TOL)
    vol_tol : bracket width at which the search stops (default: config.IV_VOL_TOL)
    max_iter : iteration budget (default: config.IV_MAX_ITER)

    Returns
    -------
    float : implied volatility

    Raises
    ------
    UnsolvableError
        For non-positive price/strike/forward/time, a price outside the
        no-arbitrage bounds, a bracket without a sign change, or an
        exhausted iteration budget.
    """
    if vol_lower is None:
        vol_lower = config.IV_VOL_LOWER
    if vol_upper is None:
        vol_upper = config.IV_VOL_UPPER
    if price_tol is None:
        price_tol = config.IV_PRICE_TOL
    if vol_tol is None:
        vol_tol = config.IV_VOL_TOL
    if max_iter is None:
        max_iter = config.IV_MAX_ITER

    option_type = parse_option_type(option_type)

    if not np.isfinite(market_price) or market_price <= 0:
        raise UnsolvableError(f"option price must be positive (found {market_price})")
    if not np.isfinite(T) or T <= 0:
        raise UnsolvableError(f"time to expiry must be positive (found {T})")
    if not np.isfinite(K) or K <= 0 or not np.isfinite(F) or F <= 0:
        raise UnsolvableError(f"strike and forward must be positive (found K={K}, F={F})")

    lower_bound, upper_bound = price_bounds(F, K, T, r, option_type)
    if market_price < lower_bound:
        raise UnsolvableError(
            f"{option_type} price impossibly low ({market_price} < {lower_bound}); is the data stale?"
        )
    if market_price >= upper_bound:
        raise UnsolvableError(f"{option_type} price too high ({market_price} >= {upper_bound})")

    def objective(sigma):
        return black_price(F, K, T, r, sigma, option_type) - market_price

    lo, hi = vol_lower, vol_upper
    if objective(lo) > 0:
        raise UnsolvableError(f"price {market_price} is below the model price at vol {lo}")

    # price is increasing in vol, so push the upper bound out until it overshoots
    expansions = 0
    while objective(hi) < 0:
        if expansions >= config.IV_MAX_BRACKET_EXPANSIONS:
            raise UnsolvableError(f"could not bracket implied vol below {hi}")
        hi *= 2.0
        expansions += 1

    # inflection point of price(sigma); Newton from here converges monotonically
    sigma = np.sqrt(2.0 * abs(np.log(F / K)) / T)
    if sigma == 0.0:
        sigma = 0.5
    sigma = min(max(sigma, lo), hi)

    for _ in range(max_iter):
        diff = objective(sigma)
        if abs(diff) < price_tol:
            return float(sigma)

        if diff > 0:
            hi = sigma
        else:
            lo = sigma
        if hi - lo < vol_tol:
            return float(0.5 * (lo + hi))

        v = vega(F, K, T, r, sigma)
        step_ok = v > config.IV_VEGA_FLOOR
        if step_ok:
            candidate = sigma - diff / v
            step_ok = lo < candidate < hi
        sigma = candidate if step_ok else 0.5 * (lo + hi)

    raise UnsolvableError(f"implied vol did not converge in {max_iter} iterations")
