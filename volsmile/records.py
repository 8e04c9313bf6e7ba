"""
Immutable records passed between pipeline stages.

    RawQuote          - one market quote as delivered by a data source
    NormalizedOption  - quote after spot normalization + implied vol solve
    ExpiryGroup       - options sharing an expiry, with one forward
    SviParameters     - the five raw SVI parameters
    FitResult         - fitted smile for one expiry, as persisted

Every stage builds new records rather than mutating its input.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple

import numpy as np


CALL = "call"
PUT = "put"


def parse_option_type(option_type: str) -> str:
    """Normalize 'c'/'call'/'p'/'put' (any case) to 'call' or 'put'."""
    value = str(option_type).strip().lower()
    if value in ("c", "call"):
        return CALL
    elif value in ("p", "put"):
        return PUT
    else:
        raise ValueError(f"Unknown option_type: {option_type}. Use 'call' or 'put'.")


@dataclass(frozen=True)
class RawQuote:
    instrument_id: str
    strike: float
    expiry: datetime
    option_type: str
    mark_price: float
    spot_price: float
    forward_price: Optional[float]
    observed_at: datetime
    # crypto venues quote premiums in units of the underlying
    premium_in_underlying: bool = False


@dataclass(frozen=True)
class NormalizedOption:
    instrument_id: str
    expiry: datetime
    strike: float
    years_to_expiry: float
    option_type: str
    forward: float
    rate: float
    price: float
    implied_vol: float

    @property
    def total_variance(self) -> float:
        """Observed total implied variance sigma^2 * T."""
        return self.implied_vol**2 * self.years_to_expiry

    def log_moneyness(self, forward: Optional[float] = None) -> float:
        """k = ln(K/F), against ``forward`` if given, else the option's own."""
        if forward is None:
            forward = self.forward
        return float(np.log(self.strike / forward))


@dataclass(frozen=True)
class ExpiryGroup:
    expiry: datetime
    years_to_expiry: float
    forward: float
    options: Tuple[NormalizedOption, ...]

    def __len__(self) -> int:
        return len(self.options)

    def strikes(self) -> np.ndarray:
        return np.array([opt.strike for opt in self.options], dtype=float)

    def log_moneyness(self) -> np.ndarray:
        """Log-moneyness of every member against the group forward."""
        return np.log(self.strikes() / self.forward)

    def total_variance(self) -> np.ndarray:
        return np.array([opt.total_variance for opt in self.options], dtype=float)


@dataclass(frozen=True)
class SviParameters:
    """
    Raw SVI parameters.

        w(k) = a + b * (rho * (k - m) + sqrt((k - m)^2 + sigma^2))
    """

    a: float
    b: float
    rho: float
    m: float
    sigma: float

    def as_array(self) -> np.ndarray:
        return np.array([self.a, self.b, self.rho, self.m, self.sigma], dtype=float)

    @classmethod
    def from_array(cls, values) -> "SviParameters":
        a, b, rho, m, sigma = (float(v) for v in values)
        return cls(a=a, b=b, rho=rho, m=m, sigma=sigma)

    def to_dict(self) -> Dict[str, float]:
        return {"a": self.a, "b": self.b, "rho": self.rho, "m": self.m, "sigma": self.sigma}

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> "SviParameters":
        return cls(
            a=float(data["a"]),
            b=float(data["b"]),
            rho=float(data["rho"]),
            m=float(data["m"]),
            sigma=float(data["sigma"]),
        )


@dataclass(frozen=True)
class FitResult:
    """
    A fitted smile for one expiry.

    ``as_of`` is the run's as-of instant and doubles as the fit timestamp;
    nothing here is read from a clock at fit time. ``residuals`` are
    model minus observed total variance, aligned with ``strikes``.
    """

    expiry: datetime
    as_of: datetime
    years_to_expiry: float
    forward: float
    params: SviParameters
    strikes: Tuple[float, ...]
    log_moneyness: Tuple[float, ...]
    observed_variance: Tuple[float, ...]
    residuals: Tuple[float, ...]
    arbitrage_free: bool
    cost: float
    check_range: Tuple[float, float]

    @property
    def rmse(self) -> float:
        """Root-mean-square residual in total variance."""
        return float(np.sqrt(np.mean(np.square(self.residuals))))

    @property
    def max_abs_residual(self) -> float:
        return float(np.max(np.abs(self.residuals)))

    @property
    def lowest_observed_strike(self) -> float:
        return float(min(self.strikes))

    @property
    def highest_observed_strike(self) -> float:
        return float(max(self.strikes))

    @property
    def highest_observed_implied_vol(self) -> float:
        return float(np.sqrt(max(self.observed_variance) / self.years_to_expiry))
