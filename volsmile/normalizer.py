"""
Quote normalization: raw market quotes -> NormalizedOption records.

The steps, per quote:
    - parse the option type, reject non-positive strike / spot
    - time to expiry against the run's fixed as-of instant (ACT/365);
      expired quotes are dropped
    - spot normalization: every quote of an expiry is rescaled to one
      reference spot. Strike, price and forward are scaled by the same
      factor, which leaves K/F and the implied vol unchanged (Black
      pricing is homogeneous of degree one) but puts all members on a
      common forward
    - implied vol via the Black solver; unsolvable quotes are dropped

Nothing is retried and nothing is dropped silently: every rejected quote
is counted in the returned NormalizationReport.

The as-of instant is passed in, never read from a clock here, so a run
cannot drift while it is normalizing.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from . import config
from .black_scholes import implied_vol
from .errors import UnsolvableError
from .logging import get_logger
from .records import NormalizedOption, RawQuote, parse_option_type

logger = get_logger(__name__)

SECONDS_PER_YEAR = config.DAYS_PER_YEAR * 24 * 3600


@dataclass
class NormalizationReport:
    """Counts of what happened to each input quote."""

    n_input: int = 0
    n_accepted: int = 0
    n_expired: int = 0
    n_invalid: int = 0
    n_unsolvable: int = 0
    unsolvable: Dict[str, str] = field(default_factory=dict)

    @property
    def n_dropped(self) -> int:
        return self.n_expired + self.n_invalid + self.n_unsolvable


def year_fraction(start: datetime, end: datetime) -> float:
    """Year fraction between two instants (ACT/365)."""
    return (end - start).total_seconds() / SECONDS_PER_YEAR


def _require_aware(value: datetime, name: str) -> None:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware, got naive {value!r}")


def _reference_spots(quotes: List[RawQuote],
                     reference_spot: Optional[float]) -> Dict[datetime, float]:
    """
    Reference spot per expiry.

    The explicit ``reference_spot`` wins; otherwise the spot of the most
    recently observed quote of each expiry (first one on ties).
    """
    latest = OrderedDict()
    for q in quotes:
        current = latest.get(q.expiry)
        if current is None or q.observed_at > current.observed_at:
            latest[q.expiry] = q
    if reference_spot is not None:
        return {expiry: float(reference_spot) for expiry in latest}
    return {expiry: float(q.spot_price) for expiry, q in latest.items()}


def _is_positive(value) -> bool:
    return value is not None and np.isfinite(value) and value > 0


def normalize_quotes(
    quotes: Iterable[RawQuote],
    as_of: datetime,
    rate: float = None,
    reference_spot: Optional[float] = None,
    min_time_to_expiry: float = None,
) -> Tuple[List[NormalizedOption], NormalizationReport]:
    """
    Convert raw quotes into normalized options with implied vols.

    Parameters
    ----------
    quotes : raw quotes from a data source
    as_of : fixed, timezone-aware as-of instant for this run
    rate : risk-free rate (default: config.RISK_FREE_RATE)
    reference_spot : spot every expiry is rescaled to; default is the
        latest observed spot within each expiry
    min_time_to_expiry : quotes with T at or below this are expired
        (default: config.MIN_TIME_TO_EXPIRY, never below 0)

    Returns
    -------
    options : accepted options, in input order
    report : NormalizationReport with drop counts

    Raises
    ------
    ValueError : if ``as_of`` is naive
    """
    if rate is None:
        rate = config.RISK_FREE_RATE
    if min_time_to_expiry is None:
        min_time_to_expiry = config.MIN_TIME_TO_EXPIRY
    min_time_to_expiry = max(float(min_time_to_expiry), 0.0)
    _require_aware(as_of, "as_of")

    report = NormalizationReport()
    candidates = []

    for q in quotes:
        report.n_input += 1
        try:
            option_type = parse_option_type(q.option_type)
        except ValueError as exc:
            logger.debug("dropping %s: %s", q.instrument_id, exc)
            report.n_invalid += 1
            continue
        if not (_is_positive(q.strike) and _is_positive(q.spot_price)):
            logger.debug("dropping %s: non-positive strike or spot", q.instrument_id)
            report.n_invalid += 1
            continue

        _require_aware(q.expiry, "expiry")
        T = year_fraction(as_of, q.expiry)
        if T <= min_time_to_expiry:
            report.n_expired += 1
            continue

        candidates.append((q, option_type, T))

    ref_spots = _reference_spots([c[0] for c in candidates], reference_spot)
    options = []

    for q, option_type, T in candidates:
        price = q.mark_price * q.spot_price if q.premium_in_underlying else q.mark_price
        forward = q.forward_price
        if not _is_positive(forward):
            forward = q.spot_price * np.exp(rate * T)

        scale = ref_spots[q.expiry] / q.spot_price
        strike = float(q.strike * scale)
        forward = float(forward * scale)
        price = float(price * scale)

        try:
            sigma = implied_vol(price, forward, strike, T, rate, option_type)
        except UnsolvableError as exc:
            logger.debug("unsolvable %s: %s", q.instrument_id, exc)
            report.n_unsolvable += 1
            report.unsolvable[q.instrument_id] = str(exc)
            continue

        options.append(NormalizedOption(
            instrument_id=q.instrument_id,
            expiry=q.expiry,
            strike=strike,
            years_to_expiry=T,
            option_type=option_type,
            forward=forward,
            rate=rate,
            price=price,
            implied_vol=sigma,
        ))

    report.n_accepted = len(options)
    logger.info(
        "normalized %d of %d quotes (expired=%d invalid=%d unsolvable=%d)",
        report.n_accepted, report.n_input, report.n_expired, report.n_invalid, report.n_unsolvable,
    )
    return options, report
