"""
Shared test fixtures and pytest configuration.
"""

from datetime import datetime, timedelta, timezone

import pytest
import numpy as np

from volsmile.data_feed import generate_synthetic_quotes
from volsmile.records import CALL, PUT, ExpiryGroup, NormalizedOption, SviParameters
from volsmile.svi_calibration import fit_group
from volsmile.svi_model import svi_implied_vol


@pytest.fixture(autouse=True)
def set_random_seed():
    """Ensure test reproducibility."""
    np.random.seed(42)
    yield


@pytest.fixture
def as_of():
    """Fixed as-of instant shared by a whole test run."""
    return datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def known_params():
    """An arbitrage-free smile with equity-style negative skew."""
    return SviParameters(a=0.01, b=0.1, rho=-0.3, m=0.0, sigma=0.2)


@pytest.fixture
def make_group(as_of):
    """
    Factory for an ExpiryGroup whose implied vols follow SVI exactly.

    Usage: make_group(params, T=0.25, forward=100.0, strikes=[...])
    """

    def _make(params, T=0.25, forward=100.0, strikes=None, rate=0.06):
        if strikes is None:
            strikes = forward * np.exp(np.linspace(-0.45, 0.45, 15))
        expiry = as_of + timedelta(days=365 * T)
        k = np.log(np.asarray(strikes, dtype=float) / forward)
        vols = svi_implied_vol(k, T, params)
        options = tuple(
            NormalizedOption(
                instrument_id=f"TEST-{i}",
                expiry=expiry,
                strike=float(K),
                years_to_expiry=T,
                option_type=PUT if K < forward else CALL,
                forward=forward,
                rate=rate,
                price=0.0,
                implied_vol=float(v),
            )
            for i, (K, v) in enumerate(zip(strikes, vols))
        )
        return ExpiryGroup(expiry=expiry, years_to_expiry=T, forward=forward, options=options)

    return _make


@pytest.fixture
def fitted_results(make_group, known_params, as_of):
    """Two fitted smiles, nearest expiry first."""
    return [
        fit_group(make_group(known_params, T=0.25, forward=50000.0,
                             strikes=[30000.0, 40000.0, 50000.0, 60000.0, 70000.0]), as_of),
        fit_group(make_group(known_params, T=0.5), as_of),
    ]


@pytest.fixture
def synthetic_quotes(as_of):
    """Default synthetic quote set: 5 maturities x 15 out-of-the-money strikes."""
    return generate_synthetic_quotes(as_of)
