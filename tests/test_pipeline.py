"""
End-to-end tests: raw quotes -> fitted, stored smiles.
"""

from datetime import timedelta

import pytest
import numpy as np
from volsmile.data_feed import generate_synthetic_quotes
from volsmile.pipeline import build_surface
from volsmile.records import RawQuote, SviParameters
from volsmile.result_store import FitResultStore


class TestBuildSurface:

    def test_synthetic_surface(self, as_of, synthetic_quotes, tmp_path):
        quotes = synthetic_quotes
        store = FitResultStore(tmp_path / "fits.json")
        report = build_surface(quotes, as_of, store=store)

        assert report.normalization.n_accepted == len(quotes)
        assert report.n_fitted == 5
        assert report.n_skipped_groups == 0
        for result in report.results:
            assert result.arbitrage_free
            assert result.as_of == as_of
            assert result.max_abs_residual < 5e-5
        assert store.load_all() == report.results

    def test_five_strike_example(self, as_of):
        """Five strikes, five parameters: the smile is reproduced within 1e-4."""
        T = 0.25
        params = SviParameters(a=0.01, b=0.1, rho=-0.3, m=0.0, sigma=0.2)
        quotes = generate_synthetic_quotes(
            as_of,
            forward=50000.0,
            maturities=[T],
            strikes=[30000.0, 40000.0, 50000.0, 60000.0, 70000.0],
            params_by_maturity={T: params},
        )
        report = build_surface(quotes, as_of)

        assert report.n_fitted == 1
        result = report.results[0]
        assert result.years_to_expiry == pytest.approx(T)
        assert result.forward == pytest.approx(50000.0)
        assert np.all(np.abs(result.residuals) < 1e-4)

    def test_failures_are_isolated(self, as_of):
        quotes = generate_synthetic_quotes(as_of, maturities=[0.25, 0.5])
        lonely_expiry = as_of + timedelta(days=200)
        lonely = [
            RawQuote(
                instrument_id=f"LONELY-{K:.0f}",
                strike=K,
                expiry=lonely_expiry,
                option_type="call",
                mark_price=5000.0,
                spot_price=50000.0,
                forward_price=None,
                observed_at=as_of,
            )
            for K in (50000.0, 55000.0)
        ]
        expired = RawQuote(
            instrument_id="EXPIRED",
            strike=50000.0,
            expiry=as_of - timedelta(days=1),
            option_type="call",
            mark_price=100.0,
            spot_price=50000.0,
            forward_price=None,
            observed_at=as_of,
        )
        report = build_surface(quotes + lonely + [expired], as_of)

        assert report.n_fitted == 2
        assert report.insufficient == {lonely_expiry: 2}
        assert report.unfittable == {}
        assert report.normalization.n_expired == 1
        assert report.n_skipped_groups == 1

    def test_min_options_threshold(self, as_of):
        quotes = generate_synthetic_quotes(as_of, maturities=[0.25])
        report = build_surface(quotes, as_of, min_options=len(quotes) + 1)
        assert report.n_fitted == 0
        assert list(report.insufficient.values()) == [len(quotes)]

    def test_deterministic(self, as_of):
        quotes = generate_synthetic_quotes(as_of, maturities=[0.1, 1.0])
        first = build_surface(quotes, as_of)
        second = build_surface(quotes, as_of)
        assert first.results == second.results

