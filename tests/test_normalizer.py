"""
Tests for quote normalization: expiry handling, spot normalization,
premium conversion, and drop accounting.
"""

from datetime import datetime, timedelta, timezone

import pytest
import numpy as np
from volsmile.black_scholes import black_price
from volsmile.normalizer import normalize_quotes, year_fraction
from volsmile.records import RawQuote


R = 0.06


def _quote(as_of, strike=100.0, days=91.25, option_type="call", vol=0.5, spot=100.0,
           forward=None, observed_at=None, instrument_id=None, mark_price=None):
    T = days / 365.0
    expiry = as_of + timedelta(days=days)
    F = forward if forward is not None else spot * np.exp(R * T)
    if mark_price is None:
        mark_price = black_price(F, strike, T, R, vol, option_type)
    return RawQuote(
        instrument_id=instrument_id or f"Q-{option_type}-{strike:.0f}",
        strike=strike,
        expiry=expiry,
        option_type=option_type,
        mark_price=float(mark_price),
        spot_price=spot,
        forward_price=forward,
        observed_at=observed_at or as_of,
    )


class TestYearFraction:

    def test_act_365(self, as_of):
        assert year_fraction(as_of, as_of + timedelta(days=365)) == 1.0
        assert year_fraction(as_of, as_of + timedelta(days=73)) == pytest.approx(0.2)

    def test_negative_when_in_the_past(self, as_of):
        assert year_fraction(as_of, as_of - timedelta(days=1)) < 0


class TestNormalizeQuotes:

    def test_recovers_implied_vol(self, as_of):
        quotes = [_quote(as_of, strike=K, option_type="put" if K < 100 else "call")
                  for K in [80.0, 90.0, 100.0, 110.0, 120.0]]
        options, report = normalize_quotes(quotes, as_of, rate=R)

        assert report.n_input == 5
        assert report.n_accepted == 5
        assert report.n_dropped == 0
        for opt in options:
            assert opt.implied_vol == pytest.approx(0.5, abs=1e-7)
            assert opt.years_to_expiry == pytest.approx(0.25)
            assert opt.rate == R

    def test_keeps_input_order(self, as_of):
        quotes = [_quote(as_of, strike=K) for K in [120.0, 100.0, 110.0]]
        options, _ = normalize_quotes(quotes, as_of, rate=R)
        assert [o.strike for o in options] == [120.0, 100.0, 110.0]

    def test_missing_forward_uses_carry(self, as_of):
        options, _ = normalize_quotes([_quote(as_of)], as_of, rate=R)
        assert options[0].forward == pytest.approx(100.0 * np.exp(R * 0.25))

    def test_supplied_forward_is_used(self, as_of):
        options, _ = normalize_quotes([_quote(as_of, forward=101.0)], as_of, rate=R)
        assert options[0].forward == pytest.approx(101.0)

    def test_expired_quotes_dropped(self, as_of):
        quotes = [_quote(as_of), _quote(as_of, days=-1.0), _quote(as_of, days=0.0)]
        options, report = normalize_quotes(quotes, as_of, rate=R)
        assert len(options) == 1
        assert report.n_expired == 2

    def test_invalid_quotes_dropped(self, as_of):
        quotes = [
            _quote(as_of),
            _quote(as_of, option_type="straddle", mark_price=1.0),
            _quote(as_of, strike=0.0, mark_price=1.0),
        ]
        options, report = normalize_quotes(quotes, as_of, rate=R)
        assert len(options) == 1
        assert report.n_invalid == 2

    def test_unsolvable_quotes_reported(self, as_of):
        # deep ITM put quoted far below intrinsic
        bad = _quote(as_of, strike=150.0, option_type="put", mark_price=1.0,
                     instrument_id="BAD-PUT")
        options, report = normalize_quotes([_quote(as_of), bad], as_of, rate=R)
        assert len(options) == 1
        assert report.n_unsolvable == 1
        assert "BAD-PUT" in report.unsolvable

    def test_premium_in_underlying(self, as_of):
        spot = 50000.0
        T = 0.25
        F = spot * np.exp(R * T)
        usd_price = black_price(F, 60000.0, T, R, 0.7, "call")
        quote = RawQuote(
            instrument_id="BTC-C-60000",
            strike=60000.0,
            expiry=as_of + timedelta(days=91.25),
            option_type="call",
            mark_price=usd_price / spot,
            spot_price=spot,
            forward_price=F,
            observed_at=as_of,
            premium_in_underlying=True,
        )
        options, _ = normalize_quotes([quote], as_of, rate=R)
        assert options[0].price == pytest.approx(usd_price, rel=1e-12)
        assert options[0].implied_vol == pytest.approx(0.7, abs=1e-7)

    def test_spot_normalization_to_latest_observation(self, as_of):
        """Quotes taken at different spots end up on one forward, vols unchanged."""
        early = _quote(as_of, strike=100.0, spot=100.0, observed_at=as_of - timedelta(minutes=5))
        late = _quote(as_of, strike=110.0, spot=102.0, observed_at=as_of - timedelta(minutes=1))
        options, _ = normalize_quotes([early, late], as_of, rate=R)

        assert options[0].forward == pytest.approx(options[1].forward, rel=1e-12)
        assert options[0].forward == pytest.approx(102.0 * np.exp(R * 0.25), rel=1e-12)
        assert options[0].strike == pytest.approx(102.0)
        assert options[1].strike == pytest.approx(110.0)
        for opt in options:
            assert opt.implied_vol == pytest.approx(0.5, abs=1e-7)

    def test_explicit_reference_spot(self, as_of):
        options, _ = normalize_quotes([_quote(as_of, strike=100.0)], as_of, rate=R,
                                      reference_spot=200.0)
        assert options[0].strike == pytest.approx(200.0)
        assert options[0].implied_vol == pytest.approx(0.5, abs=1e-7)

    def test_naive_as_of_rejected(self, as_of):
        with pytest.raises(ValueError):
            normalize_quotes([_quote(as_of)], datetime(2026, 1, 1))

    def test_different_expiries_normalized_separately(self, as_of):
        short = _quote(as_of, days=30.0, spot=100.0)
        long = _quote(as_of, days=180.0, spot=105.0)
        options, _ = normalize_quotes([short, long], as_of, rate=R)
        assert options[0].strike == pytest.approx(100.0)
        assert options[1].strike == pytest.approx(100.0)


def test_empty_input(as_of):
    options, report = normalize_quotes([], as_of)
    assert options == []
    assert report.n_input == 0


def test_default_rate(as_of):
    options, _ = normalize_quotes([_quote(as_of)], datetime(2026, 1, 1, tzinfo=timezone.utc))
    assert options[0].rate == 0.06
