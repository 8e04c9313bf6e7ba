"""
Tests for fit result persistence.
"""

import json
from dataclasses import replace
from decimal import Decimal
from pathlib import Path

import pytest
from volsmile.records import FitResult
from volsmile.result_store import (
    CONTAINER_KEY,
    FitResultStore,
    result_from_dict,
    result_to_dict,
    results_to_frame,
)


class TestRoundTrip:

    def test_dict_round_trip_is_exact(self, fitted_results):
        for result in fitted_results:
            assert result_from_dict(result_to_dict(result)) == result

    def test_file_round_trip_is_exact(self, tmp_path, fitted_results):
        store = FitResultStore(tmp_path / "fits.json")
        store.save_all(fitted_results)
        loaded = store.load_all()
        assert loaded == fitted_results
        # parameters survive bit for bit
        assert [r.params for r in loaded] == [r.params for r in fitted_results]

    def test_timezone_preserved(self, tmp_path, fitted_results):
        store = FitResultStore(tmp_path / "fits.json")
        store.save_all(fitted_results)
        loaded = store.load_all()[0]
        assert loaded.as_of.utcoffset() is not None
        assert loaded.expiry == fitted_results[0].expiry

    def test_check_range_is_required(self, fitted_results):
        data = result_to_dict(fitted_results[0])
        del data["check_range"]
        with pytest.raises(KeyError):
            result_from_dict(data)

        fields = {k: v for k, v in vars(fitted_results[0]).items() if k != "check_range"}
        with pytest.raises(TypeError):
            FitResult(**fields)


class TestFitResultStore:

    def test_container_layout(self, tmp_path, fitted_results):
        path = FitResultStore(tmp_path / "fits.json").save_all(fitted_results)
        payload = json.loads(path.read_text(encoding="utf-8"))
        assert list(payload) == [CONTAINER_KEY]
        assert len(payload[CONTAINER_KEY]) == 2
        assert set(payload[CONTAINER_KEY][0]["params"]) == {"a", "b", "rho", "m", "sigma"}

    def test_load_missing_file_is_empty(self, tmp_path):
        assert FitResultStore(tmp_path / "missing.json").load_all() == []

    def test_creates_parent_directories(self, tmp_path, fitted_results):
        path = tmp_path / "nested" / "dir" / "fits.json"
        FitResultStore(path).save_all(fitted_results)
        assert path.exists()

    def test_save_replaces_same_expiry(self, tmp_path, fitted_results):
        store = FitResultStore(tmp_path / "fits.json")
        store.save_all(fitted_results)
        store.save(fitted_results[0])
        loaded = store.load_all()
        assert len(loaded) == 2
        assert sorted(r.expiry for r in loaded) == sorted(r.expiry for r in fitted_results)

    def test_save_appends_new_expiry(self, tmp_path, fitted_results):
        store = FitResultStore(tmp_path / "fits.json")
        store.save(fitted_results[0])
        store.save(fitted_results[1])
        assert store.load_all() == fitted_results

    def test_save_leaves_no_temporary_file(self, tmp_path, fitted_results):
        store = FitResultStore(tmp_path / "fits.json")
        store.save_all(fitted_results)
        store.save_all(fitted_results[:1])
        assert [p.name for p in tmp_path.iterdir()] == ["fits.json"]
        assert store.load_all() == fitted_results[:1]

    def test_failed_save_keeps_previous_file(self, tmp_path, fitted_results):
        """A result that cannot be serialized must not truncate the stored file."""
        store = FitResultStore(tmp_path / "fits.json")
        store.save_all(fitted_results)
        before = store.path.read_bytes()

        broken = replace(fitted_results[0], cost=Decimal("0.1"))
        with pytest.raises(TypeError):
            store.save_all([broken])

        assert store.path.read_bytes() == before
        assert store.load_all() == fitted_results

    def test_failed_replace_keeps_previous_file(self, tmp_path, fitted_results, monkeypatch):
        store = FitResultStore(tmp_path / "fits.json")
        store.save_all(fitted_results)
        before = store.path.read_bytes()

        def refuse(self, target):
            raise OSError("disk full")

        monkeypatch.setattr(Path, "replace", refuse)
        with pytest.raises(OSError):
            store.save_all(fitted_results[:1])

        assert store.path.read_bytes() == before

    def test_clear(self, tmp_path, fitted_results):
        store = FitResultStore(tmp_path / "fits.json")
        store.save_all(fitted_results)
        store.clear()
        assert not store.path.exists()
        assert store.load_all() == []
        store.clear()  # idempotent


class TestResultsToFrame:

    def test_columns_and_order(self, fitted_results):
        df = results_to_frame(list(reversed(fitted_results)))
        assert list(df.columns) == [
            "expiry", "T", "forward", "a", "b", "rho", "m", "sigma", "n_options",
            "rmse", "max_abs_residual", "strike_min", "strike_max", "arbitrage_free",
        ]
        assert list(df["T"]) == [0.25, 0.5]
        assert list(df["n_options"]) == [5, 15]
        assert df["arbitrage_free"].all()

    def test_strike_range(self, fitted_results):
        df = results_to_frame(fitted_results)
        assert df.loc[0, "strike_min"] == pytest.approx(30000.0)
        assert df.loc[0, "strike_max"] == pytest.approx(70000.0)

    def test_empty(self):
        assert results_to_frame([]).empty
